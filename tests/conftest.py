"""
Shared pytest fixtures.
"""

import pytest

from doubles import FakeSink, RecordingCodec


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def recording_codec():
    return RecordingCodec()
