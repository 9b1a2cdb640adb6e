"""
WAV header capture and container rebuilding.
"""

import io
import struct

import numpy as np
import pytest
import soundfile as sf

from jsonl_player.errors import ContainerCaptureFailure
from jsonl_player.wav import CapturedHeader, WavReassembler, capture_header

from doubles import SAMPLE_RATE, fmt_chunk, riff_wave, tone, wav_bytes


def u32(data: bytes, offset: int) -> int:
    return struct.unpack_from("<I", data, offset)[0]


class TestCaptureHeader:

    def test_minimal_header(self):
        first = riff_wave([fmt_chunk(), (b"data", b"\x01\x00" * 10)])
        header = capture_header(first)
        assert len(header.data) == 44
        assert header.data.endswith(b"data" + struct.pack("<I", 20))
        assert header.data_size_offset == 40

    def test_extra_chunks_are_kept(self):
        first = riff_wave([fmt_chunk(), (b"LIST", b"INFOabc"), (b"fact", b"\x10\x00\x00\x00"), (b"data", b"\x00" * 8)])
        header = capture_header(first)
        # fmt 8+16, LIST 8+7+pad, fact 8+4, data header 8
        assert len(header.data) == 12 + 24 + 16 + 12 + 8
        assert b"LIST" in header.data and b"fact" in header.data
        assert header.data[-8:-4] == b"data"

    def test_odd_chunk_at_end_of_fragment_without_pad(self):
        # pad byte missing because the fragment ends right after the odd chunk
        first = b"RIFF" + struct.pack("<I", 0) + b"WAVE" + b"junk" + struct.pack("<I", 3) + b"abc"
        with pytest.raises(ContainerCaptureFailure):
            capture_header(first)

    def test_header_from_soundfile_output(self):
        first = wav_bytes(tone(100))
        header = capture_header(first)
        assert first.startswith(header.data)
        assert u32(header.data, header.data_size_offset) == 200

    @pytest.mark.parametrize("fragment", [
        b"",
        b"RIFF",
        b"RIFX\x00\x00\x00\x00WAVEfmt ",
        b"RIFF\x00\x00\x00\x00AVI fmt ",
    ])
    def test_missing_signature(self, fragment):
        with pytest.raises(ContainerCaptureFailure):
            capture_header(fragment)

    def test_no_data_chunk(self):
        first = riff_wave([fmt_chunk(), (b"LIST", b"INFO")])
        with pytest.raises(ContainerCaptureFailure):
            capture_header(first)

    def test_subchunk_running_past_end(self):
        first = riff_wave([fmt_chunk(), (b"data", b"")])
        # claim a huge fmt chunk so the scan cannot reach 'data'
        broken = first[:16] + struct.pack("<I", 10_000) + first[20:]
        with pytest.raises(ContainerCaptureFailure):
            capture_header(broken)


class TestWrap:

    def test_size_fields_are_patched(self):
        header = capture_header(riff_wave([fmt_chunk(), (b"data", b"\x00" * 64)]))
        for m in (0, 1, 7, 2048):
            payload = bytes(range(256)) * (m // 256) + bytes(m % 256)
            container = header.wrap(payload)
            assert len(container) == len(header.data) + m
            assert u32(container, 4) == len(header.data) + m - 8
            assert u32(container, header.data_size_offset) == m
            assert container.endswith(payload)

    def test_captured_header_is_not_mutated(self):
        header = capture_header(riff_wave([fmt_chunk(), (b"data", b"\x00" * 64)]))
        before = header.data
        header.wrap(b"\x01" * 10)
        header.wrap(b"\x02" * 3000)
        assert header.data == before

    def test_wrapped_fragment_decodes(self):
        samples = tone(400)
        first = wav_bytes(samples[:100])
        header = capture_header(first)
        pcm = (np.clip(samples[100:], -1, 1) * 32767).astype("<i2").tobytes()
        data, rate = sf.read(io.BytesIO(header.wrap(pcm)), dtype="float32", always_2d=True)
        assert rate == SAMPLE_RATE
        assert data.shape == (300, 1)


class TestWavReassembler:

    def test_first_fragment_passes_through(self):
        reassembler = WavReassembler()
        first = riff_wave([fmt_chunk(), (b"data", b"\x00" * 32)])
        assert reassembler.process(first) == first
        assert reassembler.captured
        assert reassembler.failure is None

    def test_later_fragments_are_wrapped(self):
        reassembler = WavReassembler()
        first = riff_wave([fmt_chunk(), (b"data", b"\x00" * 32)])
        reassembler.process(first)
        out = reassembler.process(b"\x05\x00" * 50)
        assert out[:4] == b"RIFF"
        assert u32(out, 40) == 100
        assert u32(out, 4) == 44 + 100 - 8
        assert out[44:] == b"\x05\x00" * 50

    def test_capture_failure_falls_back_to_passthrough(self):
        reassembler = WavReassembler()
        assert reassembler.process(b"not a wav at all") == b"not a wav at all"
        assert not reassembler.captured
        assert isinstance(reassembler.failure, ContainerCaptureFailure)
        # a valid header arriving later does not start capture
        later = riff_wave([fmt_chunk(), (b"data", b"\x00" * 32)])
        assert reassembler.process(later) == later
        assert reassembler.process(b"\x01\x02") == b"\x01\x02"

    def test_capture_is_never_redone(self):
        reassembler = WavReassembler()
        first = riff_wave([fmt_chunk(channels=1), (b"data", b"\x00" * 32)])
        reassembler.process(first)
        header = reassembler.header
        other = riff_wave([fmt_chunk(channels=2), (b"data", b"\x00" * 32)])
        reassembler.process(other)
        assert reassembler.header is header

    def test_sessions_are_independent(self):
        good, bad = WavReassembler(), WavReassembler()
        good.process(riff_wave([fmt_chunk(), (b"data", b"")]))
        bad.process(b"garbage")
        assert good.captured and not bad.captured

    def test_header_type(self):
        reassembler = WavReassembler()
        reassembler.process(riff_wave([fmt_chunk(), (b"data", b"")]))
        assert isinstance(reassembler.header, CapturedHeader)
