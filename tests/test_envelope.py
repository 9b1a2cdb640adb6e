"""
Envelope decoding: JSON parse, base64, optional gzip.
"""

import base64
import gzip
import json

import pytest

from jsonl_player.envelope import Envelope, EnvelopeDecoder, gunzip
from jsonl_player.errors import DecompressionFailure, InvalidEncoding, MalformedEnvelope

from doubles import envelope


class TestEnvelopeParsing:

    def test_data_field_is_read(self):
        env = Envelope.from_line('{"data": "AAEC"}')
        assert env.data == "AAEC"

    def test_extra_fields_are_ignored(self):
        env = Envelope.from_line(envelope(b"abc", seq=7, codec="mp3"))
        assert env.payload() == b"abc"

    @pytest.mark.parametrize("line", [
        "not json",
        '{"data": "AAEC"',
        "[1, 2, 3]",
        '"just a string"',
        '{"payload": "AAEC"}',
        '{"data": 12}',
        '{"data": null}',
    ])
    def test_malformed_lines(self, line):
        with pytest.raises(MalformedEnvelope):
            Envelope.from_line(line)

    def test_error_carries_line_number(self):
        with pytest.raises(MalformedEnvelope) as info:
            Envelope.from_line("{", line_no=12)
        assert info.value.ordinal == 12
        assert "#12" in str(info.value)


class TestPayload:

    def test_base64_round_trip(self):
        raw = bytes(range(256)) * 4
        assert Envelope(base64.b64encode(raw).decode()).payload() == raw

    @pytest.mark.parametrize("data", ["@@@@", "AAE", "AA=A", "ünï"])
    def test_invalid_base64(self, data):
        with pytest.raises(InvalidEncoding):
            Envelope(data).payload()

    def test_urlsafe_alphabet_is_rejected(self):
        # 0xfb 0xff encodes to '-_8=' in the urlsafe alphabet
        with pytest.raises(InvalidEncoding):
            Envelope("-_8=").payload()


class TestGzip:

    def test_gzip_round_trip(self):
        raw = b"\x00\x01" * 5000
        assert gunzip(gzip.compress(raw)) == raw

    def test_truncated_stream(self):
        packed = gzip.compress(b"hello world" * 100)
        with pytest.raises(DecompressionFailure):
            gunzip(packed[: len(packed) // 2])

    def test_not_gzip(self):
        with pytest.raises(DecompressionFailure):
            gunzip(b"plain bytes, no magic")


class TestEnvelopeDecoder:

    def test_blank_lines_yield_nothing(self):
        decoder = EnvelopeDecoder()
        assert decoder.decode("") is None
        assert decoder.decode("   \t ") is None

    def test_passthrough_without_gzip(self):
        packed = gzip.compress(b"audio")
        decoder = EnvelopeDecoder(decompress_gzip=False)
        assert decoder.decode(envelope(packed)) == packed

    def test_decompresses_with_gzip(self):
        decoder = EnvelopeDecoder(decompress_gzip=True)
        assert decoder.decode(envelope(b"audio bytes", compress=True)) == b"audio bytes"

    def test_gzip_mode_rejects_uncompressed_payload(self):
        decoder = EnvelopeDecoder(decompress_gzip=True)
        with pytest.raises(DecompressionFailure):
            decoder.decode(envelope(b"audio bytes"), line_no=3)

    @pytest.mark.parametrize("compress", [False, True])
    def test_decoding_is_idempotent(self, compress):
        decoder = EnvelopeDecoder(decompress_gzip=compress)
        line = envelope(b"\xff\xfb\x90\x64" + bytes(400), compress=compress)
        assert decoder.decode(line) == decoder.decode(line)

    def test_error_types_per_stage(self):
        decoder = EnvelopeDecoder()
        with pytest.raises(MalformedEnvelope):
            decoder.decode("{oops}")
        with pytest.raises(InvalidEncoding):
            decoder.decode(json.dumps({"data": "!!!!"}))
