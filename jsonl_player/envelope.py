"""
Envelope decoding: one JSON line in, one fragment of raw audio bytes out.

Each stage failure is raised as its own error type so the caller can count
and log it; nothing in here ever ends the stream.
"""

import base64
import binascii
import gzip
import json
import logging
import zlib
from dataclasses import dataclass
from typing import Optional

from .errors import DecompressionFailure, InvalidEncoding, MalformedEnvelope


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    """One parsed input record. Only ``data`` is used; extra fields are ignored."""

    data: str

    @classmethod
    def from_line(cls, line: str, line_no: Optional[int] = None) -> "Envelope":
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            raise MalformedEnvelope(f"Failed to parse JSON: {exc}", line_no) from exc
        if not isinstance(record, dict):
            raise MalformedEnvelope(f"Expected a JSON object, got {type(record).__name__}", line_no)
        data = record.get("data")
        if not isinstance(data, str):
            raise MalformedEnvelope("Missing or non-string 'data' field", line_no)
        return cls(data=data)

    def payload(self, line_no: Optional[int] = None) -> bytes:
        """Standard-alphabet base64 decode of ``data``."""
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidEncoding(f"Failed to decode base64 data: {exc}", line_no) from exc


def gunzip(data: bytes, line_no: Optional[int] = None) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise DecompressionFailure(f"Failed to decompress gzip data: {exc}", line_no) from exc


class EnvelopeDecoder:
    """Turns lines into fragments, optionally gunzipping each payload.

    ``decode`` returns ``None`` for blank lines and raises a
    :class:`~jsonl_player.errors.UnitError` subclass for bad ones.
    """

    def __init__(self, decompress_gzip: bool = False):
        self.decompress_gzip = decompress_gzip

    def decode(self, line: str, line_no: Optional[int] = None) -> Optional[bytes]:
        if not line.strip():
            return None
        envelope = Envelope.from_line(line, line_no)
        return self.unwrap(envelope, line_no)

    def unwrap(self, envelope: Envelope, line_no: Optional[int] = None) -> bytes:
        raw = envelope.payload(line_no)
        if not self.decompress_gzip:
            return raw
        fragment = gunzip(raw, line_no)
        logger.debug("Decompressed chunk from %d to %d bytes", len(raw), len(fragment))
        return fragment
