"""
RIFF/WAVE header capture and per-fragment container rebuilding.

Streaming PCM sources send the full WAV header once, inside the first
fragment, and raw samples after that. A decoder needs a whole file per
call, so the header is captured once and cloned in front of every later
fragment with its two size fields rewritten.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional

from .errors import ContainerCaptureFailure


logger = logging.getLogger(__name__)

RIFF_HEADER_SIZE = 12
SUBCHUNK_HEADER_SIZE = 8

# Offset of the RIFF length field in the outer header
RIFF_SIZE_OFFSET = 4


def is_riff_wave(data: bytes) -> bool:
    return len(data) >= RIFF_HEADER_SIZE and data[0:4] == b"RIFF" and data[8:12] == b"WAVE"


@dataclass(frozen=True)
class CapturedHeader:
    """RIFF/WAVE header bytes up to and including the ``data`` sub-chunk header."""

    data: bytes

    @property
    def data_size_offset(self) -> int:
        # the data sub-chunk length is always the header's last four bytes
        return len(self.data) - 4

    def wrap(self, payload: bytes) -> bytes:
        """Return a standalone WAV file holding ``payload`` as its samples."""
        container = bytearray(self.data)
        struct.pack_into("<I", container, self.data_size_offset, len(payload))
        struct.pack_into("<I", container, RIFF_SIZE_OFFSET, len(container) + len(payload) - 8)
        container += payload
        return bytes(container)


def capture_header(fragment: bytes) -> CapturedHeader:
    """Scan ``fragment`` for the ``data`` sub-chunk and keep everything before its payload.

    Raises :class:`ContainerCaptureFailure` when the fragment is not
    RIFF/WAVE or the scan runs off the end before a ``data`` tag.
    """
    if not is_riff_wave(fragment):
        raise ContainerCaptureFailure("not a valid WAV file: missing RIFF/WAVE signature")

    offset = RIFF_HEADER_SIZE
    total = len(fragment)
    while offset + SUBCHUNK_HEADER_SIZE <= total:
        tag = fragment[offset:offset + 4]
        (size,) = struct.unpack_from("<I", fragment, offset + 4)
        offset += SUBCHUNK_HEADER_SIZE
        if tag == b"data":
            return CapturedHeader(bytes(fragment[:offset]))

        end = offset + size
        if end > total:
            break
        offset = end
        # sub-chunks are word aligned
        if size % 2 == 1 and offset < total:
            offset += 1

    raise ContainerCaptureFailure("no 'data' sub-chunk found in first fragment")


class WavReassembler:
    """Per-session header capture state.

    The first fragment decides the session: if a header is captured, every
    later fragment is rebuilt around it; if not, the whole session passes
    fragments through untouched. The first fragment itself is always
    passed through, it already carries its own header.
    """

    def __init__(self):
        self.header: Optional[CapturedHeader] = None
        self.failure: Optional[ContainerCaptureFailure] = None
        self.first_seen = False

    @property
    def captured(self) -> bool:
        return self.header is not None

    def process(self, fragment: bytes) -> bytes:
        if not self.first_seen:
            self.first_seen = True
            try:
                self.header = capture_header(fragment)
            except ContainerCaptureFailure as exc:
                self.failure = exc
                logger.warning("WAV header capture failed, passing all fragments through: %s", exc)
                return fragment
            logger.debug("Captured WAV header (%d bytes)", len(self.header.data))
            return fragment

        if self.header is None:
            return fragment
        return self.header.wrap(fragment)
