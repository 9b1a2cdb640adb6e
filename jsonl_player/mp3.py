"""
MPEG audio Layer III frame headers and a frame-aligned chunker.
"""

from typing import BinaryIO, Iterator, Optional


MAX_RESERVOIR = 511  # largest possible bit reservoir (ISO 11172-3)

_BITRATES_V1 = (0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320, 0)
_BITRATES_V2 = (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160, 0)
_SAMPLE_RATES = {
    3: (44100, 48000, 32000),  # MPEG-1
    2: (22050, 24000, 16000),  # MPEG-2
    0: (11025, 12000, 8000),   # MPEG-2.5
}


class InvalidFrame(ValueError):
    pass


def frame_length(header: bytes) -> int:
    """Length in bytes of the Layer III frame whose 4-byte header is ``header``."""
    if len(header) != 4:
        raise InvalidFrame("frame header must be 4 bytes")
    b0, b1, b2, b3 = header
    if b0 != 0xFF or b1 & 0xE0 != 0xE0:
        raise InvalidFrame("no frame sync")

    version = (b1 >> 3) & 0x03
    layer = (b1 >> 1) & 0x03
    # version 1 is reserved, layer bits 01 mean Layer III
    if version == 1 or layer != 1:
        raise InvalidFrame("not MPEG Layer III")

    bitrate_idx = (b2 >> 4) & 0x0F
    if bitrate_idx in (0, 0x0F):
        raise InvalidFrame("free or bad bitrate index")
    samplerate_idx = (b2 >> 2) & 0x03
    if samplerate_idx == 3:
        raise InvalidFrame("reserved sample rate index")
    if b3 & 0x03 == 2:
        raise InvalidFrame("reserved emphasis")

    padding = (b2 >> 1) & 0x01
    if version == 3:
        bitrate = _BITRATES_V1[bitrate_idx] * 1000
        multiplier = 144
    else:
        bitrate = _BITRATES_V2[bitrate_idx] * 1000
        multiplier = 72
    sample_rate = _SAMPLE_RATES[version][samplerate_idx]
    return multiplier * bitrate // sample_rate + padding


def _is_frame_header(header: bytes) -> bool:
    try:
        frame_length(header)
    except InvalidFrame:
        return False
    return True


def find_frame(data: bytes) -> int:
    """Offset of the first frame in ``data``, or -1 if there is none.

    A candidate header counts only when the frame it describes ends exactly
    at the end of ``data`` or is followed by another valid header.
    """
    offset = data.find(b"\xff")
    while 0 <= offset <= len(data) - 4:
        header = data[offset:offset + 4]
        if _is_frame_header(header):
            following = offset + frame_length(header)
            if following == len(data) or _is_frame_header(data[following:following + 4]):
                return offset
        offset = data.find(b"\xff", offset + 1)
    return -1


class Mp3Chunker:
    """Yield chunks of whole frames, each at least ``chunk_size`` bytes when possible.

    Every chunk starts with the tail of the previous one (up to
    ``reservoir_size`` bytes) so frames that borrow from the bit reservoir
    still decode on their own.
    """

    def __init__(self, stream: BinaryIO, chunk_size: int, reservoir_size: int = 2048):
        self.stream = stream
        self.chunk_size = chunk_size
        self.reservoir_cap = min(reservoir_size, MAX_RESERVOIR)
        self.reservoir = b""
        self._done = False

    def _next_frame(self) -> Optional[bytes]:
        """Next complete frame, or ``None`` at end of stream or on a truncated frame."""
        window = b""
        while True:
            byte = self.stream.read(1)
            if not byte:
                return None
            window = (window + byte)[-4:]
            if len(window) < 4 or window[0] != 0xFF:
                continue
            try:
                length = frame_length(window)
            except InvalidFrame:
                continue
            rest = self.stream.read(length - 4)
            if len(rest) < length - 4:
                return None
            return window + rest

    def __iter__(self) -> Iterator[bytes]:
        while not self._done:
            chunk = bytearray(self.reservoir)
            collected = 0
            while len(chunk) < self.chunk_size:
                frame = self._next_frame()
                if frame is None:
                    self._done = True
                    break
                chunk += frame
                collected += 1
            if collected == 0:
                return
            yield self._finalize(bytes(chunk))

    def _finalize(self, chunk: bytes) -> bytes:
        if self.reservoir_cap:
            self.reservoir = chunk[-self.reservoir_cap:]
        return chunk
