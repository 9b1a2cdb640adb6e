"""
Producer side: split an audio file into JSONL envelopes for the player.

    jsonl-chunker -b 8192 song.mp3 | jsonl-player
    jsonl-chunker --type wav --gzip 6 take.wav | jsonl-player --playback wav --gzip
"""

import base64
import gzip
import json
import struct
from typing import BinaryIO, Iterable, Iterator, TextIO

from .config import ChunkerConfig
from .mp3 import Mp3Chunker
from .wav import RIFF_HEADER_SIZE, SUBCHUNK_HEADER_SIZE, CapturedHeader, is_riff_wave


MAX_SUBCHUNK_SIZE = 1024 * 1024  # non-data sub-chunks; metadata never needs more
MAX_HEADER_SIZE = 8 << 20
MIN_AUDIO_READ = 1024
MP3_RESERVOIR = 2048


class ChunkerError(ValueError):
    pass


class DumbChunker:
    """Fixed-size reads with no format awareness."""

    def __init__(self, stream: BinaryIO, chunk_size: int):
        self.stream = stream
        self.chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.stream.read(self.chunk_size)
            if not chunk:
                return
            yield chunk


def read_wav_header(stream: BinaryIO) -> tuple[CapturedHeader, int]:
    """Read a RIFF/WAVE header up to the ``data`` sub-chunk payload.

    Returns the header and the declared data size.
    """
    riff = stream.read(RIFF_HEADER_SIZE)
    if len(riff) != RIFF_HEADER_SIZE:
        raise ChunkerError("incomplete RIFF header")
    if not is_riff_wave(riff):
        raise ChunkerError("not a valid WAV file: missing RIFF/WAVE signature")

    header = bytearray(riff)
    while True:
        if len(header) > MAX_HEADER_SIZE:
            raise ChunkerError("wav header too large")
        sub = stream.read(SUBCHUNK_HEADER_SIZE)
        if len(sub) != SUBCHUNK_HEADER_SIZE:
            raise ChunkerError("incomplete chunk header")
        (size,) = struct.unpack_from("<I", sub, 4)
        header += sub
        if sub[0:4] == b"data":
            return CapturedHeader(bytes(header)), size

        if size > MAX_SUBCHUNK_SIZE:
            raise ChunkerError("chunk size too large")
        payload = stream.read(size)
        if len(payload) != size:
            raise ChunkerError("incomplete chunk data")
        header += payload
        if size % 2 == 1:
            header += stream.read(1)


class WavChunker:
    """Chunk a WAV file in ``complete`` or ``streaming`` mode.

    complete: every chunk is a standalone WAV file.
    streaming: the first chunk is the original header plus the first
    samples; after that only raw PCM is sent.
    """

    def __init__(self, stream: BinaryIO, chunk_size: int, mode: str = "complete"):
        self.stream = stream
        self.chunk_size = chunk_size
        self.mode = mode

    def __iter__(self) -> Iterator[bytes]:
        header, data_size = read_wav_header(self.stream)

        read_size = self.chunk_size - len(header.data)
        if read_size <= 0:
            read_size = MIN_AUDIO_READ

        remaining = data_size
        first = True
        while remaining > 0:
            want = min(read_size, remaining)
            audio = self.stream.read(want)
            if not audio:
                return
            remaining -= len(audio)
            if self.mode == "complete":
                yield header.wrap(audio)
            elif first:
                yield header.data + audio
            else:
                yield audio
            first = False
            if len(audio) < want:
                # file shorter than its data chunk claims
                return


def compress(chunk: bytes, level: int) -> bytes:
    if level == 0:
        return chunk
    if level < 0:
        level = 6
    return gzip.compress(chunk, compresslevel=level, mtime=0)


def make_chunker(config: ChunkerConfig, stream: BinaryIO) -> Iterable[bytes]:
    file_type = config.resolved_type()
    if file_type == "mp3":
        return Mp3Chunker(stream, config.block_size, MP3_RESERVOIR)
    if file_type == "wav":
        return WavChunker(stream, config.block_size, config.mode)
    if file_type == "dumb":
        return DumbChunker(stream, config.block_size)
    raise ChunkerError(f"Unsupported file type: {file_type}")


def envelope_line(chunk: bytes) -> str:
    return json.dumps({"data": base64.b64encode(chunk).decode("ascii")})


def write_envelopes(config: ChunkerConfig, stream: BinaryIO, out: TextIO) -> int:
    """Write one JSON line per chunk to ``out``; returns the chunk count."""
    count = 0
    for chunk in make_chunker(config, stream):
        out.write(envelope_line(compress(chunk, config.gzip_level)))
        out.write("\n")
        count += 1
    out.flush()
    return count
