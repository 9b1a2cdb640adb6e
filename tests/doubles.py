"""
Test doubles and audio byte builders.

Nothing here touches an audio device: sinks are fakes, codecs are either
fakes or soundfile decoding in-memory WAV data.
"""

import base64
import gzip
import io
import json
import struct
import threading
from typing import List

import numpy as np
import pytest
import soundfile as sf

from jsonl_player.errors import DecodeFailure
from jsonl_player.pcm import PcmBlock


SAMPLE_RATE = 8000
MP3_RATE = 44100

requires_mp3 = pytest.mark.skipif(
    "MP3" not in sf.available_formats(), reason="libsndfile built without MP3 support"
)


class FakeSink:
    """Records enqueued blocks; drain just flips a flag."""

    def __init__(self):
        self.blocks: List[PcmBlock] = []
        self.drained = False
        self.lock = threading.Lock()

    def enqueue(self, block: PcmBlock) -> None:
        assert not self.drained, "enqueue after drain"
        with self.lock:
            self.blocks.append(block)

    def drain_and_wait(self) -> None:
        self.drained = True


class RecordingCodec:
    """Codec double: records every call, fails on payloads starting with b'BAD'."""

    def __init__(self):
        self.calls: List[bytes] = []
        self.lock = threading.Lock()

    def __call__(self, data: bytes, playback_format: str) -> PcmBlock:
        with self.lock:
            self.calls.append(data)
        if data.startswith(b"BAD"):
            raise DecodeFailure("rejected by test codec")
        return PcmBlock(samples=np.zeros((len(data), 1), dtype=np.float32), sample_rate=SAMPLE_RATE)


def envelope(payload: bytes, compress: bool = False, **extra) -> str:
    if compress:
        payload = gzip.compress(payload)
    record = {"data": base64.b64encode(payload).decode("ascii")}
    record.update(extra)
    return json.dumps(record)


def tone(frames: int, channels: int = 1, freq: float = 440.0) -> np.ndarray:
    t = np.arange(frames, dtype=np.float32) / SAMPLE_RATE
    mono = 0.5 * np.sin(2 * np.pi * freq * t).astype(np.float32)
    return np.repeat(mono.reshape(-1, 1), channels, axis=1)


def wav_bytes(samples: np.ndarray, sample_rate: int = SAMPLE_RATE, subtype: str = "PCM_16") -> bytes:
    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format="WAV", subtype=subtype)
    return buf.getvalue()


def mp3_bytes(samples: np.ndarray, sample_rate: int = MP3_RATE) -> bytes:
    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format="MP3")
    return buf.getvalue()


def riff_wave(chunks: List[tuple], riff_size: int = 0) -> bytes:
    """Assemble a RIFF/WAVE byte string from (tag, payload) sub-chunks, padding odd sizes."""
    body = bytearray(b"WAVE")
    for tag, payload in chunks:
        body += tag + struct.pack("<I", len(payload)) + payload
        if len(payload) % 2 == 1:
            body += b"\x00"
    size = riff_size or len(body)
    return b"RIFF" + struct.pack("<I", size) + bytes(body)


def fmt_chunk(channels: int = 1, sample_rate: int = SAMPLE_RATE, bits: int = 16) -> tuple:
    block_align = channels * bits // 8
    payload = struct.pack("<HHIIHH", 1, channels, sample_rate, sample_rate * block_align, block_align, bits)
    return (b"fmt ", payload)
