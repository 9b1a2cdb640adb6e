"""
Run configuration for the player and the chunker.

Both are plain dataclasses filled from argparse namespaces; the pipeline
only ever sees these values, never the parser.
"""

import argparse
from dataclasses import dataclass
from typing import Optional


PLAYBACK_FORMATS = ("mp3", "wav")
WAV_DTYPES = ("float32", "int16", "int32")

FILE_TYPES = ("mp3", "wav", "dumb", "auto")
CHUNK_MODES = ("streaming", "complete")

DEFAULT_BLOCK_SIZE = 8192
DEFAULT_TRANSPORT_BUFFER = 16


@dataclass
class PlayerConfig:
    """Settings for one playback session."""

    playback_format: str = "mp3"
    verbose: bool = False
    gzip: bool = False

    # Fragments allowed in flight between ingest and playback
    buffer: int = DEFAULT_TRANSPORT_BUFFER

    # Output device
    output_device: Optional[str | int] = None
    sample_rate: Optional[int] = None
    channels: int = 2

    # Optional WAV mirror of everything played
    wav_path: Optional[str] = None
    wav_dtype: str = "float32"

    def validate(self) -> None:
        if self.playback_format not in PLAYBACK_FORMATS:
            raise ValueError(
                f"Unsupported playback format: {self.playback_format!r} (use one of {', '.join(PLAYBACK_FORMATS)})"
            )
        if self.buffer < 1:
            raise ValueError(f"Transport buffer must be at least 1, got {self.buffer}")
        if self.channels < 1:
            raise ValueError(f"Channel count must be at least 1, got {self.channels}")
        if self.sample_rate is not None and self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        if self.wav_dtype not in WAV_DTYPES:
            raise ValueError(f"Unsupported WAV dtype: {self.wav_dtype!r}")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "PlayerConfig":
        device = args.output_device
        if isinstance(device, str) and device.isdigit():
            device = int(device)
        config = cls(
            playback_format=args.playback,
            verbose=args.verbose,
            gzip=args.gzip,
            buffer=args.buffer,
            output_device=device,
            sample_rate=args.sample_rate,
            channels=args.channels,
            wav_path=args.wav_path,
            wav_dtype=args.wav_dtype,
        )
        config.validate()
        return config


@dataclass
class ChunkerConfig:
    """Settings for turning one audio file into JSONL envelopes."""

    path: str
    block_size: int = DEFAULT_BLOCK_SIZE
    file_type: str = "auto"
    mode: str = "streaming"
    # 0 disables compression, -1 is zlib's default level
    gzip_level: int = 0

    def resolved_type(self) -> str:
        if self.file_type != "auto":
            return self.file_type.lower()
        return detect_file_type(self.path)

    def validate(self) -> None:
        file_type = self.resolved_type()
        if file_type not in FILE_TYPES:
            raise ValueError(f"Unsupported file type: {self.file_type}")
        if self.mode not in CHUNK_MODES:
            raise ValueError(f"Unsupported mode: {self.mode}. Use 'streaming' or 'complete'")
        if self.block_size < 1:
            raise ValueError(f"Block size must be positive, got {self.block_size}")
        if not -1 <= self.gzip_level <= 9:
            raise ValueError(f"Invalid gzip level {self.gzip_level} (use -1 or 0-9)")
        if file_type in ("mp3", "dumb"):
            label = "MP3" if file_type == "mp3" else file_type
            if self.mode != "streaming":
                raise ValueError(f"Mode {self.mode} not supported for {label} files, only streaming mode is available")
            if self.gzip_level != 0:
                raise ValueError(f"Compression not supported for {label} files")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "ChunkerConfig":
        config = cls(
            path=args.file,
            block_size=args.block_size,
            file_type=args.type.lower(),
            mode=args.mode.lower(),
            gzip_level=args.gzip,
        )
        config.validate()
        return config


def detect_file_type(path: str) -> str:
    lowered = path.lower()
    if lowered.endswith(".mp3"):
        return "mp3"
    if lowered.endswith(".wav"):
        return "wav"
    # unknown extensions are treated as mp3
    return "mp3"
