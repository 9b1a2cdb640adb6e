import argparse
import asyncio
import logging
import sys
from typing import Optional

from .chunker import ChunkerError, write_envelopes
from .config import (
    CHUNK_MODES,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_TRANSPORT_BUFFER,
    FILE_TYPES,
    PLAYBACK_FORMATS,
    WAV_DTYPES,
    ChunkerConfig,
    PlayerConfig,
)
from .errors import SinkError
from .session import run_session
from .sink import AudioSink, list_output_devices


LOGGER_NAME = "jsonl_player"


def setup_logging(verbose: bool) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    # stdout may be carrying audio data in a pipeline, keep diagnostics on stderr
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False
    return logger


async def run(config: PlayerConfig, source=None) -> int:
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Using playback format: %s", config.playback_format)
    if config.gzip:
        logger.info("Gzip decompression enabled")

    sink = AudioSink(
        device=config.output_device,
        sample_rate=config.sample_rate,
        channels=config.channels,
        wav_path=config.wav_path,
        wav_dtype=config.wav_dtype,
    )
    try:
        sink.open()
    except SinkError as exc:
        logger.error("%s", exc)
        logger.info("Tip: run with --list-devices to see available outputs")
        return 2
    logger.info("Audio output initialized")

    counters = await run_session(config, source if source is not None else sys.stdin, sink)
    logger.debug("Session counters: %s", counters.as_dict())
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="jsonl-player",
        description="Play audio chunks from a JSONL stream on stdin ({\"data\": <base64>} per line).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--playback", choices=PLAYBACK_FORMATS, default="mp3", help="Audio format for playback")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    p.add_argument("--gzip", action="store_true", help="Decompress gzip-compressed audio chunks")
    p.add_argument("--buffer", type=int, default=DEFAULT_TRANSPORT_BUFFER, help="Decoded chunks allowed in flight before input reading waits")
    p.add_argument("--output-device", default=None, help="Output device name or index (default: system default)")
    p.add_argument("--sample-rate", type=int, default=None, help="Output sample rate in Hz (default: device default)")
    p.add_argument("--channels", type=int, default=2, help="Number of output channels")
    p.add_argument("--wav-path", type=str, default=None, help="Mirror the played stream to a WAV file")
    p.add_argument("--wav-dtype", choices=WAV_DTYPES, default="float32", help="WAV data type to write")
    p.add_argument("--list-devices", action="store_true", help="List available output devices and exit")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logger = setup_logging(args.verbose)

    if args.list_devices:
        print(list_output_devices())
        return 0

    try:
        config = PlayerConfig.from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


def build_chunker_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="jsonl-chunker",
        description="Split an audio file into JSONL chunks ({\"data\": <base64>} per line) on stdout.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("-b", "--block-size", type=int, default=DEFAULT_BLOCK_SIZE, help="block size for chunking")
    p.add_argument("--type", default="auto", help=f"file type: {', '.join(FILE_TYPES)}")
    p.add_argument("--mode", default="streaming", help=f"chunking mode: {', '.join(CHUNK_MODES)} (complete is WAV only)")
    p.add_argument("--gzip", type=int, default=0, help="gzip compression level (0=no compression, 1=best speed, 9=best compression, -1=default)")
    p.add_argument("file", help="audio file to chunk")
    return p


def chunker_main(argv: Optional[list[str]] = None) -> int:
    args = build_chunker_arg_parser().parse_args(argv)
    try:
        config = ChunkerConfig.from_args(args)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        with open(config.path, "rb") as fh:
            write_envelopes(config, fh, sys.stdout)
    except OSError as exc:
        print(f"Error opening file: {exc}", file=sys.stderr)
        return 1
    except ChunkerError as exc:
        print(f"Error chunking file: {exc}", file=sys.stderr)
        return 1
    return 0
