"""
One playback session: stdin-style line source in, audio out.

Ingest (read, decode, reassemble, push) runs in the calling coroutine;
playback runs as a separate task on the same loop. The session ends when
input is exhausted and the sink has played everything.
"""

import asyncio
import logging
import queue
import threading
from dataclasses import asdict, dataclass
from typing import AsyncIterator, Callable, Optional, TextIO

from .config import PlayerConfig
from .envelope import Envelope, EnvelopeDecoder
from .errors import DecompressionFailure, InvalidEncoding, MalformedEnvelope, TransportClosed
from .playback import PlaybackDriver, decode_fragment
from .pcm import PcmBlock
from .transport import FragmentTransport
from .wav import WavReassembler


logger = logging.getLogger(__name__)


@dataclass
class SessionCounters:
    # ingest side
    lines: int = 0
    parsed: int = 0
    decoded: int = 0
    parse_failures: int = 0
    encoding_failures: int = 0
    decompression_failures: int = 0
    capture_failures: int = 0
    # playback side
    received: int = 0
    played: int = 0
    decode_failures: int = 0

    def summary(self) -> dict:
        return {"lines": self.lines, "parsed": self.parsed, "decoded": self.decoded}

    def as_dict(self) -> dict:
        return asdict(self)


def _resolve(fut: asyncio.Future, line: Optional[str], exc: Optional[Exception]) -> None:
    if fut.cancelled():
        return
    if exc is not None:
        fut.set_exception(exc)
    else:
        fut.set_result(line)


def _serve_reads(source: TextIO, requests: queue.Queue, loop: asyncio.AbstractEventLoop) -> None:
    """Reader thread: one ``readline`` per requested future, until a ``None`` request."""
    while True:
        fut = requests.get()
        if fut is None:
            return
        line, error = None, None
        try:
            line = source.readline()
        except Exception as exc:
            error = exc
        try:
            loop.call_soon_threadsafe(_resolve, fut, line, error)
        except RuntimeError:
            # loop already closed
            return


async def read_lines(source: TextIO) -> AsyncIterator[str]:
    """Yield lines from a blocking text stream without blocking the loop.

    Reads happen one at a time on a daemon thread, so a read stuck on an
    idle pipe never holds up interpreter exit. A read error (including
    undecodable bytes) ends the stream like EOF.
    """
    loop = asyncio.get_running_loop()
    requests: queue.Queue = queue.Queue()
    reader = threading.Thread(target=_serve_reads, args=(source, requests, loop), name="line-reader", daemon=True)
    reader.start()
    try:
        while True:
            fut = loop.create_future()
            requests.put(fut)
            try:
                line = await fut
            except (OSError, UnicodeDecodeError, ValueError) as exc:
                logger.warning("Error reading input, treating as end of input: %s", exc)
                return
            if not line:
                return
            yield line.rstrip("\r\n")
    finally:
        requests.put(None)


class Session:
    """Wires decoder, reassembler, transport and playback for one run."""

    def __init__(
        self,
        config: PlayerConfig,
        sink,
        codec: Callable[[bytes, str], PcmBlock] = decode_fragment,
    ):
        self.config = config
        self.sink = sink
        self.counters = SessionCounters()
        self.decoder = EnvelopeDecoder(decompress_gzip=config.gzip)
        # fresh capture state per session
        self.reassembler: Optional[WavReassembler] = WavReassembler() if config.playback_format == "wav" else None
        self.transport = FragmentTransport(maxsize=config.buffer)
        self.driver = PlaybackDriver(self.transport, sink, config.playback_format, self.counters, codec=codec)

    def ingest_line(self, line: str) -> Optional[bytes]:
        """Decode one line into a ready-to-play fragment, or ``None`` if it contributes nothing."""
        self.counters.lines += 1
        line_no = self.counters.lines
        if not line.strip():
            return None

        try:
            envelope = Envelope.from_line(line, line_no)
        except MalformedEnvelope as exc:
            self.counters.parse_failures += 1
            logger.warning("%s", exc)
            return None
        self.counters.parsed += 1

        try:
            fragment = self.decoder.unwrap(envelope, line_no)
        except InvalidEncoding as exc:
            self.counters.encoding_failures += 1
            logger.warning("%s", exc)
            return None
        except DecompressionFailure as exc:
            self.counters.decompression_failures += 1
            logger.warning("%s", exc)
            return None
        self.counters.decoded += 1

        if self.reassembler is not None:
            fragment = self.reassembler.process(fragment)
            if self.reassembler.failure is not None and self.counters.capture_failures == 0:
                self.counters.capture_failures = 1
        return fragment

    async def ingest(self, lines: AsyncIterator[str]) -> None:
        try:
            async for line in lines:
                fragment = self.ingest_line(line)
                if fragment is None:
                    continue
                try:
                    await self.transport.push(fragment)
                except TransportClosed:
                    logger.info("Playback stopped early, no longer reading input")
                    break
        finally:
            await self.transport.close()

    async def run(self, lines: AsyncIterator[str]) -> SessionCounters:
        playback_task = asyncio.create_task(self.driver.run(), name="playback")
        try:
            await self.ingest(lines)
        except BaseException:
            playback_task.cancel()
            raise

        c = self.counters
        logger.info("Input processing complete:")
        logger.info("  Total lines: %d", c.lines)
        logger.info("  Valid JSON lines: %d", c.parsed)
        logger.info("  Successfully decoded chunks: %d", c.decoded)

        await playback_task
        return c


async def run_session(config: PlayerConfig, source: TextIO, sink) -> SessionCounters:
    """Play everything decodable from ``source`` on an already opened ``sink``."""
    session = Session(config, sink)
    return await session.run(read_lines(source))
