import asyncio
import io
import logging
from typing import Callable

import soundfile as sf

from .errors import DecodeFailure
from .mp3 import find_frame
from .pcm import PcmBlock
from .transport import FragmentTransport


logger = logging.getLogger(__name__)

# libsndfile container names accepted for each playback format
CONTAINER_FORMATS = {
    "mp3": ("MP3",),
    "wav": ("WAV", "WAVEX"),
}


def decode_fragment(data: bytes, playback_format: str) -> PcmBlock:
    """Decode one self-contained mp3 or wav buffer to float32 PCM.

    Raises :class:`DecodeFailure` if libsndfile cannot read the buffer or
    it holds a different container than ``playback_format``.
    """
    if not data:
        raise DecodeFailure("empty fragment")
    if playback_format == "mp3" and not data.startswith(b"ID3"):
        # chunks carry the previous chunk's tail for the bit reservoir;
        # libsndfile only recognises a buffer that starts on a frame
        offset = find_frame(data)
        if offset < 0:
            raise DecodeFailure("no MPEG audio frame found")
        data = data[offset:]
    try:
        with sf.SoundFile(io.BytesIO(data)) as f:
            if f.format not in CONTAINER_FORMATS[playback_format]:
                raise DecodeFailure(f"expected {playback_format} data, got {f.format}")
            samples = f.read(dtype="float32", always_2d=True)
            sample_rate = f.samplerate
    except (sf.LibsndfileError, RuntimeError) as exc:
        raise DecodeFailure(str(exc)) from exc
    if samples.shape[0] == 0:
        raise DecodeFailure("no audio frames in fragment")
    return PcmBlock(samples=samples, sample_rate=sample_rate)


class PlaybackDriver:
    """Consumer side of the pipeline.

    Pulls fragments in arrival order, decodes each one and enqueues the
    audio on the sink. A fragment that fails to decode is logged and
    dropped; the next one is still played. After end of stream the driver
    waits for the sink to finish playing.
    """

    def __init__(
        self,
        transport: FragmentTransport,
        sink,
        playback_format: str,
        counters,
        codec: Callable[[bytes, str], PcmBlock] = decode_fragment,
    ):
        self.transport = transport
        self.sink = sink
        self.playback_format = playback_format
        self.counters = counters
        self.codec = codec

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        finished = False
        try:
            async for fragment in self.transport:
                self.counters.received += 1
                ordinal = self.counters.received
                logger.debug("Processing audio chunk %d, size: %d bytes", ordinal, len(fragment))

                try:
                    block = await loop.run_in_executor(None, self.codec, fragment, self.playback_format)
                except DecodeFailure as exc:
                    self.counters.decode_failures += 1
                    logger.warning("Failed to decode audio chunk %d (%d bytes): %s", ordinal, len(fragment), exc)
                    continue

                self.counters.played += 1
                logger.debug("Successfully decoded audio chunk %d", ordinal)
                self.sink.enqueue(block)
            finished = True
        finally:
            if not finished:
                self.transport.abandon()

        logger.info(
            "Processed %d audio chunks total (%d successful)",
            self.counters.received,
            self.counters.played,
        )
        # Wait for the last sound to finish playing
        await loop.run_in_executor(None, self.sink.drain_and_wait)
        logger.info("Audio playback finished")
