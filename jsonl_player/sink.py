"""
Audio output: one PortAudio stream fed in order by a writer thread.

Decoded blocks are conformed to the stream's sample rate and channel
count on enqueue, then written back to back with blocking
``OutputStream.write`` calls, which is what makes playback gapless.
"""

import logging
import queue
import threading
from typing import Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from .errors import SinkError
from .pcm import PcmBlock, Resampler, conform


logger = logging.getLogger(__name__)


class WavWriter:
    def __init__(self, path: str, samplerate: int, channels: int, dtype: str):
        """dtype: 'float32', 'int16', or 'int32'"""
        subtype = {
            'float32': 'FLOAT',
            'int16': 'PCM_16',
            'int32': 'PCM_32',
        }.get(dtype, 'FLOAT')
        self.path = path
        self.file = sf.SoundFile(path, mode='w', samplerate=samplerate, channels=channels, subtype=subtype, format='WAV')
        self.closed = False

    def write(self, frames: np.ndarray):
        # soundfile converts float32 to the file subtype itself
        if not self.closed:
            self.file.write(frames)

    def close(self):
        if not self.closed:
            try:
                self.file.flush()
                self.file.close()
            finally:
                self.closed = True


def find_output_device(name_or_index: Optional[str | int]) -> tuple[int, str]:
    if name_or_index is None:
        try:
            dev = sd.query_devices(kind="output")
        except sd.PortAudioError as exc:
            raise ValueError(f"No default output device: {exc}")
        return int(dev["index"]), dev["name"]

    devices = sd.query_devices()
    if isinstance(name_or_index, int):
        try:
            dev = devices[name_or_index]
        except IndexError:
            raise ValueError(f"No output device at index {name_or_index}")
        if dev.get("max_output_channels", 0) <= 0:
            raise ValueError(f"Device {name_or_index} ('{dev['name']}') has no output channels")
        return name_or_index, dev["name"]

    # Try exact name match first
    for idx, dev in enumerate(devices):
        if dev.get("max_output_channels", 0) > 0 and dev.get("name") == name_or_index:
            return idx, dev["name"]

    # Fallback to substring (case-insensitive)
    low = name_or_index.lower()
    for idx, dev in enumerate(devices):
        if dev.get("max_output_channels", 0) > 0 and low in dev.get("name", "").lower():
            return idx, dev["name"]

    raise ValueError(f"Output device not found matching '{name_or_index}'. Use --list-devices to inspect.")


def list_output_devices() -> str:
    lines = ["Available output devices (PortAudio):"]
    for idx, dev in enumerate(sd.query_devices()):
        max_out = dev.get("max_output_channels", 0)
        if max_out > 0:
            lines.append(f"  [{idx:2d}] {dev.get('name')}  (max_out_ch={max_out}, sr={dev.get('default_samplerate'):.0f})")
    return "\n".join(lines)


class AudioSink:
    """Gapless, order-preserving output to a sounddevice stream.

    ``enqueue`` never blocks; ``drain_and_wait`` returns once everything
    enqueued so far has been played and the device is closed.
    """

    def __init__(
        self,
        device: Optional[str | int] = None,
        sample_rate: Optional[int] = None,
        channels: int = 2,
        wav_path: Optional[str] = None,
        wav_dtype: str = "float32",
    ):
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self.wav_path = wav_path
        self.wav_dtype = wav_dtype
        self.frames_written = 0
        self._stream: Optional[sd.OutputStream] = None
        self._wav_writer: Optional[WavWriter] = None
        self._blocks: queue.Queue = queue.Queue()
        self._resampler = Resampler()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    def open(self) -> None:
        """Resolve and start the output device. Raises :class:`SinkError`."""
        try:
            device_index, device_name = find_output_device(self.device)
            if self.sample_rate is None:
                info = sd.query_devices(device_index, "output")
                self.sample_rate = int(info["default_samplerate"])
            self._stream = sd.OutputStream(
                device=device_index,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
            )
            self._stream.start()
        except (ValueError, sd.PortAudioError) as exc:
            raise SinkError(f"Could not open audio output: {exc}") from exc
        logger.info("Audio output: device='%s', sr=%d Hz, ch=%d", device_name, self.sample_rate, self.channels)

        if self.wav_path:
            try:
                self._wav_writer = WavWriter(self.wav_path, samplerate=self.sample_rate, channels=self.channels, dtype=self.wav_dtype)
                logger.info("WAV mirror enabled: %s (%s, %d ch)", self.wav_path, self.wav_dtype, self.channels)
            except (RuntimeError, OSError) as exc:
                logger.error("Could not open WAV file '%s': %s", self.wav_path, exc)
                self._wav_writer = None

        self._thread = threading.Thread(target=self._write_loop, name="audio-sink", daemon=True)
        self._thread.start()

    def enqueue(self, block: PcmBlock) -> None:
        if self._thread is None:
            raise RuntimeError("sink is not open")
        if block.frames == 0:
            return
        self._blocks.put(conform(block, self.sample_rate, self.channels, self._resampler))

    def _write_loop(self) -> None:
        while True:
            out = self._blocks.get()
            if out is None:
                break
            if self._error is not None:
                # keep draining so drain_and_wait can finish
                continue
            try:
                self._stream.write(out)
                self.frames_written += out.shape[0]
                if self._wav_writer:
                    self._wav_writer.write(out)
            except (sd.PortAudioError, RuntimeError) as exc:
                logger.error("Audio playback error: %s", exc)
                self._error = exc

    def drain_and_wait(self) -> None:
        if self._thread is None:
            return
        self._blocks.put(None)
        self._thread.join()
        self._thread = None
        try:
            # stop() returns after pending device buffers have played
            self._stream.stop()
        finally:
            self._stream.close()
            if self._wav_writer:
                self._wav_writer.close()
        logger.debug("Audio sink drained (%d frames written)", self.frames_written)
