"""
Decoded PCM blocks and conversion to the output stream's layout.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class PcmBlock:
    """Decoded audio: float32 samples shaped (frames, channels) in [-1, 1]."""

    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1]) if self.samples.ndim == 2 else 1

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate) if self.sample_rate else 0.0


class Resampler:
    """Linear-interpolation resampler for a sequence of blocks.

    Consecutive blocks are treated as one signal: the last input frame of
    a block is interpolated against the start of the next one and the
    fractional read position carries over. Block boundaries add no drift
    and no discontinuity. A change of rates or channel count starts over.
    """

    def __init__(self):
        self._rates: Optional[tuple[int, int]] = None
        self._tail: Optional[np.ndarray] = None
        self._pos = 0.0

    def reset(self) -> None:
        self._rates = None
        self._tail = None
        self._pos = 0.0

    def process(self, samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
        """Resample (frames, channels) float32 samples from ``src_rate`` to ``dst_rate``."""
        if src_rate == dst_rate or samples.shape[0] == 0:
            return samples
        if self._rates != (src_rate, dst_rate) or (self._tail is not None and self._tail.shape[1] != samples.shape[1]):
            self.reset()
            self._rates = (src_rate, dst_rate)

        src = samples if self._tail is None else np.concatenate([self._tail, samples])
        last = src.shape[0] - 1
        step = src_rate / float(dst_rate)
        count = int(np.floor((last - self._pos) / step)) + 1 if self._pos <= last else 0

        src_pos = np.arange(src.shape[0], dtype=np.float64)
        dst_pos = self._pos + step * np.arange(count, dtype=np.float64)
        out = np.empty((count, src.shape[1]), dtype=np.float32)
        for ch in range(src.shape[1]):
            out[:, ch] = np.interp(dst_pos, src_pos, src[:, ch])

        # position of the next output frame, relative to this block's last frame
        self._pos = self._pos + step * count - last
        self._tail = src[-1:].copy()
        return out


def map_channels(samples: np.ndarray, channels: int) -> np.ndarray:
    """Fit (frames, n) samples to ``channels`` columns.

    Mono is copied to every output channel. Otherwise fewer source channels
    fill the first outputs and the rest are zeroed, and extra source
    channels are dropped.
    """
    in_channels = samples.shape[1]
    if in_channels == channels:
        return samples
    if in_channels == 1:
        return np.repeat(samples, channels, axis=1)
    if in_channels < channels:
        out = np.zeros((samples.shape[0], channels), dtype=np.float32)
        out[:, :in_channels] = samples
        return out
    return samples[:, :channels]


def conform(block: PcmBlock, sample_rate: int, channels: int, resampler: Optional[Resampler] = None) -> np.ndarray:
    """Return ``block`` as contiguous float32 at ``sample_rate`` with ``channels`` columns.

    Pass the same ``resampler`` for every block of a stream to keep rate
    conversion continuous across blocks.
    """
    samples = np.asarray(block.samples, dtype=np.float32)
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    if resampler is None:
        resampler = Resampler()
    samples = resampler.process(samples, block.sample_rate, sample_rate)
    samples = map_channels(samples, channels)
    samples = np.nan_to_num(samples, nan=0.0, posinf=1.0, neginf=-1.0)
    return np.ascontiguousarray(np.clip(samples, -1.0, 1.0), dtype=np.float32)
