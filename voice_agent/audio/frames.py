"""PCM audio frames and energy measurement.

All audio inside the core is PCM int16 little-endian, 16kHz mono unless a
frame says otherwise.  Transport-specific codecs live outside this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np


@dataclass
class AudioFrame:
    """Normalized audio frame: PCM int16 little-endian."""

    samples: bytes  # int16 LE PCM
    sample_rate: int = 16000
    channels: int = 1

    @property
    def duration_ms(self) -> float:
        """Duration of this frame in milliseconds."""
        return (self.num_samples / self.channels / self.sample_rate) * 1000

    @property
    def num_samples(self) -> int:
        """Number of int16 samples in this frame."""
        return len(self.samples) // 2


PCMInput = Union[bytes, bytearray, memoryview, np.ndarray, AudioFrame]


def to_int16(pcm: PCMInput) -> np.ndarray:
    """View any accepted PCM input as an int16 numpy array.

    A trailing odd byte (half a sample) is dropped.
    """
    if isinstance(pcm, AudioFrame):
        pcm = pcm.samples
    if isinstance(pcm, np.ndarray):
        if pcm.dtype != np.int16:
            raise TypeError(f"expected int16 samples, got {pcm.dtype}")
        return pcm
    buf = bytes(pcm)
    if len(buf) % 2:
        buf = buf[:-1]
    return np.frombuffer(buf, dtype="<i2")


def compute_rms(pcm: PCMInput) -> float:
    """RMS energy of int16 PCM with samples normalized to [-1, 1]."""
    samples = to_int16(pcm)
    if samples.size == 0:
        return 0.0
    normalized = samples.astype(np.float64) / 32768.0
    return float(np.sqrt(np.mean(normalized**2)))
