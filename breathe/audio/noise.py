"""Ambient noise level estimation from 16-bit PCM."""

import logging
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)

FULL_SCALE = 32767.0


def compute_noise_level(audio_data: bytes) -> Optional[float]:
    """Level in dBFS from the RMS amplitude of little-endian 16-bit samples.

    Returns None when the window holds no samples. Digital silence is clamped to
    one LSB of RMS, so the floor is about -90.3 dB instead of -inf.
    """
    usable = len(audio_data) - (len(audio_data) % 2)
    if usable <= 0:
        return None

    samples = np.frombuffer(audio_data[:usable], dtype="<i2").astype(np.float64)
    rms = float(np.sqrt(np.mean(np.square(samples))))
    return 20.0 * float(np.log10(max(rms, 1.0) / FULL_SCALE))


class NoiseAccumulator:
    """Samples collected during one run."""

    def __init__(self):
        self.samples: List[float] = []

    def add(self, level: float) -> None:
        self.samples.append(level)

    def clear(self) -> None:
        self.samples.clear()

    @property
    def average(self) -> float:
        if not self.samples:
            return 0.0
        return float(np.mean(self.samples))

    def __len__(self) -> int:
        return len(self.samples)
