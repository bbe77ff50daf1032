"""Audio input and noise level estimation."""

from .capture import AudioInput, PyAudioInput
from .noise import compute_noise_level, NoiseAccumulator

__all__ = [
    'AudioInput',
    'PyAudioInput',
    'compute_noise_level',
    'NoiseAccumulator',
]
