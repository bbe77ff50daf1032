"""Haptic cue emitters."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from rich.console import Console

logger = logging.getLogger(__name__)


class HapticEmitter(ABC):
    """Produces a physical or simulated pulse. Implementations may raise; callers treat it as non-fatal."""

    @abstractmethod
    def pulse(self, duration_ms: int) -> None:
        """Start a pulse of the given length without blocking."""
        pass


class NullHapticEmitter(HapticEmitter):
    """For hosts without haptic hardware."""

    def pulse(self, duration_ms: int) -> None:
        logger.debug(f"Haptic pulse skipped ({duration_ms}ms): no hardware")


class ConsoleHapticEmitter(HapticEmitter):
    """Renders pulses on the terminal and rings the bell for long cues."""

    def __init__(self, console: Optional[Console] = None, bell_threshold_ms: int = 1000):
        self.console = console or Console()
        self.bell_threshold_ms = bell_threshold_ms
        self.pulse_count = 0

    def pulse(self, duration_ms: int) -> None:
        self.pulse_count += 1
        if duration_ms >= self.bell_threshold_ms:
            self.console.bell()
        logger.debug(f"Console pulse #{self.pulse_count}: {duration_ms}ms")
