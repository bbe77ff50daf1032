"""Session-related data models."""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class SessionPhase(Enum):
    """Lifecycle phase of a breathing session."""
    IDLE = "idle"
    COUNTING_DOWN = "counting_down"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"


class ElapsedPolicy(Enum):
    """How the timer loop derives elapsed seconds."""
    WALL_CLOCK = "wall_clock"  # recomputed from a captured start on every tick
    TICK = "tick"              # +1 per non-paused tick


@dataclass(frozen=True)
class SessionConfig:
    """Per-run settings, frozen when the run starts."""
    requested_minutes: int
    countdown_seconds: int = 3
    ambient_noise_enabled: bool = False

    @classmethod
    def create(cls, duration_minutes: Any, countdown_seconds: int = 3,
               ambient_noise_enabled: bool = False) -> "SessionConfig":
        """Build a config, coercing the duration to at least one minute."""
        try:
            minutes = int(duration_minutes)
        except (TypeError, ValueError):
            minutes = 1
        return cls(
            requested_minutes=max(1, minutes),
            countdown_seconds=max(0, int(countdown_seconds)),
            ambient_noise_enabled=bool(ambient_noise_enabled),
        )

    @property
    def total_seconds(self) -> int:
        return self.requested_minutes * 60


@dataclass(frozen=True)
class SessionRuntimeState:
    """Observable state of the engine. Replaced whole on every change."""
    phase: SessionPhase = SessionPhase.IDLE
    countdown_remaining: Optional[int] = None
    scheduled_start_time: Optional[int] = None  # epoch millis
    elapsed_seconds: int = 0
    is_paused: bool = False
    current_noise_level: Optional[float] = None
    total_seconds: int = 0

    @property
    def is_live(self) -> bool:
        return self.phase in (SessionPhase.COUNTING_DOWN, SessionPhase.RUNNING, SessionPhase.PAUSED)

    @property
    def is_active(self) -> bool:
        """True while the breathing loops should keep going."""
        return self.phase in (SessionPhase.RUNNING, SessionPhase.PAUSED)

    @property
    def progress(self) -> float:
        if self.total_seconds <= 0:
            return 0.0
        return min(1.0, max(0.0, self.elapsed_seconds / self.total_seconds))

    def evolve(self, **changes: Any) -> "SessionRuntimeState":
        return replace(self, **changes)


@dataclass(frozen=True)
class SessionRecord:
    """A finished session, as handed to the session recorder."""
    duration_minutes: int
    started_at_epoch_millis: int
    average_noise_level: float = 0.0
    completed: bool = False
    user_id: Optional[str] = None

    @classmethod
    def from_run(cls, elapsed_seconds: int, total_seconds: int, started_at_epoch_millis: int,
                 average_noise_level: float = 0.0) -> "SessionRecord":
        return cls(
            duration_minutes=max(1, math.ceil(elapsed_seconds / 60)),
            started_at_epoch_millis=int(started_at_epoch_millis),
            average_noise_level=average_noise_level,
            completed=elapsed_seconds >= total_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise using the storage field names."""
        data: Dict[str, Any] = {
            "duration": int(self.duration_minutes),
            "timestamp": int(self.started_at_epoch_millis),
            # stored with float32 precision
            "averageNoiseLevel": float(np.float32(self.average_noise_level)),
            "completed": bool(self.completed),
        }
        if self.user_id:
            data["userId"] = self.user_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        return cls(
            duration_minutes=int(data["duration"]),
            started_at_epoch_millis=int(data["timestamp"]),
            average_noise_level=float(data.get("averageNoiseLevel", 0.0)),
            completed=bool(data.get("completed", False)),
            user_id=data.get("userId"),
        )


@dataclass(frozen=True)
class BreathingStep:
    """One segment of the breathing cycle."""
    name: str
    duration_ms: int
    pulse: bool


@dataclass(frozen=True)
class BreathingPattern:
    """Box breathing: inhale, hold, exhale, hold."""
    inhale_ms: int = 4000
    hold_after_inhale_ms: int = 4000
    exhale_ms: int = 4000
    hold_after_exhale_ms: int = 4000
    steps: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "steps", (
            BreathingStep("inhale", self.inhale_ms, pulse=True),
            BreathingStep("hold", self.hold_after_inhale_ms, pulse=False),
            BreathingStep("exhale", self.exhale_ms, pulse=True),
            BreathingStep("hold", self.hold_after_exhale_ms, pulse=False),
        ))

    @property
    def cycle_ms(self) -> int:
        return sum(step.duration_ms for step in self.steps)
