"""Data models for the Breathe application."""

from .session import (
    SessionPhase,
    ElapsedPolicy,
    SessionConfig,
    SessionRuntimeState,
    SessionRecord,
    BreathingStep,
    BreathingPattern,
)
from .result import Result, ErrorKind
from .user import (
    UserPreferences,
    UserProfile,
    Quote,
    FALLBACK_QUOTE,
    AuthState,
    HomeState,
    ProfileState,
)

__all__ = [
    "SessionPhase",
    "ElapsedPolicy",
    "SessionConfig",
    "SessionRuntimeState",
    "SessionRecord",
    "BreathingStep",
    "BreathingPattern",
    "Result",
    "ErrorKind",
    # Collaborator-facing models
    "UserPreferences",
    "UserProfile",
    "Quote",
    "FALLBACK_QUOTE",
    "AuthState",
    "HomeState",
    "ProfileState",
]
