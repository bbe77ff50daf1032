"""Services layer for Breathe application logic."""

from .clock import Clock
from .haptics import HapticEmitter, NullHapticEmitter, ConsoleHapticEmitter
from .session_engine import SessionEngine
from .session_publisher import SessionStatePublisher, SESSION_STATE_TOPIC
from .session_recorder import SessionRecorder
from .auth_service import AuthService
from .preferences import PreferencesStore
from .home_service import HomeService
from .profile_service import ProfileService
from .history import HistoryStats, compute_history_stats, format_session_date

__all__ = [
    "Clock",
    "HapticEmitter",
    "NullHapticEmitter",
    "ConsoleHapticEmitter",
    "SessionEngine",
    "SessionStatePublisher",
    "SESSION_STATE_TOPIC",
    "SessionRecorder",
    "AuthService",
    "PreferencesStore",
    "HomeService",
    "ProfileService",
    "HistoryStats",
    "compute_history_stats",
    "format_session_date",
]
