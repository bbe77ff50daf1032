"""Local persistence."""

from .session_log import SessionLog

__all__ = ["SessionLog"]
