"""History statistics over recorded sessions."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from ..models.session import SessionRecord


@dataclass(frozen=True)
class HistoryStats:
    total_sessions: int = 0
    completed_sessions: int = 0
    total_minutes: int = 0
    weekly_count: int = 0
    monthly_count: int = 0


def _local_time(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000)


def compute_history_stats(records: Iterable[SessionRecord], now: Optional[datetime] = None) -> HistoryStats:
    """Counts for the current ISO week and calendar month, in local time."""
    now = now or datetime.now()
    week = now.isocalendar()[:2]
    month = (now.year, now.month)

    total = completed = minutes = weekly = monthly = 0
    for record in records:
        when = _local_time(record.started_at_epoch_millis)
        total += 1
        minutes += record.duration_minutes
        if record.completed:
            completed += 1
        if when.isocalendar()[:2] == week:
            weekly += 1
        if (when.year, when.month) == month:
            monthly += 1

    return HistoryStats(
        total_sessions=total,
        completed_sessions=completed,
        total_minutes=minutes,
        weekly_count=weekly,
        monthly_count=monthly,
    )


def format_session_date(epoch_ms: int) -> str:
    """e.g. '05 Mar 2026 • 07:30 PM'"""
    return _local_time(epoch_ms).strftime("%d %b %Y • %I:%M %p")
