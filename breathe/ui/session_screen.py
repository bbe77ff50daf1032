"""Live terminal view of a breathing session."""

import logging
from typing import List, Optional

from pubsub import pub
from rich.align import Align
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from ..models.session import SessionPhase, SessionRecord, SessionRuntimeState
from ..services.history import HistoryStats, format_session_date
from ..services.session_publisher import SESSION_STATE_TOPIC

logger = logging.getLogger(__name__)

PHASE_STYLES = {
    SessionPhase.IDLE: ("Ready", "dim"),
    SessionPhase.COUNTING_DOWN: ("Get ready", "bold yellow"),
    SessionPhase.RUNNING: ("Breathe", "bold green"),
    SessionPhase.PAUSED: ("Paused", "bold blue"),
    SessionPhase.COMPLETED: ("Well done", "bold magenta"),
    SessionPhase.STOPPED: ("Stopped", "bold red"),
}


def format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


class SessionScreen:
    """Subscribes to the session state topic and redraws on every update."""

    def __init__(self, console: Optional[Console] = None, topic: str = SESSION_STATE_TOPIC):
        self.console = console or Console()
        self.topic = topic
        self.state = SessionRuntimeState()
        self.live: Optional[Live] = None
        pub.subscribe(self.on_state, self.topic)

    def on_state(self, state: SessionRuntimeState) -> None:
        self.state = state
        if self.live is not None:
            self.live.update(self.render())

    def render(self) -> Panel:
        state = self.state
        label, style = PHASE_STYLES[state.phase]
        lines: List[RenderableType] = [Align.center(Text(label, style=style))]

        if state.phase == SessionPhase.COUNTING_DOWN and state.countdown_remaining is not None:
            lines.append(Align.center(Text(str(state.countdown_remaining), style="bold yellow")))
            if state.scheduled_start_time:
                start = format_session_date(state.scheduled_start_time).split("•")[-1].strip()
                lines.append(Align.center(Text(f"Starts at {start}", style="dim")))
        elif state.total_seconds:
            lines.append(Align.center(Text(
                f"{format_clock(state.elapsed_seconds)} / {format_clock(state.total_seconds)}"
            )))
            # ProgressBar ends without a newline, give it a row of its own
            bar = Table.grid(expand=True)
            bar.add_row(ProgressBar(total=state.total_seconds, completed=state.elapsed_seconds))
            lines.append(bar)

        if state.current_noise_level is not None:
            lines.append(Align.center(Text(f"Ambient noise: {state.current_noise_level:.1f} dB", style="cyan")))

        lines.append(Text("[p] pause/resume   [s] stop & save   [q] quit", style="dim"))
        return Panel(Group(*lines), title="Breathe", border_style=style)

    def __enter__(self) -> "SessionScreen":
        self.live = Live(self.render(), console=self.console, refresh_per_second=4)
        self.live.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.live is not None:
            self.live.__exit__(exc_type, exc, tb)
            self.live = None
        pub.unsubscribe(self.on_state, self.topic)


def render_history(records: List[SessionRecord], stats: HistoryStats) -> Group:
    """Table of past sessions followed by summary counts."""
    table = Table(title="Session history", show_lines=False)
    table.add_column("Date")
    table.add_column("Minutes", justify="right")
    table.add_column("Noise (dB)", justify="right")
    table.add_column("Completed", justify="center")

    for record in records:
        noise = f"{record.average_noise_level:.1f}" if record.average_noise_level else "-"
        table.add_row(
            format_session_date(record.started_at_epoch_millis),
            str(record.duration_minutes),
            noise,
            "yes" if record.completed else "no",
        )

    summary = Text(
        f"This week: {stats.weekly_count}   This month: {stats.monthly_count}   "
        f"Completed: {stats.completed_sessions}/{stats.total_sessions}   "
        f"Total minutes: {stats.total_minutes}"
    )
    return Group(table, summary)
