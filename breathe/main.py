"""Main application entry point for Breathe."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .audio.capture import PyAudioInput
from .config import BreatheConfig
from .models.session import SessionPhase, SessionRuntimeState
from .models.user import UserPreferences
from .remote.identity import IdentityClient
from .remote.quotes import ZenQuotesClient
from .remote.realtime_db import RealtimeDatabase
from .services.auth_service import AuthService
from .services.haptics import ConsoleHapticEmitter
from .services.history import compute_history_stats
from .services.home_service import HomeService
from .services.preferences import PreferencesStore
from .services.session_engine import SessionEngine
from .services.session_publisher import SessionStatePublisher
from .services.session_recorder import SessionRecorder
from .storage.session_log import SessionLog
from .ui.keyboard_input import SessionCommand, SessionKeyReader
from .ui.session_screen import SessionScreen, render_history

logger = logging.getLogger(__name__)

console = Console()


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = BreatheConfig(config_path)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.engine: Optional[SessionEngine] = None
        self.finished: Optional[asyncio.Event] = None
        self._commands: set = set()

    def init(self) -> None:
        logger.info("Initializing services...")
        timeout = self.config.get('home.refresh_timeout_seconds', 10)

        database = None
        identity = None
        if self.config.has_firebase():
            database = RealtimeDatabase(self.config.get('firebase.database_url'), timeout_seconds=timeout)
            identity = IdentityClient(self.config.get('firebase.api_key'), timeout_seconds=timeout)
        else:
            logger.info("Remote store not configured, running offline")

        default_prefs = UserPreferences(
            default_duration_minutes=max(1, int(self.config.get('session.default_duration_minutes', 3))),
        )
        self.auth = AuthService(identity, database)
        self.preferences = PreferencesStore(database, default_prefs) if database else None
        self.home = HomeService(
            ZenQuotesClient(self.config.get('quotes.url'), timeout_seconds=timeout),
            self.auth,
            self.preferences,
            timeout_seconds=timeout,
            default_prefs=default_prefs,
        )

        self.session_log = SessionLog(self.config.get_data_directory())
        self.recorder = SessionRecorder(self.session_log, database, self.auth)

        sample_rate = self.config.get('audio.sample_rate', 16000)
        channels = self.config.get('audio.channels', 1)
        logger.info(f"Audio settings: {sample_rate}Hz, {channels} channels")

        self.publisher = SessionStatePublisher()
        self.engine = SessionEngine.from_config(
            self.config,
            self.recorder,
            audio_input_factory=lambda: PyAudioInput(sample_rate=sample_rate, channels=channels),
        )
        self.engine.subscribe(self.publisher.publish_state)

    async def sign_in(self, email: Optional[str], password: Optional[str]) -> None:
        if not email or not password:
            return
        result = await self.auth.sign_in(email, password)
        if result.ok:
            console.print(f"Signed in as {email}")
        else:
            console.print(f"[yellow]Sign-in failed: {result.error}[/yellow]")

    async def run_session(self, duration: Optional[int], ambient: Optional[bool]) -> None:
        home = await self.home.refresh()
        if home.error:
            console.print(f"[yellow]{home.error}[/yellow]")
        if home.quote:
            console.print(f"[italic]\"{home.quote.text}\"[/italic] - {home.quote.author}\n")

        minutes = duration if duration is not None else home.prefs.default_duration_minutes
        ambient_enabled = home.prefs.ambient_noise_detection if ambient is None else ambient

        loop = asyncio.get_running_loop()
        self.finished = asyncio.Event()
        self.engine.subscribe(self._watch_for_end)

        reader = SessionKeyReader(loop, self.handle_command)
        with SessionScreen(console) as screen:
            reader.start()
            try:
                started = await self.engine.prepare_and_start(
                    minutes,
                    haptics=ConsoleHapticEmitter(console),
                    ambient_noise_enabled=ambient_enabled,
                )
                if started:
                    await self.finished.wait()
            finally:
                reader.stop()
                await self.engine.shutdown()
            last = screen.state

        logger.info(f"Session ended in phase {last.phase.value}")

    def _watch_for_end(self, state: SessionRuntimeState) -> None:
        if state.phase in (SessionPhase.COMPLETED, SessionPhase.STOPPED) and self.finished:
            self.finished.set()
            phase = "completed" if state.phase == SessionPhase.COMPLETED else "stopped"
            console.print(f"Session {phase} after {state.elapsed_seconds}s")

    def handle_command(self, command: SessionCommand) -> None:
        """Apply a key command to the engine. Runs on the event loop."""
        logger.debug(f"Command: {command.value}")
        if command is SessionCommand.PAUSE_RESUME:
            self.engine.pause_resume()
        elif command is SessionCommand.STOP_AND_SAVE:
            self._spawn(self.engine.stop(save=True))
        elif command is SessionCommand.QUIT:
            self._spawn(self._quit())

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._commands.add(task)
        task.add_done_callback(self._commands.discard)

    async def _quit(self) -> None:
        if self.engine.state.is_live:
            await self.engine.stop(save=False)
        if self.finished:
            self.finished.set()

    async def show_history(self, clear: bool = False) -> None:
        if clear:
            removed = await self.recorder.clear_all()
            console.print(f"Removed {removed} sessions")
            return
        user = self.auth.current_user
        records = await self.recorder.list_all(user.uid if user else None)
        if not records:
            console.print("No sessions yet")
            return
        console.print(render_history(records, compute_history_stats(records)))

    async def show_quote(self) -> None:
        result = await self.home.fetch_quote()
        if not result.ok:
            console.print(f"[yellow]{result.error}[/yellow]")
            return
        console.print(f"[italic]\"{result.value.text}\"[/italic] - {result.value.author}")


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/breathe.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - warnings only, the live panel owns the terminal
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info("Breathe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Breathe - guided breathing sessions in the terminal",
        epilog="Session keys: p=Pause/resume, s=Stop and save, q=Quit without saving"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in settings)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (overrides config)"
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("BREATHE_EMAIL"),
        help="Sign in with this email (default: $BREATHE_EMAIL)"
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("BREATHE_PASSWORD"),
        help="Password for --email (default: $BREATHE_PASSWORD)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="Breathe v0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start a guided breathing session")
    run_parser.add_argument(
        "--duration",
        type=int,
        help="Session length in minutes (default: saved preference)"
    )
    ambient = run_parser.add_mutually_exclusive_group()
    ambient.add_argument("--ambient", dest="ambient", action="store_true", default=None,
                         help="Sample ambient noise during the session")
    ambient.add_argument("--no-ambient", dest="ambient", action="store_false",
                         help="Do not sample ambient noise")

    history_parser = subparsers.add_parser("history", help="Show past sessions")
    history_parser.add_argument("--clear", action="store_true", help="Delete the local session log")

    subparsers.add_parser("quote", help="Print a random quote")
    return parser


async def run_command(server: Server, args: argparse.Namespace) -> None:
    await server.sign_in(args.email, args.password)
    if args.command == "history":
        await server.show_history(args.clear)
    elif args.command == "quote":
        await server.show_quote()
    else:
        await server.run_session(getattr(args, "duration", None), getattr(args, "ambient", None))


def main() -> None:
    """Main entry point for Breathe application."""
    args = build_parser().parse_args()

    try:
        server = Server(args.config, args.log_level)
        server.init()
        asyncio.run(run_command(server, args))
    except KeyboardInterrupt:
        print("\nGoodbye!")
    except Exception as e:
        print(f"Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
