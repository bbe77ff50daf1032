"""Single-key session controls read from the terminal."""

import asyncio
import logging
import sys
import threading
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class SessionCommand(Enum):
    PAUSE_RESUME = "pause_resume"
    STOP_AND_SAVE = "stop_and_save"
    QUIT = "quit"


KEY_BINDINGS: Dict[str, SessionCommand] = {
    "p": SessionCommand.PAUSE_RESUME,
    " ": SessionCommand.PAUSE_RESUME,
    "s": SessionCommand.STOP_AND_SAVE,
    "q": SessionCommand.QUIT,
}


class SessionKeyReader:
    """Reads keys on a background thread and hands commands to the event loop.

    The thread never touches session state; it only schedules on_command on the
    loop with call_soon_threadsafe.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, on_command: Callable[[SessionCommand], None],
                 bindings: Optional[Dict[str, SessionCommand]] = None):
        self.loop = loop
        self.on_command = on_command
        self.bindings = bindings or KEY_BINDINGS
        self.running = False
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.running:
            return
        if not sys.stdin.isatty():
            logger.warning("stdin is not a terminal; keyboard controls disabled")
            return

        self.running = True
        self.thread = threading.Thread(target=self._input_loop, daemon=True, name="SessionKeyReader")
        self.thread.start()
        logger.info("Keyboard controls started")

    def stop(self) -> None:
        self.running = False
        if self.thread:
            self.thread.join(timeout=1.0)
            self.thread = None
        logger.info("Keyboard controls stopped")

    def dispatch(self, key: str) -> Optional[SessionCommand]:
        """Map a key to a command and schedule it on the loop."""
        command = self.bindings.get(key.lower())
        if command is None:
            logger.debug(f"Unbound key: {key!r}")
            return None
        self.loop.call_soon_threadsafe(self.on_command, command)
        return command

    def _input_loop(self) -> None:
        while self.running:
            try:
                key = self._get_key()
            except Exception as e:
                logger.error(f"Error reading key: {e}")
                break
            if key and self.dispatch(key) is SessionCommand.QUIT:
                break
        self.running = False

    def _get_key(self) -> Optional[str]:
        if sys.platform == "win32":
            return self._get_key_windows()
        return self._get_key_unix()

    def _get_key_windows(self) -> Optional[str]:
        import msvcrt
        import time

        if msvcrt.kbhit():
            return msvcrt.getch().decode('utf-8', errors='ignore')
        time.sleep(0.05)
        return None

    def _get_key_unix(self) -> Optional[str]:
        import select
        import termios
        import tty

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            if select.select([sys.stdin], [], [], 0.1)[0]:
                return sys.stdin.read(1)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        return None
