"""Clock abstraction used for every delay and timestamp in a session."""

import asyncio
import time


class Clock:
    """Wall-clock and monotonic time in milliseconds, plus a cooperative sleep."""

    def epoch_ms(self) -> int:
        return int(time.time() * 1000)

    def monotonic_ms(self) -> int:
        return int(time.monotonic() * 1000)

    async def sleep(self, ms: int) -> None:
        await asyncio.sleep(max(0, ms) / 1000)
