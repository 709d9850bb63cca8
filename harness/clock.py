"""Injectable time source so polling and pacing can be tested without real delays."""

import asyncio
import time


class Clock:
    """Wall-clock implementation backed by time.monotonic and asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
