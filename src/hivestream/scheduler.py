"""
Scheduling primitives: a clock and a fixed-interval ticker with a stop event.

Loops never call time.time() or asyncio.sleep() directly, they go through a
Clock so tests can swap in virtual time.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()


class Clock:
    """Wall-clock time and real sleeping."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class Ticker:
    """
    Runs a coroutine function every `interval` seconds until stopped.

    - The next tick is scheduled whatever the outcome of the previous one
    - Exceptions raised by a tick are logged, never propagated
    - stop() lets the in-flight tick finish, then the loop exits
    """

    def __init__(
        self,
        name: str,
        interval: float = 1.0,
        clock: Optional[Clock] = None,
    ):
        self.name = name
        self.interval = interval
        self.clock = clock or Clock()

        self._stop_event = asyncio.Event()
        self._ticks = 0

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def ticks(self) -> int:
        return self._ticks

    def stop(self) -> None:
        """Signal the loop to exit after the current tick."""
        self._stop_event.set()

    async def run(
        self,
        tick: Callable[[], Awaitable[None]],
        max_ticks: Optional[int] = None,
    ) -> None:
        """Main loop. `max_ticks` bounds the loop, mostly for tests."""
        logger.debug("Ticker starting", ticker=self.name, interval=self.interval)

        while not self.stopped:
            try:
                await tick()
            except Exception as e:
                logger.error(
                    "Unhandled error in tick",
                    ticker=self.name,
                    error=str(e),
                    exc_info=True,
                )

            self._ticks += 1
            if max_ticks is not None and self._ticks >= max_ticks:
                break
            if self.stopped:
                break

            await self.clock.sleep(self.interval)

        logger.debug("Ticker stopped", ticker=self.name, ticks=self._ticks)
