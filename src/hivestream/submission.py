"""
Submission queue: serialized, time-throttled dispatch of signed submissions.

The ledger rejects more than five same-account submissions per block, so
at most one submission leaves the queue per tick (1s by default).
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from .rpc import SubmissionRateLimitedError
from .scheduler import Clock, Ticker

logger = structlog.get_logger()

DispatchFn = Callable[[Any, str], Awaitable[Any]]


class SubmissionCancelledError(Exception):
    """The queue was closed before the submission could be broadcast."""
    pass


@dataclass
class QueuedSubmission:
    payload: Any
    key: str = field(repr=False)
    dispatch_fn: DispatchFn = field(repr=False)
    future: asyncio.Future = field(repr=False)
    attempts: int = 0
    enqueued_at: Optional[float] = None


class SubmissionQueue:
    """
    FIFO queue drained one item per tick.

    Lifecycle of an item:
    1. enqueue() appends it and hands back a future
    2. A tick pops it and dispatches it in the background
    3. The dispatch resolves or rejects the future, exactly once
    4. A rate-limited dispatch goes back to the head of the queue, up to
       `max_retries` times
    5. close() rejects whatever is still waiting with SubmissionCancelledError
    """

    def __init__(
        self,
        interval: float = 1.0,
        max_retries: int = 3,
        clock: Optional[Clock] = None,
    ):
        self.max_retries = max_retries
        self.clock = clock or Clock()
        self.ticker = Ticker("submissions", interval=interval, clock=self.clock)

        self._queue: deque[QueuedSubmission] = deque()
        self._in_flight: set[asyncio.Task] = set()
        self._dispatched = 0
        self._running = False
        self._closed = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def dispatched(self) -> int:
        return self._dispatched

    @property
    def running(self) -> bool:
        return self._running

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, payload: Any, key: str, dispatch_fn: DispatchFn) -> asyncio.Future:
        """Append a submission to the tail; await the returned future for its result."""
        future = asyncio.get_running_loop().create_future()
        if self._closed:
            future.set_exception(SubmissionCancelledError("Submission queue is closed"))
            return future

        self._queue.append(QueuedSubmission(
            payload=payload,
            key=key,
            dispatch_fn=dispatch_fn,
            future=future,
            enqueued_at=self.clock.now(),
        ))
        return future

    async def tick(self) -> None:
        """Dispatch at most one submission."""
        if not self._queue:
            return

        item = self._queue.popleft()
        item.attempts += 1
        self._dispatched += 1

        task = asyncio.create_task(self._dispatch(item))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _dispatch(self, item: QueuedSubmission) -> None:
        try:
            result = await item.dispatch_fn(item.payload, item.key)
        except SubmissionRateLimitedError as e:
            if self._closed:
                self._settle(item, error=SubmissionCancelledError(f"Queue closed while rate limited: {e}"))
                return
            if item.attempts <= self.max_retries:
                logger.warning(
                    "Submission rate limited, requeueing",
                    attempts=item.attempts,
                    max_retries=self.max_retries,
                )
                self._queue.appendleft(item)
                return
            logger.error("Submission failed after retries", attempts=item.attempts, error=str(e))
            self._settle(item, error=e)
        except Exception as e:
            logger.warning("Submission failed", error=str(e))
            self._settle(item, error=e)
        else:
            logger.debug(
                "Submission broadcast",
                attempts=item.attempts,
                waited=round(self.clock.now() - item.enqueued_at, 3),
            )
            self._settle(item, result=result)

    @staticmethod
    def _settle(item: QueuedSubmission, result: Any = None, error: Optional[Exception] = None) -> None:
        if item.future.done():
            return
        if error is not None:
            item.future.set_exception(error)
        else:
            item.future.set_result(result)

    async def run(self, max_ticks: Optional[int] = None) -> None:
        self._running = True
        try:
            await self.ticker.run(self.tick, max_ticks=max_ticks)
        finally:
            self._running = False

    def stop(self) -> None:
        """Stop ticking. Queued items stay queued until close()."""
        self.ticker.stop()

    def close(self) -> None:
        """Stop ticking and reject every submission still waiting in the queue."""
        self.stop()
        self._closed = True

        if self._queue:
            logger.warning("Cancelling queued submissions", count=len(self._queue))
        while self._queue:
            item = self._queue.popleft()
            self._settle(item, error=SubmissionCancelledError("Submission queue closed before broadcast"))

    async def drain(self) -> None:
        """Wait for dispatches already in flight."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
