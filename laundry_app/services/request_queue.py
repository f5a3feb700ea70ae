"""
Rate-limited request queue for outbound mapping calls

Serializes requests through a single worker coroutine and keeps a minimum
spacing between successive dispatches, so bursts from many callers never
reach the provider closer together than the configured delay.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..config import DEFAULT_REQUEST_DELAY, GEOCODE_REQUEST_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "DEFAULT_REQUEST_DELAY",
    "GEOCODE_REQUEST_DELAY",
    "QueueClosedError",
    "RateLimitedRequestQueue",
]


class QueueClosedError(RuntimeError):
    """Raised to callers whose request was still queued when the queue closed"""


class RateLimitedRequestQueue:
    """FIFO of deferred requests drained by one worker with a fixed inter-request delay"""

    def __init__(
        self,
        delay_seconds: float = DEFAULT_REQUEST_DELAY,
        name: str = "requests",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.delay_seconds = delay_seconds
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Future] = None
        self._last_dispatch: Optional[float] = None
        self.dispatch_count = 0

    @property
    def pending(self) -> int:
        """Number of requests waiting for the worker"""
        return self._queue.qsize() if self._queue is not None else 0

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        """
        Queue a request and wait for its outcome.

        Args:
            task: Zero-argument coroutine function performing the network call

        Returns:
            Whatever the task returns; the task's exception is re-raised here
        """
        future = asyncio.get_running_loop().create_future()
        self._ensure_worker()
        self._queue.put_nowait((task, future))
        logger.debug(f"📥 Queued {self.name} request ({self.pending} pending)")
        return await future

    def _ensure_worker(self) -> None:
        loop = asyncio.get_running_loop()
        if self._worker is None or self._worker.done() or self._worker.get_loop() is not loop:
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._drain(self._queue))

    async def _wait_for_slot(self) -> None:
        if self._last_dispatch is None:
            return
        elapsed = self._clock() - self._last_dispatch
        if elapsed < self.delay_seconds:
            wait = self.delay_seconds - elapsed
            logger.debug(f"⏳ Rate limiting {self.name}: waiting {wait * 1000:.0f}ms")
            await self._sleep(wait)

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            task, future = await queue.get()
            try:
                # Caller gave up while the request was queued
                if future.done():
                    continue

                self._current = future
                await self._wait_for_slot()
                self._last_dispatch = self._clock()
                self.dispatch_count += 1

                try:
                    result = await task()
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._current = None
                queue.task_done()

    async def close(self) -> None:
        """Stop the worker and fail anything still queued"""
        if self._worker is None:
            return

        abandoned = [self._current] if self._current is not None else []
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

        while self._queue is not None and not self._queue.empty():
            _, future = self._queue.get_nowait()
            abandoned.append(future)

        for future in abandoned:
            if not future.done():
                future.set_exception(QueueClosedError(f"{self.name} queue closed"))
