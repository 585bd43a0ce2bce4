"""Single-lane request scheduler for mail-provider calls.

All outbound provider calls - live actions, queue replay and undo - go
through one RequestScheduler so that the provider never sees two requests
in flight at once and consecutive requests are spaced by min_interval.
Rate-limited calls are retried with exponential backoff and go back to the
head of the queue, ahead of anything that arrived after them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from swipe.errors import Exhausted, RequestCancelled, is_rate_limit_error
from swipe.logging import log_rate_limited

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[Any]]
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class ScheduledJob:
    """One outbound call waiting for (or undergoing) dispatch."""

    operation: Operation
    future: asyncio.Future
    max_retries: int
    retry_count: int = 0


class RequestScheduler:
    """Serializes provider calls with throttling and 429 backoff.

    Example:
        scheduler = RequestScheduler(min_interval=0.1)
        filter_id = await scheduler.execute(
            lambda: gateway.create_block_filter(sender="news@example.com")
        )
    """

    def __init__(
        self,
        min_interval: float = 0.1,
        max_retries: int = 3,
        base_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the scheduler.

        Args:
            min_interval: Minimum seconds between two dispatches
            max_retries: Rate-limit retries per job before it is rejected
            base_delay: Backoff in seconds after the first rate-limit
            backoff_multiplier: Growth factor of the backoff per retry
            clock: Monotonic clock, injectable for tests
            sleep: Async sleep, injectable for tests
        """
        self.min_interval = min_interval
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.backoff_multiplier = backoff_multiplier
        self._clock = clock
        self._sleep = sleep

        self._queue: deque[ScheduledJob] = deque()
        self._worker: asyncio.Task | None = None
        self._last_dispatch: float | None = None
        # Job sleeping in backoff; out of the queue but still pending
        self._backing_off: ScheduledJob | None = None

    @property
    def queue_size(self) -> int:
        """Number of jobs waiting for dispatch (for UI feedback)."""
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def last_dispatch(self) -> float | None:
        """Clock value of the most recent dispatch attempt."""
        return self._last_dispatch

    def backoff_delay(self, retry_count: int) -> float:
        """Delay before retry number retry_count + 1."""
        return self.base_delay * self.backoff_multiplier**retry_count

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
    ) -> T:
        """Queue an operation and wait for its terminal result.

        Args:
            operation: Zero-argument callable returning an awaitable
            max_retries: Rate-limit retries for this job (defaults to the
                scheduler's); callers with their own retry accounting pass 0

        Returns:
            Whatever the operation returns

        Raises:
            Exhausted: Still rate-limited after max_retries retries
            RequestCancelled: The queue was cleared before dispatch
            Exception: Any non-rate-limit error from the operation, unchanged
        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append(
            ScheduledJob(
                operation=operation,
                future=future,
                max_retries=self.max_retries if max_retries is None else max_retries,
            )
        )
        self._ensure_worker()
        return await future

    def clear(self) -> int:
        """Reject every pending job, including one waiting out a backoff.

        Used on logout / session teardown.

        Returns:
            Number of jobs rejected
        """
        rejected = 0
        job = self._backing_off
        if job is not None and not job.future.done():
            job.future.set_exception(RequestCancelled())
            rejected += 1
        while self._queue:
            job = self._queue.popleft()
            if not job.future.done():
                job.future.set_exception(RequestCancelled())
                rejected += 1
        if rejected:
            logger.info("Scheduler cleared, rejected=%d", rejected)
        return rejected

    async def close(self) -> None:
        """Clear the queue and stop the worker."""
        self.clear()
        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process_queue())

    async def _throttle(self) -> None:
        if self._last_dispatch is None:
            return
        elapsed = self._clock() - self._last_dispatch
        if elapsed < self.min_interval:
            await self._sleep(self.min_interval - elapsed)

    async def _process_queue(self) -> None:
        while self._queue:
            job = self._queue.popleft()
            if job.future.done():
                # Caller stopped waiting
                continue

            await self._throttle()
            self._last_dispatch = self._clock()

            try:
                result = await job.operation()
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    self._settle(job, error=exc)
                    continue

                if job.retry_count >= job.max_retries:
                    exhausted = Exhausted(
                        f"Still rate limited after {job.max_retries} retries"
                    )
                    exhausted.__cause__ = exc
                    self._settle(job, error=exhausted)
                    continue

                delay = self.backoff_delay(job.retry_count)
                log_rate_limited(logger, delay, job.retry_count + 1, job.max_retries)
                self._backing_off = job
                try:
                    await self._sleep(delay)
                finally:
                    self._backing_off = None

                if job.future.done():
                    # Cleared while backing off
                    continue
                job.retry_count += 1
                self._queue.appendleft(job)
            else:
                self._settle(job, result=result)

    @staticmethod
    def _settle(job: ScheduledJob, result: Any = None, error: BaseException | None = None) -> None:
        if job.future.done():
            return
        if error is not None:
            job.future.set_exception(error)
        else:
            job.future.set_result(result)
