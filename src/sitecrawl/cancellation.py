"""Cooperative cancellation for crawl jobs.

A single CancellationToken is handed to every suspension point of a job
(frontier dequeue, politeness wait, fetch) so that one ``cancel()`` call
wakes all of them promptly instead of each one polling a flag.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class CrawlCancelledError(Exception):
    """Raised at a suspension point when the job's token has been cancelled."""


class CancellationToken:
    """Cancellation signal shared by every worker of a crawl job."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Idempotent."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CrawlCancelledError(self.reason)

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            CrawlCancelledError: If the token fires before or during the sleep
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise CrawlCancelledError(self.reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but abandon it as soon as the token fires.

        The underlying task is cancelled, so cancellation propagates into
        in-flight I/O (e.g. an httpx request).

        Raises:
            CrawlCancelledError: If the token fires first
        """
        task = asyncio.ensure_future(awaitable)
        if self._event.is_set():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise CrawlCancelledError(self.reason)

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise CrawlCancelledError(self.reason)
