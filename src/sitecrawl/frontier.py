"""Bounded FIFO frontier with in-flight accounting."""

import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from sitecrawl.constants import DEFAULT_MAX_FRONTIER_SIZE
from sitecrawl.models import FrontierEntry

logger = logging.getLogger(__name__)


class Frontier:
    """Shared queue of pending FrontierEntry items.

    Workers call ``get()`` and must call ``task_done()`` once they have
    finished processing the entry (including enqueueing its links). An
    empty frontier only counts as drained when no entry is in flight,
    because an in-flight fetch may still discover new links.

    Since children are enqueued while their parent is in flight and the
    queue is FIFO, entries come out ordered by depth (BFS).
    """

    def __init__(self, max_size: int = DEFAULT_MAX_FRONTIER_SIZE):
        self.max_size = max_size
        self._entries: Deque[FrontierEntry] = deque()
        self._in_flight = 0
        self._closed = False
        self._changed = asyncio.Event()
        self._total_enqueued = 0
        self._dropped = 0

    def put(self, entry: FrontierEntry) -> bool:
        """Add an entry.

        Args:
            entry: Entry to enqueue

        Returns:
            False if the frontier is closed or full
        """
        if self._closed:
            return False
        if self.full():
            self._dropped += 1
            logger.warning(f"Frontier full ({self.max_size}), dropping {entry.url}")
            return False

        self._entries.append(entry)
        self._total_enqueued += 1
        self._changed.set()
        return True

    async def get(self) -> Optional[FrontierEntry]:
        """Take the next entry, waiting while other entries are in flight.

        Returns:
            The next entry, or None once the frontier is drained or closed
        """
        while True:
            if self._closed:
                return None

            if self._entries:
                self._in_flight += 1
                return self._entries.popleft()

            if self._in_flight == 0:
                # Empty and nobody can add more: wake the other waiters too
                self._changed.set()
                return None

            self._changed.clear()
            await self._changed.wait()

    def task_done(self) -> None:
        """Mark an entry returned by ``get()`` as fully processed."""
        if self._in_flight <= 0:
            raise ValueError("task_done() called more times than get()")
        self._in_flight -= 1
        self._changed.set()

    def close(self) -> None:
        """Stop handing out entries. Pending entries are discarded."""
        self._closed = True
        self._changed.set()

    def full(self) -> bool:
        return len(self._entries) >= self.max_size

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_drained(self) -> bool:
        return not self._entries and self._in_flight == 0

    @property
    def total_enqueued(self) -> int:
        return self._total_enqueued

    @property
    def dropped(self) -> int:
        return self._dropped

    def __len__(self) -> int:
        return len(self._entries)
