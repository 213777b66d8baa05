"""
Crawl Performance Metrics.

Collects timings of the crawler's own operations (robots checks,
politeness waits, fetches, link extraction) and estimates the memory a
crawl of a given size will need.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from sitecrawl.constants import (
    ESTIMATED_MEMORY_PER_PAGE_KB,
    LARGE_CRAWL_MEMORY_WARNING_MB,
)

logger = logging.getLogger(__name__)


@dataclass
class OperationStats:
    """Aggregated timings for one operation name."""
    operation: str
    count: int
    total_seconds: float
    avg_seconds: float
    max_seconds: float

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "count": self.count,
            "total_seconds": round(self.total_seconds, 4),
            "avg_seconds": round(self.avg_seconds, 4),
            "max_seconds": round(self.max_seconds, 4),
        }


class CrawlPerformanceTracker:
    """Records operation durations for one crawl."""

    def __init__(self, crawl_id: Optional[str] = None):
        self.crawl_id = crawl_id or uuid.uuid4().hex[:8]
        self._timings: Dict[str, List[float]] = {}
        self._started = time.monotonic()

    def track(self, operation: str, seconds: float) -> None:
        """Record one duration for an operation."""
        self._timings.setdefault(operation, []).append(seconds)

    @asynccontextmanager
    async def measure(self, operation: str) -> AsyncIterator[None]:
        """Time the body of an ``async with`` block.

        The duration is recorded even if the block raises.
        """
        started = time.monotonic()
        try:
            yield
        finally:
            self.track(operation, time.monotonic() - started)

    def summary(self) -> Dict[str, OperationStats]:
        """
        Aggregate recorded timings.

        Returns:
            OperationStats keyed by operation name
        """
        stats = {}
        for operation, durations in self._timings.items():
            total = sum(durations)
            stats[operation] = OperationStats(
                operation=operation,
                count=len(durations),
                total_seconds=total,
                avg_seconds=total / len(durations),
                max_seconds=max(durations),
            )
        return stats

    @property
    def elapsed(self) -> float:
        """Seconds since the tracker was created."""
        return time.monotonic() - self._started

    @staticmethod
    def estimate_memory_mb(max_pages: int, per_page_kb: int = ESTIMATED_MEMORY_PER_PAGE_KB) -> float:
        """Rough memory needed to hold results for ``max_pages`` pages."""
        return max_pages * per_page_kb / 1024

    def warn_if_large(self, max_pages: int) -> bool:
        """Log a warning when the estimated memory for a crawl is high.

        Returns:
            True if a warning was logged
        """
        estimate = self.estimate_memory_mb(max_pages)
        if estimate > LARGE_CRAWL_MEMORY_WARNING_MB:
            logger.warning(
                f"[{self.crawl_id}] Large crawl: max_pages={max_pages} "
                f"may need ~{estimate:.0f}MB of memory"
            )
            return True
        return False

    def log_metrics(self) -> None:
        """Log a line per operation at INFO."""
        logger.info(f"[{self.crawl_id}] Crawl performance after {self.elapsed:.2f}s:")
        for name, stats in sorted(self.summary().items()):
            logger.info(
                f"[{self.crawl_id}]   {name}: {stats.count} calls, "
                f"avg {stats.avg_seconds * 1000:.1f}ms, "
                f"max {stats.max_seconds * 1000:.1f}ms, "
                f"total {stats.total_seconds:.2f}s"
            )
