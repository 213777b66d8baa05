"""Data models for the site crawler."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Optional


class JobState(str, Enum):
    """Lifecycle of a crawl job. Terminal states never change again."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED_TO_START = "failed_to_start"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.CANCELLED, JobState.FAILED_TO_START)


@dataclass(frozen=True)
class FrontierEntry:
    """A pending URL in the frontier."""

    url: str
    depth: int
    parent_url: Optional[str] = None


@dataclass
class FetchResponse:
    """What the fetch adapter hands back for one request."""

    status_code: Optional[int]
    final_url: str
    body: str = ""
    error: Optional[str] = None
    headers: dict = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
        )

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value.split(";")[0].strip().lower()
        return ""


@dataclass
class ExtractedPage:
    """Title, outbound links and markup notes parsed from a page."""

    title: Optional[str] = None
    links: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CrawlResult:
    """Outcome of fetching one frontier entry. Created once, never mutated."""

    url: str
    final_url: str
    status_code: Optional[int]
    is_success: bool
    depth: int
    page_title: Optional[str] = None
    links_found: int = 0
    discovered_links: tuple[str, ...] = ()
    fetch_duration: float = 0.0  # seconds
    error: Optional[str] = None
    warnings: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    parent_url: Optional[str] = None

    @property
    def was_redirected(self) -> bool:
        return self.final_url != self.url

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "is_success": self.is_success,
            "page_title": self.page_title,
            "depth": self.depth,
            "links_found": self.links_found,
            "discovered_links": list(self.discovered_links),
            "fetch_duration": round(self.fetch_duration, 4),
            "error": self.error,
            "warnings": list(self.warnings),
            "timestamp": self.timestamp.isoformat(),
            "parent_url": self.parent_url,
        }

    def __str__(self) -> str:
        return f"Depth:{self.depth} Status:{self.status_code} URL:{self.url}"


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted after every recorded CrawlResult."""

    pages_fetched: int
    frontier_size: int
    last_url: str
    depth: int = 0
    is_success: bool = True


@dataclass
class HostRateState:
    """Politeness bookkeeping for one host. Owned by the rate limiter."""

    host: str
    current_delay: float
    last_request_at: Optional[float] = None  # monotonic seconds
    consecutive_errors: int = 0
    consecutive_successes: int = 0
    recent_latencies: Deque[float] = field(default_factory=lambda: deque(maxlen=20))
    total_requests: int = 0
    total_errors: int = 0
    total_wait_time: float = 0.0

    @property
    def avg_latency(self) -> float:
        if not self.recent_latencies:
            return 0.0
        return sum(self.recent_latencies) / len(self.recent_latencies)


@dataclass
class CrawlReport:
    """Everything a finished crawl produced."""

    start_url: str
    state: JobState
    results: list[CrawlResult]
    sitemap_xml: str
    stats: dict = field(default_factory=dict)

    @property
    def successful(self) -> list[CrawlResult]:
        return [r for r in self.results if r.is_success]

    @property
    def failed(self) -> list[CrawlResult]:
        return [r for r in self.results if not r.is_success]
