"""
Infrastructure Package.

Provides per-host rate limiting and crawl performance tracking.
"""

from .rate_limiter import (
    AdaptiveRateLimiter,
    PolitenessController,
    RateLimitConfig,
    ResourceMetrics,
)
from .performance_metrics import (
    CrawlPerformanceTracker,
    OperationStats,
)

__all__ = [
    # Rate Limiter
    "AdaptiveRateLimiter",
    "PolitenessController",
    "RateLimitConfig",
    "ResourceMetrics",
    # Performance Metrics
    "CrawlPerformanceTracker",
    "OperationStats",
]
