"""Bounded, polite, breadth-first site crawler."""

__version__ = "0.1.0"

from sitecrawl.async_site_crawler import AsyncSiteCrawler, CrawlJob, CrawlStateError
from sitecrawl.cancellation import CancellationToken, CrawlCancelledError
from sitecrawl.config import CrawlerOptions, InvalidCrawlerOptionsError, settings
from sitecrawl.fetcher import FetchAdapter, HttpxFetchAdapter
from sitecrawl.frontier import Frontier
from sitecrawl.link_extractor import BeautifulSoupLinkExtractor, LinkExtractor
from sitecrawl.models import (
    CrawlReport,
    CrawlResult,
    ExtractedPage,
    FetchResponse,
    FrontierEntry,
    HostRateState,
    JobState,
    ProgressEvent,
)
from sitecrawl.robots import (
    RobotsGroup,
    RobotsPolicyStore,
    RobotsRuleSet,
    parse_robots_txt,
)
from sitecrawl.sitemap import SitemapBuilder, SitemapParser
from sitecrawl.urlnorm import DedupSet, UrlNormalizationError, normalize

# Infrastructure
from sitecrawl.infrastructure import (
    AdaptiveRateLimiter,
    CrawlPerformanceTracker,
    PolitenessController,
    RateLimitConfig,
    ResourceMetrics,
)

__all__ = [
    # Crawler
    "AsyncSiteCrawler",
    "CrawlJob",
    "CrawlStateError",
    "CancellationToken",
    "CrawlCancelledError",
    "Frontier",
    # Configuration
    "CrawlerOptions",
    "InvalidCrawlerOptionsError",
    "settings",
    # Adapters
    "FetchAdapter",
    "HttpxFetchAdapter",
    "LinkExtractor",
    "BeautifulSoupLinkExtractor",
    # Models
    "CrawlReport",
    "CrawlResult",
    "ExtractedPage",
    "FetchResponse",
    "FrontierEntry",
    "HostRateState",
    "JobState",
    "ProgressEvent",
    # Robots
    "RobotsGroup",
    "RobotsPolicyStore",
    "RobotsRuleSet",
    "parse_robots_txt",
    # Sitemap
    "SitemapBuilder",
    "SitemapParser",
    # URLs
    "DedupSet",
    "UrlNormalizationError",
    "normalize",
    # Infrastructure
    "AdaptiveRateLimiter",
    "CrawlPerformanceTracker",
    "PolitenessController",
    "RateLimitConfig",
    "ResourceMetrics",
]
