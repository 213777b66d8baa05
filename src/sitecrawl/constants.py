# src/sitecrawl/constants.py
"""Centralized constants for the site crawler.

This module contains magic numbers and default values that are used
across multiple modules. For per-job configuration, see config.py and
CrawlerOptions.
"""

# =============================================================================
# Crawler Defaults
# =============================================================================

# Default user agent sent with every request and matched against robots.txt
DEFAULT_USER_AGENT = "SiteCrawlBot/1.0"

# Default maximum link depth (start page is depth 0)
DEFAULT_MAX_DEPTH = 3

# Default pages to crawl per job
DEFAULT_MAX_PAGES_TO_CRAWL = 100

# Default delay between requests to the same host (seconds)
DEFAULT_REQUEST_DELAY_SECONDS = 0.3

# Default number of concurrent workers
DEFAULT_MAX_CONCURRENCY = 4

# Default per-fetch timeout (seconds)
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Maximum pending entries held by the frontier
DEFAULT_MAX_FRONTIER_SIZE = 100_000

# Estimated memory per crawled page (KB), used for large crawl warnings
ESTIMATED_MEMORY_PER_PAGE_KB = 100

# Estimated memory (MB) above which a large crawl warning is logged
LARGE_CRAWL_MEMORY_WARNING_MB = 500

# Log crawl progress every N pages...
PROGRESS_LOG_EVERY_PAGES = 10

# ...or at least this often (seconds)
PROGRESS_LOG_INTERVAL_SECONDS = 30.0

# Status codes recorded for transport failures
HTTP_STATUS_REQUEST_TIMEOUT = 408
HTTP_STATUS_TRANSPORT_ERROR = 500


# =============================================================================
# Robots.txt Constants
# =============================================================================

# Timeout for fetching robots.txt (seconds)
ROBOTS_FETCH_TIMEOUT_SECONDS = 5.0

# How long a fetched robots.txt stays cached (seconds)
ROBOTS_CACHE_TTL_SECONDS = 24 * 60 * 60

# Ignore robots.txt bodies larger than this (bytes)
ROBOTS_MAX_BODY_BYTES = 500 * 1024


# =============================================================================
# Rate Limiter Constants
# =============================================================================

# Consecutive errors on a host before the delay backs off
ADAPTIVE_ERROR_THRESHOLD = 3

# Multiplier applied to the delay on backoff
ADAPTIVE_BACKOFF_MULTIPLIER = 2.0

# Multiplier applied to the delay while recovering toward the base delay
ADAPTIVE_RECOVERY_MULTIPLIER = 0.5

# Consecutive successes needed before each recovery step
ADAPTIVE_RECOVERY_SUCCESSES = 3

# Upper bound for any adaptive delay (seconds)
ADAPTIVE_MAX_DELAY_SECONDS = 5.0

# Average latency (seconds) above which a host is considered slow
ADAPTIVE_TARGET_RESPONSE_TIME_SECONDS = 2.0

# Size of the per-host latency ring buffer
LATENCY_WINDOW_SIZE = 20


# =============================================================================
# Link Filtering Constants
# =============================================================================

# Schemes that never lead to crawlable pages
NON_CRAWLABLE_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "ftp:", "sms:")

# Markup notes kept per page
MAX_VALIDATION_NOTES = 10

# File extensions that are never HTML pages
SKIP_EXTENSIONS = frozenset({
    # Images
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".svg", ".ico", ".webp", ".avif",
    # Documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".csv", ".rtf", ".txt",
    # Media
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".flv", ".wav", ".ogg", ".webm",
    # Archives
    ".zip", ".rar", ".tar", ".gz", ".7z",
    # Other
    ".xml", ".json", ".rss", ".css", ".js", ".woff", ".woff2", ".ttf", ".eot",
})


# =============================================================================
# Sitemap Constants
# =============================================================================

SITEMAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"

DEFAULT_SITEMAP_CHANGEFREQ = "weekly"

DEFAULT_SITEMAP_PRIORITY = "0.5"

# Maximum nesting of sitemap index files to follow
MAX_SITEMAP_INDEX_DEPTH = 3

# Protocol limit on URLs per sitemap file
MAX_SITEMAP_URLS = 50_000
