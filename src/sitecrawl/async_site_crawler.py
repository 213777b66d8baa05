"""Asynchronous site crawler with breadth-first search over a bounded frontier."""

import asyncio
import logging
import time
from collections import Counter
from typing import Callable, Dict, List, Optional, Union

from sitecrawl.cancellation import CancellationToken, CrawlCancelledError
from sitecrawl.config import CrawlerOptions, InvalidCrawlerOptionsError, settings
from sitecrawl.constants import (
    HTTP_STATUS_REQUEST_TIMEOUT,
    HTTP_STATUS_TRANSPORT_ERROR,
    PROGRESS_LOG_EVERY_PAGES,
    PROGRESS_LOG_INTERVAL_SECONDS,
)
from sitecrawl.fetcher import FetchAdapter, HttpxFetchAdapter
from sitecrawl.frontier import Frontier
from sitecrawl.infrastructure import (
    CrawlPerformanceTracker,
    PolitenessController,
    RateLimitConfig,
)
from sitecrawl.link_extractor import BeautifulSoupLinkExtractor, LinkExtractor
from sitecrawl.models import (
    CrawlReport,
    CrawlResult,
    ExtractedPage,
    FetchResponse,
    FrontierEntry,
    JobState,
    ProgressEvent,
)
from sitecrawl.robots import RobotsPolicyStore
from sitecrawl.sitemap import SitemapBuilder, SitemapParser
from sitecrawl.urlnorm import (
    DedupSet,
    UrlNormalizationError,
    has_skipped_extension,
    host_of,
    normalize,
)

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("", "text/html", "application/xhtml+xml")

ProgressCallback = Callable[[ProgressEvent], None]


class CrawlStateError(RuntimeError):
    """Raised when a job is used in a way its state does not permit."""


class CrawlJob:
    """One bounded, polite, breadth-first crawl of a site.

    A job runs once. Use a new job to crawl again.
    """

    def __init__(
        self,
        options: CrawlerOptions,
        fetcher: FetchAdapter,
        extractor: Optional[LinkExtractor] = None,
        on_progress: Optional[ProgressCallback] = None,
        robots_store: Optional[RobotsPolicyStore] = None,
        rate_limiter: Optional[PolitenessController] = None,
    ):
        """Initialize the crawl job.

        Args:
            options: Crawl configuration (validated at start)
            fetcher: Fetch adapter used for every request
            extractor: Link extractor; BeautifulSoup based if None
            on_progress: Called synchronously after every recorded result
            robots_store: Robots policy store; a fresh one per job if None
            rate_limiter: Politeness controller; built from options if None
        """
        self.options = options
        self.fetcher = fetcher
        self.extractor = extractor or BeautifulSoupLinkExtractor()
        self.on_progress = on_progress

        self.robots = robots_store or RobotsPolicyStore(
            fetcher,
            user_agent=options.user_agent,
            respect_robots_txt=options.respect_robots_txt,
            timeout=options.robots_timeout,
        )
        self.rate_limiter = rate_limiter or PolitenessController(
            RateLimitConfig.from_options(options),
            crawl_delay_for=self.robots.crawl_delay_for,
        )
        self.tracker = CrawlPerformanceTracker()
        self.cancel_token = CancellationToken()

        self._frontier = Frontier(max_size=options.max_frontier_size)
        self._dedup = DedupSet()
        self._results: List[CrawlResult] = []
        self._state = JobState.CREATED
        self._task: Optional[asyncio.Task] = None
        self._start_host = ""

        # Budget slots taken by entries about to be fetched
        self._reserved = 0
        self._depth_stats: Counter = Counter()
        self._skipped: Counter = Counter()
        self._sitemap_urls = 0
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._last_progress_log = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, cancel_token: Optional[CancellationToken] = None) -> "asyncio.Task[List[CrawlResult]]":
        """Validate options and schedule the crawl on the running loop.

        Args:
            cancel_token: Token that cancels the job; the job's own if None

        Returns:
            Task resolving to the results list

        Raises:
            InvalidCrawlerOptionsError: If the options are invalid
            CrawlStateError: If the job was already started
        """
        if self._state is not JobState.CREATED:
            raise CrawlStateError(f"Cannot start a job in state {self._state.value}")

        try:
            self.options.validate()
        except InvalidCrawlerOptionsError as e:
            self._state = JobState.FAILED_TO_START
            logger.error(f"Crawl of {self.options.start_url!r} failed to start: {e}")
            raise

        if cancel_token is not None:
            self.cancel_token = cancel_token

        self._state = JobState.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def run(self, cancel_token: Optional[CancellationToken] = None) -> List[CrawlResult]:
        """Start the job if needed and wait for it to finish."""
        task = self._task if self._task is not None else self.start(cancel_token)
        return await task

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Results collected so far are kept."""
        if self._state.is_terminal:
            logger.debug(f"Ignoring cancel of a job already {self._state.value}")
            return
        self.cancel_token.cancel(reason)

    async def _run(self) -> List[CrawlResult]:
        self._started_at = time.monotonic()
        self._last_progress_log = self._started_at
        options = self.options

        start_url = normalize(options.start_url)
        self._start_host = host_of(start_url)

        logger.info(f"Starting crawl from: {start_url}")
        logger.info(
            f"Max pages: {options.max_pages}, max depth: {options.max_depth}, "
            f"workers: {options.max_concurrency}"
        )
        logger.info(
            f"Request delay: {options.request_delay}s per host "
            f"(adaptive: {options.adaptive_rate_limit}), "
            f"robots.txt: {'respected' if options.respect_robots_txt else 'ignored'}"
        )
        self.tracker.warn_if_large(options.max_pages)

        self._dedup.try_reserve(start_url)
        self._frontier.put(FrontierEntry(url=start_url, depth=0))

        try:
            if options.discover_sitemap or options.seed_from_sitemap:
                await self._discover_sitemap(start_url)

            workers = [
                asyncio.create_task(self._worker(worker_id))
                for worker_id in range(options.max_concurrency)
            ]
            outcomes = await asyncio.gather(*workers, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, Exception):
                    logger.error("Crawl worker failed", exc_info=outcome)
        except CrawlCancelledError:
            pass
        except asyncio.CancelledError:
            self.cancel_token.cancel("task cancelled")
            self._finish()
            raise

        self._finish()
        return list(self._results)

    def _finish(self) -> None:
        self._frontier.close()
        self._finished_at = time.monotonic()
        elapsed = self._finished_at - (self._started_at or self._finished_at)

        if self.cancel_token.cancelled:
            self._state = JobState.CANCELLED
            logger.info(
                f"Crawl cancelled ({self.cancel_token.reason}) after "
                f"{len(self._results)} pages in {elapsed:.2f}s"
            )
        else:
            self._state = JobState.COMPLETED
            logger.info(
                f"Crawl complete! Processed {len(self._results)} pages in {elapsed:.2f}s "
                f"({len(self.failed_results)} failed)"
            )

        if self._skipped:
            logger.info(f"Skipped links: {dict(self._skipped)}")
        self.tracker.log_metrics()

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, worker_id: int) -> None:
        token = self.cancel_token
        try:
            while not token.cancelled and not self._budget_reached():
                entry = await token.run(self._frontier.get())
                if entry is None:
                    break
                try:
                    await self._process_entry(entry)
                finally:
                    self._frontier.task_done()
        except CrawlCancelledError:
            logger.debug(f"Worker {worker_id} stopped by cancellation")
            self._frontier.close()

    def _budget_reached(self) -> bool:
        return self._reserved >= self.options.max_pages

    async def _process_entry(self, entry: FrontierEntry) -> None:
        token = self.cancel_token

        if self._budget_reached():
            self._frontier.close()
            return

        async with self.tracker.measure("robots_check"):
            allowed = await token.run(self.robots.is_allowed(entry.url))
        if not allowed:
            self._skipped["robots"] += 1
            logger.debug(f"Skipping {entry.url} (disallowed by robots.txt)")
            return

        # Another worker may have taken the last slot during the robots check
        if self._budget_reached():
            self._frontier.close()
            return
        self._reserved += 1
        if self._budget_reached():
            logger.info(f"Reached page limit ({self.options.max_pages}), winding down")
            self._frontier.close()

        host = host_of(entry.url)
        async with self.tracker.measure("politeness_wait"):
            await self.rate_limiter.wait(host, token)

        started = time.monotonic()
        async with self.tracker.measure("fetch"):
            response = await token.run(self._fetch(entry.url))
        fetch_duration = time.monotonic() - started

        self.rate_limiter.record_outcome(
            host, fetch_duration, success=not self._should_back_off(response)
        )

        page = ExtractedPage()
        if response.is_success and response.content_type in HTML_CONTENT_TYPES:
            async with self.tracker.measure("extract"):
                page = self._extract(response)
        elif not response.is_success:
            logger.warning(
                f"Failed to fetch {entry.url}: "
                f"{response.error or f'HTTP {response.status_code}'}"
            )

        error = response.error
        if error is None and not response.is_success:
            error = f"HTTP {response.status_code}"

        result = CrawlResult(
            url=entry.url,
            final_url=response.final_url or entry.url,
            status_code=response.status_code,
            is_success=response.is_success,
            depth=entry.depth,
            page_title=page.title,
            links_found=len(page.links),
            discovered_links=tuple(page.links),
            fetch_duration=fetch_duration,
            error=error,
            warnings=tuple(page.warnings),
            parent_url=entry.parent_url,
        )
        self._record_result(result)

        for link in page.links:
            self._offer_link(link, entry)

    async def _fetch(self, url: str) -> FetchResponse:
        """Fetch through the adapter, bounded by the job's timeout."""
        timeout = self.options.timeout
        try:
            return await asyncio.wait_for(
                self.fetcher.fetch(url, user_agent=self.options.user_agent, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return FetchResponse(
                status_code=HTTP_STATUS_REQUEST_TIMEOUT,
                final_url=url,
                error=f"Request timeout after {timeout}s",
            )
        except Exception as e:
            logger.error(f"Fetch adapter raised for {url}: {e}", exc_info=True)
            return FetchResponse(
                status_code=HTTP_STATUS_TRANSPORT_ERROR,
                final_url=url,
                error=f"{type(e).__name__}: {e}",
            )

    @staticmethod
    def _should_back_off(response: FetchResponse) -> bool:
        """Whether a response should count as an error for rate limiting.

        Timeouts, transport errors, 429 and 5xx slow the host down.
        Other 4xx responses are the client's problem and do not.
        """
        if response.error:
            return True
        status = response.status_code or 0
        return status == 429 or 500 <= status < 600

    def _extract(self, response: FetchResponse) -> ExtractedPage:
        try:
            return self.extractor.extract(response.body, response.final_url)
        except Exception as e:
            logger.error(f"Link extraction failed for {response.final_url}: {e}", exc_info=True)
            return ExtractedPage()

    def _offer_link(self, link: str, parent: FrontierEntry) -> bool:
        """Filter a discovered link and enqueue it one level deeper.

        Returns:
            True if the link was enqueued
        """
        options = self.options

        if not options.matches_patterns(link):
            self._skipped["pattern"] += 1
            return False
        if not options.follow_external_links and host_of(link) != self._start_host:
            self._skipped["external"] += 1
            return False
        if options.skip_non_html_links and has_skipped_extension(link):
            self._skipped["extension"] += 1
            return False
        if parent.depth + 1 > options.max_depth:
            self._skipped["depth"] += 1
            return False
        if self._frontier.closed:
            return False
        if self._frontier.full():
            self._skipped["frontier_full"] += 1
            return False
        if not self._dedup.try_reserve(link):
            self._skipped["duplicate"] += 1
            return False

        return self._frontier.put(
            FrontierEntry(url=link, depth=parent.depth + 1, parent_url=parent.url)
        )

    def _record_result(self, result: CrawlResult) -> None:
        self._results.append(result)
        self._depth_stats[result.depth] += 1

        if self.on_progress is not None:
            event = ProgressEvent(
                pages_fetched=len(self._results),
                frontier_size=self._frontier.size,
                last_url=result.url,
                depth=result.depth,
                is_success=result.is_success,
            )
            try:
                self.on_progress(event)
            except Exception as e:
                logger.warning(f"Progress callback failed for {result.url}: {e}")

        self._maybe_log_progress()

    def _maybe_log_progress(self) -> None:
        now = time.monotonic()
        pages = len(self._results)
        if pages % PROGRESS_LOG_EVERY_PAGES != 0 and now - self._last_progress_log < PROGRESS_LOG_INTERVAL_SECONDS:
            return

        self._last_progress_log = now
        elapsed = now - (self._started_at or now)
        rate = pages / elapsed if elapsed > 0 else 0.0
        depths = ", ".join(f"depth {d}: {n}" for d, n in sorted(self._depth_stats.items()))
        logger.info(
            f"Progress: {pages}/{self.options.max_pages} pages, "
            f"{self._frontier.size} queued, {rate:.1f} pages/s ({depths})"
        )

    # ------------------------------------------------------------------
    # Sitemap discovery
    # ------------------------------------------------------------------

    async def _discover_sitemap(self, start_url: str) -> None:
        """Read the site's sitemap(s) and optionally seed the frontier."""
        options = self.options
        sitemap_urls: List[str] = []

        if options.respect_robots_txt:
            await self.cancel_token.run(self.robots.rules_for(start_url))
            sitemap_urls = self.robots.sitemaps_for(self._start_host)
        if not sitemap_urls:
            scheme = start_url.split("://", 1)[0]
            sitemap_urls = [f"{scheme}://{self._start_host}/sitemap.xml"]

        parser = SitemapParser(self.fetcher, user_agent=options.user_agent, timeout=options.timeout)
        found: List[str] = []
        for sitemap_url in sitemap_urls:
            urls = await self.cancel_token.run(parser.parse(sitemap_url))
            found.extend(urls)

        self._sitemap_urls = len(found)
        logger.info(f"Sitemap discovery found {len(found)} URLs for {self._start_host}")

        if not options.seed_from_sitemap:
            return

        seeded = 0
        for raw_url in found:
            try:
                url = normalize(raw_url)
            except UrlNormalizationError:
                continue
            if not options.matches_patterns(url):
                continue
            if not options.follow_external_links and host_of(url) != self._start_host:
                continue
            if options.skip_non_html_links and has_skipped_extension(url):
                continue
            if self._frontier.full():
                break
            if self._dedup.try_reserve(url) and self._frontier.put(FrontierEntry(url=url, depth=0)):
                seeded += 1

        logger.info(f"Seeded {seeded} URLs from sitemap")

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def results(self) -> List[CrawlResult]:
        return list(self._results)

    @property
    def failed_results(self) -> List[CrawlResult]:
        return [r for r in self._results if not r.is_success]

    @property
    def pages_fetched(self) -> int:
        return len(self._results)

    @property
    def frontier_size(self) -> int:
        return self._frontier.size

    @property
    def depth_stats(self) -> Dict[int, int]:
        return dict(sorted(self._depth_stats.items()))

    @property
    def stats(self) -> dict:
        """Summary of the crawl so far."""
        end = self._finished_at or time.monotonic()
        elapsed = end - self._started_at if self._started_at else 0.0
        return {
            "state": self._state.value,
            "pages_fetched": len(self._results),
            "successful": len(self._results) - len(self.failed_results),
            "failed": len(self.failed_results),
            "frontier_size": self._frontier.size,
            "urls_seen": len(self._dedup),
            "depth_stats": self.depth_stats,
            "skipped": dict(self._skipped),
            "frontier_dropped": self._frontier.dropped,
            "sitemap_urls": self._sitemap_urls,
            "robots_fetches": self.robots.fetch_count,
            "elapsed_seconds": round(elapsed, 3),
            "operations": {
                name: s.to_dict() for name, s in self.tracker.summary().items()
            },
        }

    def build_sitemap(self, builder: Optional[SitemapBuilder] = None) -> str:
        """Sitemap XML of the successful pages collected so far."""
        builder = builder or SitemapBuilder()
        return builder.build(
            self._results,
            options=self.options,
            robots_rules=self.robots.cached_rules,
        )


class AsyncSiteCrawler:
    """Convenience facade that runs one CrawlJob and packages its output."""

    def __init__(
        self,
        fetcher: Optional[FetchAdapter] = None,
        extractor: Optional[LinkExtractor] = None,
        user_agent: Optional[str] = None,
    ):
        """Initialize the crawler.

        Args:
            fetcher: Fetch adapter; an HttpxFetchAdapter is created per crawl if None
            extractor: Link extractor; BeautifulSoup based if None
            user_agent: User agent used when crawling from a bare URL
        """
        self.fetcher = fetcher
        self.extractor = extractor
        self.user_agent = user_agent or settings.USER_AGENT

    async def crawl(
        self,
        options: Union[CrawlerOptions, str],
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CrawlReport:
        """Crawl a site.

        Args:
            options: CrawlerOptions, or a start URL to crawl with defaults
            cancel_token: Token that cancels the crawl
            on_progress: Called after every recorded result

        Returns:
            CrawlReport with results, sitemap XML, final state and stats

        Raises:
            InvalidCrawlerOptionsError: If the options are invalid
        """
        if isinstance(options, str):
            options = CrawlerOptions(start_url=options, user_agent=self.user_agent)

        owned_fetcher: Optional[HttpxFetchAdapter] = None
        fetcher = self.fetcher
        if fetcher is None:
            owned_fetcher = HttpxFetchAdapter()
            fetcher = owned_fetcher

        try:
            job = CrawlJob(
                options,
                fetcher,
                extractor=self.extractor,
                on_progress=on_progress,
            )
            results = await job.run(cancel_token)
            return CrawlReport(
                start_url=options.start_url,
                state=job.state,
                results=results,
                sitemap_xml=job.build_sitemap(),
                stats=job.stats,
            )
        finally:
            if owned_fetcher is not None:
                await owned_fetcher.aclose()
