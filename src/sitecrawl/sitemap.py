"""Sitemap generation from crawl results, and sitemap parsing for discovery."""

import asyncio
import logging
import re
from typing import Dict, Iterable, List, Optional, Set
from xml.etree import ElementTree as ET

from sitecrawl.config import CrawlerOptions
from sitecrawl.constants import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SITEMAP_CHANGEFREQ,
    DEFAULT_SITEMAP_PRIORITY,
    DEFAULT_USER_AGENT,
    MAX_SITEMAP_INDEX_DEPTH,
    MAX_SITEMAP_URLS,
    SITEMAP_NAMESPACE,
)
from sitecrawl.fetcher import FetchAdapter
from sitecrawl.models import CrawlResult
from sitecrawl.robots import RobotsRuleSet
from sitecrawl.urlnorm import host_of

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


class SitemapBuilder:
    """Builds a sitemaps.org 0.9 ``<urlset>`` document."""

    def __init__(
        self,
        include_lastmod: bool = True,
        changefreq: Optional[str] = DEFAULT_SITEMAP_CHANGEFREQ,
        priority: Optional[str] = DEFAULT_SITEMAP_PRIORITY,
    ):
        self.include_lastmod = include_lastmod
        self.changefreq = changefreq
        self.priority = priority

    def build(
        self,
        results: Iterable[CrawlResult],
        options: Optional[CrawlerOptions] = None,
        robots_rules: Optional[Dict[str, RobotsRuleSet]] = None,
    ) -> str:
        """
        Render successful results as sitemap XML.

        One ``<url>`` is written per distinct final URL, in the order the
        pages were first crawled.

        Args:
            results: Crawl results
            options: When given, include/exclude patterns are re-applied
            robots_rules: Rule sets by host; URLs they disallow are left out

        Returns:
            XML document text
        """
        user_agent = options.user_agent if options else DEFAULT_USER_AGENT

        urlset = ET.Element("urlset", xmlns=SITEMAP_NAMESPACE)
        seen: Set[str] = set()

        for result in results:
            if not result.is_success:
                continue
            loc = result.final_url or result.url
            if loc in seen:
                continue
            if options is not None and not options.matches_patterns(loc):
                continue
            if robots_rules:
                rules = robots_rules.get(host_of(loc))
                if rules is not None and not rules.is_allowed(loc, user_agent):
                    continue
            seen.add(loc)

            url_elem = ET.SubElement(urlset, "url")
            ET.SubElement(url_elem, "loc").text = loc
            if self.include_lastmod:
                ET.SubElement(url_elem, "lastmod").text = result.timestamp.strftime("%Y-%m-%d")
            if self.changefreq:
                ET.SubElement(url_elem, "changefreq").text = self.changefreq
            if self.priority:
                ET.SubElement(url_elem, "priority").text = self.priority

        if len(seen) > MAX_SITEMAP_URLS:
            logger.warning(
                f"Sitemap has {len(seen)} URLs, more than the {MAX_SITEMAP_URLS} "
                f"allowed in a single file"
            )

        ET.indent(urlset)
        return XML_DECLARATION + ET.tostring(urlset, encoding="unicode")


class SitemapParser:
    """
    Parse XML sitemaps to extract URLs for crawling.

    Supports:
    - Standard sitemap.xml files
    - Sitemap index files (followed up to a fixed depth)
    """

    # XML namespaces used in sitemaps
    NAMESPACES = {
        'sm': SITEMAP_NAMESPACE,
    }

    def __init__(
        self,
        fetcher: FetchAdapter,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        """
        Initialize the sitemap parser.

        Args:
            fetcher: Fetch adapter used to download sitemap files
            user_agent: User agent for sitemap requests
            timeout: Per-request timeout (seconds)
        """
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.timeout = timeout
        self._urls: List[str] = []
        self._seen: Set[str] = set()

    async def parse(self, sitemap_url: str, max_urls: Optional[int] = None) -> List[str]:
        """
        Parse a sitemap and return all URLs.

        Args:
            sitemap_url: URL to the sitemap.xml or sitemap index
            max_urls: Maximum number of URLs to return (None for all)

        Returns:
            List of URLs found in the sitemap, in document order
        """
        self._urls = []
        self._seen = set()
        await self._fetch_and_parse(sitemap_url, max_urls, depth=0)
        return list(self._urls)

    async def _fetch_and_parse(self, sitemap_url: str, max_urls: Optional[int], depth: int) -> None:
        """Recursively fetch and parse sitemaps."""
        if depth > MAX_SITEMAP_INDEX_DEPTH:  # Prevent infinite recursion
            logger.warning(f"Sitemap index nesting too deep at {sitemap_url}")
            return

        if self._limit_reached(max_urls):
            return

        logger.info(f"Fetching sitemap: {sitemap_url}")
        try:
            response = await asyncio.wait_for(
                self.fetcher.fetch(sitemap_url, user_agent=self.user_agent, timeout=self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out fetching sitemap {sitemap_url} after {self.timeout}s")
            return
        except Exception as e:
            logger.error(f"Failed to fetch sitemap {sitemap_url}: {e}")
            return

        if not response.is_success:
            logger.info(
                f"No sitemap at {sitemap_url} "
                f"({response.error or f'status {response.status_code}'})"
            )
            return

        if not response.body:
            logger.warning(f"Empty response from {sitemap_url}")
            return

        child_sitemaps = self._parse_sitemap_content(response.body, max_urls)
        for child_url in child_sitemaps:
            if self._limit_reached(max_urls):
                break
            logger.info(f"Found child sitemap: {child_url}")
            await self._fetch_and_parse(child_url, max_urls, depth + 1)

    def _parse_sitemap_content(self, content: str, max_urls: Optional[int]) -> List[str]:
        """Parse sitemap XML, collect page URLs and return child sitemap URLs."""
        try:
            content = re.sub(r'<!DOCTYPE[^>]*>', '', content)
            root = ET.fromstring(content.strip())
        except ET.ParseError as e:
            logger.error(f"Failed to parse sitemap XML: {e}")
            return []

        # Get the root tag without namespace
        root_tag = root.tag.split('}')[-1]

        if root_tag == 'sitemapindex':
            return self._locs(root, 'sitemap')
        if root_tag == 'urlset':
            for url in self._locs(root, 'url'):
                if self._limit_reached(max_urls):
                    break
                if url not in self._seen:
                    self._seen.add(url)
                    self._urls.append(url)
            return []

        logger.warning(f"Unknown sitemap root element: {root_tag}")
        return []

    def _locs(self, root: ET.Element, entry_tag: str) -> List[str]:
        locs = []
        for entry in root:
            if entry.tag.split('}')[-1] != entry_tag:
                continue
            loc = entry.find('sm:loc', self.NAMESPACES)
            if loc is None:
                loc = entry.find('loc')
            if loc is not None and loc.text and loc.text.strip():
                locs.append(loc.text.strip())
        return locs

    def _limit_reached(self, max_urls: Optional[int]) -> bool:
        return max_urls is not None and len(self._urls) >= max_urls
