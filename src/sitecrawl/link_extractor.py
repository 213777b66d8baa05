"""HTML link extraction."""

import logging
from typing import Protocol, runtime_checkable

from bs4 import BeautifulSoup

from sitecrawl.constants import MAX_VALIDATION_NOTES, NON_CRAWLABLE_SCHEMES
from sitecrawl.models import ExtractedPage
from sitecrawl.urlnorm import UrlNormalizationError, normalize

logger = logging.getLogger(__name__)


@runtime_checkable
class LinkExtractor(Protocol):
    """Turns an HTML document into a title and absolute outbound links."""

    def extract(self, html: str, base_url: str) -> ExtractedPage:
        ...


class BeautifulSoupLinkExtractor:
    """LinkExtractor built on BeautifulSoup."""

    def __init__(self, parser: str = "html.parser"):
        self.parser = parser

    def extract(self, html: str, base_url: str) -> ExtractedPage:
        """Extract the page title, ``<a href>`` links and markup notes.

        Links are resolved against ``<base href>`` when present, otherwise
        against ``base_url``. Non-navigational schemes, fragment-only links
        and hrefs that fail normalization are dropped. The result keeps
        document order without duplicates.

        Args:
            html: Page body
            base_url: Final URL of the page

        Returns:
            ExtractedPage; empty if the document cannot be parsed
        """
        page = ExtractedPage()
        if not html:
            return page

        try:
            soup = BeautifulSoup(html, self.parser)
        except Exception as e:
            logger.warning(f"Could not parse HTML from {base_url}: {e}")
            page.warnings.append("Unable to parse HTML content")
            return page

        title = soup.find("title")
        if title:
            page.title = title.get_text(strip=True) or None

        resolve_against = base_url
        base_tag = soup.find("base", href=True)
        if base_tag:
            try:
                resolve_against = normalize(base_tag["href"], base_url)
            except UrlNormalizationError:
                logger.debug(f"Ignoring invalid <base href> on {base_url}")

        seen = set()
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith("#"):
                continue
            if href.lower().startswith(NON_CRAWLABLE_SCHEMES):
                continue

            try:
                url = normalize(href, resolve_against)
            except UrlNormalizationError:
                continue

            if url not in seen:
                seen.add(url)
                page.links.append(url)

        page.warnings = self._validate(soup)[:MAX_VALIDATION_NOTES]
        return page

    def _validate(self, soup: BeautifulSoup) -> list[str]:
        """Collect best-effort markup notes. They never make a page fail."""
        notes = []

        missing_alt = len(soup.find_all("img", alt=False))
        if missing_alt:
            notes.append(f"Found {missing_alt} image tags without alt attributes")

        if soup.find("html") is not None and soup.find("title") is None:
            notes.append("Missing <title> element")

        return notes
