"""Shared fixtures: an in-memory site served through the fetch adapter boundary."""

import asyncio
import time
from typing import Dict, List, Optional, Set, Tuple

import pytest

from sitecrawl.models import FetchResponse
from sitecrawl.urlnorm import host_of


def html_page(*links: str, title: Optional[str] = None) -> str:
    """Build a small HTML document linking to ``links``."""
    anchors = "\n".join(f'<a href="{href}">{href}</a>' for href in links)
    head = f"<title>{title}</title>" if title else ""
    return f"<html><head>{head}</head><body>{anchors}</body></html>"


class FakeSite:
    """FetchAdapter serving canned pages, robots.txt files and failures."""

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        robots: Optional[Dict[str, str]] = None,
        latency: float = 0.0,
        hang: Optional[Set[str]] = None,
        errors: Optional[Dict[str, str]] = None,
        statuses: Optional[Dict[str, int]] = None,
        redirects: Optional[Dict[str, str]] = None,
        content_types: Optional[Dict[str, str]] = None,
    ):
        self.pages = pages or {}
        self.robots = robots or {}
        self.latency = latency
        self.hang = hang or set()
        self.errors = errors or {}
        self.statuses = statuses or {}
        self.redirects = redirects or {}
        self.content_types = content_types or {}
        self.requests: List[Tuple[str, float]] = []
        self.user_agents: List[str] = []

    @property
    def requested_urls(self) -> List[str]:
        return [url for url, _ in self.requests]

    def page_requests(self) -> List[Tuple[str, float]]:
        """Requests excluding robots.txt fetches."""
        return [(u, t) for u, t in self.requests if not u.endswith("/robots.txt")]

    async def fetch(self, url: str, *, user_agent: str, timeout: float) -> FetchResponse:
        self.requests.append((url, time.monotonic()))
        self.user_agents.append(user_agent)

        if url in self.hang:
            await asyncio.sleep(3600)

        if self.latency:
            await asyncio.sleep(self.latency)

        if url in self.errors:
            return FetchResponse(status_code=500, final_url=url, error=self.errors[url])

        if url.endswith("/robots.txt"):
            body = self.robots.get(host_of(url))
            if body is None:
                return FetchResponse(status_code=404, final_url=url)
            return FetchResponse(
                status_code=200,
                final_url=url,
                body=body,
                headers={"content-type": "text/plain"},
            )

        final_url = self.redirects.get(url, url)
        if final_url in self.statuses:
            return FetchResponse(status_code=self.statuses[final_url], final_url=final_url)

        body = self.pages.get(final_url)
        if body is None:
            return FetchResponse(status_code=404, final_url=final_url)

        return FetchResponse(
            status_code=200,
            final_url=final_url,
            body=body,
            headers={"content-type": self.content_types.get(final_url, "text/html; charset=utf-8")},
        )


@pytest.fixture
def six_page_site():
    """Five internal pages two levels deep plus one external link."""
    return FakeSite(pages={
        "https://site.test/": html_page("/a", "/b", title="Home"),
        "https://site.test/a": html_page("/a/x", "/a/y", "https://elsewhere.test/external"),
        "https://site.test/b": html_page("/", "/a"),
        "https://site.test/a/x": html_page("/a/y"),
        "https://site.test/a/y": html_page("/a/x"),
        "https://elsewhere.test/external": html_page(),
    })


@pytest.fixture
def ten_page_site():
    """Home page linking to nine leaf pages."""
    pages = {"https://site.test/": html_page(*[f"/p{i}" for i in range(1, 10)])}
    for i in range(1, 10):
        pages[f"https://site.test/p{i}"] = html_page("/")
    return FakeSite(pages=pages)
