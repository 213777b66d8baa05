"""Fetch adapter boundary and the default httpx implementation.

The crawler never talks HTTP directly. It calls a FetchAdapter, which
owns transport concerns such as retries, caching or circuit breaking.
Cancellation reaches the adapter by cancelling the task awaiting it.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

from sitecrawl.constants import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    HTTP_STATUS_REQUEST_TIMEOUT,
    HTTP_STATUS_TRANSPORT_ERROR,
)
from sitecrawl.models import FetchResponse

logger = logging.getLogger(__name__)

# Content types whose body is worth reading as text
TEXT_CONTENT_TYPES = (
    "text/",
    "application/xhtml+xml",
    "application/xml",
    "application/rss+xml",
    "application/atom+xml",
)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def is_success_status(status_code: Optional[int]) -> bool:
    """Check for a 2xx status code."""
    return status_code is not None and 200 <= status_code < 300


def is_text_content(content_type: str) -> bool:
    """Check whether a Content-Type header denotes a textual body.

    A missing content type is treated as text.
    """
    if not content_type:
        return True
    media_type = content_type.split(";")[0].strip().lower()
    return media_type.startswith(TEXT_CONTENT_TYPES)


@runtime_checkable
class FetchAdapter(Protocol):
    """What the crawler needs from an HTTP service."""

    async def fetch(self, url: str, *, user_agent: str, timeout: float) -> FetchResponse:
        """Fetch a URL, following redirects.

        Transport failures must be returned as a FetchResponse with
        ``error`` set, not raised.
        """
        ...


class HttpxFetchAdapter:
    """FetchAdapter backed by ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[dict] = None,
        max_body_bytes: int = 5 * 1024 * 1024,
        verify: bool = True,
    ):
        """Initialize the adapter.

        Args:
            client: Shared client to use; one is created (and owned) if None
            headers: Extra headers sent with every request
            max_body_bytes: Bodies larger than this are truncated
            verify: Verify TLS certificates for an owned client
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=DEFAULT_REQUEST_TIMEOUT_SECONDS,
            verify=verify,
        )
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self.max_body_bytes = max_body_bytes

    async def fetch(self, url: str, *, user_agent: str, timeout: float) -> FetchResponse:
        """Fetch a URL and return status, final URL and text body.

        Args:
            url: URL to fetch
            user_agent: User-Agent header value
            timeout: Request timeout in seconds

        Returns:
            FetchResponse; transport errors are reported in ``error``
        """
        headers = {**self.headers, "User-Agent": user_agent}

        try:
            async with self._client.stream(
                "GET",
                url,
                headers=headers,
                timeout=timeout,
                follow_redirects=True,
            ) as response:
                content_type = response.headers.get("content-type", "")
                body = ""
                if is_text_content(content_type):
                    body = await self._read_text(response, url)
                else:
                    logger.debug(f"Skipping non-text content at {url}, Content-Type: {content_type}")
        except httpx.TimeoutException:
            logger.warning(f"Timeout fetching {url} after {timeout}s")
            return FetchResponse(
                status_code=HTTP_STATUS_REQUEST_TIMEOUT,
                final_url=url,
                error=f"Request timeout after {timeout}s",
            )
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error fetching {url}: {e}")
            return FetchResponse(
                status_code=HTTP_STATUS_TRANSPORT_ERROR,
                final_url=url,
                error=f"HTTP error: {e}" if str(e) else f"HTTP error: {type(e).__name__}",
            )

        if not is_success_status(response.status_code):
            logger.debug(f"HTTP {response.status_code} for {url}")

        if response.history:
            logger.debug(
                f"{url} redirected {len(response.history)} time(s) to {response.url}"
            )

        return FetchResponse(
            status_code=response.status_code,
            final_url=str(response.url),
            body=body,
            headers=dict(response.headers),
        )

    async def _read_text(self, response: httpx.Response, url: str) -> str:
        """Read at most ``max_body_bytes`` of a streamed body and decode it.

        The rest of the body is never downloaded.
        """
        chunks = []
        received = 0
        async for chunk in response.aiter_bytes():
            remaining = self.max_body_bytes - received
            if len(chunk) > remaining:
                chunks.append(chunk[:remaining])
                logger.debug(f"Truncating body from {url} at {self.max_body_bytes} bytes")
                break
            chunks.append(chunk)
            received += len(chunk)

        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    async def aclose(self) -> None:
        """Close the client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxFetchAdapter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
