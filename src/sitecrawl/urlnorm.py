"""URL canonicalization and the per-job dedup set."""

import re
import threading
from typing import Iterator, Optional, Set
from urllib.parse import urljoin, urlsplit, urlunsplit

from sitecrawl.constants import SKIP_EXTENSIONS

DEFAULT_PORTS = {"http": 80, "https": 443}

_MULTIPLE_SLASHES = re.compile(r"/{2,}")


class UrlNormalizationError(ValueError):
    """Raised when a URL cannot be turned into an absolute http(s) URL."""


def normalize(raw_url: str, base_url: Optional[str] = None) -> str:
    """Canonicalize a URL.

    Resolves ``raw_url`` against ``base_url``, strips the fragment,
    lower-cases scheme and host, drops default ports and collapses
    repeated slashes in the path. Path and query casing are preserved.

    Args:
        raw_url: URL as found (absolute or relative)
        base_url: URL of the page that contained it

    Returns:
        Absolute normalized URL

    Raises:
        UrlNormalizationError: For empty, malformed or non-http(s) URLs
    """
    if raw_url is None:
        raise UrlNormalizationError("URL is empty")

    candidate = raw_url.strip()
    if not candidate:
        raise UrlNormalizationError("URL is empty")
    if any(ch.isspace() for ch in candidate):
        raise UrlNormalizationError(f"URL contains whitespace: {raw_url!r}")

    try:
        absolute = urljoin(base_url, candidate) if base_url else candidate
        parts = urlsplit(absolute)
        port = parts.port
    except ValueError as e:
        raise UrlNormalizationError(f"Malformed URL {raw_url!r}: {e}") from e

    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise UrlNormalizationError(f"Unsupported scheme in {raw_url!r}")

    host = (parts.hostname or "").lower()
    if not host:
        raise UrlNormalizationError(f"URL has no host: {raw_url!r}")

    if ":" in host:
        host = f"[{host}]"  # IPv6 literal

    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    userinfo = ""
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo += f":{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    path = _MULTIPLE_SLASHES.sub("/", parts.path) or "/"

    return urlunsplit((scheme, netloc, path, parts.query, ""))


def try_normalize(raw_url: str, base_url: Optional[str] = None) -> Optional[str]:
    """Like normalize() but returns None instead of raising."""
    try:
        return normalize(raw_url, base_url)
    except UrlNormalizationError:
        return None


def host_of(url: str) -> str:
    """Return the lower-cased host (with non-default port) of a URL."""
    return urlsplit(url).netloc.lower().rsplit("@", 1)[-1]


def is_same_host(url: str, other_url: str) -> bool:
    """Check whether two URLs point at the same host."""
    return host_of(url) == host_of(other_url)


def has_skipped_extension(url: str) -> bool:
    """Check whether the URL path ends with a known non-HTML extension."""
    path = urlsplit(url).path.lower()
    return any(path.endswith(ext) for ext in SKIP_EXTENSIONS)


class DedupSet:
    """Set of normalized URLs already enqueued in a crawl job.

    ``try_reserve`` is the only way in and is atomic, so two workers
    discovering the same link can never both enqueue it.
    """

    def __init__(self):
        self._urls: Set[str] = set()
        self._lock = threading.Lock()

    def try_reserve(self, url: str) -> bool:
        """Reserve a URL.

        Args:
            url: Normalized URL

        Returns:
            True if the URL was newly reserved, False if already present
        """
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._urls))
