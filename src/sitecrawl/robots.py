"""Robots.txt parsing, rule evaluation and the per-host policy store."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Dict, Optional, Pattern
from urllib.parse import urlsplit

from sitecrawl.constants import (
    ROBOTS_CACHE_TTL_SECONDS,
    ROBOTS_FETCH_TIMEOUT_SECONDS,
    ROBOTS_MAX_BODY_BYTES,
)
from sitecrawl.fetcher import FetchAdapter
from sitecrawl.urlnorm import host_of

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1024)
def _compile_rule(path: str) -> Pattern[str]:
    """Compile a robots path pattern (``*`` wildcard, trailing ``$`` anchor)."""
    anchored = path.endswith("$")
    if anchored:
        path = path[:-1]
    regex = ".*".join(re.escape(part) for part in path.split("*"))
    return re.compile(regex + ("$" if anchored else ""), re.IGNORECASE)


@dataclass(frozen=True)
class RobotsRule:
    """One Allow/Disallow line."""

    path: str
    allow: bool

    @property
    def specificity(self) -> int:
        return len(self.path)

    def matches(self, target: str) -> bool:
        return _compile_rule(self.path).match(target) is not None


@dataclass
class RobotsGroup:
    """Rules that apply to one or more user agents."""

    user_agents: list[str] = field(default_factory=list)
    rules: list[RobotsRule] = field(default_factory=list)
    crawl_delay: Optional[float] = None  # seconds

    @property
    def allow_paths(self) -> list[str]:
        return [r.path for r in self.rules if r.allow]

    @property
    def disallow_paths(self) -> list[str]:
        return [r.path for r in self.rules if not r.allow]

    def is_allowed(self, target: str, allow_wins_ties: bool = True) -> bool:
        """Evaluate rules by longest matching pattern.

        Args:
            target: Path plus query string of the URL
            allow_wins_ties: Whether Allow beats Disallow of equal length

        Returns:
            True if fetching the target is permitted
        """
        best: Optional[RobotsRule] = None
        for rule in self.rules:
            if not rule.matches(target):
                continue
            if best is None or rule.specificity > best.specificity:
                best = rule
            elif rule.specificity == best.specificity and rule.allow != best.allow:
                if rule.allow == allow_wins_ties:
                    best = rule

        return best is None or best.allow


@dataclass
class RobotsRuleSet:
    """Parsed robots.txt for one host."""

    host: str
    groups: list[RobotsGroup] = field(default_factory=list)
    sitemaps: list[str] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None
    status_code: Optional[int] = None
    allow_wins_ties: bool = True

    @classmethod
    def allow_all(cls, host: str, ttl: float = ROBOTS_CACHE_TTL_SECONDS, status_code: Optional[int] = None) -> "RobotsRuleSet":
        """Fail-open rule set: everything allowed, no crawl delay."""
        now = datetime.now(timezone.utc)
        return cls(
            host=host,
            fetched_at=now,
            expires_at=now + timedelta(seconds=ttl),
            status_code=status_code,
        )

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and datetime.now(timezone.utc) >= self.expires_at

    def select_group(self, user_agent: str) -> Optional[RobotsGroup]:
        """Pick the group for a user agent.

        An exact match on the full user agent or its product token (the
        text before ``/``) wins over ``*``. Groups naming the same agent
        are merged.
        """
        ua = user_agent.strip().lower()
        token = ua.split("/")[0].strip()

        specific = [g for g in self.groups if any(a in (ua, token) for a in g.user_agents)]
        if specific:
            return _merge_groups(specific)

        wildcard = [g for g in self.groups if "*" in g.user_agents]
        if wildcard:
            return _merge_groups(wildcard)

        return None

    def is_allowed(self, url: str, user_agent: str) -> bool:
        group = self.select_group(user_agent)
        if group is None:
            return True

        parts = urlsplit(url)
        target = parts.path or "/"
        if parts.query:
            target += f"?{parts.query}"

        # robots.txt itself is always fetchable
        if target == "/robots.txt":
            return True

        return group.is_allowed(target, self.allow_wins_ties)

    def crawl_delay(self, user_agent: str) -> Optional[float]:
        group = self.select_group(user_agent)
        return group.crawl_delay if group else None

    def disallow_paths(self, user_agent: str) -> list[str]:
        group = self.select_group(user_agent)
        return group.disallow_paths if group else []

    def allow_paths(self, user_agent: str) -> list[str]:
        group = self.select_group(user_agent)
        return group.allow_paths if group else []


def _merge_groups(groups: list[RobotsGroup]) -> RobotsGroup:
    if len(groups) == 1:
        return groups[0]
    merged = RobotsGroup()
    for group in groups:
        merged.user_agents.extend(group.user_agents)
        merged.rules.extend(group.rules)
        if group.crawl_delay is not None:
            merged.crawl_delay = max(merged.crawl_delay or 0.0, group.crawl_delay)
    return merged


def parse_robots_txt(
    content: str,
    host: str = "",
    ttl: float = ROBOTS_CACHE_TTL_SECONDS,
    status_code: Optional[int] = 200,
    allow_wins_ties: bool = True,
) -> RobotsRuleSet:
    """Parse robots.txt content into a rule set.

    Consecutive ``User-agent`` lines share one group; the first rule line
    after them closes the agent list. Unknown directives are ignored.

    Args:
        content: Raw robots.txt text
        host: Host the file belongs to
        ttl: Cache lifetime in seconds
        status_code: Status of the robots.txt response
        allow_wins_ties: Tie-break between Allow and Disallow of equal length

    Returns:
        RobotsRuleSet
    """
    now = datetime.now(timezone.utc)
    rule_set = RobotsRuleSet(
        host=host,
        fetched_at=now,
        expires_at=now + timedelta(seconds=ttl),
        status_code=status_code,
        allow_wins_ties=allow_wins_ties,
    )

    current: Optional[RobotsGroup] = None
    collecting_agents = False

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue

        directive, value = line.split(":", 1)
        directive = directive.strip().lower()
        value = value.strip()

        if directive == "user-agent":
            if current is None or not collecting_agents:
                current = RobotsGroup()
                rule_set.groups.append(current)
            current.user_agents.append(value.lower())
            collecting_agents = True
            continue

        if directive == "sitemap":
            if value:
                rule_set.sitemaps.append(value)
            continue

        if directive not in ("allow", "disallow", "crawl-delay"):
            continue

        collecting_agents = False
        if current is None:
            # Rules before any User-agent line apply to nobody
            continue

        if directive == "crawl-delay":
            try:
                delay = float(value)
            except ValueError:
                logger.debug(f"Ignoring invalid Crawl-delay {value!r} for {host}")
                continue
            if delay >= 0:
                current.crawl_delay = delay
        elif value:
            current.rules.append(RobotsRule(path=value, allow=directive == "allow"))
        # An empty Disallow means "nothing disallowed"

    return rule_set


class RobotsPolicyStore:
    """Fetches, caches and evaluates robots.txt per host.

    The first reference to a host fetches ``{scheme}://{host}/robots.txt``
    once; concurrent callers for the same host wait for that fetch.
    Failures, timeouts and non-2xx responses fail open.
    """

    def __init__(
        self,
        fetcher: FetchAdapter,
        user_agent: str,
        respect_robots_txt: bool = True,
        timeout: float = ROBOTS_FETCH_TIMEOUT_SECONDS,
        ttl: float = ROBOTS_CACHE_TTL_SECONDS,
        allow_wins_ties: bool = True,
    ):
        """
        Initialize robots store.

        Args:
            fetcher: Fetch adapter used for robots.txt requests
            user_agent: Default user agent for rule selection
            respect_robots_txt: When False, nothing is fetched and all URLs are allowed
            timeout: robots.txt fetch timeout (seconds)
            ttl: Cache lifetime (seconds)
            allow_wins_ties: Tie-break between Allow and Disallow of equal length
        """
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.respect_robots_txt = respect_robots_txt
        self.timeout = timeout
        self.ttl = ttl
        self.allow_wins_ties = allow_wins_ties

        self._cache: Dict[str, RobotsRuleSet] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.fetch_count = 0

    async def is_allowed(self, url: str, user_agent: Optional[str] = None) -> bool:
        """Check whether a URL may be fetched.

        Args:
            url: Absolute URL
            user_agent: Overrides the store's user agent

        Returns:
            True if allowed (always True when robots.txt is not respected)
        """
        if not self.respect_robots_txt:
            return True

        rules = await self.rules_for(url)
        return rules.is_allowed(url, user_agent or self.user_agent)

    def crawl_delay_for(self, host: str) -> Optional[float]:
        """Crawl-delay for an already loaded host, or None."""
        if not self.respect_robots_txt:
            return None
        rules = self._cache.get(host)
        if rules is None:
            return None
        return rules.crawl_delay(self.user_agent)

    def sitemaps_for(self, host: str) -> list[str]:
        rules = self._cache.get(host)
        return list(rules.sitemaps) if rules else []

    async def rules_for(self, url: str) -> RobotsRuleSet:
        """Return the cached rule set for the URL's host, loading it if needed."""
        host = host_of(url)
        cached = self._cache.get(host)
        if cached is not None and not cached.is_expired:
            return cached

        lock = self._locks.setdefault(host, asyncio.Lock())
        async with lock:
            cached = self._cache.get(host)
            if cached is not None and not cached.is_expired:
                return cached

            scheme = urlsplit(url).scheme or "https"
            rules = await self._load(scheme, host)
            self._cache[host] = rules
            return rules

    async def _load(self, scheme: str, host: str) -> RobotsRuleSet:
        robots_url = f"{scheme}://{host}/robots.txt"
        self.fetch_count += 1
        started = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self.fetcher.fetch(robots_url, user_agent=self.user_agent, timeout=self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.info(f"Timed out fetching {robots_url}, allowing all")
            return RobotsRuleSet.allow_all(host, self.ttl)
        except Exception as e:
            logger.info(f"Could not load {robots_url}: {e}, allowing all")
            return RobotsRuleSet.allow_all(host, self.ttl)

        if not response.is_success:
            reason = response.error or f"status {response.status_code}"
            logger.info(f"No usable robots.txt at {robots_url} ({reason}), allowing all")
            return RobotsRuleSet.allow_all(host, self.ttl, status_code=response.status_code)

        body = response.body or ""
        if len(body) > ROBOTS_MAX_BODY_BYTES:
            body = body[:ROBOTS_MAX_BODY_BYTES]

        rules = parse_robots_txt(
            body,
            host=host,
            ttl=self.ttl,
            status_code=response.status_code,
            allow_wins_ties=self.allow_wins_ties,
        )
        elapsed = time.monotonic() - started
        logger.info(
            f"Loaded robots.txt from {robots_url} "
            f"({len(rules.groups)} groups, {elapsed * 1000:.0f}ms)"
        )
        return rules

    @property
    def cached_hosts(self) -> list[str]:
        return list(self._cache)

    @property
    def cached_rules(self) -> Dict[str, RobotsRuleSet]:
        """Loaded rule sets by host (empty when robots.txt is ignored)."""
        if not self.respect_robots_txt:
            return {}
        return dict(self._cache)

    def clear(self) -> None:
        self._cache.clear()
        self._locks.clear()
