from dotenv import load_dotenv
from dataclasses import dataclass, field, fields, asdict, replace as dataclass_replace
from functools import cached_property
from typing import Any, Optional, Pattern
from pathlib import Path
import json
import os
import re

import yaml

from sitecrawl.constants import (
    DEFAULT_USER_AGENT,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PAGES_TO_CRAWL,
    DEFAULT_REQUEST_DELAY_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_MAX_FRONTIER_SIZE,
    ROBOTS_FETCH_TIMEOUT_SECONDS,
)
from sitecrawl.urlnorm import UrlNormalizationError, normalize

load_dotenv()  # Loads variables from .env file

ENV_PREFIX = "SITECRAWL_"


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    USER_AGENT = os.getenv("SITECRAWL_USER_AGENT", DEFAULT_USER_AGENT)
    LOG_LEVEL = os.getenv("SITECRAWL_LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("SITECRAWL_LOG_FILE")
    LOG_COMPONENTS = os.getenv("SITECRAWL_LOG_COMPONENTS")
    REQUEST_DELAY = float(os.getenv("SITECRAWL_REQUEST_DELAY", str(DEFAULT_REQUEST_DELAY_SECONDS)))
    TIMEOUT = float(os.getenv("SITECRAWL_TIMEOUT", str(DEFAULT_REQUEST_TIMEOUT_SECONDS)))
    MAX_CONCURRENCY = int(os.getenv("SITECRAWL_MAX_CONCURRENCY", str(DEFAULT_MAX_CONCURRENCY)))


settings = Settings()


class InvalidCrawlerOptionsError(ValueError):
    """Raised when CrawlerOptions cannot be used to start a crawl."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid crawler options: " + "; ".join(self.problems))


@dataclass(frozen=True)
class CrawlerOptions:
    """Immutable configuration for a single crawl job."""
    start_url: str
    max_depth: int = DEFAULT_MAX_DEPTH
    max_pages: int = DEFAULT_MAX_PAGES_TO_CRAWL
    respect_robots_txt: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    request_delay: float = DEFAULT_REQUEST_DELAY_SECONDS  # seconds, per host
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    follow_external_links: bool = False
    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()
    adaptive_rate_limit: bool = True
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS  # seconds, per fetch

    # Link hygiene and discovery
    skip_non_html_links: bool = True
    discover_sitemap: bool = False
    seed_from_sitemap: bool = False
    max_frontier_size: int = DEFAULT_MAX_FRONTIER_SIZE
    robots_timeout: float = ROBOTS_FETCH_TIMEOUT_SECONDS

    def __post_init__(self):
        # Accept lists (e.g. from JSON/YAML) but store tuples
        object.__setattr__(self, "include_patterns", tuple(self.include_patterns or ()))
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns or ()))

    def validate(self) -> None:
        """Check every option and raise with all problems found.

        Raises:
            InvalidCrawlerOptionsError: If any option is out of range
        """
        problems = []

        if not self.start_url:
            problems.append("start_url is required")
        else:
            try:
                normalize(self.start_url)
            except UrlNormalizationError as e:
                problems.append(f"start_url is not a valid absolute http(s) URL: {e}")

        if self.max_depth < 0:
            problems.append(f"max_depth must be >= 0 (got {self.max_depth})")
        if self.max_pages < 1:
            problems.append(f"max_pages must be >= 1 (got {self.max_pages})")
        if self.max_concurrency < 1:
            problems.append(f"max_concurrency must be >= 1 (got {self.max_concurrency})")
        if self.request_delay < 0:
            problems.append(f"request_delay must be >= 0 (got {self.request_delay})")
        if self.timeout <= 0:
            problems.append(f"timeout must be > 0 (got {self.timeout})")
        if self.robots_timeout <= 0:
            problems.append(f"robots_timeout must be > 0 (got {self.robots_timeout})")
        if self.max_frontier_size < 1:
            problems.append(f"max_frontier_size must be >= 1 (got {self.max_frontier_size})")
        if not self.user_agent or not self.user_agent.strip():
            problems.append("user_agent must not be empty")

        for name in ("include_patterns", "exclude_patterns"):
            for pattern in getattr(self, name):
                try:
                    re.compile(pattern)
                except re.error as e:
                    problems.append(f"{name} entry {pattern!r} is not a valid regex: {e}")

        if problems:
            raise InvalidCrawlerOptionsError(problems)

    @cached_property
    def compiled_include_patterns(self) -> tuple[Pattern[str], ...]:
        return tuple(re.compile(p) for p in self.include_patterns)

    @cached_property
    def compiled_exclude_patterns(self) -> tuple[Pattern[str], ...]:
        return tuple(re.compile(p) for p in self.exclude_patterns)

    def matches_patterns(self, url: str) -> bool:
        """Apply exclude patterns first, then include patterns.

        Args:
            url: Absolute normalized URL

        Returns:
            True if the URL may be queued
        """
        if any(p.search(url) for p in self.compiled_exclude_patterns):
            return False
        if self.compiled_include_patterns:
            return any(p.search(url) for p in self.compiled_include_patterns)
        return True

    def replace(self, **changes: Any) -> "CrawlerOptions":
        """Return a copy with the given fields changed."""
        return dataclass_replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert options to dictionary.

        Returns:
            Dictionary of all option values
        """
        data = asdict(self)
        data["include_patterns"] = list(self.include_patterns)
        data["exclude_patterns"] = list(self.exclude_patterns)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CrawlerOptions":
        """Build options from a mapping, ignoring unknown keys."""
        valid_fields = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in valid_fields})

    @classmethod
    def from_env(cls, start_url: Optional[str] = None) -> "CrawlerOptions":
        """Load options from environment variables.

        Environment variables are prefixed with SITECRAWL_,
        e.g. SITECRAWL_MAX_PAGES=200. Pattern lists are comma separated.

        Args:
            start_url: Start URL; falls back to SITECRAWL_START_URL

        Returns:
            CrawlerOptions with values from environment
        """
        values: dict[str, Any] = {
            "start_url": start_url or os.getenv(f"{ENV_PREFIX}START_URL", ""),
            "user_agent": settings.USER_AGENT,
            "request_delay": settings.REQUEST_DELAY,
            "timeout": settings.TIMEOUT,
            "max_concurrency": settings.MAX_CONCURRENCY,
        }

        for option_field in fields(cls):
            if option_field.name == "start_url":
                continue
            env_value = os.getenv(f"{ENV_PREFIX}{option_field.name.upper()}")
            if env_value is None:
                continue
            values[option_field.name] = _coerce(option_field.name, option_field.type, env_value)

        return cls(**values)

    @classmethod
    def from_file(cls, path: str, start_url: Optional[str] = None) -> "CrawlerOptions":
        """Load options from a JSON or YAML configuration file.

        The options may sit at the top level or under a ``crawler`` key.

        Args:
            path: Path to a .json, .yaml or .yml file
            start_url: Optional start URL overriding the file's value

        Returns:
            CrawlerOptions with values from file
        """
        file_path = Path(path)

        with open(file_path, "r", encoding="utf-8") as f:
            if file_path.suffix.lower() in (".yaml", ".yml"):
                config = yaml.safe_load(f) or {}
            else:
                config = json.load(f)

        options_config = config.get("crawler", config)
        if start_url:
            options_config = {**options_config, "start_url": start_url}

        return cls.from_dict(options_config)


def _coerce(name: str, field_type: Any, raw: str) -> Any:
    """Convert an environment string to the option's type."""
    type_name = field_type if isinstance(field_type, str) else getattr(field_type, "__name__", "")
    if type_name == "bool":
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if type_name == "int":
        return int(raw)
    if type_name == "float":
        return float(raw)
    if name.endswith("_patterns"):
        return tuple(p.strip() for p in raw.split(",") if p.strip())
    return raw
