"""Logging configuration for the site crawler.

Every crawler module logs to ``sitecrawl.<module>``. Per-page chatter
(robots lookups, politeness waits, fetch failures) can be tuned per
component without touching the crawl's progress lines, which come from
``sitecrawl.async_site_crawler``.
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Optional

from sitecrawl.config import settings

CRAWL_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HTTP client loggers that log every request at INFO/DEBUG
HTTP_CLIENT_LOGGERS = ('httpx', 'httpcore', 'hpack')


def parse_component_levels(spec: Optional[str]) -> Dict[str, str]:
    """Parse ``"robots=WARNING,sitemap=DEBUG"`` into a component map.

    Bare names are taken relative to the ``sitecrawl`` package. Malformed
    entries are skipped.
    """
    levels: Dict[str, str] = {}
    if not spec:
        return levels

    for item in spec.split(','):
        name, sep, level = item.partition('=')
        name, level = name.strip(), level.strip()
        if not sep or not name or not level:
            continue
        if not name.startswith('sitecrawl'):
            name = f'sitecrawl.{name}'
        levels[name] = level.upper()
    return levels


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    component_levels: Optional[Dict[str, str]] = None,
    quiet_http: bool = True,
) -> None:
    """Configure logging for a crawl.

    Args:
        level: Root log level; defaults to SITECRAWL_LOG_LEVEL
        log_file: Optional log file path; defaults to SITECRAWL_LOG_FILE
        format_string: Optional custom format string
        component_levels: Levels for individual crawler loggers, e.g.
            ``{"sitecrawl.robots": "WARNING"}``; defaults to
            SITECRAWL_LOG_COMPONENTS
        quiet_http: Keep the HTTP client's per-request logging at WARNING
    """
    level = level or settings.LOG_LEVEL
    log_file = log_file or settings.LOG_FILE
    if component_levels is None:
        component_levels = parse_component_levels(settings.LOG_COMPONENTS)

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format=format_string or CRAWL_LOG_FORMAT,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    for name, component_level in component_levels.items():
        logging.getLogger(name).setLevel(
            getattr(logging, component_level.upper(), numeric_level)
        )

    http_level = logging.WARNING if quiet_http else logging.NOTSET
    for name in HTTP_CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(http_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger inside the ``sitecrawl`` hierarchy.

    Args:
        name: Logger name (usually __name__); bare names are placed
            under ``sitecrawl``

    Returns:
        Logger instance
    """
    if name != 'sitecrawl' and not name.startswith('sitecrawl.'):
        name = f'sitecrawl.{name}'
    return logging.getLogger(name)
