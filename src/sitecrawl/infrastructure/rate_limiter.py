"""
Adaptive per-host rate limiting.

This module provides politeness delays that adapt to server response
times and error streaks. Each host gets its own AdaptiveRateLimiter, so a
slow or failing host never slows down requests to another host.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from sitecrawl.cancellation import CancellationToken
from sitecrawl.constants import (
    ADAPTIVE_BACKOFF_MULTIPLIER,
    ADAPTIVE_ERROR_THRESHOLD,
    ADAPTIVE_MAX_DELAY_SECONDS,
    ADAPTIVE_RECOVERY_MULTIPLIER,
    ADAPTIVE_RECOVERY_SUCCESSES,
    ADAPTIVE_TARGET_RESPONSE_TIME_SECONDS,
    DEFAULT_REQUEST_DELAY_SECONDS,
    LATENCY_WINDOW_SIZE,
)
from sitecrawl.models import HostRateState

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiter."""
    # Base delay between requests to one host (seconds)
    base_delay: float = DEFAULT_REQUEST_DELAY_SECONDS

    # Floor for the delay, applied even if base_delay is lower
    min_delay: float = 0.0

    # Maximum delay (under worst conditions)
    max_delay: float = ADAPTIVE_MAX_DELAY_SECONDS

    # Consecutive errors before backing off
    error_threshold: int = ADAPTIVE_ERROR_THRESHOLD

    # Backoff multiplier when errors occur
    error_backoff_multiplier: float = ADAPTIVE_BACKOFF_MULTIPLIER

    # Recovery multiplier when things are going well
    success_recovery_multiplier: float = ADAPTIVE_RECOVERY_MULTIPLIER

    # Consecutive successes needed for each recovery step
    recovery_successes: int = ADAPTIVE_RECOVERY_SUCCESSES

    # Target response time (seconds) - we'll slow down if exceeded
    target_response_time: float = ADAPTIVE_TARGET_RESPONSE_TIME_SECONDS

    # Window size for calculating moving averages
    window_size: int = LATENCY_WINDOW_SIZE

    # When False the delay stays at base_delay
    adaptive: bool = True

    @property
    def floor(self) -> float:
        return max(self.base_delay, self.min_delay)

    @classmethod
    def from_options(cls, options) -> "RateLimitConfig":
        """Build a config from CrawlerOptions."""
        return cls(
            base_delay=options.request_delay,
            max_delay=max(ADAPTIVE_MAX_DELAY_SECONDS, options.request_delay),
            adaptive=options.adaptive_rate_limit,
        )


@dataclass
class ResourceMetrics:
    """Current resource usage metrics for one host."""
    host: str
    current_delay: float
    avg_response_time: float
    error_rate: float
    requests_in_window: int
    consecutive_errors: int
    last_request_time: Optional[datetime]
    total_requests: int
    total_errors: int
    total_wait_time: float


class AdaptiveRateLimiter:
    """
    Adaptive rate limiter for a single host.

    Features:
    - Minimum spacing between request starts
    - Backoff after a streak of errors
    - Slowdown while the host responds slowly
    - Gradual recovery toward the base delay
    """

    def __init__(self, config: Optional[RateLimitConfig] = None, host: str = ""):
        """
        Initialize rate limiter.

        Args:
            config: Rate limit configuration
            host: Host this limiter paces
        """
        self.config = config or RateLimitConfig()
        self.state = HostRateState(
            host=host,
            current_delay=self.config.floor,
            recent_latencies=deque(maxlen=self.config.window_size),
        )
        self._lock = asyncio.Lock()

    async def wait(
        self,
        cancel_token: Optional[CancellationToken] = None,
        crawl_delay: Optional[float] = None,
    ) -> float:
        """
        Wait until the next request to this host may start.

        Concurrent callers are served one at a time, so request starts
        are always at least the effective delay apart.

        Args:
            cancel_token: Token that interrupts the sleep
            crawl_delay: robots.txt Crawl-delay for the host, if any

        Returns:
            Actual time waited (seconds)

        Raises:
            CrawlCancelledError: If the token fires while waiting
        """
        async with self._lock:
            delay = self.effective_delay(crawl_delay)
            now = time.monotonic()

            if self.state.last_request_at is not None:
                elapsed = now - self.state.last_request_at
                wait_time = max(0.0, delay - elapsed)
            else:
                wait_time = 0.0

            if wait_time > 0:
                if cancel_token is not None:
                    await cancel_token.sleep(wait_time)
                else:
                    await asyncio.sleep(wait_time)
                self.state.total_wait_time += wait_time
            elif cancel_token is not None:
                cancel_token.raise_if_cancelled()

            self.state.last_request_at = time.monotonic()
            return wait_time

    def effective_delay(self, crawl_delay: Optional[float] = None) -> float:
        """Current delay, raised to the robots Crawl-delay when that is longer."""
        return max(self.state.current_delay, crawl_delay or 0.0)

    def record_request(self, response_time: float, success: bool = True) -> None:
        """
        Record a completed request for metrics.

        Args:
            response_time: Time taken for request (seconds)
            success: Whether request was successful
        """
        state = self.state
        state.recent_latencies.append(response_time)
        state.total_requests += 1

        if success:
            state.consecutive_successes += 1
            state.consecutive_errors = 0
        else:
            state.total_errors += 1
            state.consecutive_errors += 1
            state.consecutive_successes = 0

        if self.config.adaptive:
            self._adjust_delay()

    def _adjust_delay(self) -> None:
        """
        Adjust delay based on the error streak and recent latencies.
        """
        state = self.state
        config = self.config
        new_delay = state.current_delay

        # Error-based adjustment (highest priority)
        if state.consecutive_errors >= config.error_threshold:
            new_delay = max(new_delay, 0.1) * config.error_backoff_multiplier
            logger.debug(
                f"Rate limiter [{state.host}]: {state.consecutive_errors} consecutive errors, "
                f"backing off to {new_delay:.2f}s"
            )

        # Response time adjustment
        elif (
            len(state.recent_latencies) >= 3
            and state.avg_latency > config.target_response_time
        ):
            ratio = state.avg_latency / config.target_response_time
            slowed = max(config.floor, 0.1) * min(ratio, 2.0)  # Cap at 2x
            if slowed > new_delay:
                new_delay = slowed
                logger.debug(
                    f"Rate limiter [{state.host}]: response time high "
                    f"({state.avg_latency:.2f}s), increasing to {new_delay:.2f}s"
                )

        # Recovery adjustment (when things are going well)
        elif (
            state.consecutive_successes >= config.recovery_successes
            and new_delay > config.floor
        ):
            new_delay = max(config.floor, new_delay * config.success_recovery_multiplier)
            state.consecutive_successes = 0
            logger.debug(
                f"Rate limiter [{state.host}]: conditions good, "
                f"recovering to {new_delay:.2f}s"
            )

        # Apply bounds
        state.current_delay = max(config.floor, min(config.max_delay, new_delay))

    def get_metrics(self) -> ResourceMetrics:
        """
        Get current resource metrics.

        Returns:
            ResourceMetrics snapshot
        """
        state = self.state
        last_request_time = None
        if state.last_request_at is not None:
            # Translate the monotonic timestamp to wall-clock time
            last_request_time = datetime.fromtimestamp(
                time.time() - (time.monotonic() - state.last_request_at)
            )

        return ResourceMetrics(
            host=state.host,
            current_delay=state.current_delay,
            avg_response_time=state.avg_latency,
            error_rate=self.error_rate,
            requests_in_window=len(state.recent_latencies),
            consecutive_errors=state.consecutive_errors,
            last_request_time=last_request_time,
            total_requests=state.total_requests,
            total_errors=state.total_errors,
            total_wait_time=state.total_wait_time,
        )

    def reset(self) -> None:
        """Reset rate limiter to initial state."""
        self.state = HostRateState(
            host=self.state.host,
            current_delay=self.config.floor,
            recent_latencies=deque(maxlen=self.config.window_size),
        )

    @property
    def current_delay(self) -> float:
        """Current delay between requests."""
        return self.state.current_delay

    @property
    def error_rate(self) -> float:
        """Share of failed requests over the limiter's lifetime."""
        if not self.state.total_requests:
            return 0.0
        return self.state.total_errors / self.state.total_requests


class PolitenessController:
    """
    Per-host politeness for a crawl job.

    Keeps one AdaptiveRateLimiter per host, created on first use. Waits
    for different hosts never block each other.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        crawl_delay_for: Optional[Callable[[str], Optional[float]]] = None,
    ):
        """
        Initialize politeness controller.

        Args:
            config: Shared configuration for every host
            crawl_delay_for: Returns the robots.txt Crawl-delay for a host
        """
        self.config = config or RateLimitConfig()
        self.crawl_delay_for = crawl_delay_for
        self._limiters: Dict[str, AdaptiveRateLimiter] = {}

    def limiter_for(self, host: str) -> AdaptiveRateLimiter:
        limiter = self._limiters.get(host)
        if limiter is None:
            limiter = AdaptiveRateLimiter(self.config, host=host)
            self._limiters[host] = limiter
        return limiter

    def _crawl_delay(self, host: str) -> Optional[float]:
        if self.crawl_delay_for is None:
            return None
        return self.crawl_delay_for(host)

    def effective_delay(self, host: str) -> float:
        return self.limiter_for(host).effective_delay(self._crawl_delay(host))

    async def wait(self, host: str, cancel_token: Optional[CancellationToken] = None) -> float:
        """
        Wait for the host's politeness delay.

        Args:
            host: Host about to be requested
            cancel_token: Token that interrupts the wait

        Returns:
            Time waited (seconds)
        """
        return await self.limiter_for(host).wait(
            cancel_token=cancel_token,
            crawl_delay=self._crawl_delay(host),
        )

    def record_outcome(self, host: str, latency: float, success: bool) -> None:
        """Feed a fetch outcome back into the host's adaptive delay."""
        limiter = self.limiter_for(host)
        before = limiter.current_delay
        limiter.record_request(latency, success)

        if limiter.current_delay > before and limiter.current_delay >= self.config.max_delay:
            logger.warning(f"Rate limiter [{host}]: delay at maximum ({self.config.max_delay:.2f}s)")

    def state_for(self, host: str) -> HostRateState:
        return self.limiter_for(host).state

    def get_metrics(self, host: str) -> ResourceMetrics:
        return self.limiter_for(host).get_metrics()

    @property
    def hosts(self) -> list[str]:
        return list(self._limiters)

    def reset(self) -> None:
        """Forget every host."""
        self._limiters.clear()
