"""Unit tests for AdaptiveRateLimiter and PolitenessController."""

import pytest
import asyncio
import time

pytest_plugins = ('pytest_asyncio',)

from sitecrawl.cancellation import CancellationToken, CrawlCancelledError
from sitecrawl.config import CrawlerOptions
from sitecrawl.infrastructure.rate_limiter import (
    AdaptiveRateLimiter,
    PolitenessController,
    RateLimitConfig,
    ResourceMetrics,
)


class TestRateLimitConfig:
    """Tests for RateLimitConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = RateLimitConfig()

        assert config.base_delay == 0.3
        assert config.min_delay == 0.0
        assert config.max_delay == 5.0
        assert config.error_threshold == 3
        assert config.error_backoff_multiplier == 2.0
        assert config.success_recovery_multiplier == 0.5
        assert config.recovery_successes == 3
        assert config.target_response_time == 2.0
        assert config.window_size == 20
        assert config.adaptive is True

    def test_custom_config(self):
        """Test custom configuration."""
        config = RateLimitConfig(
            base_delay=2.0,
            min_delay=1.0,
            max_delay=20.0,
        )

        assert config.base_delay == 2.0
        assert config.min_delay == 1.0
        assert config.max_delay == 20.0

    def test_floor(self):
        """Test that the floor is the larger of base and min delay."""
        assert RateLimitConfig(base_delay=0.1, min_delay=0.5).floor == 0.5
        assert RateLimitConfig(base_delay=1.0, min_delay=0.5).floor == 1.0

    def test_from_options(self):
        """Test building a config from crawler options."""
        options = CrawlerOptions(
            start_url="https://example.com",
            request_delay=8.0,
            adaptive_rate_limit=False,
        )
        config = RateLimitConfig.from_options(options)

        assert config.base_delay == 8.0
        assert config.max_delay == 8.0
        assert config.adaptive is False


class TestAdaptiveRateLimiter:
    """Tests for AdaptiveRateLimiter."""

    @pytest.fixture
    def limiter(self):
        """Create a rate limiter with fast config for testing."""
        config = RateLimitConfig(
            base_delay=0.1,
            max_delay=1.0,
            window_size=5,
        )
        return AdaptiveRateLimiter(config, host="example.com")

    @pytest.mark.asyncio
    async def test_initial_delay(self, limiter):
        """Test that initial delay matches base config."""
        assert limiter.current_delay == 0.1

    @pytest.mark.asyncio
    async def test_wait_returns_wait_time(self, limiter):
        """Test that wait() returns the actual wait time."""
        # First call should return 0 (no previous request)
        wait_time = await limiter.wait()
        assert wait_time == 0

        # Second call waits out the remaining delay
        wait_time = await limiter.wait()
        assert 0 < wait_time <= 0.1

    @pytest.mark.asyncio
    async def test_concurrent_waits_are_spaced(self, limiter):
        """Test that concurrent callers start at least the delay apart."""
        starts = []

        async def request():
            await limiter.wait()
            starts.append(time.monotonic())

        await asyncio.gather(*[request() for _ in range(4)])

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.095 for gap in gaps)

    @pytest.mark.asyncio
    async def test_crawl_delay_overrides_shorter_delay(self, limiter):
        """Test that a longer robots.txt Crawl-delay wins."""
        assert limiter.effective_delay(crawl_delay=0.5) == 0.5
        assert limiter.effective_delay(crawl_delay=0.01) == 0.1
        assert limiter.effective_delay(crawl_delay=None) == 0.1

    @pytest.mark.asyncio
    async def test_wait_cancelled(self, limiter):
        """Test that a cancelled token interrupts the wait."""
        token = CancellationToken()
        await limiter.wait(token)
        token.cancel()

        with pytest.raises(CrawlCancelledError):
            await limiter.wait(token)

    def test_record_success(self, limiter):
        """Test recording successful requests."""
        limiter.record_request(response_time=0.5, success=True)
        limiter.record_request(response_time=0.6, success=True)

        metrics = limiter.get_metrics()
        assert metrics.requests_in_window == 2
        assert metrics.consecutive_errors == 0

    def test_record_error(self, limiter):
        """Test recording failed requests."""
        limiter.record_request(response_time=0.5, success=True)
        limiter.record_request(response_time=1.0, success=False)

        assert limiter.error_rate == 0.5
        assert limiter.state.consecutive_errors == 1

    def test_no_backoff_below_threshold(self, limiter):
        """Test that fewer errors than the threshold keep the delay."""
        for _ in range(2):
            limiter.record_request(response_time=0.5, success=False)

        assert limiter.current_delay == 0.1

    def test_backoff_on_errors(self, limiter):
        """Test that delay doubles once the error streak reaches the threshold."""
        for _ in range(3):
            limiter.record_request(response_time=0.5, success=False)

        assert limiter.current_delay == pytest.approx(0.2)

        limiter.record_request(response_time=0.5, success=False)
        assert limiter.current_delay == pytest.approx(0.4)

    def test_backoff_on_slow_response(self, limiter):
        """Test that delay increases on slow responses."""
        # Configure for quick response time target
        limiter.config.target_response_time = 0.5

        initial_delay = limiter.current_delay

        # Record slow responses
        for _ in range(5):
            limiter.record_request(response_time=2.0, success=True)

        # Delay should have increased, capped at 2x
        assert limiter.current_delay > initial_delay
        assert limiter.current_delay == pytest.approx(0.2)

    def test_recovery_on_good_conditions(self, limiter):
        """Test that delay decreases when conditions improve."""
        # First, cause significant backoff by recording many errors
        for _ in range(6):
            limiter.record_request(response_time=0.5, success=False)

        high_delay = limiter.current_delay
        # Verify we actually increased the delay
        assert high_delay > limiter.config.base_delay

        # Three fast successes give one recovery step
        for _ in range(3):
            limiter.record_request(response_time=0.01, success=True)
        assert limiter.current_delay == pytest.approx(high_delay * 0.5)

        # Enough successes return to base
        for _ in range(30):
            limiter.record_request(response_time=0.01, success=True)
        assert limiter.current_delay == pytest.approx(limiter.config.base_delay)

    def test_delay_bounded_by_max(self, limiter):
        """Test that delay never exceeds max_delay."""
        # Record many errors
        for _ in range(100):
            limiter.record_request(response_time=10.0, success=False)

        assert limiter.current_delay <= limiter.config.max_delay

    def test_delay_bounded_by_base(self, limiter):
        """Test that delay never goes below the base delay."""
        # Record many fast successes
        for _ in range(100):
            limiter.record_request(response_time=0.01, success=True)

        assert limiter.current_delay >= limiter.config.base_delay

    def test_not_adaptive(self):
        """Test that a non-adaptive limiter keeps its delay."""
        limiter = AdaptiveRateLimiter(RateLimitConfig(base_delay=0.1, adaptive=False))
        for _ in range(10):
            limiter.record_request(response_time=5.0, success=False)

        assert limiter.current_delay == 0.1
        assert limiter.state.total_errors == 10

    def test_reset(self, limiter):
        """Test resetting the limiter."""
        # Change state
        for _ in range(4):
            limiter.record_request(response_time=0.5, success=False)

        # Reset
        limiter.reset()

        assert limiter.current_delay == limiter.config.base_delay
        assert limiter.error_rate == 0.0
        assert limiter.state.host == "example.com"

    def test_get_metrics(self, limiter):
        """Test metrics retrieval."""
        limiter.record_request(response_time=0.5, success=True)
        limiter.record_request(response_time=0.7, success=True)

        metrics = limiter.get_metrics()

        assert isinstance(metrics, ResourceMetrics)
        assert metrics.host == "example.com"
        assert metrics.requests_in_window == 2
        assert metrics.avg_response_time == pytest.approx(0.6)
        assert metrics.error_rate == 0.0
        assert metrics.total_requests == 2
        assert metrics.last_request_time is None


class TestPolitenessController:
    """Tests for PolitenessController."""

    @pytest.fixture
    def controller(self):
        return PolitenessController(RateLimitConfig(base_delay=0.1, max_delay=1.0))

    @pytest.mark.asyncio
    async def test_hosts_do_not_block_each_other(self, controller):
        """Test that waits for different hosts run in parallel."""
        await controller.wait("a.test")
        await controller.wait("b.test")

        started = time.monotonic()
        await asyncio.gather(controller.wait("a.test"), controller.wait("b.test"))
        elapsed = time.monotonic() - started

        assert elapsed < 0.19
        assert sorted(controller.hosts) == ["a.test", "b.test"]

    @pytest.mark.asyncio
    async def test_uses_robots_crawl_delay(self):
        """Test that the crawl-delay callback raises the effective delay."""
        controller = PolitenessController(
            RateLimitConfig(base_delay=0.0),
            crawl_delay_for=lambda host: 0.1 if host == "slow.test" else None,
        )

        assert controller.effective_delay("slow.test") == 0.1
        assert controller.effective_delay("fast.test") == 0.0

        await controller.wait("slow.test")
        started = time.monotonic()
        await controller.wait("slow.test")
        assert time.monotonic() - started >= 0.09

    def test_record_outcome_per_host(self, controller):
        """Test that errors on one host leave another untouched."""
        for _ in range(3):
            controller.record_outcome("bad.test", latency=0.1, success=False)
        controller.record_outcome("good.test", latency=0.1, success=True)

        assert controller.state_for("bad.test").current_delay == pytest.approx(0.2)
        assert controller.state_for("good.test").current_delay == pytest.approx(0.1)
        assert controller.get_metrics("bad.test").total_errors == 3

    def test_reset(self, controller):
        """Test forgetting all hosts."""
        controller.record_outcome("a.test", latency=0.1, success=True)
        controller.reset()

        assert controller.hosts == []
