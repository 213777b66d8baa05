"""Tests for the cancellation token."""

import asyncio
import time

import pytest

from sitecrawl.cancellation import CancellationToken, CrawlCancelledError

pytest_plugins = ('pytest_asyncio',)


class TestCancellationToken:
    """Test cases for CancellationToken."""

    def test_initial_state(self):
        """Test that a new token is not cancelled."""
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel_is_idempotent(self):
        """Test that the first reason is kept."""
        token = CancellationToken()
        token.cancel("user request")
        token.cancel("second call")

        assert token.cancelled
        assert token.reason == "user request"
        with pytest.raises(CrawlCancelledError):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_sleep_completes(self):
        """Test that sleep returns normally without cancellation."""
        token = CancellationToken()
        started = time.monotonic()
        await token.sleep(0.05)

        assert time.monotonic() - started >= 0.04

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_cancel(self):
        """Test that cancellation interrupts a long sleep."""
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)

        started = time.monotonic()
        with pytest.raises(CrawlCancelledError):
            await token.sleep(10)
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        """Test that run() passes through the awaitable's result."""
        async def work():
            await asyncio.sleep(0.01)
            return 42

        assert await CancellationToken().run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_cancels_awaitable(self):
        """Test that run() cancels the awaitable when the token fires."""
        token = CancellationToken()
        cancelled = asyncio.Event()

        async def hang():
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        asyncio.get_running_loop().call_later(0.02, token.cancel)
        with pytest.raises(CrawlCancelledError):
            await token.run(hang())

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_run_on_cancelled_token(self):
        """Test that run() refuses to start once cancelled."""
        token = CancellationToken()
        token.cancel()

        async def work():
            return 1

        with pytest.raises(CrawlCancelledError):
            await token.run(work())
