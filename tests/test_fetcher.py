"""Tests for the httpx fetch adapter."""

import httpx
import pytest

from sitecrawl.fetcher import FetchAdapter, HttpxFetchAdapter, is_success_status, is_text_content

pytest_plugins = ('pytest_asyncio',)


def make_adapter(handler) -> HttpxFetchAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return HttpxFetchAdapter(client=client)


class TestHelpers:
    """Test module helpers."""

    def test_is_success_status(self):
        """Test 2xx detection."""
        assert is_success_status(200)
        assert is_success_status(204)
        assert not is_success_status(301)
        assert not is_success_status(404)
        assert not is_success_status(None)

    def test_is_text_content(self):
        """Test textual content type detection."""
        assert is_text_content("text/html; charset=utf-8")
        assert is_text_content("application/xml")
        assert is_text_content("")
        assert not is_text_content("image/png")
        assert not is_text_content("application/pdf")


class TestHttpxFetchAdapter:
    """Test cases for HttpxFetchAdapter."""

    def test_satisfies_protocol(self):
        """Test that the adapter matches the FetchAdapter protocol."""
        assert isinstance(HttpxFetchAdapter(client=httpx.AsyncClient()), FetchAdapter)

    @pytest.mark.asyncio
    async def test_successful_fetch(self):
        """Test status, body and the user agent header."""
        seen_headers = {}

        def handler(request):
            seen_headers.update(request.headers)
            return httpx.Response(200, text="<html>hi</html>", headers={"content-type": "text/html"})

        adapter = make_adapter(handler)
        response = await adapter.fetch("https://example.com/", user_agent="TestBot/1.0", timeout=5)

        assert response.status_code == 200
        assert response.is_success
        assert response.body == "<html>hi</html>"
        assert response.final_url == "https://example.com/"
        assert response.content_type == "text/html"
        assert seen_headers["user-agent"] == "TestBot/1.0"

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        """Test that the final URL after redirects is reported."""
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://example.com/new"})
            return httpx.Response(200, text="new", headers={"content-type": "text/html"})

        adapter = make_adapter(handler)
        response = await adapter.fetch("https://example.com/old", user_agent="TestBot/1.0", timeout=5)

        assert response.status_code == 200
        assert response.final_url == "https://example.com/new"

    @pytest.mark.asyncio
    async def test_error_status_is_not_success(self):
        """Test that a 404 is returned, not raised."""
        adapter = make_adapter(lambda request: httpx.Response(404, text="missing"))
        response = await adapter.fetch("https://example.com/x", user_agent="TestBot/1.0", timeout=5)

        assert response.status_code == 404
        assert not response.is_success
        assert response.error is None

    @pytest.mark.asyncio
    async def test_binary_body_skipped(self):
        """Test that non-text bodies are not decoded."""
        adapter = make_adapter(
            lambda request: httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})
        )
        response = await adapter.fetch("https://example.com/logo", user_agent="TestBot/1.0", timeout=5)

        assert response.is_success
        assert response.body == ""

    @pytest.mark.asyncio
    async def test_timeout_maps_to_408(self):
        """Test that a transport timeout becomes a failed response."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        adapter = make_adapter(handler)
        response = await adapter.fetch("https://example.com/slow", user_agent="TestBot/1.0", timeout=1)

        assert response.status_code == 408
        assert not response.is_success
        assert "timeout" in response.error.lower()

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_500(self):
        """Test that a connection failure becomes a failed response."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        adapter = make_adapter(handler)
        response = await adapter.fetch("https://example.com/", user_agent="TestBot/1.0", timeout=1)

        assert response.status_code == 500
        assert "connection refused" in response.error
        assert response.final_url == "https://example.com/"

    @pytest.mark.asyncio
    async def test_truncates_large_bodies(self):
        """Test that bodies over the limit are cut."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text="x" * 100, headers={"content-type": "text/plain"})
        ))
        adapter = HttpxFetchAdapter(client=client, max_body_bytes=10)
        response = await adapter.fetch("https://example.com/", user_agent="TestBot/1.0", timeout=1)

        assert response.body == "x" * 10

    @pytest.mark.asyncio
    async def test_body_limit_counts_bytes(self):
        """Test that the body limit is measured in encoded bytes, not characters."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(
                200,
                content=("é" * 100).encode("utf-8"),
                headers={"content-type": "text/html; charset=utf-8"},
            )
        ))
        adapter = HttpxFetchAdapter(client=client, max_body_bytes=10)
        response = await adapter.fetch("https://example.com/", user_agent="TestBot/1.0", timeout=1)

        assert response.body == "é" * 5
        assert response.is_success

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        """Test that the context manager closes a client it created."""
        async with HttpxFetchAdapter() as adapter:
            client = adapter._client

        assert client.is_closed

    @pytest.mark.asyncio
    async def test_shared_client_left_open(self):
        """Test that an injected client is not closed."""
        client = httpx.AsyncClient()
        async with HttpxFetchAdapter(client=client):
            pass

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_fetch_real_site(self):
        """Test fetching a live page."""
        async with HttpxFetchAdapter() as adapter:
            response = await adapter.fetch("https://example.com", user_agent="TestBot/1.0", timeout=10)

        assert response.status_code == 200
        assert "Example Domain" in response.body
