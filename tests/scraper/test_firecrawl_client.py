"""Unit tests for the Firecrawl client.

Tests request payload defaults, success parsing, provider-reported
failures, HTTP errors and timeouts for both the scrape and map calls.
Provider failures come back as response objects, never as exceptions.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from scraping_service.scraper.firecrawl_client import FirecrawlClient

_BASE = "https://firecrawl.test"


def _client(http: httpx.AsyncClient) -> FirecrawlClient:
    return FirecrawlClient(http, base_url=_BASE, timeout=5)


# ---------------------------------------------------------------------------
# extract (POST /v1/scrape)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestExtract:
    async def test_default_payload_and_auth(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            route = mock.post("/v1/scrape").mock(
                return_value=httpx.Response(200, json={"success": True, "data": {}})
            )
            async with httpx.AsyncClient() as http:
                await _client(http).extract("https://example.com", "fc-key")

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer fc-key"
        assert json.loads(request.content) == {
            "url": "https://example.com",
            "formats": ["markdown"],
            "onlyMainContent": True,
        }

    async def test_options_are_forwarded(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            route = mock.post("/v1/scrape").mock(
                return_value=httpx.Response(200, json={"success": True, "data": {}})
            )
            async with httpx.AsyncClient() as http:
                await _client(http).extract(
                    "https://example.com",
                    "fc-key",
                    {
                        "formats": ["html"],
                        "onlyMainContent": False,
                        "excludeTags": ["nav"],
                        "waitFor": 500,
                    },
                )

        payload = json.loads(route.calls.last.request.content)
        assert payload["formats"] == ["html"]
        assert payload["onlyMainContent"] is False
        assert payload["excludeTags"] == ["nav"]
        assert payload["waitFor"] == 500
        assert "includeTags" not in payload

    async def test_success_parses_content_and_metadata(self) -> None:
        body = {
            "success": True,
            "data": {
                "markdown": "# Example Co",
                "metadata": {"title": "Example Co", "description": "We make examples"},
            },
        }
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/scrape").mock(return_value=httpx.Response(200, json=body))
            async with httpx.AsyncClient() as http:
                response = await _client(http).extract("https://example.com", "fc-key")

        assert response.success is True
        assert response.markdown == "# Example Co"
        assert response.html is None
        assert response.metadata["title"] == "Example Co"
        assert response.error is None

    async def test_success_false_carries_provider_error(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/scrape").mock(
                return_value=httpx.Response(200, json={"success": False, "error": "rate limited"})
            )
            async with httpx.AsyncClient() as http:
                response = await _client(http).extract("https://example.com", "fc-key")

        assert response.success is False
        assert response.error == "rate limited"

    async def test_success_false_without_message(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/scrape").mock(
                return_value=httpx.Response(200, json={"success": False})
            )
            async with httpx.AsyncClient() as http:
                response = await _client(http).extract("https://example.com", "fc-key")

        assert response.error == "Scrape failed"

    async def test_http_error_is_a_failed_response(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/scrape").mock(
                return_value=httpx.Response(429, json={"success": False, "error": "rate limited"})
            )
            async with httpx.AsyncClient() as http:
                response = await _client(http).extract("https://example.com", "fc-key")

        assert response.success is False
        assert response.error == "Firecrawl HTTP 429: rate limited"

    async def test_timeout_is_a_failed_response(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/scrape").mock(side_effect=httpx.ReadTimeout("slow"))
            async with httpx.AsyncClient() as http:
                response = await _client(http).extract("https://example.com", "fc-key")

        assert response.success is False
        assert response.error == "Firecrawl request timed out"

    async def test_non_json_body_is_a_failed_response(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/scrape").mock(return_value=httpx.Response(200, text="<html/>"))
            async with httpx.AsyncClient() as http:
                response = await _client(http).extract("https://example.com", "fc-key")

        assert response.success is False
        assert response.error == "Firecrawl returned an invalid response body"

    @pytest.mark.parametrize(
        "data",
        [
            ["oops"],
            {"markdown": "# hi", "metadata": ["oops"]},
            {"markdown": ["# hi"], "metadata": {}},
        ],
    )
    async def test_malformed_data_is_a_failed_response(self, data) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/scrape").mock(
                return_value=httpx.Response(200, json={"success": True, "data": data})
            )
            async with httpx.AsyncClient() as http:
                response = await _client(http).extract("https://example.com", "fc-key")

        assert response.success is False
        assert response.error == "Firecrawl scrape response has malformed data"


# ---------------------------------------------------------------------------
# discover (POST /v1/map)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestDiscover:
    async def test_default_payload(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            route = mock.post("/v1/map").mock(
                return_value=httpx.Response(200, json={"success": True, "links": []})
            )
            async with httpx.AsyncClient() as http:
                await _client(http).discover("https://example.com", "fc-key")

        assert json.loads(route.calls.last.request.content) == {
            "url": "https://example.com",
            "includeSubdomains": False,
            "limit": 100,
        }

    async def test_links_are_returned(self) -> None:
        links = ["https://example.com/", "https://example.com/about"]
        with respx.mock(base_url=_BASE) as mock:
            route = mock.post("/v1/map").mock(
                return_value=httpx.Response(200, json={"success": True, "links": links})
            )
            async with httpx.AsyncClient() as http:
                response = await _client(http).discover(
                    "https://example.com", "fc-key", {"limit": 2, "search": "about"}
                )

        payload = json.loads(route.calls.last.request.content)
        assert payload["limit"] == 2
        assert payload["search"] == "about"
        assert response.success is True
        assert response.urls == links

    async def test_failure_without_message(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/map").mock(return_value=httpx.Response(200, json={"success": False}))
            async with httpx.AsyncClient() as http:
                response = await _client(http).discover("https://example.com", "fc-key")

        assert response.success is False
        assert response.error == "Map failed"

    async def test_network_error_is_a_failed_response(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/map").mock(side_effect=httpx.ConnectError("refused"))
            async with httpx.AsyncClient() as http:
                response = await _client(http).discover("https://example.com", "fc-key")

        assert response.success is False
        assert response.error.startswith("Firecrawl request failed:")

    async def test_non_list_links_is_a_failed_response(self) -> None:
        with respx.mock(base_url=_BASE) as mock:
            mock.post("/v1/map").mock(
                return_value=httpx.Response(200, json={"success": True, "links": {"a": 1}})
            )
            async with httpx.AsyncClient() as http:
                response = await _client(http).discover("https://example.com", "fc-key")

        assert response.success is False
        assert response.error == "Firecrawl map response has no link list"
