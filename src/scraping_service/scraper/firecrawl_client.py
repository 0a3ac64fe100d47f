"""Async client for the Firecrawl REST API.

Two calls are used:

- ``POST /v1/scrape`` - render one page and return markdown/html plus page
  metadata (``title``, ``description``, ``ogTitle``, ``ogDescription``, ...).
- ``POST /v1/map``    - discover URLs on a site.

The API key is supplied per call because it is resolved per request from
the key service.  Provider failures are *data*, not exceptions: both
methods return a response object with ``success=False`` and an ``error``
message for non-2xx responses, network errors, timeouts and bodies that
report ``success: false``.  The orchestrators decide what a failure means.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from scraping_service.scraper.config import DEFAULT_FORMATS, MAP_DEFAULT_LIMIT

logger = logging.getLogger(__name__)

_MALFORMED_SCRAPE = "Firecrawl scrape response has malformed data"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ExtractionResponse:
    """Outcome of a single scrape call.

    Attributes:
        success: ``True`` if the provider returned page content.
        markdown: Page content as markdown, when requested.
        html: Page HTML, when requested.
        metadata: Provider page metadata (title, description, og tags, ...).
        error: Human-readable failure description when ``success`` is False.
    """

    success: bool
    markdown: Optional[str] = None
    html: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class DiscoveryResponse:
    """Outcome of a single map call."""

    success: bool
    urls: list[str] = field(default_factory=list)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class FirecrawlClient:
    """Firecrawl API wrapper around a shared :class:`httpx.AsyncClient`.

    Args:
        client: Shared HTTP client (owned by the app lifespan).
        base_url: API base URL, e.g. ``https://api.firecrawl.dev``.
        timeout: Per-call timeout in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://api.firecrawl.dev",
        timeout: float = 120.0,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def _post(
        self, path: str, api_key: str, payload: dict[str, Any]
    ) -> tuple[Optional[dict[str, Any]], Optional[str]]:
        """POST *payload* and return ``(body, None)`` or ``(None, error)``."""
        try:
            response = await self._client.post(
                f"{self._base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            logger.warning("firecrawl: timeout on %s for %s", path, payload.get("url"))
            return None, "Firecrawl request timed out"
        except httpx.RequestError as exc:
            logger.warning("firecrawl: request error on %s: %s", path, exc)
            return None, f"Firecrawl request failed: {exc}"

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = _error_message(body) or response.text[:200] or "no response body"
            logger.warning("firecrawl: HTTP %d on %s: %s", response.status_code, path, message)
            return None, f"Firecrawl HTTP {response.status_code}: {message}"
        if not isinstance(body, dict):
            return None, "Firecrawl returned an invalid response body"
        return body, None

    async def extract(
        self,
        url: str,
        api_key: str,
        options: Optional[dict[str, Any]] = None,
    ) -> ExtractionResponse:
        """Scrape *url* and return its content and metadata.

        Args:
            url: Page to render.
            api_key: Firecrawl API key for this request.
            options: camelCase scrape options (``formats``,
                ``onlyMainContent``, ``includeTags``, ``excludeTags``,
                ``waitFor``).  ``formats`` defaults to ``["markdown"]`` and
                ``onlyMainContent`` to ``True``.

        Returns:
            An :class:`ExtractionResponse`.  Never raises for provider or
            transport failures.
        """
        options = options or {}
        payload: dict[str, Any] = {
            "url": url,
            "formats": list(options.get("formats") or DEFAULT_FORMATS),
            "onlyMainContent": options.get("onlyMainContent", True),
        }
        for key in ("includeTags", "excludeTags", "waitFor"):
            if options.get(key) is not None:
                payload[key] = options[key]

        body, error = await self._post("/v1/scrape", api_key, payload)
        if body is None:
            return ExtractionResponse(success=False, error=error)
        if not body.get("success"):
            return ExtractionResponse(success=False, error=_error_message(body) or "Scrape failed")

        data = body.get("data") or {}
        if not isinstance(data, dict):
            return ExtractionResponse(success=False, error=_MALFORMED_SCRAPE)
        metadata = data.get("metadata") or {}
        markdown = data.get("markdown")
        html = data.get("html")
        if (
            not isinstance(metadata, dict)
            or not isinstance(markdown, (str, type(None)))
            or not isinstance(html, (str, type(None)))
        ):
            return ExtractionResponse(success=False, error=_MALFORMED_SCRAPE)
        return ExtractionResponse(success=True, markdown=markdown, html=html, metadata=metadata)

    async def discover(
        self,
        url: str,
        api_key: str,
        options: Optional[dict[str, Any]] = None,
    ) -> DiscoveryResponse:
        """List URLs on the site rooted at *url*.

        Args:
            url: Site root to map.
            api_key: Firecrawl API key for this request.
            options: ``search``, ``ignoreSitemap``, ``sitemapOnly``,
                ``includeSubdomains`` (default ``False``) and ``limit``
                (default 100).  The caller is responsible for clamping
                ``limit``.

        Returns:
            A :class:`DiscoveryResponse`.  Never raises for provider or
            transport failures.
        """
        options = options or {}
        payload: dict[str, Any] = {
            "url": url,
            "includeSubdomains": bool(options.get("includeSubdomains", False)),
            "limit": options.get("limit") or MAP_DEFAULT_LIMIT,
        }
        for key in ("search", "ignoreSitemap", "sitemapOnly"):
            if options.get(key) is not None:
                payload[key] = options[key]

        body, error = await self._post("/v1/map", api_key, payload)
        if body is None:
            return DiscoveryResponse(success=False, error=error)
        if not body.get("success"):
            return DiscoveryResponse(success=False, error=_error_message(body) or "Map failed")
        links = body.get("links") or []
        if not isinstance(links, list):
            return DiscoveryResponse(
                success=False, error="Firecrawl map response has no link list"
            )
        return DiscoveryResponse(success=True, urls=[str(link) for link in links])


def _error_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, str) and error:
            return error
    return None
