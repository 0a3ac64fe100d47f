"""Provider credential resolution via the key service.

The scraping provider's API key is never configured on this service.  Each
request names a *key source* and the key is decrypted on demand by the key
service:

- ``byok``     - the organization's own key; requires an organization id.
- ``app``      - the calling application's key; requires an app id.
- ``platform`` - the platform default key; requires no id.

Key sources are modelled as a closed set of frozen dataclasses
(:data:`KeySource`).  :func:`key_source_from_request` validates the wire
fields and builds the right variant *before* any network call, and
:meth:`KeyServiceClient.decrypt` dispatches over the variants exhaustively,
so a new source fails type checking until every branch handles it.

Error mapping for the key service:

- HTTP 404            -> :class:`~scraping_service.core.exceptions.CredentialNotConfiguredError`
- Other non-2xx       -> :class:`~scraping_service.core.exceptions.CredentialServiceUnavailableError`
- Network errors      -> :class:`~scraping_service.core.exceptions.CredentialServiceUnavailableError`
- Malformed JSON body -> :class:`~scraping_service.core.exceptions.CredentialServiceUnavailableError`

Usage::

    resolver = CredentialResolver(KeyServiceClient(client, base_url, api_key))
    source = key_source_from_request("byok", org_id="org_123")
    api_key = await resolver.resolve("firecrawl", source, CallerContext("POST", "/scrape"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Union, assert_never
from urllib.parse import quote

import httpx

from scraping_service.core.exceptions import (
    CredentialNotConfiguredError,
    CredentialServiceUnavailableError,
    MissingCredentialContextError,
)

logger = logging.getLogger(__name__)

#: Value of the ``x-caller-service`` header sent to the key service.
CALLER_SERVICE_NAME: str = "scraping-service"

#: Wire names accepted in the ``keySource`` request field.
KEY_SOURCE_KINDS: tuple[str, ...] = ("byok", "app", "platform")

DEFAULT_KEY_SOURCE_KIND: str = "byok"


# ---------------------------------------------------------------------------
# Key source variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ByokKeySource:
    """Organization-supplied ("bring your own key") credential."""

    org_id: str
    kind: ClassVar[str] = "byok"


@dataclass(frozen=True)
class AppKeySource:
    """Application-level credential registered for the calling app."""

    app_id: str
    kind: ClassVar[str] = "app"


@dataclass(frozen=True)
class PlatformKeySource:
    """Platform default credential."""

    kind: ClassVar[str] = "platform"


KeySource = Union[ByokKeySource, AppKeySource, PlatformKeySource]


def key_source_from_request(
    kind: str | None,
    *,
    org_id: str | None = None,
    app_id: str | None = None,
) -> KeySource:
    """Build the :data:`KeySource` variant selected by a request.

    Args:
        kind: ``"byok"``, ``"app"`` or ``"platform"``.  ``None`` means
            ``"byok"``.
        org_id: Organization id from the request, if any.
        app_id: Application id from the request, if any.

    Returns:
        The matching key source variant.

    Raises:
        MissingCredentialContextError: If ``byok`` lacks ``org_id`` or
            ``app`` lacks ``app_id``.
        ValueError: If *kind* is not a known key source.  Inbound schemas
            restrict the field, so this only fires on programming errors.
    """
    kind = kind or DEFAULT_KEY_SOURCE_KIND
    if kind == "byok":
        if not org_id:
            raise MissingCredentialContextError(kind, "orgId")
        return ByokKeySource(org_id=org_id)
    if kind == "app":
        if not app_id:
            raise MissingCredentialContextError(kind, "appId")
        return AppKeySource(app_id=app_id)
    if kind == "platform":
        return PlatformKeySource()
    raise ValueError(f"Unknown key source: {kind!r}")


@dataclass(frozen=True)
class CallerContext:
    """Identifies the inbound operation on whose behalf a key is decrypted.

    Forwarded to the key service for its audit log.
    """

    method: str
    path: str


# ---------------------------------------------------------------------------
# Key service HTTP client
# ---------------------------------------------------------------------------


class KeyServiceClient:
    """Thin async client for the key service's decrypt endpoints.

    Args:
        client: Shared :class:`httpx.AsyncClient` (owned by the app lifespan).
        base_url: Key service base URL, without a trailing slash.
        api_key: Service key sent in the ``x-api-key`` header.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str, api_key: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    def _decrypt_request(
        self, provider: str, source: KeySource
    ) -> tuple[str, dict[str, str]]:
        """Return ``(path, query params)`` for *source*."""
        provider_segment = quote(provider, safe="")
        if isinstance(source, ByokKeySource):
            return f"/internal/keys/{provider_segment}/decrypt", {"orgId": source.org_id}
        if isinstance(source, AppKeySource):
            return f"/internal/app-keys/{provider_segment}/decrypt", {"appId": source.app_id}
        if isinstance(source, PlatformKeySource):
            return f"/internal/platform-keys/{provider_segment}/decrypt", {}
        assert_never(source)

    async def decrypt(
        self,
        provider: str,
        source: KeySource,
        caller: CallerContext,
    ) -> dict[str, Any]:
        """Decrypt the *provider* key for *source*.

        Args:
            provider: Provider name, e.g. ``"firecrawl"``.
            source: Which key to decrypt.
            caller: Inbound method and path, forwarded for auditing.

        Returns:
            The parsed ``{"provider": ..., "key": ...}`` response body.

        Raises:
            CredentialNotConfiguredError: On HTTP 404.
            CredentialServiceUnavailableError: On any other HTTP error,
                network failure or unparseable body.
        """
        path, params = self._decrypt_request(provider, source)
        headers = {
            "x-api-key": self._api_key,
            "x-caller-service": CALLER_SERVICE_NAME,
            "x-caller-method": caller.method,
            "x-caller-path": caller.path,
        }

        try:
            response = await self._client.get(
                f"{self._base_url}{path}", params=params, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            if code == 404:
                raise CredentialNotConfiguredError(
                    _not_configured_message(provider, source),
                    provider=provider,
                    key_source=source.kind,
                    upstream_status=code,
                ) from exc
            logger.warning(
                "key service: GET %s failed: HTTP %d: %s",
                path,
                code,
                exc.response.text[:200],
            )
            raise CredentialServiceUnavailableError(
                f"Failed to retrieve {provider} API key",
                provider=provider,
                key_source=source.kind,
                upstream_status=code,
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("key service: network error for GET %s: %s", path, exc)
            raise CredentialServiceUnavailableError(
                f"Failed to retrieve {provider} API key",
                provider=provider,
                key_source=source.kind,
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise CredentialServiceUnavailableError(
                f"Failed to retrieve {provider} API key: malformed key service response",
                provider=provider,
                key_source=source.kind,
                upstream_status=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise CredentialServiceUnavailableError(
                f"Failed to retrieve {provider} API key: malformed key service response",
                provider=provider,
                key_source=source.kind,
                upstream_status=response.status_code,
            )
        return body


def _not_configured_message(provider: str, source: KeySource) -> str:
    label = provider.capitalize()
    if isinstance(source, ByokKeySource):
        return f"{label} API key not configured for this organization"
    if isinstance(source, AppKeySource):
        return f"{label} API key not configured for this app"
    if isinstance(source, PlatformKeySource):
        return f"{label} platform API key not configured"
    assert_never(source)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class CredentialResolver:
    """Resolves the plaintext provider key for a request.

    Args:
        key_service: Client for the key service.
    """

    def __init__(self, key_service: KeyServiceClient) -> None:
        self._key_service = key_service

    async def resolve(
        self,
        provider: str,
        source: KeySource,
        caller: CallerContext,
    ) -> str:
        """Return the decrypted API key for *provider*.

        Raises:
            CredentialNotConfiguredError: No key exists for *source*.
            CredentialServiceUnavailableError: The key service failed or
                returned a body without a usable ``key``.
        """
        body = await self._key_service.decrypt(provider, source, caller)
        key = body.get("key")
        if not isinstance(key, str) or not key:
            raise CredentialServiceUnavailableError(
                f"Failed to retrieve {provider} API key: response has no key",
                provider=provider,
                key_source=source.kind,
            )
        return key
