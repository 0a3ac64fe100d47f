"""Application-wide exception hierarchy for the Scraping Service.

All custom exceptions subclass ``ScrapingServiceError``, enabling
consistent error handling and structured logging across the application.
Every exception carries the HTTP ``status_code`` it maps to, and the
exception handler registered in ``api/main.py`` renders it as a JSON body
of the form ``{"error": message, ...}``.

Hierarchy::

    ScrapingServiceError
    ├── InvalidRequestError                     (400)
    │   └── MissingCredentialContextError       (400)
    ├── AuthenticationError                     (401)
    ├── CredentialError
    │   ├── CredentialNotConfiguredError        (400)
    │   └── CredentialServiceUnavailableError   (502)
    ├── ExtractionFailedError                   (502, request_id, run_id)
    ├── DiscoveryFailedError                    (502, run_id)
    ├── ResultNotFoundError                     (404)
    └── RunsServiceError                        (never surfaced)
"""

from __future__ import annotations

from typing import Any


class ScrapingServiceError(Exception):
    """Base class for all Scraping Service exceptions.

    Attributes:
        status_code: HTTP status code the error is rendered with.
    """

    status_code: int = 500

    def response_body(self) -> dict[str, Any]:
        """Return the JSON body sent to the caller for this error."""
        return {"error": str(self)}


# ---------------------------------------------------------------------------
# Client-correctable errors
# ---------------------------------------------------------------------------


class InvalidRequestError(ScrapingServiceError):
    """Raised when inbound input is malformed.

    Always raised before any side effect (no records, no external calls).
    """

    status_code = 400


class MissingCredentialContextError(InvalidRequestError):
    """Raised when the selected key source lacks its required identifier.

    ``byok`` requires an organization id and ``app`` requires an application
    id.  This is a local precondition failure, distinct from a key service
    error, and is raised before any network call.

    Args:
        key_source: Key source wire name (``"byok"``, ``"app"``).
        missing: Name of the missing request field (``"orgId"``, ``"appId"``).
    """

    def __init__(self, key_source: str, missing: str) -> None:
        super().__init__(f"{missing} is required when keySource is '{key_source}'")
        self.key_source = key_source
        self.missing = missing


class AuthenticationError(ScrapingServiceError):
    """Raised when the inbound ``X-API-Key`` header is missing or wrong."""

    status_code = 401


# ---------------------------------------------------------------------------
# Credential exceptions
# ---------------------------------------------------------------------------


class CredentialError(ScrapingServiceError):
    """Base class for key service lookup failures.

    Args:
        message: Human-readable description of the failure.
        provider: Provider whose key was requested (e.g. ``"firecrawl"``).
        key_source: Key source wire name used for the lookup.
        upstream_status: HTTP status returned by the key service, or ``None``
            for transport errors.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        key_source: str | None = None,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.key_source = key_source
        self.upstream_status = upstream_status


class CredentialNotConfiguredError(CredentialError):
    """Raised when the key service has no key for the requested source (HTTP 404).

    Client-correctable: the caller must configure a key and retry.
    """

    status_code = 400


class CredentialServiceUnavailableError(CredentialError):
    """Raised for every other key service failure (non-404, network, bad body)."""

    status_code = 502


# ---------------------------------------------------------------------------
# Provider exceptions
# ---------------------------------------------------------------------------


class ExtractionFailedError(ScrapingServiceError):
    """Raised when the extraction provider reports failure for a scrape.

    By the time this is raised the request record has been persisted with
    status ``failed``, so the ids are echoed to the caller for correlation
    with the audit trail and the runs service.

    Args:
        message: Provider error message.
        request_id: UUID string of the failed ``scrape_requests`` row.
        run_id: Runs service run id, or ``None`` if no run was opened.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        request_id: str | None = None,
        run_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.run_id = run_id

    def response_body(self) -> dict[str, Any]:
        body = super().response_body()
        if self.request_id is not None:
            body["requestId"] = self.request_id
        if self.run_id is not None:
            body["runId"] = self.run_id
        return body


class DiscoveryFailedError(ScrapingServiceError):
    """Raised when the provider's site map (discovery) call fails.

    Args:
        message: Provider error message.
        run_id: Runs service run id, or ``None`` if no run was opened.
    """

    status_code = 502

    def __init__(self, message: str, run_id: str | None = None) -> None:
        super().__init__(message)
        self.run_id = run_id

    def response_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": str(self)}
        if self.run_id is not None:
            body["runId"] = self.run_id
        return body


# ---------------------------------------------------------------------------
# Lookup exceptions
# ---------------------------------------------------------------------------


class ResultNotFoundError(ScrapingServiceError):
    """Raised when a stored result or cache entry does not exist."""

    status_code = 404


# ---------------------------------------------------------------------------
# Telemetry exceptions
# ---------------------------------------------------------------------------


class RunsServiceError(ScrapingServiceError):
    """Raised when a runs service call (open, close, cost report) fails.

    Telemetry is best-effort: callers catch and log this error, it never
    changes the outcome of a scrape or map request.

    Args:
        message: Description including method, path and upstream status.
        upstream_status: HTTP status returned by the runs service, or
            ``None`` for transport errors.
    """

    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
