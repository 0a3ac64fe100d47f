"""Pydantic request/response schemas for the scrape and map endpoints.

The wire format is camelCase JSON.  Every model uses an alias generator so
Python code works with snake_case attributes while requests and responses
use camelCase keys; ``populate_by_name`` lets tests and internal callers
construct models with either spelling.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import (
    AliasChoices,
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

ScrapeFormat = Literal["markdown", "html", "rawHtml", "links", "screenshot"]
KeySourceKind = Literal["byok", "app", "platform"]


class CamelModel(BaseModel):
    """Base model with camelCase aliases on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


_HTTP_URL = TypeAdapter(AnyHttpUrl)


def _http_url(value: str) -> str:
    """Validate that *value* is an absolute http(s) URL, returning it unchanged."""
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError as exc:
        raise ValueError("url must be an absolute http(s) URL") from exc
    return value


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ScrapeOptions(CamelModel):
    """Extraction options forwarded to the provider.

    ``waitFor`` is the delay in milliseconds the provider waits before
    capturing the page; ``waitForMs`` is accepted as a synonym.
    """

    formats: Optional[List[ScrapeFormat]] = None
    only_main_content: Optional[bool] = None
    include_tags: Optional[List[str]] = None
    exclude_tags: Optional[List[str]] = None
    wait_for: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("waitFor", "waitForMs", "wait_for"),
        serialization_alias="waitFor",
    )


class RunContextFields(CamelModel):
    """Fields passed through to the runs service and key service."""

    key_source: KeySourceKind = "byok"
    app_id: Optional[str] = None
    brand_id: Optional[str] = None
    campaign_id: Optional[str] = None
    user_id: Optional[str] = None
    parent_run_id: Optional[uuid.UUID] = None
    workflow_name: Optional[str] = None


class ScrapeRequestBody(RunContextFields):
    """Payload for ``POST /scrape``.

    Attributes:
        url: Absolute http(s) URL to extract.
        org_id: Organization the scrape is made for.  Always required: it
            is recorded on the request row even when ``keySource`` is
            ``app`` or ``platform``.
        source_service: Calling service tag.  Falls back to the
            ``X-Source-Service`` header, then ``"unknown"``.
        source_ref_id: Caller-defined reference id.
        skip_cache: Force a fresh extraction even on a valid cache entry.
        options: Provider extraction options.
    """

    url: str
    org_id: str = Field(min_length=1)
    source_service: Optional[str] = None
    source_ref_id: Optional[str] = None
    skip_cache: bool = False
    options: Optional[ScrapeOptions] = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return _http_url(v)


class MapRequestBody(RunContextFields):
    """Payload for ``POST /map``.

    ``limit`` must be a positive integer.  Values above the provider ceiling
    are accepted here and clamped by the map orchestrator.
    """

    url: str
    org_id: Optional[str] = None
    search: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
    ignore_sitemap: Optional[bool] = None
    sitemap_only: Optional[bool] = None
    include_subdomains: Optional[bool] = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return _http_url(v)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ScrapeResultRead(CamelModel):
    """Public representation of a stored extraction result."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: uuid.UUID
    url: str
    company_name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    employee_count: Optional[str] = None
    founded_year: Optional[int] = None
    headquarters: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    twitter_url: Optional[str] = None
    products: Optional[Any] = None
    services: Optional[Any] = None
    raw_markdown: Optional[str] = None
    created_at: datetime


class ScrapeResponse(CamelModel):
    """Response for ``POST /scrape``.  ``requestId``/``runId`` are omitted on cache hits."""

    cached: bool
    request_id: Optional[uuid.UUID] = None
    run_id: Optional[str] = None
    result: ScrapeResultRead


class ScrapeByUrlResponse(CamelModel):
    """Response for ``GET /scrape/by-url``."""

    cached: Literal[True] = True
    expired: bool
    result: ScrapeResultRead


class ScrapeResultEnvelope(CamelModel):
    """Response for ``GET /scrape/{id}``."""

    result: ScrapeResultRead


class MapResponse(CamelModel):
    """Successful response for ``POST /map``."""

    success: Literal[True] = True
    urls: List[str]
    count: int
    run_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
