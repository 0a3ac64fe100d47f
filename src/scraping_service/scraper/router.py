"""FastAPI router for the scrape and map endpoints.

All routes require the service API key (applied when the router is mounted
in :mod:`scraping_service.api.main`).

Routes:
    POST   /scrape          - cached or fresh extraction for a URL
    GET    /scrape/by-url   - stored result for a URL, flagged if expired
    GET    /scrape/{id}     - stored result by id
    POST   /map             - discover URLs on a site

``/scrape/by-url`` is declared before ``/scrape/{result_id}`` so the literal
path wins.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from scraping_service.api.dependencies import (
    get_cache_store,
    get_map_orchestrator,
    get_scrape_orchestrator,
    get_source_service,
)
from scraping_service.core.cache_store import ScrapeCacheStore
from scraping_service.core.exceptions import InvalidRequestError, ResultNotFoundError
from scraping_service.core.normalizer import normalize_url
from scraping_service.core.schemas.scraping import (
    ErrorResponse,
    MapRequestBody,
    MapResponse,
    ScrapeByUrlResponse,
    ScrapeRequestBody,
    ScrapeResponse,
    ScrapeResultEnvelope,
    ScrapeResultRead,
)
from scraping_service.scraper.mapper import MapCommand, MapOrchestrator
from scraping_service.scraper.orchestrator import ScrapeCommand, ScrapeOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["scrape"])

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
    502: {"model": ErrorResponse, "description": "Upstream dependency failed"},
}


def _render(model: BaseModel, *, drop_if_none: tuple[str, ...] = ()) -> JSONResponse:
    """Serialize *model* by alias, omitting the listed top-level fields when ``None``."""
    exclude = {name for name in drop_if_none if getattr(model, name) is None}
    return JSONResponse(model.model_dump(mode="json", by_alias=True, exclude=exclude))


# ---------------------------------------------------------------------------
# Scrape
# ---------------------------------------------------------------------------


@router.post(
    "/scrape",
    response_model=ScrapeResponse,
    responses=_ERROR_RESPONSES,
    summary="Scrape a URL and extract company information",
)
async def scrape(
    payload: ScrapeRequestBody,
    orchestrator: Annotated[ScrapeOrchestrator, Depends(get_scrape_orchestrator)],
    source_service: Annotated[Optional[str], Depends(get_source_service)],
) -> JSONResponse:
    """Return a cached result or extract the page and store the result.

    Args:
        payload: Validated scrape request.
        orchestrator: Scrape pipeline bound to this request's session.
        source_service: ``X-Source-Service`` header, used when the body has
            no ``sourceService``.

    Returns:
        ``{cached, requestId?, runId?, result}``.  ``requestId`` and
        ``runId`` are absent on cache hits.

    Raises:
        MissingCredentialContextError: The key source lacks its id (400).
        CredentialNotConfiguredError: No provider key configured (400).
        CredentialServiceUnavailableError: Key service failure (502).
        ExtractionFailedError: Provider failure (502).
    """
    command = ScrapeCommand.from_request(payload, source_service)
    outcome = await orchestrator.scrape(command)
    response = ScrapeResponse(
        cached=outcome.cached,
        request_id=outcome.request_id,
        run_id=outcome.run_id,
        result=ScrapeResultRead.model_validate(outcome.result),
    )
    return _render(response, drop_if_none=("request_id", "run_id"))


@router.get(
    "/scrape/by-url",
    response_model=ScrapeByUrlResponse,
    responses={404: {"model": ErrorResponse, "description": "No cached result found"}},
    summary="Get cached result by URL",
)
async def get_scrape_by_url(
    store: Annotated[ScrapeCacheStore, Depends(get_cache_store)],
    url: Annotated[Optional[str], Query()] = None,
) -> JSONResponse:
    """Return the stored result for *url* even if its cache entry has expired.

    Raises:
        InvalidRequestError: ``url`` query parameter missing (400).
        ResultNotFoundError: No valid cache entry for the URL (404).
    """
    if not url:
        raise InvalidRequestError("url query param is required")

    found = await store.find_by_url(normalize_url(url))
    if found is None:
        raise ResultNotFoundError("No cached result found")
    result, expired = found
    return _render(
        ScrapeByUrlResponse(expired=expired, result=ScrapeResultRead.model_validate(result))
    )


@router.get(
    "/scrape/{result_id}",
    response_model=ScrapeResultEnvelope,
    responses={404: {"model": ErrorResponse, "description": "Result not found"}},
    summary="Get a scrape result by ID",
)
async def get_scrape_result(
    result_id: str,
    store: Annotated[ScrapeCacheStore, Depends(get_cache_store)],
) -> JSONResponse:
    """Return a stored result by id.

    A malformed id is reported as not found rather than as a validation
    error.
    """
    try:
        parsed_id = uuid.UUID(result_id)
    except ValueError:
        raise ResultNotFoundError("Result not found") from None

    result = await store.get_result(parsed_id)
    if result is None:
        raise ResultNotFoundError("Result not found")
    return _render(ScrapeResultEnvelope(result=ScrapeResultRead.model_validate(result)))


# ---------------------------------------------------------------------------
# Map
# ---------------------------------------------------------------------------


@router.post(
    "/map",
    response_model=MapResponse,
    responses=_ERROR_RESPONSES,
    summary="Discover all URLs on a website",
)
async def map_site(
    payload: MapRequestBody,
    orchestrator: Annotated[MapOrchestrator, Depends(get_map_orchestrator)],
) -> JSONResponse:
    """Discover URLs on a site.  Limits above 500 are clamped to 500.

    Raises:
        MissingCredentialContextError: The key source lacks its id (400).
        CredentialNotConfiguredError: No provider key configured (400).
        CredentialServiceUnavailableError: Key service failure (502).
        DiscoveryFailedError: Provider failure (502).
    """
    outcome = await orchestrator.map(MapCommand.from_request(payload))
    response = MapResponse(urls=outcome.urls, count=outcome.count, run_id=outcome.run_id)
    return _render(response, drop_if_none=("run_id",))
