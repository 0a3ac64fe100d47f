"""FastAPI dependency injection providers.

Provides the service-to-service API key check and the per-request wiring
of the scrape and map pipelines.  Long-lived collaborators (HTTP clients,
the detached task runner) are created once in the application lifespan and
stored on ``app.state``; the providers below only read them, so tests can
replace any of them through ``app.dependency_overrides``.

Dependency hierarchy::

    require_api_key           - validates X-API-Key
    get_source_service        - optional X-Source-Service header
    get_credential_resolver   ┐
    get_firecrawl_client      │ read from app.state
    get_runs_client           │
    get_task_runner           ┘
    get_cache_store           - ScrapeCacheStore over get_db
    get_scrape_orchestrator   - ScrapeOrchestrator over all of the above
    get_map_orchestrator      - MapOrchestrator
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from scraping_service.config.settings import Settings, get_settings
from scraping_service.core.background import DetachedTaskRunner
from scraping_service.core.cache_store import ScrapeCacheStore
from scraping_service.core.credentials import CredentialResolver
from scraping_service.core.database import get_db
from scraping_service.core.exceptions import AuthenticationError
from scraping_service.core.runs_client import RunsClient
from scraping_service.scraper.firecrawl_client import FirecrawlClient
from scraping_service.scraper.mapper import MapOrchestrator
from scraping_service.scraper.orchestrator import ScrapeOrchestrator

# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def require_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_api_key: Annotated[Optional[str], Header()] = None,
) -> None:
    """Reject requests without the shared service API key.

    Raises:
        AuthenticationError: If the header is absent or does not match
            ``SCRAPING_SERVICE_API_KEY``.
    """
    if not x_api_key:
        raise AuthenticationError("Missing X-API-Key header")
    if not secrets.compare_digest(
        x_api_key.encode(), settings.scraping_service_api_key.encode()
    ):
        raise AuthenticationError("Invalid API key")


async def get_source_service(
    x_source_service: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """Return the optional ``X-Source-Service`` caller tag."""
    return x_source_service or None


# ---------------------------------------------------------------------------
# Shared collaborators (created in the lifespan)
# ---------------------------------------------------------------------------


def get_credential_resolver(request: Request) -> CredentialResolver:
    return request.app.state.credential_resolver


def get_firecrawl_client(request: Request) -> FirecrawlClient:
    return request.app.state.firecrawl_client


def get_runs_client(request: Request) -> RunsClient:
    return request.app.state.runs_client


def get_task_runner(request: Request) -> DetachedTaskRunner:
    return request.app.state.task_runner


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


async def get_cache_store(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ScrapeCacheStore:
    return ScrapeCacheStore(db)


async def get_scrape_orchestrator(
    db: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ScrapeCacheStore, Depends(get_cache_store)],
    resolver: Annotated[CredentialResolver, Depends(get_credential_resolver)],
    extractor: Annotated[FirecrawlClient, Depends(get_firecrawl_client)],
    runs: Annotated[RunsClient, Depends(get_runs_client)],
    tasks: Annotated[DetachedTaskRunner, Depends(get_task_runner)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ScrapeOrchestrator:
    """Build a :class:`ScrapeOrchestrator` bound to the request's session.

    ``get_db`` is cached per request by FastAPI, so *db* and the session
    inside *store* are the same object.
    """
    return ScrapeOrchestrator(
        session=db,
        store=store,
        resolver=resolver,
        extractor=extractor,
        runs=runs,
        tasks=tasks,
        cache_ttl=timedelta(days=settings.cache_ttl_days),
    )


async def get_map_orchestrator(
    resolver: Annotated[CredentialResolver, Depends(get_credential_resolver)],
    extractor: Annotated[FirecrawlClient, Depends(get_firecrawl_client)],
    runs: Annotated[RunsClient, Depends(get_runs_client)],
    tasks: Annotated[DetachedTaskRunner, Depends(get_task_runner)],
) -> MapOrchestrator:
    return MapOrchestrator(resolver=resolver, extractor=extractor, runs=runs, tasks=tasks)
