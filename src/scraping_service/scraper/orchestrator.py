"""Cache-first scrape pipeline.

:class:`ScrapeOrchestrator` turns a :class:`ScrapeCommand` into a stored
:class:`~scraping_service.core.models.scraping.ScrapeResult`:

1. Normalize the URL and, unless ``skip_cache`` is set, return a fresh
   cached result.  Cache hits create no request row and open no run.
2. Resolve the provider key.  Credential failures abort with nothing
   written.
3. Open a run with the runs service (best-effort).
4. Insert a ``scrape_requests`` row in ``processing`` and commit it.
5. Call the extraction provider.
6. On provider failure mark the request ``failed``, close the run as
   failed in the background and raise
   :class:`~scraping_service.core.exceptions.ExtractionFailedError`.
7. On success upsert the result and cache rows, mark the request
   ``completed`` in the same commit, then report the cost and close the
   run in the background.

Any other error after step 4 rolls the session back and records the request
as ``failed`` before re-raising, so no request row is left ``processing``.

Identical concurrent requests are not serialized.  Both extract and both
upsert; the storage-level upsert keeps a single row and the later write
wins.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from scraping_service.api.metrics import scrape_requests_total, telemetry_failures_total
from scraping_service.core.background import DetachedTaskRunner
from scraping_service.core.cache_store import ScrapeCacheStore, utcnow
from scraping_service.core.credentials import (
    CallerContext,
    CredentialResolver,
    KeySource,
    key_source_from_request,
)
from scraping_service.core.exceptions import ExtractionFailedError, RunsServiceError
from scraping_service.core.models.scraping import ScrapeRequest, ScrapeResult
from scraping_service.core.normalizer import normalize_url
from scraping_service.core.runs_client import CreateRunParams, RunsClient, RunStatus
from scraping_service.core.schemas.scraping import RunContextFields, ScrapeRequestBody
from scraping_service.scraper.config import (
    PROVIDER_NAME,
    SCRAPE_COST_NAME,
    SCRAPE_TASK_NAME,
    UNKNOWN_SOURCE_SERVICE,
)
from scraping_service.scraper.firecrawl_client import ExtractionResponse, FirecrawlClient

logger = structlog.get_logger(__name__)

_SCRAPE_CALLER = CallerContext(method="POST", path="/scrape")


# ---------------------------------------------------------------------------
# Commands and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunContext:
    """Optional ids forwarded to the runs service when a run is opened."""

    app_id: Optional[str] = None
    user_id: Optional[str] = None
    brand_id: Optional[str] = None
    campaign_id: Optional[str] = None
    parent_run_id: Optional[str] = None
    workflow_name: Optional[str] = None

    @classmethod
    def from_body(cls, body: RunContextFields) -> RunContext:
        return cls(
            app_id=body.app_id,
            user_id=body.user_id,
            brand_id=body.brand_id,
            campaign_id=body.campaign_id,
            parent_run_id=str(body.parent_run_id) if body.parent_run_id else None,
            workflow_name=body.workflow_name,
        )

    def run_params(self, org_id: str, task_name: str) -> CreateRunParams:
        return CreateRunParams(
            org_id=org_id,
            task_name=task_name,
            app_id=self.app_id,
            user_id=self.user_id,
            brand_id=self.brand_id,
            campaign_id=self.campaign_id,
            parent_run_id=self.parent_run_id,
            workflow_name=self.workflow_name,
        )


@dataclass(frozen=True)
class ScrapeCommand:
    """A validated scrape request.

    Attributes:
        url: URL exactly as requested.
        org_id: Organization the scrape is made for.
        source_service: Calling service tag.
        key_source: Which provider key to use.
        source_ref_id: Caller-defined reference id.
        skip_cache: Bypass the cache lookup (the upsert target is unchanged).
        options: camelCase provider options, stored verbatim on the request.
        run_context: Ids forwarded to the runs service.
    """

    url: str
    org_id: str
    source_service: str
    key_source: KeySource
    source_ref_id: Optional[str] = None
    skip_cache: bool = False
    options: Optional[dict[str, Any]] = None
    run_context: RunContext = field(default_factory=RunContext)

    @classmethod
    def from_request(
        cls,
        body: ScrapeRequestBody,
        source_service_header: Optional[str] = None,
    ) -> ScrapeCommand:
        """Build a command from the inbound body.

        Raises:
            MissingCredentialContextError: If the key source lacks its id.
        """
        key_source = key_source_from_request(
            body.key_source, org_id=body.org_id, app_id=body.app_id
        )
        options = (
            body.options.model_dump(by_alias=True, exclude_none=True)
            if body.options is not None
            else None
        )
        return cls(
            url=body.url,
            org_id=body.org_id,
            source_service=body.source_service
            or source_service_header
            or UNKNOWN_SOURCE_SERVICE,
            key_source=key_source,
            source_ref_id=body.source_ref_id,
            skip_cache=body.skip_cache,
            options=options,
            run_context=RunContext.from_body(body),
        )


@dataclass
class ScrapeOutcome:
    """What :meth:`ScrapeOrchestrator.scrape` hands back to the route."""

    cached: bool
    result: ScrapeResult
    request_id: Optional[uuid.UUID] = None
    run_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Summary extraction
# ---------------------------------------------------------------------------


def _meta_text(value: Any) -> Optional[str]:
    """Return a metadata value as text.

    Repeated meta tags arrive as lists; the first string wins.
    """
    if isinstance(value, list):
        value = next((item for item in value if isinstance(item, str) and item), None)
    if isinstance(value, str) and value:
        return value
    return None


def extract_company_summary(url: str, response: ExtractionResponse) -> dict[str, Any]:
    """Derive the stored result fields from an extraction response.

    Only page metadata is used: the company name comes from ``ogTitle`` or
    ``title`` and the description from ``ogDescription`` or
    ``description``.  ``industry`` is left empty.
    """
    metadata = response.metadata or {}
    return {
        "url": url,
        "company_name": _meta_text(metadata.get("ogTitle")) or _meta_text(metadata.get("title")),
        "description": (
            _meta_text(metadata.get("ogDescription"))
            or _meta_text(metadata.get("description"))
        ),
        "industry": None,
        "website": url,
        "raw_markdown": response.markdown,
        "raw_metadata": metadata,
    }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ScrapeOrchestrator:
    """Runs the scrape pipeline for one request.

    Args:
        session: Request-scoped database session.  The orchestrator owns
            its commits.
        store: Cache and result repository bound to *session*.
        resolver: Provider key resolver.
        extractor: Firecrawl client.
        runs: Runs service client.
        tasks: Runner for the background run-close and cost calls.
        cache_ttl: Freshness window for new cache entries.
    """

    def __init__(
        self,
        session: AsyncSession,
        store: ScrapeCacheStore,
        resolver: CredentialResolver,
        extractor: FirecrawlClient,
        runs: RunsClient,
        tasks: DetachedTaskRunner,
        cache_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self._session = session
        self._store = store
        self._resolver = resolver
        self._extractor = extractor
        self._runs = runs
        self._tasks = tasks
        self._cache_ttl = cache_ttl

    async def scrape(self, command: ScrapeCommand) -> ScrapeOutcome:
        """Return a cached or freshly extracted result for ``command.url``.

        Raises:
            CredentialNotConfiguredError: No provider key for the key source.
            CredentialServiceUnavailableError: The key service failed.
            ExtractionFailedError: The provider reported a failure.
        """
        normalized = normalize_url(command.url)
        log = logger.bind(
            normalized_url=normalized,
            org_id=command.org_id,
            source_service=command.source_service,
        )

        if not command.skip_cache:
            cached = await self._store.lookup(normalized)
            if cached is not None:
                scrape_requests_total.labels(outcome="cache_hit").inc()
                log.info("scrape_cache_hit", result_id=str(cached.id))
                return ScrapeOutcome(cached=True, result=cached)

        api_key = await self._resolver.resolve(
            PROVIDER_NAME, command.key_source, _SCRAPE_CALLER
        )
        run_id = await self._open_run(command)

        request = ScrapeRequest(
            source_service=command.source_service,
            source_org_id=command.org_id,
            source_ref_id=command.source_ref_id,
            run_id=run_id,
            url=command.url,
            options=command.options,
            status="processing",
        )
        self._session.add(request)
        await self._session.commit()
        request_id = request.id
        log = log.bind(request_id=str(request_id), run_id=run_id)

        try:
            response = await self._extractor.extract(command.url, api_key, command.options)

            if not response.success:
                message = response.error or "Scrape failed"
                request.status = "failed"
                request.error_message = message
                request.completed_at = utcnow()
                await self._session.commit()
                self._close_run(run_id, "failed")
                scrape_requests_total.labels(outcome="failed").inc()
                log.warning("scrape_extraction_failed", error=message)
                raise ExtractionFailedError(
                    message, request_id=str(request_id), run_id=run_id
                )

            values = extract_company_summary(command.url, response)
            result = await self._store.upsert(
                normalized, values, self._cache_ttl, request_id=request_id
            )
            request.status = "completed"
            request.completed_at = utcnow()
            await self._session.commit()
        except ExtractionFailedError:
            raise
        except Exception as exc:
            await self._fail_request(request, str(exc) or type(exc).__name__)
            self._close_run(run_id, "failed")
            scrape_requests_total.labels(outcome="failed").inc()
            log.exception("scrape_pipeline_error")
            raise

        if run_id is not None:
            self._tasks.spawn(
                self._runs.add_costs(run_id, [{"costName": SCRAPE_COST_NAME, "quantity": 1}]),
                name="cost_report",
            )
        self._close_run(run_id, "completed")
        scrape_requests_total.labels(outcome="completed").inc()
        log.info("scrape_completed", result_id=str(result.id))
        return ScrapeOutcome(
            cached=False, result=result, request_id=request_id, run_id=run_id
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _open_run(self, command: ScrapeCommand) -> Optional[str]:
        """Open a run, returning ``None`` if the runs service is unavailable."""
        params = command.run_context.run_params(command.org_id, SCRAPE_TASK_NAME)
        try:
            run = await self._runs.create_run(params)
        except RunsServiceError as exc:
            telemetry_failures_total.labels(operation="run_open").inc()
            logger.warning("run_open_failed", task=SCRAPE_TASK_NAME, error=str(exc))
            return None
        return str(run["id"])

    def _close_run(self, run_id: Optional[str], status: RunStatus) -> None:
        if run_id is None:
            return
        self._tasks.spawn(
            self._runs.update_run_status(run_id, status),
            name=f"run_{'complete' if status == 'completed' else 'fail'}",
        )

    async def _fail_request(self, request: ScrapeRequest, message: str) -> None:
        """Roll back and record the request as failed in a fresh transaction."""
        request_id = request.id
        await self._session.rollback()
        try:
            request.status = "failed"
            request.error_message = message
            request.completed_at = utcnow()
            await self._session.commit()
        except Exception:  # noqa: BLE001
            await self._session.rollback()
            logger.exception("scrape_request_fail_mark_error", request_id=str(request_id))
