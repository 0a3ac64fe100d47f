"""Site discovery (map) pipeline.

Resolves the provider key, opens a run when an organization is known,
clamps the requested limit and asks the provider for the site's URLs.
Nothing is cached or persisted; the URL list goes straight back to the
caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from scraping_service.api.metrics import map_requests_total, telemetry_failures_total
from scraping_service.core.background import DetachedTaskRunner
from scraping_service.core.credentials import (
    CallerContext,
    CredentialResolver,
    KeySource,
    key_source_from_request,
)
from scraping_service.core.exceptions import DiscoveryFailedError, RunsServiceError
from scraping_service.core.runs_client import RunsClient
from scraping_service.core.schemas.scraping import MapRequestBody
from scraping_service.scraper.config import (
    MAP_COST_NAME,
    MAP_DEFAULT_LIMIT,
    MAP_LIMIT_CEILING,
    MAP_TASK_NAME,
    PROVIDER_NAME,
)
from scraping_service.scraper.firecrawl_client import FirecrawlClient
from scraping_service.scraper.orchestrator import RunContext

logger = structlog.get_logger(__name__)

_MAP_CALLER = CallerContext(method="POST", path="/map")


def clamp_limit(limit: Optional[int]) -> int:
    """Return *limit* bounded to ``[1, MAP_LIMIT_CEILING]``, defaulting to 100."""
    if limit is None:
        return MAP_DEFAULT_LIMIT
    return max(1, min(limit, MAP_LIMIT_CEILING))


@dataclass(frozen=True)
class MapCommand:
    """A validated map request."""

    url: str
    key_source: KeySource
    org_id: Optional[str] = None
    search: Optional[str] = None
    limit: Optional[int] = None
    ignore_sitemap: Optional[bool] = None
    sitemap_only: Optional[bool] = None
    include_subdomains: Optional[bool] = None
    run_context: RunContext = field(default_factory=RunContext)

    @classmethod
    def from_request(cls, body: MapRequestBody) -> MapCommand:
        """Build a command from the inbound body.

        Raises:
            MissingCredentialContextError: If the key source lacks its id.
        """
        return cls(
            url=body.url,
            key_source=key_source_from_request(
                body.key_source, org_id=body.org_id, app_id=body.app_id
            ),
            org_id=body.org_id,
            search=body.search,
            limit=body.limit,
            ignore_sitemap=body.ignore_sitemap,
            sitemap_only=body.sitemap_only,
            include_subdomains=body.include_subdomains,
            run_context=RunContext.from_body(body),
        )

    def provider_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"limit": clamp_limit(self.limit)}
        if self.search is not None:
            options["search"] = self.search
        if self.ignore_sitemap is not None:
            options["ignoreSitemap"] = self.ignore_sitemap
        if self.sitemap_only is not None:
            options["sitemapOnly"] = self.sitemap_only
        if self.include_subdomains is not None:
            options["includeSubdomains"] = self.include_subdomains
        return options


@dataclass
class MapOutcome:
    urls: list[str]
    run_id: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.urls)


class MapOrchestrator:
    """Runs the map pipeline for one request.

    Args:
        resolver: Provider key resolver.
        extractor: Firecrawl client.
        runs: Runs service client.
        tasks: Runner for the background run-close and cost calls.
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        extractor: FirecrawlClient,
        runs: RunsClient,
        tasks: DetachedTaskRunner,
    ) -> None:
        self._resolver = resolver
        self._extractor = extractor
        self._runs = runs
        self._tasks = tasks

    async def map(self, command: MapCommand) -> MapOutcome:
        """Discover URLs under ``command.url``.

        Raises:
            CredentialNotConfiguredError: No provider key for the key source.
            CredentialServiceUnavailableError: The key service failed.
            DiscoveryFailedError: The provider reported a failure.
        """
        api_key = await self._resolver.resolve(PROVIDER_NAME, command.key_source, _MAP_CALLER)
        run_id = await self._open_run(command)
        options = command.provider_options()
        log = logger.bind(url=command.url, run_id=run_id, limit=options["limit"])

        response = await self._extractor.discover(command.url, api_key, options)
        if not response.success:
            message = response.error or "Failed to map URL"
            if run_id is not None:
                self._tasks.spawn(
                    self._runs.update_run_status(run_id, "failed"), name="run_fail"
                )
            map_requests_total.labels(outcome="failed").inc()
            log.warning("map_discovery_failed", error=message)
            raise DiscoveryFailedError(message, run_id=run_id)

        if run_id is not None:
            self._tasks.spawn(
                self._runs.add_costs(run_id, [{"costName": MAP_COST_NAME, "quantity": 1}]),
                name="cost_report",
            )
            self._tasks.spawn(
                self._runs.update_run_status(run_id, "completed"), name="run_complete"
            )
        map_requests_total.labels(outcome="completed").inc()
        log.info("map_completed", count=len(response.urls))
        return MapOutcome(urls=response.urls, run_id=run_id)

    async def _open_run(self, command: MapCommand) -> Optional[str]:
        if not command.org_id:
            return None
        params = command.run_context.run_params(command.org_id, MAP_TASK_NAME)
        try:
            run = await self._runs.create_run(params)
        except RunsServiceError as exc:
            telemetry_failures_total.labels(operation="run_open").inc()
            logger.warning("run_open_failed", task=MAP_TASK_NAME, error=str(exc))
            return None
        return str(run["id"])
