"""Async client for the runs service (usage and cost accounting).

Every billable unit of work (one extraction, one site map) is recorded as a
*run* with cost line items.  Calls are best-effort from the caller's point
of view: the orchestrators catch :class:`RunsServiceError` on run open and
hand run-close and cost calls to the
:class:`~scraping_service.core.background.DetachedTaskRunner`.

Endpoints::

    POST  /v1/runs             create a run
    PATCH /v1/runs/{id}        set status to completed | failed
    POST  /v1/runs/{id}/costs  append cost line items ({"items": [...]})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from scraping_service.core.exceptions import RunsServiceError

logger = logging.getLogger(__name__)

#: ``serviceName`` recorded on every run this service opens.
SERVICE_NAME: str = "scraping-service"

RunStatus = Literal["completed", "failed"]


@dataclass
class CreateRunParams:
    """Fields for a new run.

    Only ``org_id`` and ``task_name`` are required; optional ids are sent
    only when set.
    """

    org_id: str
    task_name: str
    app_id: str | None = None
    user_id: str | None = None
    brand_id: str | None = None
    campaign_id: str | None = None
    parent_run_id: str | None = None
    workflow_name: str | None = None


class RunsClient:
    """Thin async wrapper over the runs service REST API.

    Args:
        client: Shared :class:`httpx.AsyncClient` (owned by the app lifespan).
        base_url: Runs service base URL.
        api_key: Service key sent in the ``X-API-Key`` header.
        default_app_id: ``appId`` used when :class:`CreateRunParams` has none.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        default_app_id: str = "mcpfactory",
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._default_app_id = default_app_id

    async def _call(self, method: str, path: str, body: dict[str, Any]) -> Any:
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                json=body,
                headers={"X-API-Key": self._api_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            raise RunsServiceError(
                f"RunsService {method} {path} failed: {code} - {exc.response.text[:200]}",
                upstream_status=code,
            ) from exc
        except httpx.RequestError as exc:
            raise RunsServiceError(
                f"RunsService {method} {path} failed: {exc}",
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise RunsServiceError(
                f"RunsService {method} {path} returned invalid JSON",
                upstream_status=response.status_code,
            ) from exc

    async def create_run(self, params: CreateRunParams) -> dict[str, Any]:
        """Open a run and return the runs service's run object.

        Raises:
            RunsServiceError: On any HTTP or network failure.
        """
        body: dict[str, Any] = {
            "orgId": params.org_id,
            "appId": params.app_id or self._default_app_id,
            "serviceName": SERVICE_NAME,
            "taskName": params.task_name,
        }
        optional = {
            "userId": params.user_id,
            "brandId": params.brand_id,
            "campaignId": params.campaign_id,
            "workflowName": params.workflow_name,
            "parentRunId": params.parent_run_id,
        }
        body.update({k: v for k, v in optional.items() if v})

        run = await self._call("POST", "/v1/runs", body)
        if not isinstance(run, dict) or not run.get("id"):
            raise RunsServiceError("RunsService POST /v1/runs returned no run id")
        logger.debug("runs: opened run %s (task=%s)", run["id"], params.task_name)
        return run

    async def update_run_status(self, run_id: str, status: RunStatus) -> dict[str, Any]:
        """Close a run as ``completed`` or ``failed``."""
        return await self._call("PATCH", f"/v1/runs/{run_id}", {"status": status})

    async def add_costs(
        self, run_id: str, items: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Append cost line items (``{"costName", "quantity"}``) to a run.

        Returns:
            The created cost rows.
        """
        body = await self._call("POST", f"/v1/runs/{run_id}/costs", {"items": items})
        if isinstance(body, dict):
            return list(body.get("costs") or [])
        return []
