"""Service info and liveness routes.

``GET /``
    Service name and version.

``GET /health``
    Process-level liveness check used by load balancers.  Performs no I/O
    and never requires the API key.
"""

from __future__ import annotations

from fastapi import APIRouter

from scraping_service.config.settings import get_settings

router = APIRouter(tags=["system"])

SERVICE_ID: str = "scraping-service"


@router.get("/", summary="Service info")
async def service_info() -> dict[str, str]:
    """Return the service name and version."""
    settings = get_settings()
    return {"name": settings.app_name, "version": settings.app_version}


@router.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return ``{"status": "ok", "service": "scraping-service"}``."""
    return {"status": "ok", "service": SERVICE_ID}
