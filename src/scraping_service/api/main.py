"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and exception
handlers, mounts the route routers and owns the lifespan of the shared
collaborators (one ``httpx.AsyncClient`` per upstream service and the
detached task runner).

Usage::

    # Development server (from project root)
    uvicorn scraping_service.api.main:app --reload

    # Production
    gunicorn scraping_service.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Callable

import httpx
import structlog
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from scraping_service.config.settings import get_settings
from scraping_service.core.logging_config import configure_logging, http_request_id_var

# ---------------------------------------------------------------------------
# Logging configuration: applied once at module import time so that log
# records emitted during app construction are captured correctly.
# The log level is re-applied inside create_app() after settings are loaded.
# ---------------------------------------------------------------------------

configure_logging("INFO")

logger = structlog.get_logger(__name__)

#: Seconds to wait for background telemetry calls on shutdown.
_SHUTDOWN_DRAIN_SECONDS: float = 10.0


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Create shared clients on startup and release them on shutdown.

    Stores on ``app.state``:

    - ``credential_resolver``: key service client wrapped in a resolver
    - ``firecrawl_client``: extraction provider client
    - ``runs_client``: runs service client
    - ``task_runner``: :class:`DetachedTaskRunner` for telemetry calls
    """
    from scraping_service.core.background import DetachedTaskRunner  # noqa: PLC0415
    from scraping_service.core.credentials import (  # noqa: PLC0415
        CredentialResolver,
        KeyServiceClient,
    )
    from scraping_service.core.database import dispose_engine  # noqa: PLC0415
    from scraping_service.core.runs_client import RunsClient  # noqa: PLC0415
    from scraping_service.scraper.firecrawl_client import FirecrawlClient  # noqa: PLC0415

    settings = get_settings()
    key_http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    runs_http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    firecrawl_http = httpx.AsyncClient(timeout=settings.firecrawl_timeout_seconds)

    application.state.credential_resolver = CredentialResolver(
        KeyServiceClient(key_http, settings.key_service_url, settings.key_service_api_key)
    )
    application.state.runs_client = RunsClient(
        runs_http,
        settings.runs_service_url,
        settings.runs_service_api_key,
        default_app_id=settings.runs_default_app_id,
    )
    application.state.firecrawl_client = FirecrawlClient(
        firecrawl_http,
        base_url=settings.firecrawl_api_url,
        timeout=settings.firecrawl_timeout_seconds,
    )
    task_runner = DetachedTaskRunner()
    application.state.task_runner = task_runner

    logger.info(
        "application_startup",
        app_name=settings.app_name,
        debug=settings.debug,
        log_level=settings.log_level,
    )
    try:
        yield
    finally:
        await task_runner.drain(timeout=_SHUTDOWN_DRAIN_SECONDS)
        for client in (key_http, runs_http, firecrawl_http):
            await client.aclose()
        await dispose_engine()
        logger.info("application_shutdown")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(application: FastAPI) -> None:
    """Render every error as JSON with an ``error`` key."""
    from scraping_service.core.exceptions import ScrapingServiceError  # noqa: PLC0415

    @application.exception_handler(ScrapingServiceError)
    async def service_error_handler(
        request: Request, exc: ScrapingServiceError
    ) -> JSONResponse:
        log_fn = logger.warning if exc.status_code >= 500 else logger.info
        log_fn(
            "request_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            status_code=exc.status_code,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.response_body())

    @application.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": details},
        )

    @application.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment before the
    singleton is created.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()

    # Re-apply logging configuration with the correct level from settings.
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Scrapes URLs through Firecrawl and caches the extracted company "
            "information by normalized URL."
        ),
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key", "X-Source-Service"],
    )

    from scraping_service.api.metrics import (  # noqa: PLC0415
        http_request_duration_seconds,
        http_requests_total,
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with its status and duration and record HTTP metrics.

        Binds a unique ``http_request_id`` to the structlog context and
        echoes it in the ``X-Request-ID`` response header.
        """
        http_request_id = str(uuid.uuid4())
        http_request_id_var.set(http_request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            http_request_id=http_request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
        finally:
            elapsed = time.perf_counter() - start
            status_code = response.status_code if response is not None else 500
            route = request.scope.get("route")
            path_label = getattr(route, "path", "unmatched")
            http_requests_total.labels(
                method=request.method, path=path_label, status=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method, path=path_label
            ).observe(elapsed)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000, 2),
            )

        response.headers["X-Request-ID"] = http_request_id
        return response

    _register_exception_handlers(application)

    # ---- Routers -------------------------------------------------------------

    from scraping_service.api.dependencies import require_api_key  # noqa: PLC0415
    from scraping_service.api.routes import health as health_routes  # noqa: PLC0415
    from scraping_service.scraper.router import router as scrape_router  # noqa: PLC0415

    application.include_router(health_routes.router)
    application.include_router(scrape_router, dependencies=[Depends(require_api_key)])

    # ---- Metrics -------------------------------------------------------------

    if settings.metrics_enabled:

        @application.get("/metrics", include_in_schema=False)
        async def metrics() -> Response:
            """Expose Prometheus metrics in text format."""
            from scraping_service.api.metrics import get_metrics_response  # noqa: PLC0415

            body, content_type = get_metrics_response()
            return Response(content=body, media_type=content_type)

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
