"""Prometheus metrics for the Scraping Service.

All metrics are module-level singletons registered on the default
``REGISTRY``.  They are safe to import from multiple modules because the
module is only executed once per process.

Metrics defined here:

  scrape_requests_total{outcome}
      Counter - ``POST /scrape`` outcomes: cache_hit, completed, failed.

  map_requests_total{outcome}
      Counter - ``POST /map`` outcomes: completed, failed.

  telemetry_failures_total{operation}
      Counter - best-effort runs service calls that failed
      (run_open, run_complete, run_fail, cost_report, ...).

  http_requests_total{method, path, status}
      Counter - HTTP requests handled by the FastAPI application.

  http_request_duration_seconds{method, path}
      Histogram - HTTP request latency in seconds.

Usage::

    from scraping_service.api.metrics import scrape_requests_total
    scrape_requests_total.labels(outcome="cache_hit").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Pipeline metrics
# ---------------------------------------------------------------------------

scrape_requests_total: Counter = Counter(
    "scrape_requests_total",
    "Scrape request outcomes.",
    labelnames=["outcome"],
)
"""Labels:
  outcome: one of cache_hit, completed, failed
"""

map_requests_total: Counter = Counter(
    "map_requests_total",
    "Map (site discovery) request outcomes.",
    labelnames=["outcome"],
)

telemetry_failures_total: Counter = Counter(
    "telemetry_failures_total",
    "Best-effort runs service calls that failed.",
    labelnames=["operation"],
)

# ---------------------------------------------------------------------------
# HTTP metrics (populated by middleware in main.py)
# ---------------------------------------------------------------------------

http_requests_total: Counter = Counter(
    "http_requests_total",
    "HTTP requests handled by the FastAPI application.",
    labelnames=["method", "path", "status"],
)
"""Labels:
  method: HTTP method (GET, POST, …)
  path:   route template where available (``/scrape/{result_id}``)
  status: HTTP response status code as string (e.g. '200', '404')
"""

http_request_duration_seconds: Histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


# ---------------------------------------------------------------------------
# Response helper
# ---------------------------------------------------------------------------


def get_metrics_response() -> tuple[bytes, str]:
    """Generate a Prometheus text-format metrics response.

    Returns:
        A tuple of (body_bytes, content_type_string) suitable for constructing
        a FastAPI ``Response`` object.
    """
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest  # noqa: PLC0415

    return generate_latest(), CONTENT_TYPE_LATEST
