"""Structured JSON logging configuration using structlog.

Call ``configure_logging()`` once at application startup in ``api/main.py``.
Modules then log through structlog::

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("scrape_cache_hit", normalized_url="example.com/about")

Plain ``logging.getLogger(__name__)`` records are routed through the same
processor chain, so third-party libraries (httpx, SQLAlchemy, uvicorn) end
up in the same JSON stream.

An ``http_request_id`` context variable is populated by the request-logging
middleware and merged into every log record emitted while that request is
being served.  It is deliberately not called ``request_id``: in this service
that name belongs to ``scrape_requests`` rows.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

# ---------------------------------------------------------------------------
# Context variable: set by the HTTP middleware, read by the log processor
# ---------------------------------------------------------------------------

http_request_id_var: ContextVar[str | None] = ContextVar("http_request_id", default=None)
"""Per-request ID propagated from the HTTP middleware to log processors."""


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "api_key",
    "apikey",
    "x-api-key",
    "password",
    "secret",
    "token",
    "bearer",
    "authorization",
})
"""Lower-cased substrings that identify log event-dict keys whose values
must be redacted before the record reaches any renderer."""

_SECRET_EXACT_KEYS: frozenset[str] = frozenset({"key", "decrypted_key"})
"""Keys redacted only on an exact match (``key`` is the field name the key
service uses for decrypted provider keys)."""

_REDACTED = "[REDACTED]"


def _is_secret_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _SECRET_EXACT_KEYS:
        return True
    return any(secret in key_lower for secret in _SECRET_SUBSTRINGS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys with a redaction marker.

    Scans top-level keys and any nested ``dict`` values one level deep
    (e.g. ``headers={...}``).

    Args:
        logger: The wrapped logger instance (unused).
        method_name: The log method name (unused).
        event_dict: Mutable event dictionary being assembled.

    Returns:
        The event dict with sensitive values replaced by ``"[REDACTED]"``.
    """
    for key in list(event_dict.keys()):
        if _is_secret_key(key):
            event_dict[key] = _REDACTED
            continue
        val = event_dict[key]
        if isinstance(val, dict):
            event_dict[key] = {
                nested_key: _REDACTED if _is_secret_key(str(nested_key)) else nested_val
                for nested_key, nested_val in val.items()
            }
    return event_dict


def _inject_http_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Inject the current HTTP request ID into the log event dict if set.

    Runs after ``merge_contextvars`` as a fallback for code paths that set
    the ``ContextVar`` directly rather than through ``bind_contextvars``.
    """
    rid = http_request_id_var.get()
    if rid is not None and "http_request_id" not in event_dict:
        event_dict["http_request_id"] = rid
    return event_dict


# ---------------------------------------------------------------------------
# Public configuration entry-point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog with JSON output for production.

    In production (log_level != ``"DEBUG"``), outputs newline-delimited JSON.
    In development (log_level == ``"DEBUG"``), uses structlog's
    ``ConsoleRenderer`` for human-readable coloured output.

    Standard fields added to every log record: ``timestamp``, ``level``,
    ``logger``, ``event`` and, inside a request, ``http_request_id``.

    Idempotent: calling it multiple times replaces the previous configuration.

    Args:
        log_level: Logging verbosity string.  Case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_http_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_development:
        final_renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(
            colors=True,
        )
    else:
        final_renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # Drop handlers from earlier calls (tests call this repeatedly).
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if not is_development:
        for noisy_logger in ("uvicorn.access", "httpx", "httpcore"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
