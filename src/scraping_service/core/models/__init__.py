"""SQLAlchemy ORM models for the Scraping Service.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do ``from scraping_service.core.models import ScrapeResult``
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from scraping_service.core.models.base import Base, JSONType, TimestampMixin
from scraping_service.core.models.scraping import (
    REQUEST_STATUSES,
    ScrapeCache,
    ScrapeRequest,
    ScrapeResult,
)

__all__ = [
    "Base",
    "JSONType",
    "TimestampMixin",
    "REQUEST_STATUSES",
    "ScrapeCache",
    "ScrapeRequest",
    "ScrapeResult",
]
