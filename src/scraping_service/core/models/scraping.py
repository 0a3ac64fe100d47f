"""SQLAlchemy ORM models for scrape requests, results and the result cache.

Three tables share the normalized URL as their de-duplication key:

- ``scrape_requests`` - audit trail, one row per attempted extraction.
- ``scrape_results``  - durable extraction output, one row per normalized URL.
- ``scrape_cache``    - fast-path pointer from a normalized URL to its
  current result, with validity flag and expiry.

The UNIQUE constraints on ``normalized_url`` are what make the upsert in
:class:`~scraping_service.core.cache_store.ScrapeCacheStore` idempotent;
they must exist in the database, not only in application code.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from scraping_service.core.models.base import Base, JSONType, TimestampMixin

#: Lifecycle states of a :class:`ScrapeRequest`.
REQUEST_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed")


class ScrapeRequest(Base):
    """One attempted extraction.

    Created in ``processing`` just before the provider call and finalized to
    ``completed`` or ``failed``.  Pure cache hits do not create a row.  Rows
    are never deleted by the service.

    Attributes:
        id: UUID primary key.
        source_service: Calling service tag (``X-Source-Service`` or body field).
        source_org_id: Organization the request was made for.
        source_ref_id: Caller-defined reference (campaign id, pitch id, ...).
        run_id: Runs service run id, when one could be opened.
        url: The URL exactly as requested.
        options: Extraction options as sent by the caller.
        status: ``pending``, ``processing``, ``completed`` or ``failed``.
        error_message: Provider (or internal) error for failed requests.
        created_at: Row creation time.
        completed_at: Time the request reached a terminal state.
    """

    __tablename__ = "scrape_requests"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    source_service: Mapped[str] = mapped_column(sa.Text, nullable=False)
    source_org_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    source_ref_id: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    run_id: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    options: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'pending'"),
    )
    error_message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=sa.func.now(),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        sa.Index("idx_scrape_requests_source", "source_service", "source_org_id"),
        sa.Index("idx_scrape_requests_url", "url"),
        sa.Index("idx_scrape_requests_status", "status"),
    )


class ScrapeResult(TimestampMixin, Base):
    """Durable extraction output for a normalized URL.

    At most one row exists per ``normalized_url``; a later extraction of the
    same destination overwrites the row in place.  Only ``company_name`` and
    ``description`` are currently derived (from page metadata); the other
    company fields are reserved for richer enrichment and stay ``NULL``.
    """

    __tablename__ = "scrape_results"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.ForeignKey("scrape_requests.id", ondelete="SET NULL"),
        nullable=True,
    )

    url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    normalized_url: Mapped[str] = mapped_column(sa.Text, nullable=False)

    # Company profile
    company_name: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    employee_count: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    founded_year: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    headquarters: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    website: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Contact
    email: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    linkedin_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    twitter_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Offerings
    products: Mapped[Optional[list[Any]]] = mapped_column(JSONType, nullable=True)
    services: Mapped[Optional[list[Any]]] = mapped_column(JSONType, nullable=True)

    # Raw provider output
    raw_markdown: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    raw_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    expires_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        sa.UniqueConstraint("normalized_url", name="uq_scrape_results_normalized_url"),
        sa.Index("idx_scrape_results_request", "request_id"),
        sa.Index("idx_scrape_results_expires", "expires_at"),
    )


class ScrapeCache(TimestampMixin, Base):
    """Fast-path pointer from a normalized URL to its current result.

    ``company_name`` and ``industry`` are denormalized from the result so
    lookups and listings need not load the full row.  A hit requires
    ``is_valid`` and ``expires_at`` strictly in the future.
    """

    __tablename__ = "scrape_cache"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    normalized_url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    result_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("scrape_results.id", ondelete="CASCADE"),
        nullable=False,
    )

    company_name: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    is_valid: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.true(),
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("normalized_url", name="uq_scrape_cache_normalized_url"),
        sa.Index("idx_cache_expires", "expires_at"),
    )
