"""SQLAlchemy declarative base and shared mixins for all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- TimestampMixin: created_at / updated_at columns with server-side defaults
- JSONType: JSONB on PostgreSQL, plain JSON elsewhere

Column types are chosen so that the schema also builds on SQLite, which
the test suite uses as an in-memory stand-in for PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")
"""JSON column type: ``JSONB`` on PostgreSQL, generic ``JSON`` otherwise."""


class Base(DeclarativeBase):
    """Shared declarative base for all Scraping Service models."""

    # Native UUID on PostgreSQL, CHAR(32) on backends without one.
    type_annotation_map = {
        uuid.UUID: sa.Uuid(as_uuid=True),
        datetime: sa.DateTime(timezone=True),
    }


class TimestampMixin:
    """Adds created_at and updated_at columns with database-side defaults.

    The server default only fires on INSERT.  The onupdate kwarg covers the
    ORM-level UPDATE path; bulk upserts set ``updated_at`` explicitly.
    """

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        onupdate=sa.func.now(),
    )
