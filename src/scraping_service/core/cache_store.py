"""Persistence for extraction results and their cache pointers.

:class:`ScrapeCacheStore` owns every read and write against
``scrape_results`` and ``scrape_cache``.  It never commits: the
orchestrator decides transaction boundaries, so an upsert of a result, its
cache row and the request's status change land in one commit.

Upserts use the database's native ``INSERT .. ON CONFLICT (normalized_url)
DO UPDATE``.  Concurrent upserts for one key therefore never produce a
second row; the last writer wins.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from scraping_service.core.models.scraping import ScrapeCache, ScrapeResult

logger = structlog.get_logger(__name__)

#: Result columns an upsert may write.  Anything else in ``values`` is ignored.
RESULT_FIELDS: frozenset[str] = frozenset(
    {
        "url",
        "company_name",
        "description",
        "industry",
        "employee_count",
        "founded_year",
        "headquarters",
        "website",
        "email",
        "phone",
        "linkedin_url",
        "twitter_url",
        "products",
        "services",
        "raw_markdown",
        "raw_metadata",
    }
)


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ScrapeCacheStore:
    """Cache and result repository bound to one :class:`AsyncSession`.

    Args:
        session: The request-scoped session.  The store flushes through it
            but never commits or rolls back.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def lookup(
        self, normalized_url: str, now: Optional[datetime] = None
    ) -> ScrapeResult | None:
        """Return the cached result for *normalized_url*, or ``None`` on a miss.

        A hit requires a cache row that is valid and whose ``expires_at`` is
        strictly after *now*.  Expired rows are left in place.  A cache row
        whose result no longer exists counts as a miss.

        Args:
            normalized_url: Key produced by
                :func:`~scraping_service.core.normalizer.normalize_url`.
            now: Reference time; defaults to the current UTC time.
        """
        now = now or utcnow()
        entry = (
            await self._session.execute(
                select(ScrapeCache).where(
                    ScrapeCache.normalized_url == normalized_url,
                    ScrapeCache.is_valid.is_(True),
                    ScrapeCache.expires_at > now,
                )
            )
        ).scalar_one_or_none()
        if entry is None:
            return None

        result = await self.get_result(entry.result_id)
        if result is None:
            logger.warning(
                "scrape_cache_dangling_pointer",
                normalized_url=normalized_url,
                result_id=str(entry.result_id),
            )
        return result

    async def get_result(self, result_id: uuid.UUID) -> ScrapeResult | None:
        """Fetch a result by primary key."""
        return (
            await self._session.execute(
                select(ScrapeResult).where(ScrapeResult.id == result_id)
            )
        ).scalar_one_or_none()

    async def find_by_url(
        self, normalized_url: str, now: Optional[datetime] = None
    ) -> tuple[ScrapeResult, bool] | None:
        """Return ``(result, expired)`` for a valid cache row, ignoring expiry.

        Returns:
            ``None`` when no valid cache row exists or its result is gone.
        """
        now = now or utcnow()
        entry = (
            await self._session.execute(
                select(ScrapeCache).where(
                    ScrapeCache.normalized_url == normalized_url,
                    ScrapeCache.is_valid.is_(True),
                )
            )
        ).scalar_one_or_none()
        if entry is None:
            return None
        result = await self.get_result(entry.result_id)
        if result is None:
            return None
        return result, as_utc(entry.expires_at) < now

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert(self, table: Any) -> Any:
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise NotImplementedError(f"Upsert is not supported on dialect {dialect!r}")

    async def upsert(
        self,
        normalized_url: str,
        values: dict[str, Any],
        ttl: timedelta,
        request_id: Optional[uuid.UUID] = None,
    ) -> ScrapeResult:
        """Insert or overwrite the result and cache rows for *normalized_url*.

        The result row is written first; the cache row is then pointed at it
        with ``is_valid=True`` and ``expires_at = now + ttl``.  Both
        statements run in the session's current transaction.

        Args:
            normalized_url: De-duplication key.
            values: Result column values (see :data:`RESULT_FIELDS`).
            ttl: Freshness window for the new cache entry.
            request_id: The request that produced this result.

        Returns:
            The stored :class:`ScrapeResult`, reloaded from the database.
        """
        expires_at = utcnow() + ttl
        fields = {k: v for k, v in values.items() if k in RESULT_FIELDS}
        fields.update(request_id=request_id, expires_at=expires_at)

        result_stmt = (
            self._insert(ScrapeResult)
            .values(id=uuid.uuid4(), normalized_url=normalized_url, **fields)
        )
        result_stmt = result_stmt.on_conflict_do_update(
            index_elements=[ScrapeResult.normalized_url],
            set_={**fields, "updated_at": func.now()},
        ).returning(ScrapeResult.id)
        result_id = (await self._session.execute(result_stmt)).scalar_one()

        cache_fields = {
            "result_id": result_id,
            "company_name": fields.get("company_name"),
            "industry": fields.get("industry"),
            "is_valid": True,
            "expires_at": expires_at,
        }
        cache_stmt = self._insert(ScrapeCache).values(
            id=uuid.uuid4(), normalized_url=normalized_url, **cache_fields
        )
        cache_stmt = cache_stmt.on_conflict_do_update(
            index_elements=[ScrapeCache.normalized_url],
            set_={**cache_fields, "updated_at": func.now()},
        )
        await self._session.execute(cache_stmt)

        result = (
            await self._session.execute(
                select(ScrapeResult)
                .where(ScrapeResult.id == result_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        logger.debug(
            "scrape_result_upserted",
            normalized_url=normalized_url,
            result_id=str(result_id),
            expires_at=expires_at.isoformat(),
        )
        return result
