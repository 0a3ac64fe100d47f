"""Unit tests for ScrapeCacheStore against an in-memory SQLite database.

Covers the upsert (one row per normalized URL, last write wins), the
freshness rules of lookup(), the expired flag of find_by_url() and the
dangling-pointer miss.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scraping_service.core.cache_store import ScrapeCacheStore, as_utc, utcnow
from scraping_service.core.models.scraping import ScrapeCache, ScrapeResult

_KEY = "example.com/about"
_TTL = timedelta(days=7)


def _values(**overrides):
    values = {
        "url": "https://example.com/about",
        "company_name": "Example Co",
        "description": "We make examples",
        "website": "https://example.com/about",
        "raw_markdown": "# Example",
        "raw_metadata": {"title": "Example Co"},
    }
    values.update(overrides)
    return values


async def _count(session: AsyncSession, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
class TestUpsert:
    async def test_creates_result_and_cache_rows(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        result = await cache_store.upsert(_KEY, _values(), _TTL)
        await db_session.commit()

        assert result.normalized_url == _KEY
        assert result.company_name == "Example Co"
        entry = (await db_session.execute(select(ScrapeCache))).scalar_one()
        assert entry.result_id == result.id
        assert entry.company_name == "Example Co"
        assert entry.is_valid is True

    async def test_second_upsert_overwrites_in_place(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        first = await cache_store.upsert(_KEY, _values(), _TTL)
        await db_session.commit()
        second = await cache_store.upsert(
            _KEY, _values(url="https://www.example.com/about/", company_name="Example Inc"), _TTL
        )
        await db_session.commit()

        assert second.id == first.id
        assert second.company_name == "Example Inc"
        assert second.url == "https://www.example.com/about/"
        assert await _count(db_session, ScrapeResult) == 1
        assert await _count(db_session, ScrapeCache) == 1

    async def test_upsert_revalidates_an_invalidated_entry(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        await cache_store.upsert(_KEY, _values(), _TTL)
        await db_session.execute(update(ScrapeCache).values(is_valid=False))
        await db_session.commit()
        assert await cache_store.lookup(_KEY) is None

        await cache_store.upsert(_KEY, _values(), _TTL)
        await db_session.commit()
        assert await cache_store.lookup(_KEY) is not None

    async def test_unknown_fields_are_ignored(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        result = await cache_store.upsert(_KEY, _values(not_a_column="x"), _TTL)
        await db_session.commit()
        assert not hasattr(result, "not_a_column")


@pytest.mark.asyncio
class TestLookup:
    async def test_hit_before_expiry(self, cache_store: ScrapeCacheStore) -> None:
        stored = await cache_store.upsert(_KEY, _values(), _TTL)

        hit = await cache_store.lookup(_KEY, now=utcnow() + timedelta(days=6))
        assert hit is not None
        assert hit.id == stored.id

    async def test_miss_after_expiry(self, cache_store: ScrapeCacheStore) -> None:
        await cache_store.upsert(_KEY, _values(), _TTL)
        assert await cache_store.lookup(_KEY, now=utcnow() + timedelta(days=8)) is None

    async def test_miss_exactly_at_expiry(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        await cache_store.upsert(_KEY, _values(), _TTL)
        entry = (await db_session.execute(select(ScrapeCache))).scalar_one()
        expires_at = as_utc(entry.expires_at)

        assert await cache_store.lookup(_KEY, now=expires_at) is None
        assert await cache_store.lookup(_KEY, now=expires_at - timedelta(seconds=1)) is not None

    async def test_miss_for_unknown_key(self, cache_store: ScrapeCacheStore) -> None:
        assert await cache_store.lookup("nowhere.example") is None

    async def test_miss_when_invalid(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        await cache_store.upsert(_KEY, _values(), _TTL)
        await db_session.execute(update(ScrapeCache).values(is_valid=False))
        assert await cache_store.lookup(_KEY) is None

    async def test_dangling_pointer_is_a_miss(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        stored = await cache_store.upsert(_KEY, _values(), _TTL)
        await db_session.commit()
        # SQLite does not enforce the foreign key without a pragma, so the
        # result can be removed from under the cache row.
        await db_session.delete(stored)
        await db_session.flush()

        assert await cache_store.lookup(_KEY) is None


@pytest.mark.asyncio
class TestFindByUrl:
    async def test_fresh_entry_is_not_expired(self, cache_store: ScrapeCacheStore) -> None:
        await cache_store.upsert(_KEY, _values(), _TTL)

        found = await cache_store.find_by_url(_KEY)
        assert found is not None
        result, expired = found
        assert result.company_name == "Example Co"
        assert expired is False

    async def test_expired_entry_is_still_returned(self, cache_store: ScrapeCacheStore) -> None:
        await cache_store.upsert(_KEY, _values(), _TTL)

        found = await cache_store.find_by_url(_KEY, now=utcnow() + timedelta(days=30))
        assert found is not None
        assert found[1] is True

    async def test_invalid_entry_is_not_found(
        self, cache_store: ScrapeCacheStore, db_session: AsyncSession
    ) -> None:
        await cache_store.upsert(_KEY, _values(), _TTL)
        await db_session.execute(update(ScrapeCache).values(is_valid=False))
        assert await cache_store.find_by_url(_KEY) is None

    async def test_unknown_key_is_not_found(self, cache_store: ScrapeCacheStore) -> None:
        assert await cache_store.find_by_url("nowhere.example") is None
