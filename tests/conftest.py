"""Shared pytest fixtures for Scraping Service tests.

Fixture summary
---------------
db_engine       - Async in-memory SQLite engine with all tables created.
session_factory - async_sessionmaker bound to db_engine.
db_session      - One AsyncSession on the test database.
cache_store     - ScrapeCacheStore over db_session.
resolver        - AsyncMock CredentialResolver returning a fixed key.
extractor       - AsyncMock FirecrawlClient (configure return values per test).
runs            - AsyncMock RunsClient whose create_run returns run "run_1".
task_runner     - Real DetachedTaskRunner; call ``await task_runner.drain()``.
client          - httpx.AsyncClient against the FastAPI app with every
                  collaborator overridden by the fixtures above.

No test needs external infrastructure: the database is SQLite (aiosqlite)
and all HTTP collaborators are either mocked with respx or replaced with
AsyncMock doubles.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set required env vars before any application modules are imported so that
# Settings() does not raise a ValidationError during collection.

TEST_SERVICE_API_KEY = "test-service-key"

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "SCRAPING_SERVICE_API_KEY": TEST_SERVICE_API_KEY,
    "KEY_SERVICE_URL": "http://key-service.test",
    "KEY_SERVICE_API_KEY": "test-key-service-key",
    "RUNS_SERVICE_URL": "http://runs.test",
    "RUNS_SERVICE_API_KEY": "test-runs-key",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from scraping_service.config.settings import get_settings  # noqa: E402
from scraping_service.core.background import DetachedTaskRunner  # noqa: E402
from scraping_service.core.cache_store import ScrapeCacheStore  # noqa: E402
from scraping_service.core.credentials import CredentialResolver  # noqa: E402
from scraping_service.core.database import build_session_factory  # noqa: E402
from scraping_service.core.models import Base  # noqa: E402
from scraping_service.core.runs_client import RunsClient  # noqa: E402
from scraping_service.scraper.firecrawl_client import FirecrawlClient  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory SQLite database for one test.

    ``StaticPool`` keeps a single connection so every session sees the same
    in-memory database.
    """
    from sqlalchemy.ext.asyncio import create_async_engine  # noqa: PLC0415

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a sessionmaker with the application's session defaults."""
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache_store(db_session: AsyncSession) -> ScrapeCacheStore:
    return ScrapeCacheStore(db_session)


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


@pytest.fixture
def resolver() -> AsyncMock:
    mock = AsyncMock(spec=CredentialResolver)
    mock.resolve.return_value = "fc-test-key"
    return mock


@pytest.fixture
def extractor() -> AsyncMock:
    return AsyncMock(spec=FirecrawlClient)


@pytest.fixture
def runs() -> AsyncMock:
    mock = AsyncMock(spec=RunsClient)
    mock.create_run.return_value = {"id": "run_1", "status": "running"}
    mock.update_run_status.return_value = {"id": "run_1"}
    mock.add_costs.return_value = []
    return mock


@pytest.fixture
def task_runner() -> DetachedTaskRunner:
    return DetachedTaskRunner()


# ---------------------------------------------------------------------------
# FastAPI test client
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": TEST_SERVICE_API_KEY}


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    resolver: AsyncMock,
    extractor: AsyncMock,
    runs: AsyncMock,
    task_runner: DetachedTaskRunner,
) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx.AsyncClient against a freshly built app.

    ``get_db`` yields sessions on the test database and the app.state
    collaborators are replaced with the doubles above, so the lifespan is
    never needed.
    """
    from scraping_service.api import dependencies  # noqa: PLC0415
    from scraping_service.api.main import create_app  # noqa: PLC0415
    from scraping_service.core.database import get_db  # noqa: PLC0415

    app = create_app()

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[dependencies.get_credential_resolver] = lambda: resolver
    app.dependency_overrides[dependencies.get_firecrawl_client] = lambda: extractor
    app.dependency_overrides[dependencies.get_runs_client] = lambda: runs
    app.dependency_overrides[dependencies.get_task_runner] = lambda: task_runner

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await task_runner.drain(timeout=5)
    app.dependency_overrides.clear()
