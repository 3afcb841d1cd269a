"""
Shared pytest fixtures for the database, Redis, settings, and the fetch stack.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from feed_ingest.aggregator.fetcher import FetchClient
from feed_ingest.aggregator.redirects import RedirectTracker
from feed_ingest.aggregator.throttle import DomainThrottle
from feed_ingest.config import Settings
from feed_ingest.db.cache import ResponseCache
from feed_ingest.db.models import Base
from tests.helpers import FakeClock, MockRedisClient


@pytest.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    """Provide an async in-memory SQLite engine shared by every session of a test."""

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Create an AsyncSession per test; tests commit explicitly when needed."""

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def mock_redis() -> AsyncIterator[MockRedisClient]:
    """Yield a mock Redis client with in-memory storage."""

    client = MockRedisClient()
    try:
        yield client
    finally:
        await client.flushdb()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def throttle(mock_redis: MockRedisClient, clock: FakeClock) -> DomainThrottle:
    return DomainThrottle(mock_redis, default_delay_seconds=10.0, clock=clock)  # type: ignore[arg-type]


@pytest.fixture
def redirects(mock_redis: MockRedisClient) -> RedirectTracker:
    return RedirectTracker(mock_redis)  # type: ignore[arg-type]


@pytest.fixture
def response_cache(mock_redis: MockRedisClient) -> ResponseCache:
    return ResponseCache(mock_redis)  # type: ignore[arg-type]


@pytest.fixture
async def fetch_client(
    redirects: RedirectTracker,
    throttle: DomainThrottle,
    response_cache: ResponseCache,
) -> AsyncIterator[FetchClient]:
    """FetchClient over a fresh httpx client; tests mock the transport with respx."""

    http_client = httpx.AsyncClient()
    client = FetchClient(
        redirects=redirects,
        throttle=throttle,
        cache=response_cache,
        client=http_client,
    )
    try:
        yield client
    finally:
        await http_client.aclose()


@pytest.fixture
def settings_override(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Override global settings with test-friendly configuration."""

    from feed_ingest import config as config_module

    base_settings = config_module.Settings()
    database = base_settings.database.model_copy(
        update={"url": "sqlite+aiosqlite:///:memory:", "echo": False}
    )
    redis_conf = base_settings.redis.model_copy(
        update={"url": "redis://localhost:6379/0", "max_connections": 5}
    )
    worker = base_settings.worker.model_copy(update={"concurrency": 2, "idle_sleep_seconds": 0.01})
    overrides = base_settings.model_copy(
        update={"database": database, "redis": redis_conf, "worker": worker}
    )
    monkeypatch.setattr(config_module, "get_settings", lambda: overrides)
    return overrides
