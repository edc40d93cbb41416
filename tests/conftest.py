"""Shared pytest fixtures for unit, repository and API tests."""

import datetime
import logging
import random
from collections.abc import AsyncGenerator, Callable
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shortlink.allocator import ShortCodeAllocator
from shortlink.analytics import AnalyticsClient
from shortlink.code_space import CodeSpace
from shortlink.config import Settings
from shortlink.database import Base
from shortlink.dependencies import get_service_manager
from shortlink.dispatcher import ClickEventDispatcher
from shortlink.main import app
from shortlink.models import ShortLink
from shortlink.redirect import RedirectCoordinator
from shortlink.repository import SQLAlchemyShortLinkRepository

ANALYTICS_URL = "http://analytics.test"

# ============================================================================
# SETTINGS AND PURE FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Test settings: no Redis, no sweeper, fast analytics retries."""
    return Settings(
        BASE_URL="http://sho.rt",
        LINK_CACHE_ENABLED=False,
        ANALYTICS_SERVICE_URL=ANALYTICS_URL,
        ANALYTICS_BASE_DELAY_SECONDS=0.0,
        ANALYTICS_WORKERS=1,
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def code_space(rng: random.Random) -> CodeSpace:
    return CodeSpace(rng=rng)


@pytest.fixture
def now() -> datetime.datetime:
    return datetime.datetime(2026, 10, 16, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def mock_repository() -> AsyncMock:
    """Repository double; every code is free and every lookup misses by default."""
    repository = AsyncMock(spec=SQLAlchemyShortLinkRepository)
    repository.exists_by_code_or_alias.return_value = False
    repository.find_by_code_or_alias.return_value = None
    repository.find_active_by_target.return_value = None
    repository.insert.side_effect = lambda link: link
    return repository


def make_link(
    code: str = "abc123",
    target_url: str = "https://example.com",
    *,
    active: bool = True,
    expires_at: datetime.datetime | None = None,
    is_custom_alias: bool = False,
    click_count: int = 0,
) -> ShortLink:
    stamp = datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)
    return ShortLink(
        id=1,
        code=code,
        target_url=target_url,
        is_custom_alias=is_custom_alias,
        active=active,
        click_count=click_count,
        expires_at=expires_at,
        created_at=stamp,
        updated_at=stamp,
    )


@pytest.fixture
def link_factory() -> Callable[..., ShortLink]:
    return make_link


# ============================================================================
# ANALYTICS STUB
# ============================================================================


class AnalyticsRecorder:
    """httpx handler that records requests and answers from a script.

    ``responses`` is consumed front to back; once empty every request gets
    ``default_status``. An entry may be an int status or an exception
    instance to raise.
    """

    def __init__(self, responses: list | None = None, default_status: int = 200):
        self.responses = list(responses or [])
        self.default_status = default_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "OK"})
        outcome = self.responses.pop(0) if self.responses else self.default_status
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"success": outcome < 400})

    @property
    def ingest_requests(self) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path != "/health"]


@pytest.fixture
def analytics() -> AnalyticsRecorder:
    return AnalyticsRecorder()


@pytest_asyncio.fixture
async def make_analytics_client() -> AsyncGenerator[Callable[..., AnalyticsClient], None]:
    clients: list[AnalyticsClient] = []

    def _make(handler) -> AnalyticsClient:
        client = AnalyticsClient(ANALYTICS_URL, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


# ============================================================================
# DATABASE
# ============================================================================


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortlink.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> SQLAlchemyShortLinkRepository:
    return SQLAlchemyShortLinkRepository(session_factory)


# ============================================================================
# API CLIENT
# ============================================================================


@pytest_asyncio.fixture
async def service_manager(
    settings: Settings,
    repository: SQLAlchemyShortLinkRepository,
    analytics: AnalyticsRecorder,
    make_analytics_client: Callable[..., AnalyticsClient],
) -> AsyncGenerator[SimpleNamespace, None]:
    """Stand-in for the ServiceManager wired against sqlite and the analytics stub."""
    code_space = CodeSpace(rng=random.Random(99))
    dispatcher = ClickEventDispatcher(make_analytics_client(analytics), base_delay=0.0, workers=1)
    await dispatcher.start()
    await dispatcher.is_analytics_healthy()
    manager = SimpleNamespace(
        settings=settings,
        logger=logging.getLogger("shortlink.tests"),
        repository=repository,
        code_space=code_space,
        allocator=ShortCodeAllocator(repository, code_space),
        dispatcher=dispatcher,
        coordinator=RedirectCoordinator(repository, dispatcher),
    )

    yield manager

    await manager.coordinator.drain()
    await dispatcher.stop(drain_timeout=1.0)


@pytest_asyncio.fixture
async def client(service_manager: SimpleNamespace) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> SimpleNamespace:
        return service_manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
