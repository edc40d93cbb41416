"""Repository tests: SQLAlchemy against sqlite, the Redis cache against a mock."""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from shortlink.config import Settings
from shortlink.errors import LinkNotFound, UniqueConstraintViolation
from shortlink.models import ShortLink
from shortlink.repository import CachedShortLinkRepository, SQLAlchemyShortLinkRepository
from shortlink.schemas import CachedShortLinkPayload


def _new_link(code: str, target_url: str = "https://example.com", **overrides) -> ShortLink:
    values = {"is_custom_alias": False, "active": True, "click_count": 0, "expires_at": None}
    values.update(overrides)
    return ShortLink(code=code, target_url=target_url, **values)


# ============================================================================
# SQLALCHEMY REPOSITORY
# ============================================================================


@pytest.mark.asyncio
async def test_insert_and_find(repository: SQLAlchemyShortLinkRepository) -> None:
    stored = await repository.insert(_new_link("abc123"))

    assert stored.id is not None
    assert stored.created_at is not None

    found = await repository.find_by_code_or_alias("abc123")
    assert found is not None
    assert found.target_url == "https://example.com"
    assert await repository.exists_by_code_or_alias("abc123")
    assert not await repository.exists_by_code_or_alias("zzz999")
    assert await repository.find_by_code_or_alias("zzz999") is None


@pytest.mark.asyncio
async def test_alias_and_generated_code_share_one_namespace(repository: SQLAlchemyShortLinkRepository) -> None:
    await repository.insert(_new_link("promo", is_custom_alias=True))

    with pytest.raises(UniqueConstraintViolation) as exc_info:
        await repository.insert(_new_link("promo", "https://other.example.com"))

    assert exc_info.value.value == "promo"


@pytest.mark.asyncio
async def test_increment_click_count(repository: SQLAlchemyShortLinkRepository) -> None:
    await repository.insert(_new_link("abc123"))

    for _ in range(3):
        await repository.increment_click_count("abc123")

    found = await repository.find_by_code_or_alias("abc123")
    assert found.click_count == 3


@pytest.mark.asyncio
async def test_soft_deactivate(repository: SQLAlchemyShortLinkRepository) -> None:
    await repository.insert(_new_link("abc123"))

    await repository.soft_deactivate("abc123")

    found = await repository.find_by_code_or_alias("abc123")
    assert found is not None
    assert found.active is False
    with pytest.raises(LinkNotFound):
        await repository.soft_deactivate("zzz999")


@pytest.mark.asyncio
async def test_find_active_by_target_skips_dead_links(repository: SQLAlchemyShortLinkRepository, now) -> None:
    target = "https://example.com/dedupe"
    await repository.insert(_new_link("expd01", target, expires_at=now - datetime.timedelta(days=1)))
    await repository.insert(_new_link("gone01", target, active=False))
    assert await repository.find_active_by_target(target, now) is None

    await repository.insert(_new_link("live01", target, expires_at=now + datetime.timedelta(days=1)))
    found = await repository.find_active_by_target(target, now)
    assert found.code == "live01"


@pytest.mark.asyncio
async def test_list_active_paginates(repository: SQLAlchemyShortLinkRepository) -> None:
    for index in range(5):
        await repository.insert(_new_link(f"code0{index}", f"https://example.com/{index}"))
    await repository.soft_deactivate("code00")

    page, total = await repository.list_active(offset=0, limit=3)
    assert total == 4
    assert [link.code for link in page] == ["code04", "code03", "code02"]

    page, _ = await repository.list_active(offset=3, limit=3)
    assert [link.code for link in page] == ["code01"]

    page, _ = await repository.list_active(offset=0, limit=10, sort_by="target_url", descending=False)
    assert [link.target_url for link in page] == [f"https://example.com/{index}" for index in range(1, 5)]


@pytest.mark.asyncio
async def test_count_links_and_expiry_sweep(repository: SQLAlchemyShortLinkRepository, now) -> None:
    await repository.insert(_new_link("live01"))
    await repository.insert(_new_link("promo", is_custom_alias=True))
    await repository.insert(_new_link("expd01", expires_at=now - datetime.timedelta(hours=1)))
    await repository.insert(_new_link("gone01", active=False))

    counts = await repository.count_links(now)
    assert (counts.total, counts.active, counts.custom, counts.expired) == (4, 3, 1, 1)

    assert await repository.deactivate_expired(now) == 1
    assert await repository.deactivate_expired(now) == 0

    expired = await repository.find_by_code_or_alias("expd01")
    assert expired.active is False


# ============================================================================
# REDIS READ-THROUGH CACHE
# ============================================================================


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Mock Redis client."""
    client = AsyncMock(spec=redis.Redis)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.setex = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.incr = AsyncMock(return_value=1)
    client.expire = AsyncMock(return_value=True)
    return client


@pytest.fixture
def inner(mock_repository: AsyncMock) -> AsyncMock:
    return mock_repository


@pytest.fixture
def cached(inner: AsyncMock, mock_redis: AsyncMock, settings: Settings) -> CachedShortLinkRepository:
    return CachedShortLinkRepository(inner, mock_redis, settings)


@pytest.mark.asyncio
async def test_cache_miss_reads_database_and_fills_cache(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock, link_factory, settings: Settings
) -> None:
    inner.find_by_code_or_alias.return_value = link_factory("abc123")

    link = await cached.find_by_code_or_alias("abc123")

    assert link.code == "abc123"
    assert [c.args[0] for c in mock_redis.get.await_args_list] == [
        "link:abc123",
        "gen:link:abc123",
        "gen:link:abc123",
    ]
    key, ttl, raw = mock_redis.setex.await_args.args
    assert key == "link:abc123"
    assert ttl == settings.LINK_CACHE_TTL_SECONDS
    assert CachedShortLinkPayload.model_validate_json(raw).target_url == "https://example.com"
    mock_redis.delete.assert_awaited_once_with("lock:link:abc123")


@pytest.mark.asyncio
async def test_cache_hit_skips_database(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock, link_factory
) -> None:
    mock_redis.get.return_value = CachedShortLinkPayload.model_validate(
        link_factory("abc123", "https://cached.example.com")
    ).model_dump_json()

    link = await cached.find_by_code_or_alias("abc123")

    assert link.target_url == "https://cached.example.com"
    inner.find_by_code_or_alias.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_failure_falls_back_to_database(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock, link_factory
) -> None:
    mock_redis.get.side_effect = RedisConnectionError("redis down")
    mock_redis.set.side_effect = RedisConnectionError("redis down")
    mock_redis.setex.side_effect = RedisConnectionError("redis down")
    mock_redis.delete.side_effect = RedisConnectionError("redis down")
    inner.find_by_code_or_alias.return_value = link_factory("abc123")

    link = await cached.find_by_code_or_alias("abc123")

    assert link.code == "abc123"
    inner.find_by_code_or_alias.assert_awaited_once_with("abc123")


@pytest.mark.asyncio
async def test_corrupt_cache_entry_is_ignored(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock, link_factory
) -> None:
    mock_redis.get.return_value = "{not json"
    inner.find_by_code_or_alias.return_value = link_factory("abc123")

    link = await cached.find_by_code_or_alias("abc123")

    assert link.code == "abc123"
    inner.find_by_code_or_alias.assert_awaited_once()


@pytest.mark.asyncio
async def test_existence_checks_bypass_cache(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock
) -> None:
    inner.exists_by_code_or_alias.return_value = True

    assert await cached.exists_by_code_or_alias("abc123") is True
    mock_redis.get.assert_not_awaited()


@pytest.mark.asyncio
async def test_insert_writes_cache_and_deactivate_evicts(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock, link_factory
) -> None:
    await cached.insert(link_factory("abc123"))
    assert mock_redis.setex.await_args.args[0] == "link:abc123"

    await cached.soft_deactivate("abc123")
    inner.soft_deactivate.assert_awaited_once_with("abc123")
    mock_redis.incr.assert_awaited_once_with("gen:link:abc123")
    mock_redis.delete.assert_awaited_once_with("link:abc123")


@pytest.mark.asyncio
async def test_missing_link_is_not_cached(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock
) -> None:
    assert await cached.find_by_code_or_alias("zzz999") is None
    mock_redis.setex.assert_not_awaited()


class DictRedis:
    """Just enough of ``redis.asyncio.Redis`` for the cache decorator."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        return sum(self.store.pop(key, None) is not None for key in keys)

    async def incr(self, key: str) -> int:
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def expire(self, key: str, ttl: int) -> bool:
        return key in self.store


class PausingRepository:
    """Inner repository whose ``find`` stalls after it has read the row."""

    def __init__(self, link_factory) -> None:
        self._link_factory = link_factory
        self.active = True
        self.row_read = asyncio.Event()
        self.resume = asyncio.Event()

    async def find_by_code_or_alias(self, code: str) -> ShortLink | None:
        snapshot = self._link_factory(code, active=self.active)
        self.row_read.set()
        await self.resume.wait()
        return snapshot

    async def soft_deactivate(self, code: str) -> None:
        self.active = False


@pytest.mark.asyncio
async def test_deactivate_during_cache_fill_leaves_no_active_entry(link_factory, settings: Settings) -> None:
    inner = PausingRepository(link_factory)
    cache = DictRedis()
    cached = CachedShortLinkRepository(inner, cache, settings)

    # The fill reads the active row, then the delete commits and evicts
    # before the fill gets to write the cache.
    fill = asyncio.create_task(cached.find_by_code_or_alias("abc123"))
    await inner.row_read.wait()
    await cached.soft_deactivate("abc123")
    inner.resume.set()
    stale = await fill

    assert stale.active is True
    assert "link:abc123" not in cache.store

    fresh = await cached.find_by_code_or_alias("abc123")
    assert fresh.active is False
    assert CachedShortLinkPayload.model_validate_json(cache.store["link:abc123"]).active is False


@pytest.mark.asyncio
async def test_generation_read_failure_skips_cache_write(
    cached: CachedShortLinkRepository, inner: AsyncMock, mock_redis: AsyncMock, link_factory
) -> None:
    mock_redis.get.side_effect = [None, RedisConnectionError("redis down")]
    inner.find_by_code_or_alias.return_value = link_factory("abc123")

    link = await cached.find_by_code_or_alias("abc123")

    assert link.code == "abc123"
    mock_redis.setex.assert_not_awaited()
