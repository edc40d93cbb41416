"""Short link storage: the repository contract and its implementations.

The repository is the single source of truth for uniqueness and liveness.
The allocator and the redirect coordinator only see the
``ShortLinkRepository`` protocol; production wires the SQLAlchemy repository,
optionally wrapped in the Redis read-through cache.

Architecture Overview
=====================
::
    ┌───────────────────────────┐
    │ ShortCodeAllocator /       │
    │ RedirectCoordinator        │
    └─────────────┬─────────────┘
                  ▼
    ┌───────────────────────────┐     find only      ┌─────────┐
    │ CachedShortLinkRepository │ ─────────────────▶ │  Redis  │
    └─────────────┬─────────────┘                    └─────────┘
                  ▼ everything else (and cache misses)
    ┌───────────────────────────┐                    ┌──────────┐
    │ SQLAlchemyShortLinkRepo   │ ─────────────────▶ │ Postgres │
    └───────────────────────────┘                    └──────────┘

Key Behaviours
===============
- ``insert`` surfaces the unique constraint as ``UniqueConstraintViolation``.
- Every operation opens its own session, so detached click increments never
  share a request-scoped session.
- Existence checks always hit the database; the cache only serves ``find``.
- Any Redis failure falls back to the database. The cache is never required
  for correctness.
- ``soft_deactivate`` bumps ``gen:link:{code}`` and then evicts the cached
  entry. A cache fill reads that generation before the database and evicts
  its own write if it changed, so a fill racing a delete cannot leave the
  active row cached.
- Cached expiry is still enforced because liveness is recomputed from
  ``expires_at`` on every lookup.
"""

import asyncio
import datetime
import logging
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError
from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.config import Settings, get_settings
from shortlink.enums import CacheStatus
from shortlink.errors import LinkNotFound, UniqueConstraintViolation
from shortlink.models import ShortLink
from shortlink.schemas import CachedShortLinkPayload

__all__ = [
    "LinkCounts",
    "ShortLinkRepository",
    "SQLAlchemyShortLinkRepository",
    "CachedShortLinkRepository",
    "SORTABLE_FIELDS",
]

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": ShortLink.created_at,
    "click_count": ShortLink.click_count,
    "target_url": ShortLink.target_url,
}

# Generation read failed; a fill must not write to the cache.
_UNKNOWN = object()

DATABASE_READS_TOTAL = Counter(
    "shortlink_database_reads_total",
    "Total database read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortlink_database_writes_total",
    "Total database write operations",
)
LINK_CACHE_LOOKUPS_TOTAL = Counter(
    "shortlink_link_cache_lookups_total",
    "Link cache lookups",
    ["cache_hit"],
)
LINK_CACHE_ERRORS_TOTAL = Counter(
    "shortlink_link_cache_errors_total",
    "Redis errors absorbed by the link cache",
)


@dataclass(frozen=True)
class LinkCounts:
    total: int
    active: int
    custom: int
    expired: int


class ShortLinkRepository(Protocol):
    async def find_by_code_or_alias(self, code: str) -> ShortLink | None: ...

    async def exists_by_code_or_alias(self, code: str) -> bool: ...

    async def insert(self, link: ShortLink) -> ShortLink: ...

    async def increment_click_count(self, code: str) -> None: ...

    async def soft_deactivate(self, code: str) -> None: ...

    async def find_active_by_target(self, target_url: str, now: datetime.datetime) -> ShortLink | None: ...

    async def list_active(
        self, offset: int, limit: int, sort_by: str = "created_at", descending: bool = True
    ) -> tuple[list[ShortLink], int]: ...

    async def count_links(self, now: datetime.datetime) -> LinkCounts: ...

    async def deactivate_expired(self, now: datetime.datetime) -> int: ...


# ============================================================================
# SQLALCHEMY REPOSITORY
# ============================================================================


def _not_expired(now: datetime.datetime):
    return or_(ShortLink.expires_at.is_(None), ShortLink.expires_at > now)


class SQLAlchemyShortLinkRepository:
    """Async SQLAlchemy repository; one session per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_code_or_alias(self, code: str) -> ShortLink | None:
        async with self._session_factory() as session:
            result = await session.execute(select(ShortLink).where(ShortLink.code == code))
            DATABASE_READS_TOTAL.inc()
            return result.scalar_one_or_none()

    async def exists_by_code_or_alias(self, code: str) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(select(exists().where(ShortLink.code == code)))
            DATABASE_READS_TOTAL.inc()
            return bool(found)

    async def insert(self, link: ShortLink) -> ShortLink:
        async with self._session_factory() as session:
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise UniqueConstraintViolation("code", link.code) from exc
            DATABASE_WRITES_TOTAL.inc()
            await session.refresh(link)
            return link

    async def increment_click_count(self, code: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ShortLink).where(ShortLink.code == code).values(click_count=ShortLink.click_count + 1)
            )
            await session.commit()
            DATABASE_WRITES_TOTAL.inc()

    async def soft_deactivate(self, code: str) -> None:
        async with self._session_factory() as session:
            result = await session.execute(update(ShortLink).where(ShortLink.code == code).values(active=False))
            await session.commit()
            DATABASE_WRITES_TOTAL.inc()
            if result.rowcount == 0:
                raise LinkNotFound(code)

    async def find_active_by_target(self, target_url: str, now: datetime.datetime) -> ShortLink | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ShortLink)
                .where(ShortLink.target_url == target_url, ShortLink.active.is_(True), _not_expired(now))
                .order_by(ShortLink.created_at.desc(), ShortLink.id.desc())
                .limit(1)
            )
            DATABASE_READS_TOTAL.inc()
            return result.scalar_one_or_none()

    async def list_active(
        self, offset: int, limit: int, sort_by: str = "created_at", descending: bool = True
    ) -> tuple[list[ShortLink], int]:
        column = SORTABLE_FIELDS[sort_by]
        ordering = column.desc() if descending else column.asc()
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(ShortLink).where(ShortLink.active.is_(True))
            )
            result = await session.execute(
                select(ShortLink)
                .where(ShortLink.active.is_(True))
                .order_by(ordering, ShortLink.id.desc())
                .offset(offset)
                .limit(limit)
            )
            DATABASE_READS_TOTAL.inc(2)
            return list(result.scalars().all()), int(total or 0)

    async def count_links(self, now: datetime.datetime) -> LinkCounts:
        async def _count(*criteria) -> int:
            value = await session.scalar(select(func.count()).select_from(ShortLink).where(*criteria))
            DATABASE_READS_TOTAL.inc()
            return int(value or 0)

        async with self._session_factory() as session:
            return LinkCounts(
                total=await _count(),
                active=await _count(ShortLink.active.is_(True)),
                custom=await _count(ShortLink.is_custom_alias.is_(True)),
                expired=await _count(
                    ShortLink.active.is_(True), ShortLink.expires_at.is_not(None), ShortLink.expires_at <= now
                ),
            )

    async def deactivate_expired(self, now: datetime.datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(ShortLink)
                .where(ShortLink.active.is_(True), ShortLink.expires_at.is_not(None), ShortLink.expires_at <= now)
                .values(active=False)
            )
            await session.commit()
            DATABASE_WRITES_TOTAL.inc()
            return result.rowcount or 0


# ============================================================================
# REDIS READ-THROUGH CACHE
# ============================================================================


class CachedShortLinkRepository:
    """Serve ``find_by_code_or_alias`` from Redis; delegate everything else."""

    def __init__(self, inner: ShortLinkRepository, cache: redis.Redis, settings: Settings | None = None):
        self._inner = inner
        self._cache = cache
        self._settings = settings or get_settings()

    @staticmethod
    def _cache_key(code: str) -> str:
        return f"link:{code}"

    @staticmethod
    def _generation_key(code: str) -> str:
        return f"gen:link:{code}"

    async def find_by_code_or_alias(self, code: str) -> ShortLink | None:
        cached = await self._read_cache(code)
        if cached is not None:
            LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.HIT).inc()
            return cached
        LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.MISS).inc()

        lock_acquired = await self._acquire_lock(code)
        try:
            if not lock_acquired:
                # Another request is filling this key; give it a moment.
                for _ in range(self._settings.CACHE_LOCK_RETRY_COUNT):
                    await asyncio.sleep(self._settings.CACHE_LOCK_RETRY_DELAY_SECONDS)
                    cached = await self._read_cache(code)
                    if cached is not None:
                        return cached

            return await self._fill(code)
        finally:
            if lock_acquired:
                await self._release_lock(code)

    async def _fill(self, code: str) -> ShortLink | None:
        # The generation is read before the database so an invalidation that
        # lands while this fill is in flight can be detected afterwards.
        generation = await self._read_generation(code)
        link = await self._inner.find_by_code_or_alias(code)
        if link is None or generation is _UNKNOWN:
            return link

        await self._write_cache(link)
        if await self._read_generation(code) != generation:
            logger.info(f"Cache fill for {code} raced an invalidation, evicting")
            await self.evict(code)
        return link

    async def exists_by_code_or_alias(self, code: str) -> bool:
        return await self._inner.exists_by_code_or_alias(code)

    async def insert(self, link: ShortLink) -> ShortLink:
        stored = await self._inner.insert(link)
        await self._write_cache(stored)
        return stored

    async def increment_click_count(self, code: str) -> None:
        await self._inner.increment_click_count(code)

    async def soft_deactivate(self, code: str) -> None:
        await self._inner.soft_deactivate(code)
        await self._bump_generation(code)
        await self.evict(code)

    async def find_active_by_target(self, target_url: str, now: datetime.datetime) -> ShortLink | None:
        return await self._inner.find_active_by_target(target_url, now)

    async def list_active(
        self, offset: int, limit: int, sort_by: str = "created_at", descending: bool = True
    ) -> tuple[list[ShortLink], int]:
        return await self._inner.list_active(offset, limit, sort_by, descending)

    async def count_links(self, now: datetime.datetime) -> LinkCounts:
        return await self._inner.count_links(now)

    async def deactivate_expired(self, now: datetime.datetime) -> int:
        return await self._inner.deactivate_expired(now)

    async def evict(self, code: str) -> None:
        try:
            await self._cache.delete(self._cache_key(code))
        except RedisError as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            logger.warning(f"Cache eviction failed for {code}: {exc}")

    async def _read_cache(self, code: str) -> ShortLink | None:
        try:
            raw = await self._cache.get(self._cache_key(code))
        except RedisError as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            logger.warning(f"Cache read failed for {code}, using database: {exc}")
            return None
        if not raw:
            return None
        try:
            payload = CachedShortLinkPayload.model_validate_json(raw)
        except ValueError as exc:
            logger.error(f"Cache deserialization error for {code}: {exc}")
            return None
        return ShortLink(**payload.model_dump())

    async def _write_cache(self, link: ShortLink) -> None:
        try:
            payload = CachedShortLinkPayload.model_validate(link)
            await self._cache.setex(
                self._cache_key(link.code),
                self._settings.LINK_CACHE_TTL_SECONDS,
                payload.model_dump_json(),
            )
        except RedisError as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            logger.warning(f"Cache write failed for {link.code}: {exc}")

    async def _read_generation(self, code: str) -> str | None | object:
        try:
            return await self._cache.get(self._generation_key(code))
        except RedisError as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            logger.warning(f"Cache generation read failed for {code}, skipping fill: {exc}")
            return _UNKNOWN

    async def _bump_generation(self, code: str) -> None:
        key = self._generation_key(code)
        try:
            await self._cache.incr(key)
            await self._cache.expire(key, self._settings.LINK_CACHE_TTL_SECONDS)
        except RedisError as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            logger.warning(f"Cache generation bump failed for {code}: {exc}")

    async def _acquire_lock(self, code: str) -> bool:
        try:
            locked = await self._cache.set(
                f"lock:link:{code}", "1", ex=self._settings.CACHE_LOCK_TTL_SECONDS, nx=True
            )
        except RedisError as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            logger.warning(f"Cache lock failed for {code}: {exc}")
            return True
        return bool(locked)

    async def _release_lock(self, code: str) -> None:
        try:
            await self._cache.delete(f"lock:link:{code}")
        except RedisError as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            logger.warning(f"Cache unlock failed for {code}: {exc}")
