"""Link management service: creation, information, soft delete and statistics.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                    LinkService                              │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │ Create links    │  │ Allocator       │  │ Management   │ │
    │  │ • dedupe target │  │ • custom alias  │  │ • info       │ │
    │  │ • expiry        │  │ • random codes  │  │ • soft delete│ │
    │  │ • insert retry  │  │ • length growth │  │ • stats/list │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────────────────────────────────────────────────┐
    │                 ShortLinkRepository                         │
    └─────────────────────────────────────────────────────────────┘

Link Creation Flow
------------------
::
    ┌─────────────┐
    │  POST /api  │
    │  /shorten   │
    └──────┬──────┘
           ▼
    ┌─────────────┐   existing active link for the same target
    │ Dedupe      │ ───────────────────────────────────────────▶ reuse it
    │ (no alias)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ allocate()  │  AliasInvalid / AliasTaken / AllocationExhausted
    └──────┬──────┘
           ▼
    ┌─────────────┐  UniqueConstraintViolation:
    │ insert()    │    custom alias   → AliasTaken
    └──────┬──────┘    generated code → allocate again, once
           ▼
    ┌─────────────┐
    │ Return link │
    └─────────────┘

Usage Examples
=============
```python
@router.post("/api/shorten")
async def shorten_url(
    payload: ShortenRequest,
    service: LinkService = Depends(get_link_service),
) -> ShortLinkResponse:
    link, is_existing = await service.create_short_link(payload)
    ...
```
"""

import datetime
import logging
import math
import time
from typing import TYPE_CHECKING, Optional

from prometheus_client import Counter, Histogram

from shortlink.allocator import ShortCodeAllocator
from shortlink.config import Settings
from shortlink.enums import RequestStatus
from shortlink.errors import (
    AliasTaken,
    AllocationExhausted,
    CollisionFailure,
    LinkNotFound,
    UniqueConstraintViolation,
    ValidationFailure,
)
from shortlink.lifecycle import utcnow
from shortlink.models import ShortLink
from shortlink.repository import SORTABLE_FIELDS, ShortLinkRepository
from shortlink.schemas import CodeSpaceStats, ShortenRequest

if TYPE_CHECKING:
    from shortlink.dependencies import RequestContext

__all__ = ["LinkService"]

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlink_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "shortlink_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
INSERT_COLLISIONS_TOTAL = Counter(
    "shortlink_insert_collisions_total",
    "Unique constraint violations reported by the repository at insert time",
    ["kind"],
)


class LinkService:
    """Creation and management operations for short links.

    Example:
        >>> service = LinkService.from_context(ctx)
        >>> link, is_existing = await service.create_short_link(ShortenRequest(url="https://example.com"))
        >>> print(f"Shortened: {link.code}")
    """

    def __init__(
        self,
        repository: ShortLinkRepository,
        allocator: ShortCodeAllocator,
        settings: Settings,
        logger: Optional[logging.Logger | logging.LoggerAdapter] = None,
        clock=utcnow,
    ):
        self._repository = repository
        self._allocator = allocator
        self._settings = settings
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":
        """Build a service from the request context and the shared resources it carries."""
        manager = ctx.service_manager
        return cls(manager.repository, manager.allocator, ctx.settings, ctx.logger)

    @property
    def settings(self) -> Settings:
        return self._settings

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_short_link(self, request: ShortenRequest) -> tuple[ShortLink, bool]:
        """Create (or reuse) a short link for ``request.url``.

        Returns:
            tuple[ShortLink, bool]: the link and whether it already existed

        Raises:
            AliasInvalid: custom alias fails the format check
            AliasTaken: custom alias already present, before or at insert time
            AllocationExhausted: no free generated code could be found
        """
        start_time = time.perf_counter()
        now = self._clock()

        try:
            self._logger.info(f"Creating short link for: {request.url}")

            if request.custom_alias is None and self._settings.DEDUPLICATE_TARGETS:
                existing = await self._repository.find_active_by_target(request.url, now)
                if existing is not None:
                    self._logger.info(f"Reusing existing short link {existing.code} for {request.url}")
                    LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
                    return existing, True

            expires_at = None
            if request.expires_in_days:
                expires_at = now + datetime.timedelta(days=request.expires_in_days)

            link = await self._allocate_and_insert(request, expires_at)

            duration = time.perf_counter() - start_time
            LINK_CREATION_DURATION.observe(duration)
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(f"Short link created: {link.code} in {duration:.3f}s")
            return link, False

        except ValidationFailure as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Short link creation rejected: {exc}")
            raise

        except CollisionFailure as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Short link creation conflict: {exc}")
            raise

        except AllocationExhausted as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.EXHAUSTED).inc()
            self._logger.error(f"Short link creation failed: {exc}")
            raise

        except Exception as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Short link creation error: {exc}")
            raise

    async def get_link(self, code: str) -> ShortLink:
        link = await self._repository.find_by_code_or_alias(code)
        if link is None:
            raise LinkNotFound(code)
        return link

    async def deactivate_link(self, code: str) -> None:
        await self._repository.soft_deactivate(code)
        self._logger.info(f"Short link deactivated: {code}")

    async def list_links(
        self, page: int = 1, limit: int = 10, sort_by: str = "created_at", order: str = "desc"
    ) -> tuple[list[ShortLink], int]:
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationFailure(f"Cannot sort by '{sort_by}'")
        offset = (page - 1) * limit
        return await self._repository.list_active(offset, limit, sort_by, order == "desc")

    async def code_space_stats(self) -> CodeSpaceStats:
        counts = await self._repository.count_links(self._clock())
        code_space = self._allocator.code_space
        return CodeSpaceStats(
            total_links=counts.total,
            active_links=counts.active,
            custom_aliases=counts.custom,
            expired_links=counts.expired,
            alphabet_size=len(code_space.alphabet),
            default_length=code_space.default_length,
            possible_combinations=code_space.capacity(),
            collision_probability=code_space.collision_probability(counts.total),
        )

    @staticmethod
    def page_count(total: int, limit: int) -> int:
        return math.ceil(total / limit) if limit else 0

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _allocate_and_insert(self, request: ShortenRequest, expires_at: datetime.datetime | None) -> ShortLink:
        # A generated code that loses the insert race gets exactly one more try.
        for attempt in (1, 2):
            allocation = await self._allocator.allocate(request.custom_alias)
            link = ShortLink(
                code=allocation.code,
                target_url=request.url,
                is_custom_alias=allocation.is_custom,
                active=True,
                click_count=0,
                expires_at=expires_at,
            )
            try:
                return await self._repository.insert(link)
            except UniqueConstraintViolation as exc:
                if allocation.is_custom:
                    INSERT_COLLISIONS_TOTAL.labels(kind="custom").inc()
                    raise AliasTaken(allocation.code) from exc
                INSERT_COLLISIONS_TOTAL.labels(kind="generated").inc()
                self._logger.warning(f"Insert-time collision for generated code {allocation.code} (attempt {attempt})")

        raise AllocationExhausted(2, self._allocator.code_space.max_length)
