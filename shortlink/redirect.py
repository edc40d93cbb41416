"""Redirect critical path: resolve a code and hand the click to analytics.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │  GET /:code │
    └──────┬──────┘
           ▼
    ┌─────────────┐   absent    ┌──────────────┐
    │ repository  │ ──────────▶ │ LinkNotFound │
    │ lookup      │             └──────────────┘
    └──────┬──────┘
           ▼
    ┌─────────────┐  inactive / ┌──────────────┐
    │ is_redirect │  expired    │ LinkExpired  │
    │ able(now)?  │ ──────────▶ └──────────────┘
    └──────┬──────┘
           ▼
    ┌─────────────┐  enqueue only, never awaited
    │ dispatcher  │ ─────────────────────────────▶ analytics (detached)
    │ .dispatch() │
    └──────┬──────┘
           ▼
    ┌─────────────┐  detached task, failures logged
    │ click_count │ ─────────────────────────────▶ repository
    │ + 1         │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ return link │  caller redirects to link.target_url
    └─────────────┘

Key Behaviours
===============
- The only awaited I/O is the repository lookup.
- Expiry is checked at lookup time from ``expires_at``, whatever ``active``
  says, so a stale flag can never keep an expired link alive.
- ``click_count`` is best-effort and may under-count if the process dies
  between the redirect and the increment.
"""

import asyncio
import datetime
import logging
from collections.abc import Callable

from prometheus_client import Counter, Histogram

from shortlink.dispatcher import ClickEventDispatcher
from shortlink.enums import RequestStatus
from shortlink.errors import LinkExpired, LinkNotFound
from shortlink.lifecycle import is_redirectable, utcnow
from shortlink.models import ShortLink
from shortlink.repository import ShortLinkRepository
from shortlink.schemas import ClickEvent, RequestMetadata

__all__ = ["RedirectCoordinator"]

logger = logging.getLogger(__name__)

REDIRECT_REQUESTS_TOTAL = Counter(
    "shortlink_redirect_requests_total",
    "Redirect resolutions by outcome",
    ["status"],
)
REDIRECT_RESOLVE_DURATION = Histogram(
    "shortlink_redirect_resolve_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


class RedirectCoordinator:
    def __init__(
        self,
        repository: ShortLinkRepository,
        dispatcher: ClickEventDispatcher,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._clock = clock
        self._background: set[asyncio.Task] = set()

    async def resolve(self, code: str, metadata: RequestMetadata | None = None) -> ShortLink:
        with REDIRECT_RESOLVE_DURATION.time():
            link = await self._repository.find_by_code_or_alias(code)
            if link is None:
                REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
                raise LinkNotFound(code)

            now = self._clock()
            if not is_redirectable(link, now):
                REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.EXPIRED).inc()
                raise LinkExpired(code)

            self._dispatcher.dispatch(ClickEvent.from_metadata(link.code, metadata, now))
            self._spawn(self._increment_click_count(link.code))

        REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        return link

    async def drain(self) -> None:
        """Wait for outstanding click count increments."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _increment_click_count(self, code: str) -> None:
        try:
            await self._repository.increment_click_count(code)
        except Exception as exc:
            logger.warning(f"Failed to increment click count for {code}: {exc}")
