"""Liveness rules for short links and the optional expiry sweep.

``is_redirectable`` is the one place that decides whether a link may redirect.
The redirect path and the housekeeping sweep both call it, so the two can
never disagree.

State Diagram
=============
::
    ┌────────┐  expires_at <= now  ┌─────────┐
    │ ACTIVE │ ──────────────────▶ │ EXPIRED │  (lazy, at lookup)
    └───┬────┘                     └─────────┘
        │ soft delete
        ▼
    ┌──────────┐
    │ INACTIVE │  (terminal)
    └──────────┘
"""

import asyncio
import datetime
import logging
from typing import TYPE_CHECKING

from shortlink.enums import LinkState
from shortlink.models import ShortLink

if TYPE_CHECKING:
    from shortlink.repository import ShortLinkRepository

__all__ = ["utcnow", "is_expired", "link_state", "is_redirectable", "deactivate_expired_links", "run_expiry_sweeper"]

logger = logging.getLogger(__name__)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def is_expired(link: ShortLink, now: datetime.datetime) -> bool:
    return link.expires_at is not None and _as_utc(link.expires_at) <= _as_utc(now)


def link_state(link: ShortLink, now: datetime.datetime) -> LinkState:
    if not link.active:
        return LinkState.INACTIVE
    if is_expired(link, now):
        return LinkState.EXPIRED
    return LinkState.ACTIVE


def is_redirectable(link: ShortLink, now: datetime.datetime) -> bool:
    return link_state(link, now) is LinkState.ACTIVE


async def deactivate_expired_links(repository: "ShortLinkRepository", now: datetime.datetime | None = None) -> int:
    """Flip links that are past ``expires_at`` but still flagged active."""
    now = now or utcnow()
    flipped = await repository.deactivate_expired(now)
    if flipped:
        logger.info(f"Deactivated {flipped} expired links")
    return flipped


async def run_expiry_sweeper(repository: "ShortLinkRepository", interval_seconds: int) -> None:
    """Run the expiry sweep forever; cancel the task to stop it."""
    logger.info(f"Starting expiry sweep every {interval_seconds}s")

    while True:
        try:
            await deactivate_expired_links(repository)
        except Exception as e:
            logger.error(f"Expiry sweep error: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
