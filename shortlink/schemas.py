"""Pydantic schemas for request/response validation and click events.

This module defines Pydantic models for API input validation, output
serialization, the click event handed to the analytics dispatcher and the
payload stored in the Redis link cache.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    ├─ url: str (validated URL)
    ├─ custom_alias: str | None (format checked by CodeSpace)
    └─ expires_in_days: int | None (1..MAX_EXPIRES_IN_DAYS)

    ShortLinkResponse (Output)
    ├─ code, short_url, target_url
    ├─ is_custom, is_existing
    └─ created_at, expires_at

    ShortLinkInfo (Output)
    └─ code, short_url, target_url, state, active, is_expired, click_count, ...

    ClickEvent (Dispatcher message, frozen)
    └─ code, occurred_at, user_agent, referer, client_ip, country_hint, accept_language

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- Custom alias format is NOT checked here; the allocator owns that rule so the
  API and the core can never disagree about it.
- ``ClickEvent`` is immutable; ``to_payload`` renders the analytics wire format.
- All datetime fields are timezone-aware.

Classes:
    ShortenRequest:  Input schema for shortening requests.
    ShortLinkResponse:  Output schema for created links.
    ShortLinkInfo:  Output schema for link information.
    LinkListResponse:  Paginated list of active links.
    CodeSpaceStats:  Code space occupancy statistics.
    HealthResponse:  Output schema for health checks.
    RequestMetadata:  Inbound request details used to build click events.
    ClickEvent:  One redirect, as delivered to analytics.
    CachedShortLinkPayload:  Redis cache payload for a link.
"""

import datetime
from typing import Any

import validators
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortlink.config import get_settings
from shortlink.enums import HealthStatus, LinkState

__all__ = [
    "ShortenRequest",
    "ShortLinkResponse",
    "ShortLinkInfo",
    "LinkListResponse",
    "Pagination",
    "CodeSpaceStats",
    "HealthResponse",
    "RequestMetadata",
    "ClickEvent",
    "CachedShortLinkPayload",
]


class ShortenRequest(BaseModel):
    url: str
    custom_alias: str | None = None
    expires_in_days: int | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not validators.url(v):
            raise ValueError("Please provide a valid URL (must include http:// or https://)")
        return v

    @field_validator("custom_alias")
    @classmethod
    def strip_custom_alias(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("expires_in_days")
    @classmethod
    def validate_expires_in_days(cls, v: int | None) -> int | None:
        max_days = get_settings().MAX_EXPIRES_IN_DAYS
        if v is not None and not 1 <= v <= max_days:
            raise ValueError(f"Expiration must be between 1 and {max_days} days")
        return v


class ShortLinkResponse(BaseModel):
    code: str
    short_url: str
    target_url: str
    is_custom: bool
    is_existing: bool = False
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class ShortLinkInfo(BaseModel):
    code: str
    short_url: str
    target_url: str
    state: LinkState
    active: bool
    is_expired: bool
    is_custom: bool
    click_count: int
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class Pagination(BaseModel):
    total: int
    page: int
    pages: int
    limit: int


class LinkListResponse(BaseModel):
    links: list[ShortLinkInfo]
    pagination: Pagination


class CodeSpaceStats(BaseModel):
    total_links: int
    active_links: int
    custom_aliases: int
    expired_links: int
    alphabet_size: int
    default_length: int
    possible_combinations: int
    collision_probability: float = Field(..., description="Chance a fresh default-length candidate collides, 0..1")


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
    analytics: HealthStatus


class RequestMetadata(BaseModel):
    """What the redirect path knows about the client, straight from headers."""

    user_agent: str | None = None
    referer: str | None = None
    client_ip: str | None = None
    country_hint: str | None = None
    accept_language: str | None = None


class ClickEvent(BaseModel):
    """One redirect, owned by the dispatcher until delivered or dropped."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., min_length=1, description="Short code being clicked, e.g. 'abc123'")
    occurred_at: datetime.datetime
    user_agent: str | None = None
    referer: str | None = None
    client_ip: str | None = None
    country_hint: str | None = None
    accept_language: str | None = None

    @classmethod
    def from_metadata(
        cls, code: str, metadata: RequestMetadata | None, occurred_at: datetime.datetime
    ) -> "ClickEvent":
        metadata = metadata or RequestMetadata()
        return cls(code=code, occurred_at=occurred_at, **metadata.model_dump())

    def to_payload(self) -> dict[str, Any]:
        """Render the analytics collaborator's ingestion body."""
        return {
            "shortCode": self.code,
            "timestamp": self.occurred_at.isoformat(),
            "userAgent": self.user_agent or "unknown",
            "referer": self.referer or "direct",
            "ipAddress": self.client_ip or "unknown",
            "country": self.country_hint,
            "acceptLanguage": self.accept_language or "unknown",
        }


class CachedShortLinkPayload(BaseModel):
    """Redis cache payload for a short link."""

    id: int
    code: str
    target_url: str
    is_custom_alias: bool
    active: bool
    click_count: int
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = {"from_attributes": True}
