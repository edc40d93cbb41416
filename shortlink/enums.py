"""Shared enums for the shortlink service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "LinkState", "DeliveryOutcome"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    EXHAUSTED = "exhausted"
    ERROR = "error"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class LinkState(StrEnum):
    """Redirect lifecycle of a short link.

    ``ACTIVE`` is the only state that redirects. ``EXPIRED`` is evaluated
    lazily from ``expires_at``; ``INACTIVE`` is set by an explicit delete.
    """

    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class DeliveryOutcome(StrEnum):
    """Final result of delivering one click event (or batch) to analytics."""

    DELIVERED = "delivered"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"
