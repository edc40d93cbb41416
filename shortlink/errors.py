"""Domain exceptions raised by the shortlink core.

Routes translate these into HTTP responses; nothing in the core knows about
status codes.

Hierarchy
=========
::
    ShortLinkError
    ├─ ValidationFailure
    │  ├─ AliasInvalid
    │  └─ MalformedEvent
    ├─ CollisionFailure
    │  └─ AliasTaken
    ├─ AllocationExhausted
    ├─ UniqueConstraintViolation
    ├─ TransientDeliveryFailure
    ├─ LinkNotFound
    └─ LinkExpired
"""

__all__ = [
    "ShortLinkError",
    "ValidationFailure",
    "AliasInvalid",
    "MalformedEvent",
    "CollisionFailure",
    "AliasTaken",
    "AllocationExhausted",
    "UniqueConstraintViolation",
    "TransientDeliveryFailure",
    "LinkNotFound",
    "LinkExpired",
]


class ShortLinkError(Exception):
    """Base class for all shortlink domain errors."""


class ValidationFailure(ShortLinkError):
    """Input rejected before any work was done. Never retried."""


class AliasInvalid(ValidationFailure):
    def __init__(self, alias: str, reason: str):
        super().__init__(f"Custom alias '{alias}' is invalid: {reason}")
        self.alias = alias
        self.reason = reason


class MalformedEvent(ValidationFailure):
    """The analytics collaborator refused an event with a 4xx response."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"Analytics rejected event with status {status_code}: {detail}".rstrip(": "))
        self.status_code = status_code


class CollisionFailure(ShortLinkError):
    """A candidate code is already present in the code namespace."""


class AliasTaken(CollisionFailure):
    def __init__(self, alias: str):
        super().__init__(f"Custom alias '{alias}' is already taken")
        self.alias = alias


class AllocationExhausted(ShortLinkError):
    def __init__(self, attempts: int, max_length: int):
        super().__init__(f"Unable to allocate a unique short code after {attempts} attempts up to length {max_length}")
        self.attempts = attempts
        self.max_length = max_length


class UniqueConstraintViolation(ShortLinkError):
    def __init__(self, field: str, value: str):
        super().__init__(f"Unique constraint violated on {field}={value!r}")
        self.field = field
        self.value = value


class TransientDeliveryFailure(ShortLinkError):
    """Analytics unreachable, timed out or answered 5xx. Safe to retry."""

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(reason)
        self.status_code = status_code


class LinkNotFound(ShortLinkError):
    def __init__(self, code: str):
        super().__init__(f"Short URL '{code}' not found")
        self.code = code


class LinkExpired(ShortLinkError):
    def __init__(self, code: str):
        super().__init__(f"Short URL '{code}' has expired or is inactive")
        self.code = code
