"""Short code allocation: custom alias reservation and random code generation.

Allocation Flow
===============
::
    ┌──────────────────┐
    │ allocate(alias?) │
    └────────┬─────────┘
     alias?  │
    ┌────────┴─────────┐
    │ YES               │ NO
    ▼                   ▼
┌──────────────┐   ┌─────────────────────────────┐
│ format check │   │ for length in 6..8:          │
│ (CodeSpace)  │   │   for attempt in 1..10:      │
└──────┬───────┘   │     candidate = random(len)  │
       ▼           │     exists? → collision, next│
┌──────────────┐   │     free?   → return         │
│ exists?      │   └──────────────┬──────────────┘
│ → AliasTaken │                  ▼
└──────┬───────┘        AllocationExhausted
       ▼
  {alias.lower(), custom}

Key Behaviours
===============
- The existence check is an optimisation. The repository's unique constraint
  is authoritative; the caller translates insert-time violations.
- Each collision is logged and counted; it is never an error by itself.
- The loop is bounded by ``max_retries * (max_length - default_length + 1)``
  repository round trips.
"""

import logging
from dataclasses import dataclass

from prometheus_client import Counter

from shortlink.code_space import CodeSpace
from shortlink.errors import AliasInvalid, AliasTaken, AllocationExhausted
from shortlink.repository import ShortLinkRepository

__all__ = ["AllocationAttempt", "AllocationResult", "ShortCodeAllocator", "DEFAULT_MAX_RETRIES"]

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 10

ALLOCATIONS_TOTAL = Counter(
    "shortlink_allocations_total",
    "Short code allocation requests",
    ["kind", "status"],
)
ALLOCATION_COLLISIONS_TOTAL = Counter(
    "shortlink_allocation_collisions_total",
    "Generated candidates that were already taken",
    ["length"],
)
ALLOCATION_LENGTH_GROWTH_TOTAL = Counter(
    "shortlink_allocation_length_growth_total",
    "Times the allocator grew the code length after exhausting a length",
)


@dataclass(frozen=True)
class AllocationAttempt:
    candidate: str
    attempt: int
    length: int


@dataclass(frozen=True)
class AllocationResult:
    code: str
    is_custom: bool


class ShortCodeAllocator:
    """Turn a creation request into a code that is free in the repository."""

    def __init__(
        self,
        repository: ShortLinkRepository,
        code_space: CodeSpace | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        assert max_retries > 0, f"max_retries must be positive, got {max_retries!r}"
        self._repository = repository
        self._code_space = code_space or CodeSpace()
        self._max_retries = max_retries

    @property
    def code_space(self) -> CodeSpace:
        return self._code_space

    async def allocate(self, custom_alias: str | None = None) -> AllocationResult:
        if custom_alias is not None:
            return await self._reserve_alias(custom_alias)
        return await self._generate()

    async def _reserve_alias(self, alias: str) -> AllocationResult:
        reason = self._code_space.alias_rejection_reason(alias)
        if reason is not None:
            ALLOCATIONS_TOTAL.labels(kind="custom", status="invalid").inc()
            raise AliasInvalid(alias, reason)

        code = self._code_space.normalize_alias(alias)
        if await self._repository.exists_by_code_or_alias(code):
            ALLOCATIONS_TOTAL.labels(kind="custom", status="taken").inc()
            raise AliasTaken(code)

        ALLOCATIONS_TOTAL.labels(kind="custom", status="success").inc()
        return AllocationResult(code=code, is_custom=True)

    async def _generate(self) -> AllocationResult:
        attempts = 0
        length = self._code_space.default_length
        while True:
            for number in range(1, self._max_retries + 1):
                attempt = AllocationAttempt(self._code_space.random_candidate(length), number, length)
                attempts += 1
                if not await self._repository.exists_by_code_or_alias(attempt.candidate):
                    ALLOCATIONS_TOTAL.labels(kind="generated", status="success").inc()
                    return AllocationResult(code=attempt.candidate, is_custom=False)

                ALLOCATION_COLLISIONS_TOTAL.labels(length=str(length)).inc()
                logger.info(
                    f"Short code collision detected (attempt {attempt.attempt}, length {attempt.length}): "
                    f"{attempt.candidate}"
                )

            if length >= self._code_space.max_length:
                break
            length = self._code_space.growth_policy(length)
            ALLOCATION_LENGTH_GROWTH_TOTAL.inc()
            logger.warning(f"Max retries exceeded, growing short code length to {length}")

        ALLOCATIONS_TOTAL.labels(kind="generated", status="exhausted").inc()
        logger.error(f"Short code allocation exhausted after {attempts} attempts")
        raise AllocationExhausted(attempts, self._code_space.max_length)
