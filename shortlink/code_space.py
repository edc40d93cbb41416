"""Short code alphabet, length policy and collision model.

Everything here is pure: no I/O, no clock. Randomness comes from an injected
``random.Random`` so allocation tests can be made deterministic; without one
the cryptographic nanoid generator is used.

Code Space Layout
=================
::
    alphabet (58 symbols, no 0/O/l/I)
    ├─ generated codes: length 6 → 7 → 8 (growth capped at 8)
    └─ custom aliases:  3-20 chars of [a-z0-9-], stored lowercase

    capacity(6) = 58^6 ≈ 3.8e10
    capacity(8) = 58^8 ≈ 1.3e14

How to Use
===========
**Step 1 — Generate a candidate**::
    space = CodeSpace(rng=random.Random(42))
    code = space.random_candidate(6)

**Step 2 — Check a custom alias**::
    if space.is_valid_custom_format("my-link"):
        alias = space.normalize_alias("My-Link")  # "my-link"

Key Behaviours
===============
- Reserved words are rejected regardless of case.
- ``growth_policy`` never returns a length above ``max_length``.
"""

import random
import re

from nanoid import generate
from nanoid.method import method

__all__ = [
    "ALPHABET",
    "RESERVED_ALIASES",
    "DEFAULT_CODE_LENGTH",
    "MAX_CODE_LENGTH",
    "CodeSpace",
]

ALPHABET = "abcdefghijkmnopqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ123456789"
RESERVED_ALIASES = frozenset({"api", "admin", "www", "app", "short", "url", "link", "health"})

DEFAULT_CODE_LENGTH = 6
MAX_CODE_LENGTH = 8

ALIAS_MIN_LENGTH = 3
ALIAS_MAX_LENGTH = 20
_ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")


class CodeSpace:
    """Alphabet, length policy and collision-probability model for short codes."""

    def __init__(
        self,
        rng: random.Random | None = None,
        default_length: int = DEFAULT_CODE_LENGTH,
        max_length: int = MAX_CODE_LENGTH,
        alphabet: str = ALPHABET,
    ):
        assert 0 < default_length <= max_length, f"invalid length bounds {default_length}..{max_length}"
        assert len(set(alphabet)) == len(alphabet), "alphabet must not repeat symbols"
        self._rng = rng
        self.default_length = default_length
        self.max_length = max_length
        self.alphabet = alphabet

    def random_candidate(self, length: int) -> str:
        assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
        if self._rng is None:
            return generate(self.alphabet, length)
        return method(self._rng.randbytes, self.alphabet, length)

    def growth_policy(self, current_length: int) -> int:
        return min(current_length + 1, self.max_length)

    def lengths(self) -> range:
        """Every length the allocator may try, shortest first."""
        return range(self.default_length, self.max_length + 1)

    def alias_rejection_reason(self, alias: str | None) -> str | None:
        """Return why ``alias`` is not an acceptable custom alias, or None."""
        if not alias:
            return "custom alias is required"
        if not ALIAS_MIN_LENGTH <= len(alias) <= ALIAS_MAX_LENGTH:
            return f"must be {ALIAS_MIN_LENGTH}-{ALIAS_MAX_LENGTH} characters long"
        if not _ALIAS_PATTERN.match(alias):
            return "can only contain letters, numbers, and hyphens"
        if alias.lower() in RESERVED_ALIASES:
            return "this custom alias is reserved"
        return None

    def is_valid_custom_format(self, alias: str | None) -> bool:
        return self.alias_rejection_reason(alias) is None

    @staticmethod
    def normalize_alias(alias: str) -> str:
        return alias.lower()

    def capacity(self, length: int | None = None) -> int:
        return len(self.alphabet) ** (length or self.default_length)

    def collision_probability(self, occupied: int, length: int | None = None) -> float:
        """Chance that one fresh random candidate of ``length`` is already taken."""
        assert occupied >= 0, f"occupied must be non-negative, got {occupied!r}"
        return min(occupied / self.capacity(length), 1.0)
