"""Unit tests for the short code alphabet, length policy and alias rules."""

import random

import pytest

from shortlink.code_space import ALPHABET, DEFAULT_CODE_LENGTH, MAX_CODE_LENGTH, RESERVED_ALIASES, CodeSpace


def test_alphabet_has_no_ambiguous_symbols() -> None:
    assert len(ALPHABET) == 58
    assert len(set(ALPHABET)) == len(ALPHABET)
    for symbol in "0OlI":
        assert symbol not in ALPHABET


@pytest.mark.parametrize("length", [1, 6, 7, 8, 12])
def test_random_candidate_length_and_alphabet(code_space: CodeSpace, length: int) -> None:
    for _ in range(50):
        candidate = code_space.random_candidate(length)
        assert len(candidate) == length
        assert all(c in ALPHABET for c in candidate)


def test_random_candidate_is_reproducible_with_seeded_rng() -> None:
    first = CodeSpace(rng=random.Random(7))
    second = CodeSpace(rng=random.Random(7))
    assert [first.random_candidate(6) for _ in range(20)] == [second.random_candidate(6) for _ in range(20)]


def test_random_candidate_without_rng_uses_nanoid() -> None:
    space = CodeSpace()
    codes = {space.random_candidate(DEFAULT_CODE_LENGTH) for _ in range(1000)}
    # 58^6 possibilities, 1000 draws should not repeat
    assert len(codes) == 1000


@pytest.mark.parametrize("length", [0, -1])
def test_random_candidate_rejects_non_positive_length(code_space: CodeSpace, length: int) -> None:
    with pytest.raises(AssertionError):
        code_space.random_candidate(length)


def test_growth_policy_is_capped(code_space: CodeSpace) -> None:
    assert code_space.growth_policy(6) == 7
    assert code_space.growth_policy(7) == 8
    assert code_space.growth_policy(8) == MAX_CODE_LENGTH
    assert code_space.growth_policy(42) == MAX_CODE_LENGTH


def test_lengths_cover_default_through_max(code_space: CodeSpace) -> None:
    assert list(code_space.lengths()) == [6, 7, 8]


@pytest.mark.parametrize("alias", ["abc", "my-link", "Promo2026", "a" * 20, "x-1-y"])
def test_valid_custom_aliases(code_space: CodeSpace, alias: str) -> None:
    assert code_space.is_valid_custom_format(alias)


@pytest.mark.parametrize(
    "alias",
    ["", None, "ab", "a" * 21, "my link", "my_link", "emoji🙂", "bad!", "a/b"],
)
def test_invalid_custom_aliases(code_space: CodeSpace, alias: str | None) -> None:
    assert not code_space.is_valid_custom_format(alias)


@pytest.mark.parametrize("alias", sorted(RESERVED_ALIASES))
def test_reserved_aliases_rejected_case_insensitively(code_space: CodeSpace, alias: str) -> None:
    assert not code_space.is_valid_custom_format(alias)
    assert not code_space.is_valid_custom_format(alias.upper())
    assert "reserved" in code_space.alias_rejection_reason(alias)


def test_normalize_alias_lowercases() -> None:
    assert CodeSpace.normalize_alias("My-Link") == "my-link"


def test_capacity_and_collision_probability(code_space: CodeSpace) -> None:
    assert code_space.capacity() == 58**6
    assert code_space.capacity(8) == 58**8
    assert code_space.collision_probability(0) == 0.0
    assert code_space.collision_probability(58**6) == 1.0
    assert code_space.collision_probability(58**6 * 2) == 1.0
    assert code_space.collision_probability(1000) == pytest.approx(1000 / 58**6)


def test_invalid_length_bounds_rejected() -> None:
    with pytest.raises(AssertionError):
        CodeSpace(default_length=9, max_length=8)
