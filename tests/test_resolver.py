"""Collision resolver tests against an in-memory store."""

import itertools
from collections.abc import Iterator
from dataclasses import dataclass
from unittest.mock import patch

import pytest

from shortener.errors import CodeAlreadyTakenError, RandomGenerationError, TooManyRetriesError, UniqueViolationError
from shortener.generator import MAX_CODE_LENGTH, CodeGenerator, is_valid_code
from shortener.models import ShortLink
from shortener.resolver import CollisionResolver

# ============================================================================
# TEST DOUBLES
# ============================================================================


class FakeStore:
    """Dict-backed stand-in for URLStore.

    ``taken`` codes report as existing; ``racing`` codes pass the existence
    check but lose the insert, like a concurrent writer winning the race.
    """

    def __init__(self, taken=(), racing=(), everything_taken: bool = False) -> None:
        self.links: dict[str, ShortLink] = {}
        self.taken = set(taken)
        self.racing = set(racing)
        self.everything_taken = everything_taken
        self.exists_calls: list[str] = []
        self.create_calls: list[str] = []

    async def exists(self, code: str) -> bool:
        self.exists_calls.append(code)
        return self.everything_taken or code in self.taken or code in self.links

    async def create(self, code, target_url, is_active=True, expires_at=None) -> ShortLink:
        self.create_calls.append(code)
        if code in self.racing or code in self.links:
            raise UniqueViolationError(code)
        link = ShortLink(
            id=len(self.links) + 1,
            code=code,
            target_url=target_url,
            is_active=is_active,
            expires_at=expires_at,
        )
        self.links[code] = link
        return link


@dataclass(frozen=True)
class ScriptedGenerator:
    """Generator returning a fixed sequence of codes, shared across lengths."""

    codes: Iterator[str]
    length: int = 7

    def generate(self) -> str:
        return next(self.codes)

    def with_length(self, length: int) -> "ScriptedGenerator":
        return ScriptedGenerator(self.codes, length)


def scripted(*codes: str, length: int = 7) -> ScriptedGenerator:
    return ScriptedGenerator(iter(codes), length)


def counting(length: int = 7) -> ScriptedGenerator:
    return ScriptedGenerator((f"c{n:06d}" for n in itertools.count()), length)


# ============================================================================
# RANDOM PATH
# ============================================================================


@pytest.mark.asyncio
async def test_assign_fresh_code() -> None:
    store = FakeStore()
    resolver = CollisionResolver(store, CodeGenerator(7))

    link = await resolver.assign("https://example.com")

    assert is_valid_code(link.code)
    assert len(link.code) == 7
    assert store.links[link.code].target_url == "https://example.com"


@pytest.mark.asyncio
async def test_assign_exhausts_after_exactly_max_retries() -> None:
    store = FakeStore(everything_taken=True)
    resolver = CollisionResolver(store, counting(), max_retries=5, collision_threshold=3)

    with pytest.raises(TooManyRetriesError) as exc_info:
        await resolver.assign("https://example.com")

    assert exc_info.value.attempts == 5
    assert exc_info.value.last_code == "c000004"
    assert len(store.exists_calls) == 5
    assert store.create_calls == []


@pytest.mark.asyncio
async def test_exhaustion_public_message_hides_codes() -> None:
    store = FakeStore(everything_taken=True)
    resolver = CollisionResolver(store, counting(), max_retries=2)

    with pytest.raises(TooManyRetriesError) as exc_info:
        await resolver.assign("https://example.com")

    assert "c00000" not in exc_info.value.public_message
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_assign_retries_until_free() -> None:
    store = FakeStore(taken={"aaaa111", "bbbb222"})
    resolver = CollisionResolver(store, scripted("aaaa111", "bbbb222", "cccc333"), max_retries=5, collision_threshold=3)

    link = await resolver.assign("https://example.com")

    assert link.code == "cccc333"
    assert resolver.code_length == 7


@pytest.mark.asyncio
async def test_length_grows_at_collision_threshold() -> None:
    store = FakeStore(taken={"aaaa111", "bbbb222", "cccc333"})
    resolver = CollisionResolver(
        store,
        scripted("aaaa111", "bbbb222", "cccc333", "dddd444"),
        max_retries=5,
        collision_threshold=3,
    )

    link = await resolver.assign("https://example.com")

    assert link.code == "dddd444"
    assert resolver.code_length == 8


@pytest.mark.asyncio
async def test_length_growth_is_capped() -> None:
    store = FakeStore(everything_taken=True)
    resolver = CollisionResolver(store, counting(MAX_CODE_LENGTH), max_retries=5, collision_threshold=1)

    with pytest.raises(TooManyRetriesError):
        await resolver.assign("https://example.com")

    assert resolver.code_length == MAX_CODE_LENGTH


@pytest.mark.asyncio
async def test_length_keeps_growing_per_collision_past_threshold() -> None:
    store = FakeStore(everything_taken=True)
    resolver = CollisionResolver(store, counting(7), max_retries=5, collision_threshold=3)

    with pytest.raises(TooManyRetriesError):
        await resolver.assign("https://example.com")

    # Collisions 3, 4 and 5 each grow from the snapshot they generated with.
    assert resolver.code_length == 10


@pytest.mark.asyncio
async def test_unique_violation_on_insert_counts_as_collision() -> None:
    store = FakeStore(racing={"lost1234"})
    resolver = CollisionResolver(store, scripted("lost1234", "won12345"))

    link = await resolver.assign("https://example.com")

    assert link.code == "won12345"
    assert store.create_calls == ["lost1234", "won12345"]


@pytest.mark.asyncio
async def test_reserved_generated_code_is_skipped() -> None:
    store = FakeStore()
    resolver = CollisionResolver(store, scripted("admin", "free123"))

    link = await resolver.assign("https://example.com")

    assert link.code == "free123"
    assert "admin" not in store.exists_calls


@pytest.mark.asyncio
async def test_random_source_failure_is_not_retried() -> None:
    store = FakeStore()
    resolver = CollisionResolver(store, CodeGenerator(7))

    with patch("shortener.generator.secrets.randbelow", side_effect=OSError("no entropy")):
        with pytest.raises(RandomGenerationError):
            await resolver.assign("https://example.com")

    assert store.exists_calls == []


def test_grow_from_stale_snapshot_is_noop() -> None:
    resolver = CollisionResolver(FakeStore(), CodeGenerator(7))
    snapshot = resolver.generator

    resolver._grow(snapshot)
    resolver._grow(snapshot)

    assert resolver.code_length == 8
    assert snapshot.length == 7


@pytest.mark.parametrize("kwargs", [{"max_retries": 0}, {"collision_threshold": 0}])
def test_invalid_resolver_settings(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        CollisionResolver(FakeStore(), CodeGenerator(7), **kwargs)


# ============================================================================
# CUSTOM PATH
# ============================================================================


@pytest.mark.asyncio
async def test_assign_custom() -> None:
    store = FakeStore()
    resolver = CollisionResolver(store, CodeGenerator(7))

    link = await resolver.assign_custom("launch", "https://example.com")

    assert link.code == "launch"
    assert store.create_calls == ["launch"]


@pytest.mark.asyncio
async def test_assign_custom_taken_is_not_retried() -> None:
    store = FakeStore(racing={"launch"})
    resolver = CollisionResolver(store, CodeGenerator(7))

    with pytest.raises(CodeAlreadyTakenError):
        await resolver.assign_custom("launch", "https://example.com")

    assert store.create_calls == ["launch"]
