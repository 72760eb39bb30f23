"""Collision resolution: bind a fresh random (or custom) code to a target exactly once.

State Machine — assign()
========================
::
    ┌────────────┐
    │ Generating  │◀──────────────────────────────┐
    └─────┬──────┘                               │
          ▼                                      │
    ┌────────────┐  reserved / exists /          │
    │ Checking    │  unique violation    ┌──────┴──────┐
    │ + INSERT    │─────────────────────▶│ Retrying     │
    └─────┬──────┘                       │ (grow length │
          │ inserted                     │  at threshold)│
          ▼                              └──────┬──────┘
    ┌────────────┐                              │ max_retries reached
    │ Assigned    │                              ▼
    └────────────┘                       ┌─────────────┐
                                         │ Exhausted    │──▶ TooManyRetriesError
                                         └─────────────┘

How to Use
===========
**Step 1 — Build once per service instance**::
    resolver = CollisionResolver(store, CodeGenerator(7), max_retries=5, collision_threshold=3)

**Step 2 — Random path**::
    link = await resolver.assign("https://example.com/path")

**Step 3 — Custom path**::
    link = await resolver.assign_custom("launch-2024", "https://example.com/path")

Key Behaviours
===============
- The existence check is an optimization; the store's unique index is the
  arbiter, and a unique violation on insert is treated exactly like a
  collision found by the check.
- The generator is an immutable value. Growing the code length rebinds
  ``self._generator`` to a new instance; requests read one snapshot per attempt
  and a second grow decided from the same snapshot is a no-op.
- Intermediate collisions are only logged; callers see either a link or
  ``TooManyRetriesError`` after exactly ``max_retries`` attempts.
"""

import datetime
import logging

from prometheus_client import Counter, Gauge

from shortener.errors import CodeAlreadyTakenError, TooManyRetriesError, UniqueViolationError
from shortener.generator import MAX_CODE_LENGTH, CodeGenerator
from shortener.models import ShortLink
from shortener.store import URLStore
from shortener.validation import is_reserved_word

__all__ = ["CollisionResolver"]

logger = logging.getLogger("urlshortener.resolver")

CODE_COLLISIONS_TOTAL = Counter(
    "shortener_code_collisions_total",
    "Generated codes rejected because they were taken or reserved",
    ["stage"],
)
CODE_LENGTH_GROWTHS_TOTAL = Counter(
    "shortener_code_length_growths_total",
    "Times the generator code length was increased under collision pressure",
)
CODE_ASSIGNMENT_EXHAUSTED_TOTAL = Counter(
    "shortener_code_assignment_exhausted_total",
    "Creation requests that ran out of collision retries",
)
CODE_LENGTH = Gauge(
    "shortener_code_length",
    "Current length of generated short codes",
)


class CollisionResolver:
    def __init__(
        self,
        store: URLStore,
        generator: CodeGenerator | None = None,
        max_retries: int = 5,
        collision_threshold: int = 3,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if collision_threshold < 1:
            raise ValueError("collision_threshold must be at least 1")

        self._store = store
        self._generator = generator or CodeGenerator()
        self.max_retries = max_retries
        self.collision_threshold = collision_threshold
        CODE_LENGTH.set(self._generator.length)

    @property
    def generator(self) -> CodeGenerator:
        return self._generator

    @property
    def code_length(self) -> int:
        return self._generator.length

    async def assign(self, target_url: str, expires_at: datetime.datetime | None = None) -> ShortLink:
        """Generate a fresh code and persist it, retrying on collisions.

        Args:
            target_url: Already validated and normalized target
            expires_at: Optional absolute expiry

        Returns:
            ShortLink: The persisted link owning the new code

        Raises:
            TooManyRetriesError: ``max_retries`` candidates all collided
            RandomGenerationError: The secure random source failed
            StoreError: The store failed or timed out
        """
        collisions = 0
        last_code: str | None = None

        for attempt in range(1, self.max_retries + 1):
            generator = self._generator
            code = generator.generate()
            last_code = code

            if is_reserved_word(code):
                stage = "reserved"
            elif await self._store.exists(code):
                stage = "exists"
            else:
                try:
                    link = await self._store.create(code, target_url, is_active=True, expires_at=expires_at)
                except UniqueViolationError:
                    stage = "insert"
                else:
                    if collisions:
                        logger.info(f"Code {code} assigned after {collisions} collision(s)")
                    return link

            collisions += 1
            CODE_COLLISIONS_TOTAL.labels(stage=stage).inc()
            logger.warning(f"Collision on attempt {attempt}/{self.max_retries} for code {code} ({stage})")

            if collisions >= self.collision_threshold:
                self._grow(generator)

        CODE_ASSIGNMENT_EXHAUSTED_TOTAL.inc()
        logger.error(
            f"Keyspace pressure: no free code after {self.max_retries} attempts "
            f"(length={self._generator.length}, last={last_code})"
        )
        raise TooManyRetriesError(self.max_retries, last_code)

    async def assign_custom(
        self,
        code: str,
        target_url: str,
        expires_at: datetime.datetime | None = None,
    ) -> ShortLink:
        """Persist a caller-chosen code; losing the insert race means the code is taken."""
        try:
            return await self._store.create(code, target_url, is_active=True, expires_at=expires_at)
        except UniqueViolationError as exc:
            logger.info(f"Custom code lost insert race: {code}")
            raise CodeAlreadyTakenError(code) from exc

    def _grow(self, seen: CodeGenerator) -> None:
        if seen.length >= MAX_CODE_LENGTH:
            return
        # Another request already grew from this snapshot.
        if self._generator is not seen:
            return
        self._generator = seen.with_length(seen.length + 1)
        CODE_LENGTH_GROWTHS_TOTAL.inc()
        CODE_LENGTH.set(self._generator.length)
        logger.warning(f"Code length increased to {self._generator.length} under collision pressure")
