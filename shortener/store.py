"""Persistence layer: the URL store and the click store.

Both stores wrap an explicitly owned ``Database`` handle and open one short
session per call. Every call runs under a bounded deadline; timeouts and driver
failures surface as ``StoreError`` so callers never hang on the database.

Flow Diagram — URLStore.create()
================================
::
    ┌─────────────┐
    │ INSERT       │
    │ short_links  │
    └──────┬──────┘
           ▼
    ┌─────────────┐   IntegrityError    ┌──────────────────┐
    │ COMMIT       │───────────────────▶│ unique index hit? │
    └──────┬──────┘                     └────────┬─────────┘
           ▼                            yes │          │ no
    ┌─────────────┐                        ▼          ▼
    │ ShortLink    │           UniqueViolationError  StoreError
    │ (id, created)│
    └─────────────┘

How to Use
===========
**Step 1 — Build the stores**::
    urls = URLStore(database, timeout=settings.STORE_TIMEOUT_SECONDS)
    clicks = ClickStore(database, timeout=settings.CLICK_TIMEOUT_SECONDS)

**Step 2 — Bind a code**::
    try:
        link = await urls.create("abc1234", "https://example.com")
    except UniqueViolationError:
        ...  # somebody else owns the code

**Step 3 — Read click facts**::
    total = await clicks.count(link.id)

Key Behaviours
===============
- The unique index on ``short_links.code`` is the final arbiter for concurrent
  writers; no in-process lock is used.
- Reserved-code lookups are case-insensitive.
- Counter shards are upserted with the dialect's ON CONFLICT clause.

Classes:
    URLStore:  Short link persistence (create / read / update / deactivate).
    ClickStore:  Append-only click facts and sharded click counters.
"""

import asyncio
import datetime
import logging
import random
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shortener.database import Database
from shortener.errors import LinkNotFoundError, StoreError, UniqueViolationError
from shortener.models import COUNTER_SHARDS, ClickCounterShard, ClickEvent, ReservedCode, ShortLink, utcnow
from shortener.schemas import ClickFact

__all__ = ["URLStore", "ClickStore", "UPDATABLE_FIELDS"]

logger = logging.getLogger("urlshortener.store")

UNIQUE_VIOLATION_SQLSTATE = "23505"
SQLITE_UNIQUE_ERRORS = frozenset({"SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"})

UPDATABLE_FIELDS = frozenset({"target_url", "is_active", "expires_at"})


def _is_unique_violation(exc: IntegrityError) -> bool | None:
    """Classify an IntegrityError by driver error code; None when the driver gives none."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE
    errorname = getattr(orig, "sqlite_errorname", None)
    if errorname:
        return errorname in SQLITE_UNIQUE_ERRORS
    return None


class _BoundedStore:
    def __init__(self, database: Database, timeout: float = 5.0) -> None:
        self._database = database
        self._timeout = timeout

    @asynccontextmanager
    async def _bounded(self, operation: str) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(self._timeout):
                yield
        except TimeoutError as exc:
            logger.error(f"Store operation '{operation}' exceeded {self._timeout}s")
            raise StoreError(f"{operation} timed out") from exc
        except SQLAlchemyError as exc:
            logger.error(f"Store operation '{operation}' failed: {exc}")
            raise StoreError(f"{operation} failed") from exc


# ============================================================================
# URL STORE
# ============================================================================


class URLStore(_BoundedStore):
    async def create(
        self,
        code: str,
        target_url: str,
        is_active: bool = True,
        expires_at: datetime.datetime | None = None,
    ) -> ShortLink:
        """Insert a new binding; the unique index decides who owns ``code``.

        Raises:
            UniqueViolationError: Another writer already owns ``code``
            StoreError: Any other database failure or timeout
        """
        async with self._bounded("create"):
            async with self._database.session() as session:
                link = ShortLink(code=code, target_url=target_url, is_active=is_active, expires_at=expires_at)
                session.add(link)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    unique = _is_unique_violation(exc)
                    if unique is None:
                        unique = await self._code_exists(session, code)
                    if unique:
                        logger.info(f"Unique violation on insert for code: {code}")
                        raise UniqueViolationError(code) from exc
                    raise
                await session.refresh(link)
                logger.info(f"Short link created: id={link.id} code={code} expires={expires_at or 'never'}")
                return link

    async def get_by_code(self, code: str) -> ShortLink | None:
        async with self._bounded("get_by_code"):
            async with self._database.session() as session:
                result = await session.execute(select(ShortLink).where(ShortLink.code == code))
                return result.scalar_one_or_none()

    async def exists(self, code: str) -> bool:
        async with self._bounded("exists"):
            async with self._database.session() as session:
                return await self._code_exists(session, code)

    async def update(self, code: str, /, **fields) -> ShortLink:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        async with self._bounded("update"):
            async with self._database.session() as session:
                result = await session.execute(select(ShortLink).where(ShortLink.code == code))
                link = result.scalar_one_or_none()
                if link is None:
                    raise LinkNotFoundError(code)
                for name, value in fields.items():
                    setattr(link, name, value)
                await session.commit()
                await session.refresh(link)
                return link

    async def deactivate(self, code: str) -> None:
        async with self._bounded("deactivate"):
            async with self._database.session() as session:
                result = await session.execute(
                    update(ShortLink).where(ShortLink.code == code).values(is_active=False)
                )
                await session.commit()
                if result.rowcount == 0:
                    raise LinkNotFoundError(code)
        logger.info(f"Short link deactivated: {code}")

    async def is_reserved(self, code: str) -> bool:
        async with self._bounded("is_reserved"):
            async with self._database.session() as session:
                result = await session.execute(
                    select(ReservedCode.code).where(func.lower(ReservedCode.code) == code.lower()).limit(1)
                )
                return result.first() is not None

    async def add_reserved_code(self, code: str, reason: str, description: str | None = None) -> ReservedCode:
        async with self._bounded("add_reserved_code"):
            async with self._database.session() as session:
                reserved = ReservedCode(code=code, reason=reason, description=description)
                session.add(reserved)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    raise UniqueViolationError(code) from exc
                await session.refresh(reserved)
                return reserved

    async def list_created_since(self, since: datetime.datetime, limit: int = 50) -> list[ShortLink]:
        async with self._bounded("list_created_since"):
            async with self._database.session() as session:
                result = await session.execute(
                    select(ShortLink)
                    .where(ShortLink.created_at >= since)
                    .order_by(ShortLink.created_at.desc(), ShortLink.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())

    async def cleanup_expired(self, now: datetime.datetime | None = None) -> int:
        """Mark active links whose expiry has passed as inactive."""
        now = now or utcnow()
        async with self._bounded("cleanup_expired"):
            async with self._database.session() as session:
                result = await session.execute(
                    update(ShortLink)
                    .where(ShortLink.is_active.is_(True), ShortLink.expires_at.is_not(None), ShortLink.expires_at < now)
                    .values(is_active=False)
                )
                await session.commit()
        logger.info(f"Cleaned up {result.rowcount} expired short links")
        return result.rowcount

    async def ping(self) -> None:
        async with self._bounded("ping"):
            await self._database.ping()

    @staticmethod
    async def _code_exists(session, code: str) -> bool:
        result = await session.execute(select(ShortLink.id).where(ShortLink.code == code).limit(1))
        return result.first() is not None


# ============================================================================
# CLICK STORE
# ============================================================================


class ClickStore(_BoundedStore):
    async def record(self, fact: ClickFact) -> int:
        async with self._bounded("record_click"):
            async with self._database.session() as session:
                event = ClickEvent(**fact.model_dump())
                session.add(event)
                await session.commit()
                return event.id

    async def increment_counter_shard(self, short_link_id: int, shard_id: int | None = None) -> None:
        if shard_id is None:
            shard_id = random.randrange(COUNTER_SHARDS)
        now = utcnow()

        dialect = sqlite if self._database.engine.dialect.name == "sqlite" else postgresql
        statement = dialect.insert(ClickCounterShard).values(
            short_link_id=short_link_id, shard_id=shard_id, clicks=1, updated_at=now
        )
        statement = statement.on_conflict_do_update(
            index_elements=[ClickCounterShard.short_link_id, ClickCounterShard.shard_id],
            set_={"clicks": ClickCounterShard.clicks + 1, "updated_at": now},
        )

        async with self._bounded("increment_counter_shard"):
            async with self._database.session() as session:
                await session.execute(statement)
                await session.commit()

    async def count(self, short_link_id: int) -> int:
        try:
            async with self._bounded("count"):
                async with self._database.session() as session:
                    result = await session.execute(
                        select(func.coalesce(func.sum(ClickCounterShard.clicks), 0)).where(
                            ClickCounterShard.short_link_id == short_link_id
                        )
                    )
                    return int(result.scalar_one())
        except StoreError:
            logger.warning(f"Sharded counter read failed for link {short_link_id}, counting events")
            return await self._count_events(short_link_id)

    async def last_clicked_at(self, short_link_id: int) -> datetime.datetime | None:
        async with self._bounded("last_clicked_at"):
            async with self._database.session() as session:
                result = await session.execute(
                    select(func.max(ClickEvent.occurred_at)).where(ClickEvent.short_link_id == short_link_id)
                )
                return result.scalar_one_or_none()

    async def _count_events(self, short_link_id: int) -> int:
        async with self._bounded("count_events"):
            async with self._database.session() as session:
                result = await session.execute(
                    select(func.count(ClickEvent.id)).where(ClickEvent.short_link_id == short_link_id)
                )
                return int(result.scalar_one())
