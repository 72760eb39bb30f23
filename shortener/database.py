"""Database engine and session management for the short-link service.

This module provides SQLAlchemy async engine setup and session management with
PostgreSQL (asyncpg) as the production backend. The engine is owned by an
explicitly constructed ``Database`` handle created at startup and handed to the
stores; nothing here is created at import time.

Flow Diagram — Database Lifecycle
=================================
::
    ┌─────────────┐
    │ lifespan()   │
    │ startup      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Database(    │
    │  settings)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init()       │
    │ create_all   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ session()    │◀── one short session per store call
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close()      │
    │ dispose      │
    └─────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    database = Database(settings.DATABASE_URL)
    await database.init()

**Step 2 — Open sessions**::
    async with database.session() as session:
        result = await session.execute(select(ShortLink))

**Step 3 — Cleanup on shutdown**::
    await database.close()

Key Behaviours
===============
- Connection pooling is configured for PostgreSQL; SQLite (tests) uses the
  driver defaults.
- Tables are created on startup when missing.
- Sessions do not expire objects on commit so rows can be returned after the
  session closes.

Classes:
    Base:  SQLAlchemy declarative base for all models.
    Database:  Owner of the engine and session factory.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

__all__ = ["Base", "Database"]


class Base(DeclarativeBase):
    pass


class Database:
    def __init__(self, url: str, *, echo: bool = False, pool_size: int = 20, max_overflow: int = 10) -> None:
        engine_kwargs: dict = {"echo": echo, "pool_pre_ping": True}
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.sessionmaker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    async def init(self) -> None:
        # Import registers every mapped table on Base.metadata.
        from shortener import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def ping(self) -> None:
        async with self.session() as session:
            await session.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.engine.dispose()
