"""SQLAlchemy ORM models for the short-link service.

This module defines the database schema using SQLAlchemy declarative models.
The unique index on ``short_links.code`` is the single source of truth for
"is this code taken"; every writer relies on it instead of in-process locks.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(50) NOT NULL, UNIQUE INDEX short_links_code_uniq)
    ├─ target_url (VARCHAR(2048) NOT NULL)
    ├─ is_active (BOOLEAN DEFAULT TRUE, INDEXED)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW(), INDEXED)
    └─ expires_at (TIMESTAMPTZ NULL, INDEXED)

    reserved_codes table
    ├─ code (PRIMARY KEY)
    ├─ reason (NOT NULL)
    ├─ description
    └─ created_at

    click_events table (append-only)
    ├─ id, short_link_id (FK), occurred_at
    ├─ ip, user_agent, referrer
    ├─ utm_source, utm_medium, utm_campaign, utm_term, utm_content
    └─ query_params (JSON text)

    click_counter_shards table
    ├─ (short_link_id, shard_id) PRIMARY KEY, shard_id in [0, 63]
    ├─ clicks
    └─ updated_at

How to Use
===========
**Step 1 — Query a link**::
    result = await session.execute(select(ShortLink).where(ShortLink.code == "abc1234"))
    link = result.scalar_one_or_none()

**Step 2 — Check the lifecycle**::
    if link.is_accessible():
        ...

Key Behaviours
===============
- ``code`` never changes after insert; only target, active flag and expiry do.
- Rows are never deleted by the service; deactivation is terminal.
- Naive ``expires_at`` values (SQLite) are treated as UTC.

Classes:
    ShortLink:  A code → target URL binding with lifecycle metadata.
    ReservedCode:  A code forbidden for manual assignment.
    ClickEvent:  One recorded resolution of a short link.
    ClickCounterShard:  One shard of a link's click counter.
"""

import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["ShortLink", "ReservedCode", "ClickEvent", "ClickCounterShard", "COUNTER_SHARDS", "utcnow"]

COUNTER_SHARDS = 64


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class ShortLink(Base):
    __tablename__ = "short_links"
    __table_args__ = (Index("short_links_code_uniq", "code", unique=True),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    target_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or utcnow()
        return _as_aware(now) > _as_aware(self.expires_at)

    def is_accessible(self, now: datetime.datetime | None = None) -> bool:
        return bool(self.is_active) and not self.is_expired(now)

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, code='{self.code}', active={self.is_active})>"


class ReservedCode(Base):
    __tablename__ = "reserved_codes"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    reason: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ReservedCode(code='{self.code}', reason='{self.reason}')>"


class ClickEvent(Base):
    __tablename__ = "click_events"
    __table_args__ = (Index("click_events_link_time_idx", "short_link_id", "occurred_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    short_link_id: Mapped[int] = mapped_column(ForeignKey("short_links.id", ondelete="CASCADE"), nullable=False)
    occurred_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_term: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    query_params: Mapped[str | None] = mapped_column(Text, nullable=True)


class ClickCounterShard(Base):
    __tablename__ = "click_counter_shards"
    __table_args__ = (CheckConstraint(f"shard_id >= 0 AND shard_id < {COUNTER_SHARDS}", name="shard_id_range"),)

    short_link_id: Mapped[int] = mapped_column(
        ForeignKey("short_links.id", ondelete="CASCADE"), primary_key=True
    )
    shard_id: Mapped[int] = mapped_column(SmallInteger, primary_key=True)
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
