"""
Async DB helpers for the notification pipeline.
Uses SQLAlchemy 2.0 (asyncpg in production, aiosqlite in tests) – no raw SQL
strings in app code.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Sequence
from uuid import uuid4

from sqlalchemy import (
    JSON, CheckConstraint, DateTime, ForeignKey, Index, String, Text,
    TypeDecorator, and_, delete, func, or_, select, update,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship, selectinload,
)

from app.types.notification_contract import ItemRef


# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored as UTC.

    Backends without a native TIMESTAMPTZ hand back naive values; those are
    re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("timestamps must be timezone-aware")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith(("postgres://", "postgresql://")):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _session_maker() as session:
        yield session


# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id:              Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email:           Mapped[str]
    full_name:       Mapped[str | None]
    phone_number:    Mapped[str | None]
    timezone:        Mapped[str | None]
    expo_push_token: Mapped[str | None]
    created_at:      Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)


class Reminder(Base):
    __tablename__ = "reminders"

    id:          Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id:     Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    title:       Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    due_at:      Mapped[datetime] = mapped_column(UTCDateTime)
    priority:    Mapped[str] = mapped_column(default="medium")
    recurrence:  Mapped[str | None]
    notification_channels:   Mapped[list[str]] = mapped_column(JSON, default=lambda: ["email"])
    notification_lead_times: Mapped[list[int] | None] = mapped_column(JSON)
    tags:              Mapped[list[str]] = mapped_column(JSON, default=list)
    location_trigger:  Mapped[dict[str, Any] | None] = mapped_column(JSON)
    completed:   Mapped[bool] = mapped_column(default=False)
    created_at:  Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    is_reminder = True


class Event(Base):
    __tablename__ = "events"

    id:          Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id:     Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    title:       Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    due_at:      Mapped[datetime] = mapped_column(UTCDateTime)
    end_at:      Mapped[datetime | None] = mapped_column(UTCDateTime)
    location:    Mapped[str | None]
    created_at:  Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    is_reminder = False
    priority = None


class ScheduledNotification(Base):
    """A delivery job: one (item, fire_at, channels) unit."""

    __tablename__ = "scheduled_notifications"
    __table_args__ = (
        CheckConstraint(
            "(reminder_id IS NULL) <> (event_id IS NULL)",
            name="ck_scheduled_notifications_one_item",
        ),
        Index("ix_scheduled_notifications_status_fire_at", "status", "fire_at"),
        Index("ix_scheduled_notifications_reminder_id", "reminder_id"),
        Index("ix_scheduled_notifications_event_id", "event_id"),
    )

    id:                Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id:           Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    reminder_id:       Mapped[str | None] = mapped_column(ForeignKey("reminders.id", ondelete="CASCADE"))
    event_id:          Mapped[str | None] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"))
    fire_at:           Mapped[datetime] = mapped_column(UTCDateTime)
    lead_time_minutes: Mapped[int] = mapped_column(default=0)
    channels:          Mapped[list[str]] = mapped_column(JSON)
    status:            Mapped[str] = mapped_column(String(16), default="pending")
    retry_count:       Mapped[int] = mapped_column(default=0)
    claimed_at:        Mapped[datetime | None] = mapped_column(UTCDateTime)
    sent_at:           Mapped[datetime | None] = mapped_column(UTCDateTime)
    error_message:     Mapped[str | None] = mapped_column(Text)
    created_at:        Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    user:     Mapped[User | None] = relationship(lazy="raise")
    reminder: Mapped[Reminder | None] = relationship(lazy="raise")
    event:    Mapped[Event | None] = relationship(lazy="raise")

    @property
    def item(self) -> Reminder | Event | None:
        return self.reminder if self.reminder_id else self.event

    @property
    def item_ref(self) -> ItemRef:
        return ItemRef(reminder_id=self.reminder_id, event_id=self.event_id)


class NotificationLog(Base):
    """Append-only record of one channel attempt."""

    __tablename__ = "notification_logs"
    __table_args__ = (
        Index("ix_notification_logs_user_id_sent_at", "user_id", "sent_at"),
    )

    id:            Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id:       Mapped[str]
    job_id:        Mapped[str | None] = mapped_column(String(36))
    reminder_id:   Mapped[str | None] = mapped_column(String(36))
    event_id:      Mapped[str | None] = mapped_column(String(36))
    channel:       Mapped[str] = mapped_column(String(16))
    status:        Mapped[str] = mapped_column(String(16))
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_at:       Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (tests / local dev; production uses Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

def _item_clause(ref: ItemRef):
    if ref.reminder_id:
        return ScheduledNotification.reminder_id == ref.reminder_id
    return ScheduledNotification.event_id == ref.event_id


def _delete_pending(ref: ItemRef):
    return delete(ScheduledNotification).where(
        _item_clause(ref), ScheduledNotification.status == "pending"
    )


# 5.1 Fan-out writes ---------------------------------------------------
async def delete_pending_jobs_for_item(ref: ItemRef) -> int:
    async with get_session() as s:
        res = await s.execute(_delete_pending(ref))
        await s.commit()
        return res.rowcount or 0


async def replace_pending_jobs(
    ref: ItemRef, jobs: Sequence[ScheduledNotification]
) -> int:
    """Swap the item's pending jobs for ``jobs`` in a single transaction.

    The item row is locked first (``FOR UPDATE``) so two reschedules of the
    same item run one after the other. Returns how many pending jobs went.
    """
    item_model = Reminder if ref.reminder_id else Event
    async with get_session() as s:
        await s.execute(
            select(item_model.id).where(item_model.id == ref.item_id).with_for_update()
        )
        res = await s.execute(_delete_pending(ref))
        s.add_all(jobs)
        await s.commit()
        return res.rowcount or 0


async def insert_jobs(jobs: Sequence[ScheduledNotification]) -> list[str]:
    if not jobs:
        return []
    async with get_session() as s:
        s.add_all(jobs)
        await s.commit()
        return [job.id for job in jobs]


async def cancel_pending_jobs(ref: ItemRef) -> int:
    async with get_session() as s:
        res = await s.execute(
            update(ScheduledNotification)
            .where(_item_clause(ref), ScheduledNotification.status == "pending")
            .values(status="cancelled")
        )
        await s.commit()
        return res.rowcount or 0


async def update_pending_channels(ref: ItemRef, channels: list[str]) -> int:
    async with get_session() as s:
        res = await s.execute(
            update(ScheduledNotification)
            .where(_item_clause(ref), ScheduledNotification.status == "pending")
            .values(channels=channels)
        )
        await s.commit()
        return res.rowcount or 0


async def list_pending_jobs(ref: ItemRef) -> list[ScheduledNotification]:
    async with get_session() as s:
        res = await s.execute(
            select(ScheduledNotification)
            .where(_item_clause(ref), ScheduledNotification.status == "pending")
            .order_by(ScheduledNotification.fire_at)
        )
        return list(res.scalars().all())


# 5.2 Claim due jobs ---------------------------------------------------
async def claim_due_jobs(
    now: datetime,
    limit: int = 100,
    stale_after: timedelta | None = None,
) -> list[ScheduledNotification]:
    """Reserve due jobs for this sweep and return them with user + item loaded.

    Candidates are pending jobs with ``fire_at <= now`` (and, when
    ``stale_after`` is given, jobs stuck in ``processing`` longer than that).
    The conditional UPDATE only flips rows whose status is still what we saw,
    so an overlapping sweep never gets the same row back.
    """
    due = and_(
        ScheduledNotification.status == "pending",
        ScheduledNotification.fire_at <= now,
    )
    if stale_after is not None:
        due = or_(
            due,
            and_(
                ScheduledNotification.status == "processing",
                ScheduledNotification.claimed_at <= now - stale_after,
            ),
        )

    async with get_session() as s:
        candidates = (
            await s.execute(
                select(ScheduledNotification.id, ScheduledNotification.status)
                .where(due)
                .order_by(ScheduledNotification.fire_at)
                .limit(limit)
            )
        ).all()
        if not candidates:
            return []

        claimed: list[str] = []
        for status in {row.status for row in candidates}:
            ids = [row.id for row in candidates if row.status == status]
            still_due = [
                ScheduledNotification.id.in_(ids),
                ScheduledNotification.status == status,
            ]
            if status == "processing":
                # a reclaim rewrites claimed_at, so a second reclaim no longer matches
                still_due.append(ScheduledNotification.claimed_at <= now - stale_after)
            res = await s.execute(
                update(ScheduledNotification)
                .where(*still_due)
                .values(status="processing", claimed_at=now)
                .returning(ScheduledNotification.id)
            )
            claimed.extend(res.scalars().all())
        await s.commit()

        if not claimed:
            return []
        res = await s.execute(
            select(ScheduledNotification)
            .where(ScheduledNotification.id.in_(claimed))
            .options(
                selectinload(ScheduledNotification.user),
                selectinload(ScheduledNotification.reminder),
                selectinload(ScheduledNotification.event),
            )
            .order_by(ScheduledNotification.fire_at)
        )
        return list(res.scalars().all())


# 5.3 Job status / log -------------------------------------------------
async def update_job_status(
    job_id: str,
    status: str,
    sent_at: datetime | None = None,
    error_message: str | None = None,
) -> None:
    async with get_session() as s:
        await s.execute(
            update(ScheduledNotification)
            .where(ScheduledNotification.id == job_id)
            .values(status=status, sent_at=sent_at, error_message=error_message)
        )
        await s.commit()


async def append_log_entries(entries: Sequence[NotificationLog]) -> None:
    if not entries:
        return
    async with get_session() as s:
        s.add_all(entries)
        await s.commit()


async def search_logs(
    user_id: str,
    limit: int | None = None,
    status: str | None = None,
    channel: str | None = None,
) -> list[NotificationLog]:
    async with get_session() as s:
        stmt = select(NotificationLog).where(NotificationLog.user_id == user_id)

        if status:
            stmt = stmt.where(NotificationLog.status == status)
        if channel:
            stmt = stmt.where(NotificationLog.channel == channel)

        stmt = stmt.order_by(NotificationLog.sent_at.desc())
        if limit:
            stmt = stmt.limit(limit)

        res = await s.execute(stmt)
        return list(res.scalars().all())


# 5.4 Reminders created from chat -------------------------------------
async def insert_reminder(reminder: Reminder) -> str:
    async with get_session() as s:
        s.add(reminder)
        await s.commit()
        return reminder.id


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
