from datetime import datetime, timedelta, timezone

import pytest

from config import settings
import db

NOW = datetime(2025, 1, 6, 14, 0, tzinfo=timezone.utc)  # a Monday


@pytest.fixture
async def database(tmp_path, monkeypatch):
    """Fresh SQLite file per test, schema created from the ORM metadata."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'notifi.db'}")
    monkeypatch.setattr(settings, "SWEEP_CONCURRENCY", 1)
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_user(database):
    async def _make(**kw):
        user = db.User(
            email=kw.pop("email", "ada@example.com"),
            timezone=kw.pop("timezone", "UTC"),
            **kw,
        )
        async with db.get_session() as s:
            s.add(user)
            await s.commit()
        return user
    return _make


@pytest.fixture
def make_reminder(database):
    async def _make(user, due_at=NOW + timedelta(days=1), **kw):
        reminder = db.Reminder(
            user_id=user.id,
            title=kw.pop("title", "Pay rent"),
            due_at=due_at,
            **kw,
        )
        async with db.get_session() as s:
            s.add(reminder)
            await s.commit()
        return reminder
    return _make


@pytest.fixture
def make_event(database):
    async def _make(user, due_at=NOW + timedelta(days=1), **kw):
        event = db.Event(
            user_id=user.id,
            title=kw.pop("title", "Dentist"),
            due_at=due_at,
            **kw,
        )
        async with db.get_session() as s:
            s.add(event)
            await s.commit()
        return event
    return _make


@pytest.fixture
def make_job(database):
    async def _make(user, item, fire_at=NOW - timedelta(minutes=1), **kw):
        job = db.ScheduledNotification(
            user_id=user.id,
            reminder_id=item.id if item.is_reminder else None,
            event_id=None if item.is_reminder else item.id,
            fire_at=fire_at,
            lead_time_minutes=kw.pop("lead_time_minutes", 15),
            channels=kw.pop("channels", ["email"]),
            status=kw.pop("status", "pending"),
            retry_count=kw.pop("retry_count", 0),
            **kw,
        )
        await db.insert_jobs([job])
        return job
    return _make


async def all_jobs() -> list[db.ScheduledNotification]:
    from sqlalchemy import select

    async with db.get_session() as s:
        res = await s.execute(
            select(db.ScheduledNotification).order_by(
                db.ScheduledNotification.retry_count, db.ScheduledNotification.fire_at
            )
        )
        return list(res.scalars().all())


async def all_logs() -> list[db.NotificationLog]:
    from sqlalchemy import select

    async with db.get_session() as s:
        res = await s.execute(select(db.NotificationLog).order_by(db.NotificationLog.channel))
        return list(res.scalars().all())
