import asyncio
import json
from datetime import timedelta

import pytest
from sqlalchemy import delete

from app.services.channels import ChannelError
from app.workers import delivery
from app.workers.delivery import run_sweep
from conftest import all_jobs, all_logs
import db


class FakeSenders(dict):
    """Channel → async sender; records every call."""

    def __init__(self, fail=(), skip=()):
        super().__init__()
        self.calls: list[tuple[str, str, int]] = []
        for channel in ("email", "push", "sms"):
            self[channel] = self._sender(channel, channel in fail, channel in skip)

    def _sender(self, channel, fail, skip):
        async def send(user, item, lead_time_minutes):
            self.calls.append((channel, item.id, lead_time_minutes))
            if fail:
                raise ChannelError(f"{channel} provider down")
            return not skip
        return send


@pytest.mark.asyncio
async def test_successful_job_is_marked_sent(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    job = await make_job(user, reminder, channels=["email", "push"])
    senders = FakeSenders()

    summary = await run_sweep(now=now, senders=senders)

    assert (summary.processed, summary.successful, summary.failed) == (1, 1, 0)
    assert summary.timestamp == now
    assert sorted(c[0] for c in senders.calls) == ["email", "push"]
    [stored] = await all_jobs()
    assert stored.id == job.id
    assert stored.status == "sent"
    assert stored.sent_at == now
    assert stored.error_message is None
    assert [(l.channel, l.status) for l in await all_logs()] == [("email", "sent"), ("push", "sent")]


@pytest.mark.asyncio
async def test_channel_failure_is_isolated(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    job = await make_job(user, reminder, channels=["email", "sms"])
    senders = FakeSenders(fail={"sms"})

    summary = await run_sweep(now=now, senders=senders)

    assert (summary.successful, summary.failed) == (0, 1)
    assert ("email", reminder.id, 15) in senders.calls

    logs = await all_logs()
    assert [(l.channel, l.status) for l in logs] == [("email", "sent"), ("sms", "failed")]
    assert all(l.job_id == job.id and l.reminder_id == reminder.id for l in logs)
    assert "sms provider down" in logs[1].error_message

    original, retry = await all_jobs()
    assert original.status == "failed"
    assert json.loads(original.error_message) == [{"channel": "sms", "error": "sms provider down"}]
    assert retry.status == "pending"
    assert retry.retry_count == 1
    assert retry.fire_at == now + timedelta(minutes=5)
    assert retry.channels == ["email", "sms"]
    assert retry.lead_time_minutes == 15


@pytest.mark.asyncio
async def test_retries_stop_after_three(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    await make_job(user, reminder)
    senders = FakeSenders(fail={"email"})

    for attempt in range(4):
        summary = await run_sweep(now=now + timedelta(minutes=5 * attempt), senders=senders)
        assert summary.failed == 1

    jobs = await all_jobs()
    assert [j.retry_count for j in jobs] == [0, 1, 2, 3]
    assert {j.status for j in jobs} == {"failed"}

    summary = await run_sweep(now=now + timedelta(hours=1), senders=senders)
    assert summary.processed == 0
    assert len(await all_logs()) == 4


@pytest.mark.asyncio
async def test_skipped_channel_does_not_fail_job(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    await make_job(user, reminder, channels=["email", "push"])

    summary = await run_sweep(now=now, senders=FakeSenders(skip={"push"}))

    assert summary.successful == 1
    assert [(l.channel, l.status) for l in await all_logs()] == [("email", "sent"), ("push", "skipped")]
    assert len(await all_jobs()) == 1


@pytest.mark.asyncio
async def test_orphaned_job_is_skipped(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    await make_job(user, reminder)
    async with db.get_session() as s:
        await s.execute(delete(db.Reminder).where(db.Reminder.id == reminder.id))
        await s.commit()
    senders = FakeSenders()

    summary = await run_sweep(now=now, senders=senders)

    assert (summary.processed, summary.skipped, summary.failed) == (1, 1, 0)
    assert senders.calls == []
    assert await all_logs() == []
    [job] = await all_jobs()
    assert job.status == "cancelled"


@pytest.mark.asyncio
async def test_future_and_non_pending_jobs_are_ignored(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    await make_job(user, reminder, fire_at=now + timedelta(minutes=1))
    await make_job(user, reminder, status="cancelled")
    await make_job(user, reminder, status="failed")

    summary = await run_sweep(now=now, senders=FakeSenders())

    assert summary.processed == 0


@pytest.mark.asyncio
async def test_batch_size_caps_sweep(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    for minutes in (3, 2, 1):
        await make_job(user, reminder, fire_at=now - timedelta(minutes=minutes))

    summary = await run_sweep(now=now, senders=FakeSenders(), batch_size=2)

    assert summary.processed == 2
    assert sorted(j.status for j in await all_jobs()) == ["pending", "sent", "sent"]


@pytest.mark.asyncio
async def test_event_jobs_are_delivered(make_user, make_event, make_job, now):
    user = await make_user()
    event = await make_event(user, location="Main St")
    await make_job(user, event, channels=["push"])
    senders = FakeSenders()

    summary = await run_sweep(now=now, senders=senders)

    assert summary.successful == 1
    assert senders.calls == [("push", event.id, 15)]
    [log] = await all_logs()
    assert log.event_id == event.id and log.reminder_id is None


@pytest.mark.asyncio
async def test_claimed_jobs_are_not_claimed_twice(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    job = await make_job(user, reminder)

    first = await db.claim_due_jobs(now)
    second = await db.claim_due_jobs(now)

    assert [j.id for j in first] == [job.id]
    assert first[0].user.id == user.id
    assert first[0].item.id == reminder.id
    assert second == []


@pytest.mark.asyncio
async def test_stale_claims_are_reclaimed(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    await make_job(user, reminder)
    await db.claim_due_jobs(now)

    later = now + timedelta(minutes=20)
    assert await db.claim_due_jobs(now + timedelta(minutes=5), stale_after=timedelta(minutes=15)) == []
    reclaimed = await db.claim_due_jobs(later, stale_after=timedelta(minutes=15))

    assert len(reclaimed) == 1
    assert reclaimed[0].claimed_at == later


@pytest.mark.asyncio
async def test_store_errors_propagate(monkeypatch, now):
    async def unreachable(*args, **kwargs):
        raise ConnectionError("database unreachable")

    monkeypatch.setattr(db, "claim_due_jobs", unreachable)

    with pytest.raises(ConnectionError):
        await delivery.run_sweep(now=now, senders=FakeSenders())


@pytest.mark.asyncio
async def test_unknown_channel_counts_as_failure(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    await make_job(user, reminder, channels=["fax"])

    summary = await run_sweep(now=now, senders=FakeSenders())

    assert summary.failed == 1
    [log] = await all_logs()
    assert log.status == "failed"
    assert "unknown channel" in log.error_message


@pytest.mark.asyncio
async def test_overlapping_reclaims_take_a_stale_job_once(make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    await make_job(user, reminder)
    await db.claim_due_jobs(now)

    later = now + timedelta(minutes=20)
    stale = timedelta(minutes=15)
    first, second = await asyncio.gather(
        db.claim_due_jobs(later, stale_after=stale),
        db.claim_due_jobs(later, stale_after=stale),
    )

    assert len(first) + len(second) == 1


@pytest.mark.asyncio
async def test_store_error_waits_for_sibling_jobs(monkeypatch, make_user, make_reminder, make_job, now):
    user = await make_user()
    reminder = await make_reminder(user)
    broken = await make_job(user, reminder, fire_at=now - timedelta(minutes=2))
    healthy = await make_job(user, reminder, fire_at=now - timedelta(minutes=1))
    update_job_status = db.update_job_status

    async def flaky_update(job_id, *args, **kwargs):
        if job_id == broken.id:
            raise ConnectionError("write lost")
        return await update_job_status(job_id, *args, **kwargs)

    monkeypatch.setattr(db, "update_job_status", flaky_update)

    with pytest.raises(ConnectionError, match="write lost"):
        await run_sweep(now=now, senders=FakeSenders())

    stored = {j.id: j.status for j in await all_jobs()}
    assert stored[healthy.id] == "sent"
    assert stored[broken.id] == "processing"
