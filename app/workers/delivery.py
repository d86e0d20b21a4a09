"""Delivery worker: one sweep sends every due notification.

Flow per sweep:
1. Claim up to ``SWEEP_BATCH_SIZE`` due jobs (pending → processing).
2. For each job, run every requested channel sender; a failing channel never
   stops its siblings.
3. Mark the job ``sent`` (no channel failed) or ``failed``, append one log row
   per channel, and enqueue a fresh retry job while
   ``retry_count < MAX_RETRIES``.

Channel failures are absorbed into the summary. Anything that goes wrong with
the store itself propagates so the trigger (beat, cron, HTTP) sees it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from app.celery_app import celery_app
from app.services.channels import SENDERS, Sender
from app.types.notification_contract import ChannelResult, SweepSummary
from config import settings
import db

_LOGGER = logging.getLogger(__name__)

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


async def _attempt(sender: Optional[Sender], channel: str, job: db.ScheduledNotification) -> ChannelResult:
    if sender is None:
        return ChannelResult(channel=channel, status="failed", error=f"unknown channel '{channel}'")
    try:
        delivered = await sender(job.user, job.item, job.lead_time_minutes)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Channel %s failed for job %s: %s", channel, job.id, exc)
        return ChannelResult(channel=channel, status="failed", error=str(exc))
    return ChannelResult(channel=channel, status="sent" if delivered else "skipped")


def _retry_job(job: db.ScheduledNotification, now: datetime) -> db.ScheduledNotification:
    return db.ScheduledNotification(
        user_id=job.user_id,
        reminder_id=job.reminder_id,
        event_id=job.event_id,
        fire_at=now + timedelta(minutes=settings.RETRY_BACKOFF_MINUTES),
        lead_time_minutes=job.lead_time_minutes,
        channels=list(job.channels),
        status="pending",
        retry_count=job.retry_count + 1,
    )


async def process_job(
    job: db.ScheduledNotification,
    now: datetime,
    senders: Mapping[str, Sender] = SENDERS,
) -> str:
    """Deliver one claimed job and record its outcome. Returns sent/failed/skipped."""
    if job.user is None or job.item is None:
        _LOGGER.error("Skipping notification %s: missing item or user data", job.id)
        await db.update_job_status(job.id, "cancelled", error_message="orphaned: user or item missing")
        return OUTCOME_SKIPPED

    _LOGGER.info("Processing notification %s for user %s", job.id, job.user_id)
    results: list[ChannelResult] = await asyncio.gather(
        *(_attempt(senders.get(ch), ch, job) for ch in job.channels)
    )

    ok = all(r.ok for r in results)
    errors = [{"channel": r.channel, "error": r.error} for r in results if not r.ok]
    await db.update_job_status(
        job.id,
        "sent" if ok else "failed",
        sent_at=now,
        error_message=None if ok else json.dumps(errors),
    )
    await db.append_log_entries([
        db.NotificationLog(
            user_id=job.user_id,
            job_id=job.id,
            reminder_id=job.reminder_id,
            event_id=job.event_id,
            channel=r.channel,
            status=r.status,
            error_message=r.error,
            sent_at=now,
        )
        for r in results
    ])

    if ok:
        return OUTCOME_SENT

    if job.retry_count < settings.MAX_RETRIES:
        retry = _retry_job(job, now)
        await db.insert_jobs([retry])
        _LOGGER.info(
            "Scheduled retry %d for notification %s at %s",
            retry.retry_count, job.id, retry.fire_at.isoformat(),
        )
    else:
        _LOGGER.error(
            "Notification %s failed after %d retries; giving up", job.id, job.retry_count
        )
    return OUTCOME_FAILED


async def run_sweep(
    now: Optional[datetime] = None,
    senders: Optional[Mapping[str, Sender]] = None,
    batch_size: Optional[int] = None,
) -> SweepSummary:
    now = now or datetime.now(timezone.utc)
    senders = senders if senders is not None else SENDERS
    _LOGGER.info("[%s] Starting notification processor...", now.isoformat())

    jobs = await db.claim_due_jobs(
        now,
        limit=batch_size or settings.SWEEP_BATCH_SIZE,
        stale_after=timedelta(minutes=settings.CLAIM_TIMEOUT_MINUTES),
    )
    _LOGGER.info("Found %d notifications to process", len(jobs))

    gate = asyncio.Semaphore(max(1, settings.SWEEP_CONCURRENCY))

    async def _bounded(job: db.ScheduledNotification) -> str:
        async with gate:
            return await process_job(job, now, senders)

    # let every job finish before a store error surfaces
    outcomes = await asyncio.gather(*(_bounded(job) for job in jobs), return_exceptions=True)
    errors = [o for o in outcomes if isinstance(o, BaseException)]
    if errors:
        _LOGGER.error("%d of %d notification(s) hit a store error", len(errors), len(jobs))
        raise errors[0]

    summary = SweepSummary(
        processed=len(jobs),
        successful=outcomes.count(OUTCOME_SENT),
        failed=outcomes.count(OUTCOME_FAILED),
        skipped=outcomes.count(OUTCOME_SKIPPED),
        timestamp=now,
    )
    _LOGGER.info(
        "Sweep done: processed=%d successful=%d failed=%d skipped=%d",
        summary.processed, summary.successful, summary.failed, summary.skipped,
    )
    return summary


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.delivery.process_due", bind=True)
def process_due(self):  # noqa: D401
    """Run one sweep; store errors propagate so the failure is visible."""
    try:
        summary = asyncio.run(_sweep_and_dispose())
    except Exception:
        _LOGGER.exception("Notification sweep failed")
        raise
    return summary.model_dump(mode="json")


async def _sweep_and_dispose() -> SweepSummary:
    # Each asyncio.run gets a fresh loop, so pooled connections must not outlive it
    try:
        return await run_sweep()
    finally:
        await db.dispose_engine()
