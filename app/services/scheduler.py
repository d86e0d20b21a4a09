"""Notification fan-out: turn one reminder/event plus lead times into jobs.

Re-requesting notifications for an item is a full replace: every pending job
for that item is swapped for the new set in one transaction. Lead times that
would already have fired are dropped without error.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from pydantic import ValidationError

from app.types.notification_contract import (
    ChannelUpdateRequest,
    ItemRef,
    ScheduleRequest,
    ScheduleResult,
)
import db

_LOGGER = logging.getLogger(__name__)


class SchedulingError(ValueError):
    """Caller mistake (bad item reference, no channels, ...). Not retryable."""


def _item_ref(reminder_id: Optional[str], event_id: Optional[str]) -> ItemRef:
    try:
        return ItemRef(reminder_id=reminder_id, event_id=event_id)
    except ValidationError as exc:
        raise SchedulingError("Either reminder_id or event_id must be provided") from exc


async def schedule_notifications(
    *,
    user_id: str,
    due_at: datetime,
    lead_times_minutes: Iterable[int],
    channels: Iterable[str],
    reminder_id: Optional[str] = None,
    event_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ScheduleResult:
    try:
        request = ScheduleRequest(
            user_id=user_id,
            reminder_id=reminder_id,
            event_id=event_id,
            due_at=due_at,
            lead_times_minutes=list(lead_times_minutes),
            channels=list(channels),
        )
    except ValidationError as exc:
        raise SchedulingError(str(exc)) from exc
    return await schedule(request, now=now)


async def schedule(request: ScheduleRequest, now: Optional[datetime] = None) -> ScheduleResult:
    now = now or datetime.now(timezone.utc)

    jobs = []
    for lead in request.lead_times_minutes:
        fire_at = request.due_at - timedelta(minutes=lead)
        if fire_at <= now:
            _LOGGER.debug(
                "Dropping lead time %s for %s %s: fire time %s already passed",
                lead, request.kind, request.item_id, fire_at.isoformat(),
            )
            continue
        jobs.append(
            db.ScheduledNotification(
                user_id=request.user_id,
                reminder_id=request.reminder_id,
                event_id=request.event_id,
                fire_at=fire_at,
                lead_time_minutes=lead,
                channels=list(request.channels),
                status="pending",
                retry_count=0,
            )
        )

    removed = await db.replace_pending_jobs(request, jobs)
    if not jobs:
        _LOGGER.warning("No future notifications to schedule for %s %s", request.kind, request.item_id)
        return ScheduleResult(scheduled_count=0)

    _LOGGER.info(
        "Scheduled %d notification(s) for %s %s (replaced %d pending)",
        len(jobs), request.kind, request.item_id, removed,
    )
    return ScheduleResult(scheduled_count=len(jobs))


async def cancel_notifications(
    reminder_id: Optional[str] = None, event_id: Optional[str] = None
) -> int:
    """Flip every pending job for the item to ``cancelled``."""
    ref = _item_ref(reminder_id, event_id)
    count = await db.cancel_pending_jobs(ref)
    _LOGGER.info("Cancelled %d pending notification(s) for %s %s", count, ref.kind, ref.item_id)
    return count


async def get_scheduled_notifications(
    reminder_id: Optional[str] = None, event_id: Optional[str] = None
) -> list[db.ScheduledNotification]:
    return await db.list_pending_jobs(_item_ref(reminder_id, event_id))


async def update_notification_channels(
    channels: Iterable[str],
    reminder_id: Optional[str] = None,
    event_id: Optional[str] = None,
) -> int:
    try:
        request = ChannelUpdateRequest(
            reminder_id=reminder_id, event_id=event_id, channels=list(channels)
        )
    except ValidationError as exc:
        raise SchedulingError(str(exc)) from exc
    return await db.update_pending_channels(request, list(request.channels))


async def get_notification_logs(
    user_id: str,
    limit: Optional[int] = None,
    status: Optional[str] = None,
    channel: Optional[str] = None,
) -> list[db.NotificationLog]:
    return await db.search_logs(user_id, limit=limit, status=status, channel=channel)


# ──────────────────────────────────────────────────────────────────────────
# Lead-time labels for pickers
# ──────────────────────────────────────────────────────────────────────────

NOTIFICATION_PRESETS: tuple[tuple[str, int], ...] = (
    ("At time", 0),
    ("5 minutes before", 5),
    ("15 minutes before", 15),
    ("30 minutes before", 30),
    ("1 hour before", 60),
    ("2 hours before", 120),
    ("1 day before", 1440),
    ("1 week before", 10080),
)


def format_lead_time(minutes: int) -> str:
    """Human label for a lead time, e.g. ``90 -> "1 hour before"``."""
    if minutes == 0:
        return "At time"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes > 1 else ''} before"
    if minutes < 1440:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours > 1 else ''} before"
    if minutes % 10080 == 0:
        weeks = minutes // 10080
        return f"{weeks} week{'s' if weeks > 1 else ''} before"
    days = minutes // 1440
    return f"{days} day{'s' if days > 1 else ''} before"
