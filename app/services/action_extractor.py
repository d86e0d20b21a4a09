"""Pull the structured ``SCHEDULE_ACTION`` block out of an assistant reply.

The chat engine is asked to append a fenced block such as::

    ```SCHEDULE_ACTION
    {"action": "create_reminder", "data": {"title": "Call mom", "datetime": "TOMORROW_2PM"}}
    ```

Only the first block counts. Anything that does not validate is treated as
"no action" so the prose still reaches the user.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import ValidationError

from app.services import relative_time, scheduler
from app.types.notification_contract import ActionResult, ScheduleAction
from config import settings
import db

_LOGGER = logging.getLogger(__name__)

SENTINEL = "SCHEDULE_ACTION"
_BLOCK_RE = re.compile(r"```" + SENTINEL + r"\s*\n([\s\S]*?)\n[ \t]*```")
_BLANK_RUN_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


def _clean(text: str) -> str:
    stripped = _BLOCK_RE.sub("", text)
    return _BLANK_RUN_RE.sub("\n\n", stripped).strip()


def extract(text: str) -> Tuple[Optional[ScheduleAction], str]:
    """Return ``(action, cleaned_text)``; ``(None, text)`` when there is none."""
    match = _BLOCK_RE.search(text or "")
    if not match:
        return None, text

    try:
        action = ScheduleAction.model_validate(json.loads(match.group(1)))
    except (json.JSONDecodeError, ValidationError) as exc:
        _LOGGER.warning("Failed to parse schedule action: %s", exc)
        return None, text

    return action, _clean(text)


async def create_reminder_from_action(
    user_id: str, action: ScheduleAction, now: datetime
) -> db.Reminder:
    data = action.data
    channels = data.notification_channels or list(settings.DEFAULT_CHANNELS)
    due_at = relative_time.parse(data.datetime, now)

    reminder = db.Reminder(
        user_id=user_id,
        title=data.title,
        description=data.description or "",
        due_at=due_at,
        recurrence=data.recurrence,
        priority=data.priority or "medium",
        notification_channels=channels,
        notification_lead_times=list(settings.DEFAULT_LEAD_TIMES),
        tags=[t.lower() for t in data.tags],
        location_trigger=data.location_trigger,
        completed=False,
    )
    await db.insert_reminder(reminder)
    await scheduler.schedule_notifications(
        user_id=user_id,
        reminder_id=reminder.id,
        due_at=due_at,
        lead_times_minutes=settings.DEFAULT_LEAD_TIMES,
        channels=channels,
        now=now,
    )
    return reminder


async def extract_and_apply_action(
    user_id: str, text: str, now: Optional[datetime] = None
) -> ActionResult:
    """Extract the action from ``text`` and create the reminder it describes."""
    action, cleaned = extract(text)
    if action is None:
        return ActionResult(has_action=False, cleaned_text=cleaned)

    now = now or datetime.now(timezone.utc)
    try:
        reminder = await create_reminder_from_action(user_id, action, now)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.error("Error creating reminder from chat for user %s: %s", user_id, exc)
        return ActionResult(has_action=True, success=False, error=str(exc), cleaned_text=cleaned)

    _LOGGER.info("Created reminder %s from chat for user %s", reminder.id, user_id)
    return ActionResult(
        has_action=True, success=True, created_item_id=reminder.id, cleaned_text=cleaned
    )
