"""Channel senders: email, push and SMS.

Each sender has the shape ``async (user, item, lead_time_minutes) -> bool``:
``True`` when the provider accepted the message, ``False`` when the channel
does not apply to this user (no push token, no phone, SMS not configured),
and ``ChannelError`` when delivery was attempted and failed.
"""

from __future__ import annotations

import asyncio
import html
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.utils import email as email_client
from app.utils import push as push_client
from app.utils import sms as sms_client
from config import settings

_LOGGER = logging.getLogger(__name__)


class ChannelError(Exception):
    """A channel-local delivery failure."""


class Recipient(Protocol):
    id: str
    email: str
    full_name: str | None
    phone_number: str | None
    timezone: str | None
    expo_push_token: str | None


class Item(Protocol):
    id: str
    title: str
    description: str | None
    due_at: datetime
    is_reminder: bool


Sender = Callable[[Recipient, Item, int], Awaitable[bool]]


# ──────────────────────────────────────────────────────────────────────────
# Message composition
# ──────────────────────────────────────────────────────────────────────────

def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'s' if n > 1 else ''}"


def time_phrase(lead_time_minutes: int, short: bool = False) -> str:
    """``0 -> "now"``, ``45 -> "in 45 minutes"``, ``150 -> "in 2 hours"``."""
    if lead_time_minutes <= 0:
        return "NOW" if short else "now"
    if lead_time_minutes < 60:
        n = lead_time_minutes
        return f"in {n}m" if short else f"in {_plural(n, 'minute')}"
    if lead_time_minutes < 1440:
        n = lead_time_minutes // 60
        return f"in {n}h" if short else f"in {_plural(n, 'hour')}"
    n = lead_time_minutes // 1440
    return f"in {n}d" if short else f"in {_plural(n, 'day')}"


def _zone(name: str | None) -> ZoneInfo:
    for candidate in (name, settings.DEFAULT_TIMEZONE, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            _LOGGER.debug("Unknown timezone %r, falling back", candidate)
    return ZoneInfo("UTC")


def format_time_for_user(moment: datetime, tz_name: str | None) -> str:
    """e.g. ``Jan 13, 2025, 10:00 AM`` in the user's timezone."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(_zone(tz_name))
    hour = local.hour % 12 or 12
    return f"{local:%b} {local.day}, {local.year}, {hour}:{local:%M} {local:%p}"


def _icon(item: Item) -> str:
    return "⏰" if item.is_reminder else "📅"


def compose_email(user: Recipient, item: Item, lead_time_minutes: int) -> tuple[str, str]:
    subject = f"⏰ Reminder: {item.title}" if item.is_reminder else f"📅 Upcoming: {item.title}"
    when = format_time_for_user(item.due_at, user.timezone)
    rows = [f"<p><strong>Time:</strong> {when}</p>"]
    location = getattr(item, "location", None)
    end_at = getattr(item, "end_at", None)
    if not item.is_reminder and location:
        rows.append(f"<p><strong>Location:</strong> {html.escape(location)}</p>")
    if not item.is_reminder and end_at:
        rows.append(
            f"<p><strong>Duration:</strong> {when} - {format_time_for_user(end_at, user.timezone)}</p>"
        )
    description = (
        f"<p>{html.escape(item.description)}</p>" if item.description else ""
    )
    body = (
        f"<h1>{_icon(item)} {html.escape(item.title)}</h1>"
        f"<p><strong>This is {time_phrase(lead_time_minutes)}!</strong></p>"
        f"{description}"
        f"{''.join(rows)}"
        f'<p><a href="{settings.APP_URL}/dashboard">View in Notifi</a></p>'
    )
    return subject, body


def compose_push(item: Item, lead_time_minutes: int) -> tuple[str, str]:
    title = f"{_icon(item)} {item.title}"
    body = f"{time_phrase(lead_time_minutes, short=True)} • {item.description or 'Tap to view details'}"
    return title, body


def compose_sms(user: Recipient, item: Item, lead_time_minutes: int) -> str:
    when = format_time_for_user(item.due_at, user.timezone)
    text = f"🔔 Notifi: {item.title} {time_phrase(lead_time_minutes, short=True)} ({when})."
    if item.description:
        text += f" {item.description}"
    return f"{text} - View: {settings.APP_URL}"


# ──────────────────────────────────────────────────────────────────────────
# Senders
# ──────────────────────────────────────────────────────────────────────────

async def send_email(user: Recipient, item: Item, lead_time_minutes: int) -> bool:
    subject, body = compose_email(user, item, lead_time_minutes)
    try:
        await email_client.send_email(user.email, subject, body)
    except Exception as exc:  # noqa: BLE001
        raise ChannelError(f"Failed to send email: {exc}") from exc
    return True


async def send_push(user: Recipient, item: Item, lead_time_minutes: int) -> bool:
    if not user.expo_push_token:
        _LOGGER.info("No push token for user %s, skipping push notification", user.id)
        return False
    title, body = compose_push(item, lead_time_minutes)
    urgent = item.is_reminder and getattr(item, "priority", None) == "urgent"
    try:
        await push_client.send_push(
            user.expo_push_token,
            title,
            body,
            data={"type": "reminder" if item.is_reminder else "event", "id": item.id, "screen": "Dashboard"},
            priority="high" if urgent else "normal",
        )
    except Exception as exc:  # noqa: BLE001
        raise ChannelError(f"Failed to send push notification: {exc}") from exc
    return True


async def send_sms(user: Recipient, item: Item, lead_time_minutes: int) -> bool:
    if not user.phone_number:
        _LOGGER.info("No phone number for user %s, skipping SMS", user.id)
        return False
    if not sms_client.sms_configured():
        _LOGGER.info("Telnyx credentials not configured, skipping SMS")
        return False
    body = compose_sms(user, item, lead_time_minutes)
    try:
        await asyncio.to_thread(sms_client.send_sms, user.phone_number, body)
    except Exception as exc:  # noqa: BLE001
        raise ChannelError(f"Failed to send SMS: {exc}") from exc
    return True


SENDERS: Mapping[str, Sender] = {
    "email": send_email,
    "push": send_push,
    "sms": send_sms,
}
