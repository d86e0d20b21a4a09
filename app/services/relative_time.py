"""Resolve the assistant's symbolic datetime tokens into timestamps.

Grammar: ``<DAY>[_<WEEKDAY>]_<TIME>`` where DAY is TODAY, TOMORROW or NEXT
(NEXT needs a weekday), and TIME looks like ``2PM``, ``10AM``, ``14H30`` or
``9:15``. Anything ISO-8601 is accepted as-is. ``now`` is always passed in;
no timezone conversion happens here.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

_LOGGER = logging.getLogger(__name__)

WEEKDAYS = ("SUNDAY", "MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY")
DEFAULT_HOUR = 9
DEFAULT_MINUTE = 0

_TIME_RE = re.compile(r"(\d{1,2})(?:H|:)?(\d{2})?(AM|PM)?")


def _parse_iso(token: str, now: datetime) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(token)
    except ValueError:
        return None
    if parsed.tzinfo is None and now.tzinfo is not None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    return parsed


def _parse_time(part: str) -> tuple[int, int] | None:
    m = _TIME_RE.search(part)
    if not m:
        return None
    hour = int(m.group(1))
    minute = int(m.group(2)) if m.group(2) else 0
    meridiem = m.group(3)
    if meridiem == "PM" and hour != 12:
        hour += 12
    elif meridiem == "AM" and hour == 12:
        hour = 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return hour, minute


def _days_until_next(weekday: str, current: datetime) -> int | None:
    if weekday not in WEEKDAYS:
        return None
    delta = WEEKDAYS.index(weekday) - current.isoweekday() % 7
    if delta <= 0:
        delta += 7
    return delta


def parse(token: str, now: datetime) -> datetime:
    """Resolve ``token`` relative to ``now``. Never raises."""
    token = (token or "").strip()

    iso = _parse_iso(token, now)
    if iso is not None:
        return iso

    parts = token.upper().split("_")
    selector = parts[0]
    target = now

    if selector == "TODAY":
        pass
    elif selector == "TOMORROW":
        target = now + timedelta(days=1)
    elif selector == "NEXT":
        delta = _days_until_next(parts[1], now) if len(parts) > 1 else None
        if delta is not None:
            target = now + timedelta(days=delta)
    else:
        _LOGGER.warning("Unrecognised datetime token %r – defaulting to today 09:00", token)
        return now.replace(hour=DEFAULT_HOUR, minute=DEFAULT_MINUTE, second=0, microsecond=0)

    hour, minute = DEFAULT_HOUR, DEFAULT_MINUTE
    if len(parts) > 1:
        parsed = _parse_time(parts[-1])
        if parsed is not None:
            hour, minute = parsed

    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)
