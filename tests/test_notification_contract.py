from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.types.notification_contract import (
    ChannelResult,
    ItemRef,
    ScheduleAction,
    ScheduleRequest,
    SweepSummary,
)

DUE = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_item_ref_needs_exactly_one_reference():
    assert ItemRef(reminder_id="r1").kind == "reminder"
    assert ItemRef(event_id="e1").item_id == "e1"
    with pytest.raises(ValidationError):
        ItemRef()
    with pytest.raises(ValidationError):
        ItemRef(reminder_id="r1", event_id="e1")


def test_schedule_request_parses_json_and_dedupes_channels():
    req = ScheduleRequest.model_validate(
        {
            "user_id": "u1",
            "event_id": "e1",
            "due_at": "2030-01-01T09:00:00Z",
            "lead_times_minutes": [0, 60],
            "channels": ["sms", "email", "sms"],
        }
    )
    assert req.due_at == DUE
    assert req.channels == ["sms", "email"]


def test_schedule_request_rejects_empty_channels():
    with pytest.raises(ValidationError, match="at least one channel"):
        ScheduleRequest(user_id="u1", reminder_id="r1", due_at=DUE, channels=[])


def test_schedule_action_round_trip():
    data = {
        "action": "create_reminder",
        "data": {
            "title": "  Pay rent ",
            "datetime": "TOMORROW_9AM",
            "recurrence": "monthly",
            "tags": ["bills"],
            "location_trigger": {"lat": 1.0, "lon": 2.0},
        },
    }
    action = ScheduleAction.model_validate(data)
    cloned = ScheduleAction.model_validate_json(action.model_dump_json())
    assert cloned.data.title == "Pay rent"
    assert cloned.data.recurrence == "monthly"
    assert cloned.data.location_trigger == {"lat": 1.0, "lon": 2.0}


def test_schedule_action_rejects_unknown_channel():
    with pytest.raises(ValidationError):
        ScheduleAction.model_validate(
            {
                "action": "create_reminder",
                "data": {"title": "x", "datetime": "TODAY_5PM", "notification_channels": ["fax"]},
            }
        )


def test_channel_result_ok():
    assert ChannelResult(channel="push", status="skipped").ok
    assert not ChannelResult(channel="sms", status="failed", error="boom").ok


def test_sweep_summary_json_shape():
    payload = SweepSummary(processed=2, successful=1, failed=1, timestamp=DUE).model_dump(mode="json")
    assert payload == {
        "processed": 2,
        "successful": 1,
        "failed": 1,
        "skipped": 0,
        "timestamp": "2030-01-01T09:00:00Z",
    }
