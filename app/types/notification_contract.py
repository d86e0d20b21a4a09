"""Pydantic models shared by the scheduler, the delivery worker, the chat
action surface and the HTTP API.

Kept free of FastAPI and database imports so workers and tests can use them
without pulling in either layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

Channel = Literal["email", "push", "sms"]
JobStatus = Literal["pending", "processing", "sent", "failed", "cancelled"]
LogStatus = Literal["sent", "failed", "skipped"]

CHANNELS: tuple[str, ...] = ("email", "push", "sms")


class ItemRef(BaseModel):
    """Reference to exactly one reminder or one event."""

    reminder_id: Optional[str] = None
    event_id: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self):  # noqa: N805
        if bool(self.reminder_id) == bool(self.event_id):
            raise ValueError("exactly one of reminder_id or event_id must be provided")
        return self

    @property
    def kind(self) -> str:
        return "reminder" if self.reminder_id else "event"

    @property
    def item_id(self) -> str:
        return self.reminder_id or self.event_id  # type: ignore[return-value]


class ScheduleRequest(ItemRef):
    """Input to the fan-out: one item, its due time, lead times and channels."""

    user_id: str
    due_at: datetime
    lead_times_minutes: List[int] = Field(default_factory=list)
    channels: List[Channel]

    @field_validator("user_id")
    def _non_empty_user(cls, v: str):  # noqa: N805
        if not v or not v.strip():
            raise ValueError("user_id must be a non-empty string")
        return v

    @field_validator("lead_times_minutes")
    def _non_negative(cls, v: list[int]):  # noqa: N805
        if any(lead < 0 for lead in v):
            raise ValueError("lead times must be non-negative minutes")
        return v

    @field_validator("channels")
    def _at_least_one_channel(cls, v: list[str]):  # noqa: N805
        if not v:
            raise ValueError("select at least one channel")
        # Preserve order, drop repeats
        return list(dict.fromkeys(v))

    @field_validator("due_at")
    def _aware(cls, v: datetime):  # noqa: N805
        if v.tzinfo is None:
            raise ValueError("due_at must be timezone-aware")
        return v


class ScheduleResult(BaseModel):
    scheduled_count: int


class ChannelUpdateRequest(ItemRef):
    channels: List[Channel]

    @field_validator("channels")
    def _at_least_one_channel(cls, v: list[str]):  # noqa: N805
        if not v:
            raise ValueError("select at least one channel")
        return list(dict.fromkeys(v))


class ScheduledNotificationOut(BaseModel):
    """Read model of a delivery job row."""

    model_config = {"from_attributes": True}

    id: str
    user_id: str
    reminder_id: Optional[str] = None
    event_id: Optional[str] = None
    fire_at: datetime
    lead_time_minutes: int
    channels: List[str]
    status: str
    retry_count: int
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None


class NotificationLogOut(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    user_id: str
    job_id: Optional[str] = None
    reminder_id: Optional[str] = None
    event_id: Optional[str] = None
    channel: str
    status: str
    error_message: Optional[str] = None
    sent_at: datetime


# ──────────────────────────────
# Delivery outcomes
# ──────────────────────────────


class ChannelResult(BaseModel):
    """Outcome of a single channel attempt for one job."""

    channel: str
    status: LogStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class SweepSummary(BaseModel):
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    timestamp: datetime


# ──────────────────────────────
# Chat action payloads
# ──────────────────────────────


class ScheduleActionData(BaseModel):
    title: str
    description: Optional[str] = None
    datetime: str
    recurrence: Optional[Literal["daily", "weekly", "monthly", "yearly", "custom"]] = None
    priority: Optional[Literal["low", "medium", "high", "urgent"]] = None
    notification_channels: Optional[List[Channel]] = None
    tags: List[str] = Field(default_factory=list)
    location_trigger: Optional[dict[str, Any]] = None

    @field_validator("title", "datetime")
    def _non_blank(cls, v: str):  # noqa: N805
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()


class ScheduleAction(BaseModel):
    """A structured command embedded by the assistant in its reply."""

    action: Literal["create_reminder"]
    data: ScheduleActionData


class ActionResult(BaseModel):
    has_action: bool
    success: Optional[bool] = None
    created_item_id: Optional[str] = None
    error: Optional[str] = None
    cleaned_text: str


class ChatActionRequest(BaseModel):
    user_id: str
    text: str
