import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.services import action_extractor, scheduler
from app.services.scheduler import SchedulingError
from app.types.notification_contract import (
    ActionResult,
    Channel,
    ChannelUpdateRequest,
    ChatActionRequest,
    ItemRef,
    LogStatus,
    NotificationLogOut,
    ScheduledNotificationOut,
    ScheduleRequest,
    ScheduleResult,
)
from app.utils.log import configure_logging
from app.workers.delivery import run_sweep
from config import settings
import db

configure_logging()
_LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    # DB connections are managed lazily; tables via Alembic migrations
    yield
    await db.dispose_engine()


app = FastAPI(title="Notifi notifications", lifespan=lifespan)


class CancelResponse(BaseModel):
    cancelled: int


class ChannelUpdateResponse(BaseModel):
    updated: int


# --------------------------------------------
# Scheduling
# --------------------------------------------
@app.post("/v1/notifications/schedule", response_model=ScheduleResult)
async def schedule_notifications(request: ScheduleRequest):
    try:
        return await scheduler.schedule(request)
    except SchedulingError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))


@app.post("/v1/notifications/cancel", response_model=CancelResponse)
async def cancel_notifications(ref: ItemRef):
    count = await scheduler.cancel_notifications(ref.reminder_id, ref.event_id)
    return CancelResponse(cancelled=count)


@app.get("/v1/notifications/scheduled", response_model=List[ScheduledNotificationOut])
async def scheduled_notifications(
    reminder_id: Optional[str] = None, event_id: Optional[str] = None
):
    try:
        rows = await scheduler.get_scheduled_notifications(reminder_id, event_id)
    except SchedulingError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))
    return [ScheduledNotificationOut.model_validate(r) for r in rows]


@app.patch("/v1/notifications/channels", response_model=ChannelUpdateResponse)
async def update_channels(request: ChannelUpdateRequest):
    count = await scheduler.update_notification_channels(
        request.channels, request.reminder_id, request.event_id
    )
    return ChannelUpdateResponse(updated=count)


@app.get("/v1/notifications/logs", response_model=List[NotificationLogOut])
async def notification_logs(
    user_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    status_: Optional[LogStatus] = Query(default=None, alias="status"),
    channel: Optional[Channel] = None,
):
    rows = await scheduler.get_notification_logs(user_id, limit=limit, status=status_, channel=channel)
    return [NotificationLogOut.model_validate(r) for r in rows]


# --------------------------------------------
# Worker trigger (cron / scheduler HTTP hook)
# --------------------------------------------
@app.post("/v1/notifications/process")
async def process_notifications(authorization: Optional[str] = Header(default=None)):
    if settings.CRON_SECRET and authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid cron secret")
    try:
        summary = await run_sweep()
    except Exception as exc:  # noqa: BLE001
        _LOGGER.exception("Notification processor error")
        return JSONResponse(
            {"error": str(exc), "timestamp": datetime.now(timezone.utc).isoformat()},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return {"success": True, **summary.model_dump(mode="json")}


# --------------------------------------------
# Chat action surface
# --------------------------------------------
@app.post("/v1/chat/actions", response_model=ActionResult)
async def chat_actions(request: ChatActionRequest):
    return await action_extractor.extract_and_apply_action(request.user_id, request.text)
