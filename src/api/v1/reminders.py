"""Reminder scheduling API endpoints for Tumaini.

Static paths (``/stats``, ``/failed``, ``/tick``, ``/preferences``,
``/users``) are declared before the ``/{appointment_id}`` routes so they
are not captured as appointment ids.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.api.deps import require_service
from src.models.enums import DeliveryMethod, RecipientRole
from src.models.reminder import (
    AppointmentDetails,
    FiredReminder,
    Reminder,
    ReminderPreferences,
    ReminderRecipient,
    ReminderStatistics,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/reminders", tags=["reminders"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class ScheduleRequest(BaseModel):
    appointment_id: str
    appointment_time: str = Field(..., description="ISO-8601; local zone if no offset")
    recipients: list[ReminderRecipient] = Field(..., min_length=1)
    details: AppointmentDetails | None = None
    preferences: ReminderPreferences | None = None


class RescheduleRequest(BaseModel):
    new_time: str
    details: AppointmentDetails | None = None
    recipients: list[ReminderRecipient] | None = None


class CancelResponse(BaseModel):
    appointment_id: str
    cancelled: int


class TickRequest(BaseModel):
    now: datetime | None = None


class PreferencesRequest(BaseModel):
    role: RecipientRole = RecipientRole.SURVIVOR
    enable_24_hour: bool = True
    enable_2_hour: bool = True
    enable_30_minute: bool = False
    delivery_method: DeliveryMethod = DeliveryMethod.IN_APP
    custom_offsets_minutes: list[int] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Collection-level endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
async def schedule_reminders(body: ScheduleRequest, request: Request) -> list[Reminder]:
    """Create reminders for every recipient of an appointment."""
    scheduler = require_service(request, "reminders")
    return await scheduler.schedule_for_appointment(
        body.appointment_id,
        body.appointment_time,
        body.recipients,
        details=body.details,
        preferences=body.preferences,
    )


@router.get("/stats")
async def reminder_statistics(request: Request) -> ReminderStatistics:
    scheduler = require_service(request, "reminders")
    return await scheduler.get_statistics()


@router.get("/failed")
async def failed_reminders(request: Request) -> list[Reminder]:
    scheduler = require_service(request, "reminders")
    return await scheduler.get_failed()


@router.post("/tick")
async def run_tick(request: Request, body: TickRequest | None = None) -> list[FiredReminder]:
    """Fire due reminders now instead of waiting for the next engine tick."""
    engine = require_service(request, "reminder_engine")
    return await engine.run_once(body.now if body else None)


@router.get("/preferences/{user_id}")
async def get_preferences(
    user_id: str, request: Request, role: RecipientRole = RecipientRole.SURVIVOR
) -> ReminderPreferences:
    scheduler = require_service(request, "reminders")
    return await scheduler.get_preferences(ReminderRecipient(recipient_id=user_id, role=role))


@router.put("/preferences/{user_id}")
async def set_preferences(
    user_id: str, body: PreferencesRequest, request: Request
) -> ReminderPreferences:
    scheduler = require_service(request, "reminders")
    preferences = ReminderPreferences(user_id=user_id, **body.model_dump())
    return await scheduler.set_preferences(preferences)


@router.get("/users/{user_id}/upcoming")
async def upcoming_reminders(user_id: str, request: Request) -> list[Reminder]:
    scheduler = require_service(request, "reminders")
    return await scheduler.get_upcoming(user_id)


@router.get("/users/{user_id}/history")
async def reminder_history(user_id: str, request: Request, limit: int = 20) -> list[Reminder]:
    scheduler = require_service(request, "reminders")
    return await scheduler.get_history(user_id, limit=min(max(limit, 1), 100))


# ---------------------------------------------------------------------------
# Per-appointment endpoints
# ---------------------------------------------------------------------------


@router.get("/{appointment_id}")
async def appointment_reminders(appointment_id: str, request: Request) -> list[Reminder]:
    scheduler = require_service(request, "reminders")
    return await scheduler.get_reminders(appointment_id)


@router.post("/{appointment_id}/cancel")
async def cancel_reminders(appointment_id: str, request: Request) -> CancelResponse:
    scheduler = require_service(request, "reminders")
    cancelled = await scheduler.cancel_for_appointment(appointment_id)
    return CancelResponse(appointment_id=appointment_id, cancelled=cancelled)


@router.post("/{appointment_id}/reschedule")
async def reschedule_reminders(
    appointment_id: str, body: RescheduleRequest, request: Request
) -> list[Reminder]:
    """Replace outstanding reminders with ones for the new time.

    404 when nothing was ever scheduled for the appointment and no
    recipients are given.
    """
    scheduler = require_service(request, "reminders")
    return await scheduler.reschedule_for_appointment(
        appointment_id, body.new_time, details=body.details, recipients=body.recipients
    )
