"""Appointment booking and status API endpoints for Tumaini."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.api.deps import require_service
from src.models.appointment import AppointmentStatusUpdate, RescheduleDetails
from src.models.enums import AppointmentStatus, StatusActor
from src.models.reminder import AppointmentDetails, Reminder

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"])


class BookAppointmentRequest(BaseModel):
    appointment_id: str
    when: str = Field(..., description="ISO-8601 date-time; local zone if no offset")
    survivor_id: str
    provider_id: str
    details: AppointmentDetails = Field(default_factory=AppointmentDetails)


class BookAppointmentResponse(BaseModel):
    appointment_id: str
    appointment_time: datetime
    reminders: list[Reminder]


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus
    actor: StatusActor
    reason: str | None = None
    reschedule_details: RescheduleDetails | None = None


class SurvivorResponseRequest(BaseModel):
    response: str = Field(..., description="confirm, decline or reschedule")
    reason: str | None = None
    reschedule_details: RescheduleDetails | None = None


class StatusUpdateResponse(BaseModel):
    appointment_id: str
    changed: bool
    status: AppointmentStatus
    update: AppointmentStatusUpdate | None = None


# ---------------------------------------------------------------------------
# Collection-level endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=BookAppointmentResponse, status_code=201)
async def book_appointment(body: BookAppointmentRequest, request: Request) -> BookAppointmentResponse:
    orchestrator = require_service(request, "orchestrator")
    outcome = await orchestrator.book_appointment(
        body.appointment_id, body.when, body.survivor_id, body.provider_id, body.details
    )
    return BookAppointmentResponse(**outcome.model_dump())


@router.get("/summary")
async def status_summary(request: Request) -> dict[str, int]:
    """Count of tracked appointments per current status."""
    tracker = require_service(request, "status_tracker")
    return await tracker.get_status_summary()


@router.get("/attention")
async def needing_attention(request: Request) -> list[AppointmentStatusUpdate]:
    tracker = require_service(request, "status_tracker")
    return await tracker.needing_attention()


@router.get("/recent")
async def recent_updates(request: Request, limit: int = 10) -> list[AppointmentStatusUpdate]:
    tracker = require_service(request, "status_tracker")
    return await tracker.get_recent(limit=min(max(limit, 1), 100))


# ---------------------------------------------------------------------------
# Per-appointment endpoints
# ---------------------------------------------------------------------------


async def _status_response(
    request: Request, appointment_id: str, update: AppointmentStatusUpdate | None
) -> StatusUpdateResponse:
    tracker = require_service(request, "status_tracker")
    return StatusUpdateResponse(
        appointment_id=appointment_id,
        changed=update is not None,
        status=await tracker.get_status(appointment_id),
        update=update,
    )


@router.post("/{appointment_id}/status", response_model=StatusUpdateResponse)
async def update_status(
    appointment_id: str, body: StatusUpdateRequest, request: Request
) -> StatusUpdateResponse:
    """Record a status change.  ``changed`` is false when the status was already set."""
    orchestrator = require_service(request, "orchestrator")
    update = await orchestrator.update_appointment_status(
        appointment_id, body.status, body.actor, body.reason, body.reschedule_details
    )
    return await _status_response(request, appointment_id, update)


@router.post("/{appointment_id}/respond", response_model=StatusUpdateResponse)
async def survivor_response(
    appointment_id: str, body: SurvivorResponseRequest, request: Request
) -> StatusUpdateResponse:
    orchestrator = require_service(request, "orchestrator")
    update = await orchestrator.process_survivor_response(
        appointment_id, body.response, body.reason, body.reschedule_details
    )
    return await _status_response(request, appointment_id, update)


@router.get("/{appointment_id}/status")
async def get_status(appointment_id: str, request: Request) -> dict[str, str]:
    tracker = require_service(request, "status_tracker")
    status = await tracker.get_status(appointment_id)
    return {"appointment_id": appointment_id, "status": str(status)}


@router.get("/{appointment_id}/history")
async def get_history(appointment_id: str, request: Request) -> list[AppointmentStatusUpdate]:
    tracker = require_service(request, "status_tracker")
    return await tracker.get_history(appointment_id)
