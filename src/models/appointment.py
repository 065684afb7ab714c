from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from src.models.enums import AppointmentStatus, StatusActor


class RescheduleDetails(BaseModel):
    new_date: str  # "2026-10-21"
    new_time: str  # "14:00"


class AppointmentStatusUpdate(BaseModel):
    """One entry in the append-only appointment status log."""

    model_config = {"frozen": True}

    appointment_id: str
    previous_status: AppointmentStatus
    new_status: AppointmentStatus
    actor: StatusActor
    updated_at: datetime
    reason: str | None = None
    reschedule_details: RescheduleDetails | None = None


class AppointmentParticipants(BaseModel):
    appointment_id: str
    survivor_id: str | None = None
    provider_id: str | None = None
