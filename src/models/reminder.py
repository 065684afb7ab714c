"""Appointment reminder models.

A reminder is created ahead of time in ``scheduled`` state and is moved to
exactly one of ``sent``, ``failed`` or ``cancelled`` afterwards.  Failed
reminders are kept so operators can see what did not go out.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import DeliveryMethod, RecipientRole, ReminderKind, ReminderStatus


class AppointmentDetails(BaseModel):
    """Human-facing appointment facts used when rendering reminder text."""

    patient_name: str = "your patient"
    provider_name: str = "your provider"
    location: str = ""
    appointment_type: str = "appointment"


class ReminderPreferences(BaseModel):
    """Which reminders a user wants and how they should be delivered."""

    user_id: str
    role: RecipientRole = RecipientRole.SURVIVOR
    enable_24_hour: bool = True
    enable_2_hour: bool = True
    enable_30_minute: bool = False
    delivery_method: DeliveryMethod = DeliveryMethod.IN_APP
    custom_offsets_minutes: list[int] = Field(default_factory=list)


class ReminderRecipient(BaseModel):
    """One party to an appointment; preferences fall back to stored ones."""

    recipient_id: str
    role: RecipientRole
    preferences: ReminderPreferences | None = None


class Reminder(BaseModel):
    reminder_id: str = Field(default_factory=lambda: uuid4().hex)
    appointment_id: str
    recipient_id: str
    recipient_role: RecipientRole
    kind: ReminderKind
    offset_minutes: int
    appointment_time: datetime
    scheduled_time: datetime
    status: ReminderStatus = ReminderStatus.SCHEDULED
    message: str
    method: DeliveryMethod = DeliveryMethod.IN_APP
    details: AppointmentDetails = Field(default_factory=AppointmentDetails)
    created_at: datetime
    sent_time: datetime | None = None
    failure_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ReminderStatus.SCHEDULED


class FiredReminder(BaseModel):
    """Outcome of processing one due reminder during a tick."""

    reminder_id: str
    appointment_id: str
    recipient_id: str
    recipient_role: RecipientRole
    kind: ReminderKind
    status: ReminderStatus
    title: str
    body: str


class ReminderStatistics(BaseModel):
    total: int = 0
    scheduled: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0


class ReminderPlan(BaseModel):
    """Who an appointment's reminders go to, kept so a reschedule can
    rebuild them for the same recipients and appointment details."""

    appointment_id: str
    appointment_time: datetime
    recipients: list[ReminderRecipient] = Field(default_factory=list)
    details: AppointmentDetails = Field(default_factory=AppointmentDetails)
