"""Notification composing and the delivery seam.

The :class:`NotificationComposer` is pure formatting: given a role, an
event and its incident or appointment context it produces a
:class:`~src.models.notification.NotificationPayload` (title, body,
urgency tag).  It never delivers anything.

Delivery goes through a :class:`NotificationSink`.  Two sinks ship with
the core:

* :class:`QueueNotificationSink` -- in-process queue that a delivery
  worker (SMS gateway, push service) drains via :meth:`get_pending` and
  :meth:`mark_sent`.
* :class:`LoggingNotificationSink` -- writes a structured log line only.

Survivor names and addresses are never logged.
"""

from __future__ import annotations

import math
from collections import deque
from datetime import UTC, datetime
from typing import Any, Final, Protocol, runtime_checkable
from zoneinfo import ZoneInfo

import structlog

from src.models.appointment import AppointmentStatusUpdate
from src.models.enums import (
    AppointmentStatus,
    CaseUpdateType,
    CommunicationMethod,
    ProviderType,
    RecipientRole,
    ReminderKind,
    ServiceTag,
    StatusActor,
    SurvivorEvent,
    UrgencyLevel,
    UrgencyTag,
)
from src.models.incident import Incident
from src.models.notification import Notification, NotificationPayload
from src.models.reminder import AppointmentDetails
from src.services.errors import DeliveryError

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Text tables
# ---------------------------------------------------------------------------

_URGENCY_PREFIX: Final[dict[UrgencyLevel, str]] = {
    UrgencyLevel.IMMEDIATE: "URGENT: ",
    UrgencyLevel.URGENT: "Priority: ",
}

_URGENCY_TAG: Final[dict[UrgencyLevel, UrgencyTag]] = {
    UrgencyLevel.IMMEDIATE: UrgencyTag.CRITICAL,
    UrgencyLevel.URGENT: UrgencyTag.HIGH,
    UrgencyLevel.ROUTINE: UrgencyTag.NORMAL,
}

_CASE_TITLES: Final[dict[ProviderType, str]] = {
    ProviderType.HEALTHCARE: "New Medical Case",
    ProviderType.POLICE: "New Police Case",
    ProviderType.GBV_RESCUE: "Emergency Response",
    ProviderType.COUNSELING: "New Counseling Case",
    ProviderType.LEGAL: "New Legal Case",
    ProviderType.SOCIAL: "New Social Services Case",
    ProviderType.CHW: "New Community Case",
}

_INCIDENT_DESCRIPTIONS: Final[dict[str, str]] = {
    "sexual": "Sexual assault",
    "physical": "Physical violence",
    "emotional": "Emotional/psychological abuse",
    "economic": "Economic abuse",
    "online": "Online GBV",
    "femicide": "Femicide/attempted femicide",
}

_PROVIDER_ACTIONS: Final[dict[ProviderType, str]] = {
    ProviderType.POLICE: " Evidence collection and investigation required.",
    ProviderType.GBV_RESCUE: " Immediate intervention and safe transport needed.",
    ProviderType.COUNSELING: " Psychological support and trauma counseling needed.",
}

_PROVIDER_DISPLAY_NAMES: Final[dict[ProviderType, str]] = {
    ProviderType.HEALTHCARE: "Healthcare Provider",
    ProviderType.POLICE: "Police Officer",
    ProviderType.GBV_RESCUE: "Emergency Response Team",
    ProviderType.COUNSELING: "Counselor",
    ProviderType.LEGAL: "Legal Aid Advocate",
    ProviderType.SOCIAL: "Social Worker",
    ProviderType.CHW: "Community Health Worker",
}

_CHANNEL_PHRASES: Final[dict[CommunicationMethod, str]] = {
    CommunicationMethod.SMS: "SMS",
    CommunicationMethod.CALL: "phone call",
    CommunicationMethod.SECURE_MESSAGE: "secure message",
}

_APPOINTMENT_TYPES: Final[dict[str, str]] = {
    "consultation": "consultation",
    "follow_up": "follow-up appointment",
    "medical_exam": "medical examination",
    "counseling": "counseling session",
}

_CASE_UPDATE_TITLES: Final[dict[CaseUpdateType, str]] = {
    CaseUpdateType.STATUS_CHANGE: "Case Status Updated",
    CaseUpdateType.PROGRESS_UPDATE: "Case Progress Update",
    CaseUpdateType.COMPLETION: "Case Completed",
}

_REMINDER_TITLES: Final[dict[ReminderKind, str]] = {
    ReminderKind.TWENTY_FOUR_HOUR: "Appointment Tomorrow",
    ReminderKind.TWO_HOUR: "Appointment in 2 Hours",
    ReminderKind.THIRTY_MINUTE: "Appointment Starting Soon",
    ReminderKind.CUSTOM: "Appointment Reminder",
}

_TIME_UNTIL: Final[dict[ReminderKind, str]] = {
    ReminderKind.TWENTY_FOUR_HOUR: "tomorrow",
    ReminderKind.TWO_HOUR: "in 2 hours",
    ReminderKind.THIRTY_MINUTE: "in 30 minutes",
    ReminderKind.CUSTOM: "soon",
}

_LOCATION_MAX_CHARS: Final[int] = 30
_MESSAGE_MAX_CHARS: Final[int] = 100

# Inbox sort weights (higher sorts first)
_PROVIDER_KIND_WEIGHTS: Final[dict[str, int]] = {
    "new_case": 30,
    "message": 20,
    "status_update": 10,
}
_SURVIVOR_EVENT_WEIGHTS: Final[dict[SurvivorEvent, int]] = {
    SurvivorEvent.ASSIGNMENT: 50,
    SurvivorEvent.CONTACT: 50,
    SurvivorEvent.APPOINTMENT: 40,
    SurvivorEvent.CASE_UPDATE: 30,
    SurvivorEvent.MESSAGE: 20,
}


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def describe_incident(incident_type: str | None) -> str:
    if not incident_type:
        return "GBV incident"
    return _INCIDENT_DESCRIPTIONS.get(incident_type.strip().lower(), "GBV incident")


def provider_display_name(provider_type: ProviderType | str) -> str:
    try:
        return _PROVIDER_DISPLAY_NAMES[ProviderType(provider_type)]
    except (KeyError, ValueError):
        return "Support Provider"


def appointment_type_phrase(appointment_type: str) -> str:
    return _APPOINTMENT_TYPES.get(appointment_type, appointment_type)


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class NotificationComposer:
    """Builds notification text for providers and survivors.

    Parameters
    ----------
    pep_window_hours:
        Length of the post-exposure prophylaxis window counted down in
        immediate medical case alerts.
    timezone:
        Zone used when rendering appointment dates and times.
    """

    __slots__ = ("_pep_window_hours", "_tz")

    def __init__(self, pep_window_hours: int = 72, timezone: str = "Africa/Nairobi") -> None:
        self._pep_window_hours = pep_window_hours
        self._tz = ZoneInfo(timezone)

    # -- Formatting helpers ----------------------------------------------------

    def format_date(self, when: datetime) -> str:
        local = when.astimezone(self._tz)
        return f"{local:%A, %B} {local.day}"

    def format_time(self, when: datetime) -> str:
        return f"{when.astimezone(self._tz):%I:%M %p}"

    # ------------------------------------------------------------------
    # Provider-facing
    # ------------------------------------------------------------------

    def provider_case_alert(
        self,
        incident: Incident,
        provider_type: ProviderType,
        now: datetime | None = None,
    ) -> NotificationPayload:
        """New-case alert sent to a provider the incident was routed to."""
        now = now or datetime.now(UTC)
        title = _URGENCY_PREFIX.get(incident.urgency, "") + _CASE_TITLES.get(
            provider_type, "New Case"
        )

        body = f"{describe_incident(incident.incident_type)} case assigned to you."
        services = {s.strip().lower() for s in incident.support_services}

        if provider_type == ProviderType.HEALTHCARE and ServiceTag.MEDICAL in services:
            if incident.urgency == UrgencyLevel.IMMEDIATE:
                elapsed = math.floor((now - incident.reported_at).total_seconds() / 3600)
                remaining = self._pep_window_hours - elapsed
                if remaining > 0:
                    body += f" PEP window: {remaining} hours remaining."
                else:
                    body += " PEP window may have closed; assess immediately."
            else:
                body += " Medical examination and care required."
        else:
            body += _PROVIDER_ACTIONS.get(provider_type, "")

        if incident.address:
            body += f" Location: {_truncate(incident.address, _LOCATION_MAX_CHARS)}"

        method = incident.preferences.communication_method if incident.preferences else None
        if method is not None:
            body += f" Preferred contact: {_CHANNEL_PHRASES[method]}."

        return NotificationPayload(
            title=title,
            body=body,
            urgency_tag=_URGENCY_TAG[incident.urgency],
            action_required=True,
            metadata={
                "incident_id": incident.incident_id,
                "provider_type": str(provider_type),
                "urgency": str(incident.urgency),
            },
        )

    # ------------------------------------------------------------------
    # Survivor-facing
    # ------------------------------------------------------------------

    def survivor_assignment(
        self, provider_type: ProviderType, provider_name: str
    ) -> NotificationPayload:
        return NotificationPayload(
            title=f"{provider_display_name(provider_type)} Assigned",
            body=(
                f"{provider_name} has been assigned to your case. "
                "They will contact you shortly via your preferred method."
            ),
            urgency_tag=UrgencyTag.HIGH,
            metadata={"event": str(SurvivorEvent.ASSIGNMENT)},
        )

    def survivor_contact(
        self,
        provider_type: ProviderType,
        provider_name: str,
        method: CommunicationMethod | None = None,
        *,
        successful: bool = False,
    ) -> NotificationPayload:
        """Contact notice; wording differs for a completed contact vs an attempt."""
        channel = _CHANNEL_PHRASES[method] if method is not None else None
        if successful:
            body = f"{provider_name} has contacted you."
            if channel:
                body += f" They reached you via {channel}."
            body += " Please respond when you're ready."
        else:
            body = f"{provider_name} has attempted to reach you."
            if channel:
                body += f" They attempted to reach you via {channel}."
            body += " Please check your messages or contact them back."

        return NotificationPayload(
            title=f"{provider_display_name(provider_type)} Contacted You",
            body=body,
            urgency_tag=UrgencyTag.HIGH,
            action_required=not successful,
            metadata={
                "event": str(SurvivorEvent.CONTACT),
                "successful": successful,
                "method": str(method) if method is not None else None,
            },
        )

    def survivor_appointment(
        self,
        provider_name: str,
        appointment_type: str,
        when: datetime,
        location: str,
    ) -> NotificationPayload:
        return NotificationPayload(
            title="New Appointment Scheduled",
            body=(
                f"{provider_name} has scheduled a {appointment_type_phrase(appointment_type)} "
                f"for {self.format_date(when)} at {self.format_time(when)}. "
                f"Location: {location or 'to be confirmed'}. "
                "Please confirm your attendance."
            ),
            action_required=True,
            metadata={"event": str(SurvivorEvent.APPOINTMENT)},
        )

    def survivor_case_update(self, update_type: CaseUpdateType, message: str) -> NotificationPayload:
        return NotificationPayload(
            title=_CASE_UPDATE_TITLES[update_type],
            body=message,
            metadata={"event": str(SurvivorEvent.CASE_UPDATE), "update_type": str(update_type)},
        )

    def message_received(self, sender_name: str, message: str) -> NotificationPayload:
        """Preview of a chat message, cut to 100 characters."""
        return NotificationPayload(
            title=f"New message from {sender_name}",
            body=_truncate(message, _MESSAGE_MAX_CHARS),
            metadata={"event": str(SurvivorEvent.MESSAGE)},
        )

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def reminder_message(
        self,
        role: RecipientRole,
        kind: ReminderKind,
        appointment_time: datetime,
        details: AppointmentDetails,
    ) -> str:
        time_until = _TIME_UNTIL[kind]
        date = self.format_date(appointment_time)
        time = self.format_time(appointment_time)
        location = details.location or "to be confirmed"

        if role == RecipientRole.PROVIDER:
            return (
                f"Reminder: You have an appointment with {details.patient_name} {time_until}. "
                f"Date: {date} at {time}. "
                f"Type: {appointment_type_phrase(details.appointment_type)}. "
                f"Location: {location}."
            )
        return (
            f"Reminder: You have an appointment with {details.provider_name} {time_until}. "
            f"Date: {date} at {time}. "
            f"Location: {location}. "
            "Please arrive 15 minutes early and bring your ID."
        )

    @staticmethod
    def reminder_title(kind: ReminderKind) -> str:
        return _REMINDER_TITLES[kind]

    def reminder(
        self,
        role: RecipientRole,
        kind: ReminderKind,
        appointment_time: datetime,
        details: AppointmentDetails,
    ) -> NotificationPayload:
        soon = kind == ReminderKind.THIRTY_MINUTE
        return NotificationPayload(
            title=self.reminder_title(kind),
            body=self.reminder_message(role, kind, appointment_time, details),
            urgency_tag=UrgencyTag.HIGH if soon else UrgencyTag.NORMAL,
            action_required=soon,
        )

    # ------------------------------------------------------------------
    # Appointment status changes
    # ------------------------------------------------------------------

    def appointment_status(
        self, update: AppointmentStatusUpdate
    ) -> tuple[RecipientRole, NotificationPayload] | None:
        """Notice for the other party of a status change, if one applies.

        Survivor-made changes go to the provider side; provider-made
        confirmations, reschedules and cancellations go to the survivor.
        System-made changes produce nothing.
        """
        reason = f" Reason: {update.reason}" if update.reason else ""
        details = update.reschedule_details
        meta = {
            "appointment_id": update.appointment_id,
            "status": str(update.new_status),
            "actor": str(update.actor),
        }

        if update.actor == StatusActor.SURVIVOR:
            match update.new_status:
                case AppointmentStatus.CONFIRMED:
                    title, body = (
                        "Appointment Confirmed",
                        "Patient has confirmed their upcoming appointment.",
                    )
                case AppointmentStatus.DECLINED:
                    title, body = (
                        "Appointment Declined",
                        "Patient has declined their appointment." + reason,
                    )
                case AppointmentStatus.RESCHEDULE_REQUESTED:
                    if details is not None:
                        body = (
                            f"Patient requested to reschedule to {details.new_date} "
                            f"at {details.new_time}."
                        )
                    else:
                        body = "Patient requested to reschedule their appointment."
                    title, body = "Reschedule Requested", body + reason
                case _:
                    return None
            action = update.new_status != AppointmentStatus.CONFIRMED
            return RecipientRole.PROVIDER, NotificationPayload(
                title=title,
                body=body,
                urgency_tag=UrgencyTag.HIGH if action else UrgencyTag.NORMAL,
                action_required=action,
                metadata=meta,
            )

        if update.actor == StatusActor.PROVIDER:
            match update.new_status:
                case AppointmentStatus.CONFIRMED:
                    return RecipientRole.SURVIVOR, NotificationPayload(
                        title="Appointment Confirmed by Provider",
                        body="Your healthcare provider has confirmed your appointment.",
                        metadata=meta,
                    )
                case AppointmentStatus.RESCHEDULED:
                    if details is not None:
                        body = (
                            "Your appointment has been rescheduled to "
                            f"{details.new_date} at {details.new_time}."
                        )
                    else:
                        body = (
                            "Your appointment has been rescheduled. "
                            "New details will be sent shortly."
                        )
                    return RecipientRole.SURVIVOR, NotificationPayload(
                        title="Appointment Rescheduled",
                        body=body,
                        urgency_tag=UrgencyTag.HIGH,
                        action_required=True,
                        metadata=meta,
                    )
                case AppointmentStatus.CANCELLED:
                    return RecipientRole.SURVIVOR, NotificationPayload(
                        title="Appointment Cancelled",
                        body="Your appointment has been cancelled by the provider." + reason,
                        urgency_tag=UrgencyTag.HIGH,
                        action_required=True,
                        metadata=meta,
                    )
        return None

    # ------------------------------------------------------------------
    # Inbox ordering
    # ------------------------------------------------------------------

    @staticmethod
    def provider_inbox_priority(
        urgency: UrgencyLevel | None,
        kind: str,
        *,
        unread: bool,
        age_hours: float,
    ) -> float:
        """Sort key for a provider's inbox (higher first).

        Immediate cases dominate, then unread items, then recency over
        the last 24 hours.
        """
        score = 0.0
        if urgency == UrgencyLevel.IMMEDIATE:
            score += 100
        elif urgency == UrgencyLevel.URGENT:
            score += 50
        score += _PROVIDER_KIND_WEIGHTS.get(kind, 0)
        if unread:
            score += 40
        return score + max(0.0, 24 - age_hours)

    @staticmethod
    def survivor_inbox_priority(
        event: SurvivorEvent,
        *,
        action_required: bool,
        unread: bool,
        age_hours: float,
    ) -> float:
        score = 100.0 if action_required else 0.0
        score += _SURVIVOR_EVENT_WEIGHTS.get(event, 0)
        if unread:
            score += 40
        return score + max(0.0, 24 - age_hours)


# ---------------------------------------------------------------------------
# Delivery sinks
# ---------------------------------------------------------------------------


@runtime_checkable
class NotificationSink(Protocol):
    """Delivery seam.  Implementations raise on failure."""

    async def send(
        self, recipient_id: str, title: str, body: str, metadata: dict[str, Any]
    ) -> None: ...


class QueueNotificationSink:
    """In-process delivery queue.

    ``send`` enqueues a :class:`Notification`; a delivery worker pulls
    pending items and marks them sent.  Sent notifications move to a
    bounded history of the last ``sent_history`` items.  Production
    deployments would back this with Redis or a managed queue.
    """

    __slots__ = ("_max_pending", "_pending", "_sent")

    def __init__(self, max_pending: int = 10_000, sent_history: int = 1_000) -> None:
        self._pending: dict[str, Notification] = {}
        self._sent: deque[Notification] = deque(maxlen=sent_history)
        self._max_pending = max_pending

    async def send(
        self, recipient_id: str, title: str, body: str, metadata: dict[str, Any]
    ) -> None:
        if self.queue_size >= self._max_pending:
            raise DeliveryError(f"notification queue is full ({self._max_pending} pending)")
        role = metadata.get("recipient_role")
        notification = Notification(
            recipient_id=recipient_id,
            recipient_role=RecipientRole(role) if role else None,
            title=title,
            body=body,
            urgency_tag=UrgencyTag(metadata.get("urgency_tag", UrgencyTag.NORMAL)),
            metadata=dict(metadata),
        )
        self._pending[notification.notification_id] = notification
        logger.debug(
            "notifications.queued",
            notification_id=notification.notification_id,
            recipient_id=recipient_id,
        )

    def get_pending(self, recipient_id: str | None = None) -> list[Notification]:
        """All unsent notifications, optionally for one recipient."""
        if recipient_id:
            return [n for n in self._pending.values() if n.recipient_id == recipient_id]
        return list(self._pending.values())

    def get_for_recipient(self, recipient_id: str) -> list[Notification]:
        """Retained sent history followed by pending items for *recipient_id*."""
        return [
            n
            for n in (*self._sent, *self._pending.values())
            if n.recipient_id == recipient_id
        ]

    def mark_sent(self, notification_id: str) -> bool:
        notification = self._pending.pop(notification_id, None)
        if notification is None:
            return False
        notification.sent = True
        notification.sent_at = datetime.now(UTC)
        self._sent.append(notification)
        return True

    @property
    def queue_size(self) -> int:
        """Number of pending notifications in the queue."""
        return len(self._pending)

    @property
    def retained(self) -> int:
        """Pending plus retained sent notifications held in memory."""
        return len(self._pending) + len(self._sent)


class LoggingNotificationSink:
    """Sink that only records the delivery in the structured log."""

    __slots__ = ()

    async def send(
        self, recipient_id: str, title: str, body: str, metadata: dict[str, Any]
    ) -> None:
        logger.info(
            "notifications.delivered",
            recipient_id=recipient_id,
            title=title,
            body_length=len(body),
        )
