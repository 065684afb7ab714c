"""Case routing orchestrator for Tumaini.

Coordinates the end-to-end flow around a reported incident:

1. route the incident to providers and record the assignments,
2. alert each routed provider,
3. on acceptance, tell the survivor who was assigned,
4. when an appointment is booked, track it, schedule reminders for both
   parties and send the survivor the appointment notice,
5. on appointment status changes, cancel or rebuild the reminders.

Changes that the remote case API must learn about are queued on the
:class:`~src.services.outbox.SyncOutbox` when one is configured.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from src.models.appointment import AppointmentStatusUpdate, RescheduleDetails
from src.models.assignment import ProviderAssignment
from src.models.enums import (
    AppointmentStatus,
    OutboxOperationType,
    RecipientRole,
    StatusActor,
)
from src.models.incident import Incident
from src.models.notification import NotificationPayload
from src.models.reminder import AppointmentDetails, Reminder, ReminderRecipient
from src.services.appointment_status import survivor_response_status
from src.services.errors import InvalidInputError

if TYPE_CHECKING:
    from src.services.appointment_status import AppointmentStatusTracker
    from src.services.assignments import AssignmentLifecycle
    from src.services.clock import Clock
    from src.services.notifications import NotificationComposer, NotificationSink
    from src.services.outbox import SyncOutbox
    from src.services.provider_directory import ProviderDirectory
    from src.services.reminders import ReminderScheduler
    from src.services.routing import ProviderRoutingService
    from src.services.store import JsonStateStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def _incident_key(incident_id: str) -> str:
    return f"incident:{incident_id}"


class RoutingOutcome(BaseModel):
    """Result of routing one incident."""

    incident_id: str
    assignments: list[ProviderAssignment] = Field(default_factory=list)
    providers_notified: int = 0

    @property
    def has_providers(self) -> bool:
        return bool(self.assignments)


class BookingOutcome(BaseModel):
    appointment_id: str
    appointment_time: datetime
    reminders: list[Reminder] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# CaseRoutingOrchestrator
# ---------------------------------------------------------------------------


class CaseRoutingOrchestrator:
    """Glue between routing, assignments, notifications and reminders."""

    def __init__(
        self,
        store: JsonStateStore,
        directory: ProviderDirectory,
        routing: ProviderRoutingService,
        assignments: AssignmentLifecycle,
        composer: NotificationComposer,
        sink: NotificationSink,
        reminders: ReminderScheduler,
        status_tracker: AppointmentStatusTracker,
        clock: Clock,
        outbox: SyncOutbox | None = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._routing = routing
        self._assignments = assignments
        self._composer = composer
        self._sink = sink
        self._reminders = reminders
        self._status = status_tracker
        self._clock = clock
        self._outbox = outbox

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _deliver(
        self,
        recipient_id: str,
        role: RecipientRole,
        payload: NotificationPayload,
        **extra: Any,
    ) -> bool:
        """Send *payload*; a failed delivery is logged and reported as False."""
        metadata = {
            **payload.metadata,
            **extra,
            "recipient_role": str(role),
            "urgency_tag": str(payload.urgency_tag),
            "action_required": payload.action_required,
        }
        try:
            await self._sink.send(recipient_id, payload.title, payload.body, metadata)
        except Exception:
            logger.warning(
                "orchestrator.delivery_failed",
                recipient_id=recipient_id,
                role=role,
                exc_info=True,
            )
            return False
        return True

    async def _enqueue(self, operation_type: OutboxOperationType, payload: dict[str, Any]) -> None:
        if self._outbox is not None:
            await self._outbox.enqueue(operation_type, payload)

    async def get_incident(self, incident_id: str) -> Incident | None:
        return await self._store.get_model(_incident_key(incident_id), Incident)

    # ------------------------------------------------------------------
    # Incidents and assignments
    # ------------------------------------------------------------------

    async def handle_incident(self, incident: Incident) -> RoutingOutcome:
        """Route *incident*, record the assignments and alert the providers.

        An empty outcome means no provider was eligible; the caller owns
        the escalation policy.
        """
        assignments = await self._routing.route_incident(incident)
        await self._store.set_model(_incident_key(incident.incident_id), incident)

        if not assignments:
            logger.warning(
                "orchestrator.no_provider_available",
                incident_id=incident.incident_id,
                urgency=incident.urgency,
            )
            return RoutingOutcome(incident_id=incident.incident_id)

        await self._assignments.record(assignments)

        now = self._clock.now()
        notified = 0
        for assignment in assignments:
            payload = self._composer.provider_case_alert(incident, assignment.provider_type, now)
            if await self._deliver(
                assignment.provider_id,
                RecipientRole.PROVIDER,
                payload,
                assignment_id=assignment.assignment_id,
            ):
                notified += 1

        logger.info(
            "orchestrator.incident_routed",
            incident_id=incident.incident_id,
            assignments=len(assignments),
            notified=notified,
        )
        return RoutingOutcome(
            incident_id=incident.incident_id,
            assignments=assignments,
            providers_notified=notified,
        )

    async def accept_assignment(self, assignment_id: str, notes: str = "") -> ProviderAssignment:
        accepted = await self._assignments.accept(assignment_id)

        incident = await self.get_incident(accepted.incident_id)
        provider = await self._directory.get(accepted.provider_id)
        if incident is not None and incident.survivor_id and provider is not None:
            payload = self._composer.survivor_assignment(accepted.provider_type, provider.name)
            await self._deliver(
                incident.survivor_id,
                RecipientRole.SURVIVOR,
                payload,
                assignment_id=assignment_id,
            )

        await self._enqueue(
            OutboxOperationType.ACCEPT_ASSIGNMENT,
            {
                "incident_id": accepted.incident_id,
                "assignment_id": assignment_id,
                "provider_id": accepted.provider_id,
                "notes": notes,
            },
        )
        return accepted

    async def decline_assignment(
        self, assignment_id: str, reason: str | None = None
    ) -> ProviderAssignment:
        declined = await self._assignments.decline(assignment_id, reason)
        await self._enqueue(
            OutboxOperationType.DECLINE_ASSIGNMENT,
            {
                "incident_id": declined.incident_id,
                "assignment_id": assignment_id,
                "provider_id": declined.provider_id,
                "reason": reason or "",
            },
        )
        return declined

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    async def book_appointment(
        self,
        appointment_id: str,
        when: str | datetime,
        survivor_id: str,
        provider_id: str,
        details: AppointmentDetails | None = None,
    ) -> BookingOutcome:
        """Track a new appointment, schedule reminders and notify the survivor."""
        details = details or AppointmentDetails()
        appointment_time = self._reminders.parse_appointment_time(when)

        await self._status.track_appointment(appointment_id, survivor_id, provider_id)
        reminders = await self._reminders.schedule_for_appointment(
            appointment_id,
            appointment_time,
            [
                ReminderRecipient(recipient_id=survivor_id, role=RecipientRole.SURVIVOR),
                ReminderRecipient(recipient_id=provider_id, role=RecipientRole.PROVIDER),
            ],
            details,
        )

        payload = self._composer.survivor_appointment(
            details.provider_name, details.appointment_type, appointment_time, details.location
        )
        await self._deliver(
            survivor_id, RecipientRole.SURVIVOR, payload, appointment_id=appointment_id
        )
        return BookingOutcome(
            appointment_id=appointment_id,
            appointment_time=appointment_time,
            reminders=reminders,
        )

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        actor: StatusActor,
        reason: str | None = None,
        reschedule_details: RescheduleDetails | None = None,
    ) -> AppointmentStatusUpdate | None:
        """Record a status change and keep the reminders in step with it.

        A ``rescheduled`` change without a new date and time cancels the
        outstanding reminders, since their appointment time is no longer
        valid.  A new date and time always rebuilds the reminders, even
        when the status itself is unchanged.
        """
        new_when: datetime | None = None
        if new_status == AppointmentStatus.RESCHEDULED and reschedule_details is not None:
            new_when = self._parse_reschedule(reschedule_details)

        update = await self._status.update_status(
            appointment_id, new_status, actor, reason, reschedule_details
        )
        if update is None:
            if new_when is not None and await self._appointment_moved(appointment_id, new_when):
                await self._reminders.reschedule_for_appointment(appointment_id, new_when)
                await self._enqueue_status(appointment_id, new_status, actor, reason, new_when)
            return None

        match new_status:
            case (
                AppointmentStatus.CANCELLED
                | AppointmentStatus.DECLINED
                | AppointmentStatus.COMPLETED
            ):
                await self._reminders.cancel_for_appointment(appointment_id)
            case AppointmentStatus.RESCHEDULED if new_when is not None:
                await self._reminders.reschedule_for_appointment(appointment_id, new_when)
            case AppointmentStatus.RESCHEDULED:
                await self._reminders.cancel_for_appointment(appointment_id)

        await self._enqueue_status(appointment_id, new_status, actor, reason, new_when)
        return update

    async def _appointment_moved(self, appointment_id: str, new_when: datetime) -> bool:
        plan = await self._reminders.get_plan(appointment_id)
        return plan is not None and plan.appointment_time != new_when

    async def _enqueue_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        actor: StatusActor,
        reason: str | None,
        new_when: datetime | None,
    ) -> None:
        payload: dict[str, Any] = {
            "appointment_id": appointment_id,
            "status": str(status),
            "actor": str(actor),
            "reason": reason,
        }
        if new_when is not None:
            payload["appointment_time"] = new_when.isoformat()
        await self._enqueue(OutboxOperationType.UPDATE_APPOINTMENT_STATUS, payload)

    async def process_survivor_response(
        self,
        appointment_id: str,
        response: str,
        reason: str | None = None,
        reschedule_details: RescheduleDetails | None = None,
    ) -> AppointmentStatusUpdate | None:
        """Apply a survivor's ``confirm``, ``decline`` or ``reschedule`` answer."""
        return await self.update_appointment_status(
            appointment_id,
            survivor_response_status(response),
            StatusActor.SURVIVOR,
            reason,
            reschedule_details,
        )

    def _parse_reschedule(self, details: RescheduleDetails) -> datetime:
        try:
            return self._reminders.parse_appointment_time(f"{details.new_date}T{details.new_time}")
        except InvalidInputError:
            raise InvalidInputError(
                f"unparsable reschedule date/time {details.new_date!r} {details.new_time!r}"
            ) from None
