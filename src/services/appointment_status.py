"""Appointment status tracking.

Status history is an append-only log per appointment.  The current status
is the newest entry, or ``pending`` when nothing has been logged.  Moving
to the status an appointment already has is a no-op: no log entry and no
notification.

Each real change is turned into a notice for the other party through the
:class:`~src.services.notifications.NotificationComposer`.  Provider-made
changes are delivered to the survivor through the notification sink.
Survivor-made changes are composed for the provider side and logged;
provider notification transport lives outside this service.
"""

from __future__ import annotations

from typing import Final

import structlog

from src.models.appointment import (
    AppointmentParticipants,
    AppointmentStatusUpdate,
    RescheduleDetails,
)
from src.models.enums import AppointmentStatus, RecipientRole, StatusActor
from src.services.clock import Clock, SystemClock
from src.services.errors import InvalidInputError
from src.services.locks import KeyedLocks
from src.services.notifications import NotificationComposer, NotificationSink
from src.services.store import JsonStateStore

logger = structlog.get_logger(__name__)

_INDEX_KEY: Final[str] = "appointments:index"

_SURVIVOR_RESPONSES: Final[dict[str, AppointmentStatus]] = {
    "confirm": AppointmentStatus.CONFIRMED,
    "decline": AppointmentStatus.DECLINED,
    "reschedule": AppointmentStatus.RESCHEDULE_REQUESTED,
}

_ATTENTION_STATUSES: Final[frozenset[AppointmentStatus]] = frozenset(
    {AppointmentStatus.DECLINED, AppointmentStatus.RESCHEDULE_REQUESTED}
)


def survivor_response_status(response: str) -> AppointmentStatus:
    """Map a survivor's answer to the status it sets."""
    try:
        return _SURVIVOR_RESPONSES[response.strip().lower()]
    except KeyError:
        raise InvalidInputError(f"unknown survivor response {response!r}") from None


def _log_key(appointment_id: str) -> str:
    return f"appointment:{appointment_id}:status_log"


def _participants_key(appointment_id: str) -> str:
    return f"appointment:{appointment_id}:participants"


class AppointmentStatusTracker:
    """Append-only appointment status log with change notifications."""

    __slots__ = ("_clock", "_composer", "_locks", "_sink", "_store")

    def __init__(
        self,
        store: JsonStateStore,
        composer: NotificationComposer,
        sink: NotificationSink,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._composer = composer
        self._sink = sink
        self._clock = clock or SystemClock()
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def track_appointment(
        self,
        appointment_id: str,
        survivor_id: str | None = None,
        provider_id: str | None = None,
    ) -> AppointmentParticipants:
        """Record who is party to an appointment so notices can be addressed."""
        participants = AppointmentParticipants(
            appointment_id=appointment_id,
            survivor_id=survivor_id,
            provider_id=provider_id,
        )
        await self._store.set_model(_participants_key(appointment_id), participants)
        await self._store.add_to_index(_INDEX_KEY, appointment_id)
        return participants

    async def get_participants(self, appointment_id: str) -> AppointmentParticipants | None:
        return await self._store.get_model(
            _participants_key(appointment_id), AppointmentParticipants
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_history(self, appointment_id: str) -> list[AppointmentStatusUpdate]:
        """All updates for the appointment, oldest first."""
        return await self._store.get_models(_log_key(appointment_id), AppointmentStatusUpdate)

    async def get_status(self, appointment_id: str) -> AppointmentStatus:
        history = await self.get_history(appointment_id)
        if not history:
            return AppointmentStatus.PENDING
        return history[-1].new_status

    async def get_status_summary(self) -> dict[str, int]:
        """Count of appointments per current status."""
        summary = {str(status): 0 for status in AppointmentStatus}
        for appointment_id in await self._store.get_index(_INDEX_KEY):
            summary[str(await self.get_status(appointment_id))] += 1
        return summary

    async def get_recent(self, limit: int = 10) -> list[AppointmentStatusUpdate]:
        """Most recent updates across all appointments, newest first."""
        updates: list[AppointmentStatusUpdate] = []
        for appointment_id in await self._store.get_index(_INDEX_KEY):
            updates.extend(await self.get_history(appointment_id))
        updates.sort(key=lambda u: u.updated_at, reverse=True)
        return updates[:limit]

    async def needing_attention(self) -> list[AppointmentStatusUpdate]:
        """Appointments a survivor declined or asked to move, still unresolved."""
        pending: list[AppointmentStatusUpdate] = []
        for appointment_id in await self._store.get_index(_INDEX_KEY):
            history = await self.get_history(appointment_id)
            if not history:
                continue
            latest = history[-1]
            if latest.actor == StatusActor.SURVIVOR and latest.new_status in _ATTENTION_STATUSES:
                pending.append(latest)
        pending.sort(key=lambda u: u.updated_at, reverse=True)
        return pending

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        actor: StatusActor,
        reason: str | None = None,
        reschedule_details: RescheduleDetails | None = None,
    ) -> AppointmentStatusUpdate | None:
        """Append a status change and notify the other party.

        Returns the logged update, or ``None`` when *new_status* equals
        the current status.
        """
        async with self._locks(appointment_id):
            history = await self.get_history(appointment_id)
            current = history[-1].new_status if history else AppointmentStatus.PENDING
            if new_status == current:
                logger.debug(
                    "appointments.status_unchanged",
                    appointment_id=appointment_id,
                    status=current,
                )
                return None

            update = AppointmentStatusUpdate(
                appointment_id=appointment_id,
                previous_status=current,
                new_status=new_status,
                actor=actor,
                updated_at=self._clock.now(),
                reason=reason,
                reschedule_details=reschedule_details,
            )
            await self._store.set_models(_log_key(appointment_id), [*history, update])
            await self._store.add_to_index(_INDEX_KEY, appointment_id)

        logger.info(
            "appointments.status_changed",
            appointment_id=appointment_id,
            previous=current,
            new=new_status,
            actor=actor,
        )
        await self._notify(update)
        return update

    async def _notify(self, update: AppointmentStatusUpdate) -> None:
        notice = self._composer.appointment_status(update)
        if notice is None:
            return
        role, payload = notice

        if role == RecipientRole.PROVIDER:
            logger.info(
                "appointments.provider_notice_composed",
                appointment_id=update.appointment_id,
                title=payload.title,
            )
            return

        participants = await self.get_participants(update.appointment_id)
        if participants is None or not participants.survivor_id:
            logger.warning(
                "appointments.survivor_unknown",
                appointment_id=update.appointment_id,
            )
            return

        # the status change is already durable; a failed notice does not undo it
        try:
            await self._sink.send(
                participants.survivor_id,
                payload.title,
                payload.body,
                {
                    **payload.metadata,
                    "recipient_role": str(RecipientRole.SURVIVOR),
                    "urgency_tag": str(payload.urgency_tag),
                    "action_required": payload.action_required,
                },
            )
        except Exception:
            logger.warning(
                "appointments.notice_failed",
                appointment_id=update.appointment_id,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Convenience transitions
    # ------------------------------------------------------------------

    async def process_survivor_response(
        self,
        appointment_id: str,
        response: str,
        reason: str | None = None,
        reschedule_details: RescheduleDetails | None = None,
    ) -> AppointmentStatusUpdate | None:
        """Apply a survivor's ``confirm``, ``decline`` or ``reschedule`` answer."""
        return await self.update_status(
            appointment_id,
            survivor_response_status(response),
            StatusActor.SURVIVOR,
            reason=reason,
            reschedule_details=reschedule_details,
        )

    async def mark_completed(self, appointment_id: str) -> AppointmentStatusUpdate | None:
        return await self.update_status(
            appointment_id, AppointmentStatus.COMPLETED, StatusActor.PROVIDER
        )

    async def cancel(
        self,
        appointment_id: str,
        reason: str | None = None,
        actor: StatusActor = StatusActor.PROVIDER,
    ) -> AppointmentStatusUpdate | None:
        return await self.update_status(
            appointment_id, AppointmentStatus.CANCELLED, actor, reason=reason
        )
