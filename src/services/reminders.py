"""Appointment reminder scheduling and firing.

Reminders are created ahead of time for each party to an appointment
(survivor and provider independently) at the offsets their preferences
enable: 24 hours, 2 hours and 30 minutes before, plus any custom minute
offsets.  A reminder whose fire time is not strictly in the future is
never created, so nobody receives a "reminder" after the fact.

:meth:`ReminderScheduler.tick` is driven by a periodic task
(:mod:`src.services.reminder_engine`).  It hands every due reminder to the
notification sink and moves it to ``sent`` or ``failed``.  A sink failure
affects only that reminder; the rest of the tick continues.

Storage layout (all under the store namespace)::

    reminders:{appointment_id}      list[Reminder]
    reminders:index                 appointment ids with reminders
    reminder_plan:{appointment_id}  ReminderPlan (recipients + details)
    reminder_prefs:{user_id}        ReminderPreferences

Every read-modify-write of an appointment's reminder list, including the
tick's sends, happens under that appointment's lock.  A cancelled
reminder therefore cannot be resurrected and a sent one cannot be sent
twice.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Final
from zoneinfo import ZoneInfo

import structlog

from src.models.enums import ReminderKind, ReminderStatus
from src.models.reminder import (
    AppointmentDetails,
    FiredReminder,
    Reminder,
    ReminderPlan,
    ReminderPreferences,
    ReminderRecipient,
    ReminderStatistics,
)
from src.services.clock import Clock, SystemClock
from src.services.errors import InvalidInputError, NotFoundError
from src.services.locks import KeyedLocks
from src.services.notifications import NotificationComposer, NotificationSink
from src.services.store import JsonStateStore

logger = structlog.get_logger(__name__)

_INDEX_KEY: Final[str] = "reminders:index"

_STANDARD_OFFSETS: Final[tuple[tuple[str, ReminderKind, int], ...]] = (
    ("enable_24_hour", ReminderKind.TWENTY_FOUR_HOUR, 24 * 60),
    ("enable_2_hour", ReminderKind.TWO_HOUR, 2 * 60),
    ("enable_30_minute", ReminderKind.THIRTY_MINUTE, 30),
)


def _reminders_key(appointment_id: str) -> str:
    return f"reminders:{appointment_id}"


def _plan_key(appointment_id: str) -> str:
    return f"reminder_plan:{appointment_id}"


def _prefs_key(user_id: str) -> str:
    return f"reminder_prefs:{user_id}"


def reminder_offsets(preferences: ReminderPreferences) -> list[tuple[ReminderKind, int]]:
    """Enabled ``(kind, minutes_before)`` pairs, standard ones first.

    Duplicate minute counts are collapsed to the first occurrence.

    Raises
    ------
    InvalidInputError
        A custom offset is negative.
    """
    offsets: list[tuple[ReminderKind, int]] = []
    seen: set[int] = set()
    for flag, kind, minutes in _STANDARD_OFFSETS:
        if getattr(preferences, flag):
            offsets.append((kind, minutes))
            seen.add(minutes)

    for minutes in preferences.custom_offsets_minutes:
        if minutes < 0:
            raise InvalidInputError(f"reminder offset must not be negative, got {minutes}")
        if minutes in seen:
            continue
        offsets.append((ReminderKind.CUSTOM, minutes))
        seen.add(minutes)
    return offsets


class ReminderScheduler:
    """Creates, cancels, fires and reports on appointment reminders.

    Parameters
    ----------
    store:
        Durable state store.
    composer:
        Renders reminder titles and bodies.
    sink:
        Delivery seam handed every due reminder.
    clock:
        Time source; tests inject a :class:`~src.services.clock.FixedClock`.
    timezone:
        Zone applied to appointment times given without an offset.
    """

    __slots__ = ("_clock", "_composer", "_locks", "_sink", "_store", "_tz")

    def __init__(
        self,
        store: JsonStateStore,
        composer: NotificationComposer,
        sink: NotificationSink,
        clock: Clock | None = None,
        timezone: str = "Africa/Nairobi",
    ) -> None:
        self._store = store
        self._composer = composer
        self._sink = sink
        self._clock = clock or SystemClock()
        self._tz = ZoneInfo(timezone)
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def set_preferences(self, preferences: ReminderPreferences) -> ReminderPreferences:
        # validate custom offsets up front
        reminder_offsets(preferences)
        await self._store.set_model(_prefs_key(preferences.user_id), preferences)
        logger.info("reminders.preferences_updated", user_id=preferences.user_id)
        return preferences

    async def get_preferences(self, recipient: ReminderRecipient) -> ReminderPreferences:
        """Stored preferences for the recipient, or the defaults."""
        stored = await self._store.get_model(
            _prefs_key(recipient.recipient_id), ReminderPreferences
        )
        if stored is not None:
            return stored
        return ReminderPreferences(user_id=recipient.recipient_id, role=recipient.role)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def parse_appointment_time(self, when: str | datetime) -> datetime:
        """Parse an ISO-8601 string (or datetime) into an aware datetime.

        Times without an offset are taken to be in the configured zone.
        """
        if isinstance(when, datetime):
            parsed = when
        else:
            try:
                parsed = datetime.fromisoformat(when.strip())
            except (AttributeError, ValueError) as exc:
                raise InvalidInputError(f"unparsable appointment time {when!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self._tz)
        return parsed

    async def schedule_for_appointment(
        self,
        appointment_id: str,
        when: str | datetime,
        recipients: list[ReminderRecipient],
        details: AppointmentDetails | None = None,
        preferences: ReminderPreferences | None = None,
    ) -> list[Reminder]:
        """Create the reminders for every recipient of an appointment.

        Preferences resolve per recipient: the recipient's own, else
        *preferences*, else the stored ones, else the defaults.  Returns
        the reminders created by this call.
        """
        appointment_time = self.parse_appointment_time(when)
        details = details or AppointmentDetails()

        async with self._locks(appointment_id):
            return await self._schedule_locked(
                appointment_id, appointment_time, recipients, details, preferences
            )

    async def _schedule_locked(
        self,
        appointment_id: str,
        appointment_time: datetime,
        recipients: list[ReminderRecipient],
        details: AppointmentDetails,
        preferences: ReminderPreferences | None,
    ) -> list[Reminder]:
        now = self._clock.now()
        resolved: list[tuple[ReminderRecipient, ReminderPreferences]] = []
        for recipient in recipients:
            prefs = recipient.preferences or preferences or await self.get_preferences(recipient)
            resolved.append((recipient, prefs))
        # reject bad offsets before anything is written
        planned = [(r, p, reminder_offsets(p)) for r, p in resolved]

        await self._store.set_model(
            _plan_key(appointment_id),
            ReminderPlan(
                appointment_id=appointment_id,
                appointment_time=appointment_time,
                recipients=recipients,
                details=details,
            ),
        )

        if appointment_time <= now:
            logger.info("reminders.appointment_in_past", appointment_id=appointment_id)
            return []

        existing = await self._store.get_models(_reminders_key(appointment_id), Reminder)
        live = {
            (r.recipient_id, r.offset_minutes, r.appointment_time)
            for r in existing
            if r.status == ReminderStatus.SCHEDULED
        }

        created: list[Reminder] = []
        for recipient, prefs, offsets in planned:
            for kind, minutes in offsets:
                fire_at = appointment_time - timedelta(minutes=minutes)
                if fire_at <= now:
                    continue
                if (recipient.recipient_id, minutes, appointment_time) in live:
                    continue
                created.append(
                    Reminder(
                        appointment_id=appointment_id,
                        recipient_id=recipient.recipient_id,
                        recipient_role=recipient.role,
                        kind=kind,
                        offset_minutes=minutes,
                        appointment_time=appointment_time,
                        scheduled_time=fire_at,
                        message=self._composer.reminder_message(
                            recipient.role, kind, appointment_time, details
                        ),
                        method=prefs.delivery_method,
                        details=details,
                        created_at=now,
                    )
                )

        if created:
            await self._store.set_models(_reminders_key(appointment_id), [*existing, *created])
            await self._store.add_to_index(_INDEX_KEY, appointment_id)

        logger.info(
            "reminders.scheduled",
            appointment_id=appointment_id,
            recipients=len(recipients),
            created=len(created),
        )
        return created

    async def cancel_for_appointment(self, appointment_id: str) -> int:
        """Cancel every still-scheduled reminder.  Returns how many changed."""
        async with self._locks(appointment_id):
            return await self._cancel_locked(appointment_id)

    async def _cancel_locked(self, appointment_id: str) -> int:
        reminders = await self._store.get_models(_reminders_key(appointment_id), Reminder)
        cancelled = 0
        updated: list[Reminder] = []
        for reminder in reminders:
            if reminder.status == ReminderStatus.SCHEDULED:
                reminder = reminder.model_copy(update={"status": ReminderStatus.CANCELLED})
                cancelled += 1
            updated.append(reminder)

        if cancelled:
            await self._store.set_models(_reminders_key(appointment_id), updated)
        logger.info("reminders.cancelled", appointment_id=appointment_id, count=cancelled)
        return cancelled

    async def reschedule_for_appointment(
        self,
        appointment_id: str,
        new_when: str | datetime,
        details: AppointmentDetails | None = None,
        recipients: list[ReminderRecipient] | None = None,
    ) -> list[Reminder]:
        """Cancel the outstanding reminders and schedule fresh ones.

        Recipients and details default to the ones from the previous
        schedule.  Runs under one lock so no tick sees a half-done state.

        Raises
        ------
        NotFoundError
            No recipients given and nothing was scheduled before.
        """
        appointment_time = self.parse_appointment_time(new_when)
        async with self._locks(appointment_id):
            plan = await self._store.get_model(_plan_key(appointment_id), ReminderPlan)
            if recipients is None:
                if plan is None:
                    raise NotFoundError(
                        f"no reminders were scheduled for appointment {appointment_id!r}"
                    )
                recipients = plan.recipients
            if details is None:
                details = plan.details if plan is not None else AppointmentDetails()

            await self._cancel_locked(appointment_id)
            created = await self._schedule_locked(
                appointment_id, appointment_time, recipients, details, None
            )

        logger.info("reminders.rescheduled", appointment_id=appointment_id, created=len(created))
        return created

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> list[FiredReminder]:
        """Fire every scheduled reminder that is due at *now*.

        Terminal reminders are never touched again, so repeated ticks are
        safe.  Store failures propagate; sink failures mark the reminder
        ``failed`` and processing continues.
        """
        now = now or self._clock.now()
        fired: list[FiredReminder] = []
        for appointment_id in await self._store.get_index(_INDEX_KEY):
            async with self._locks(appointment_id):
                fired.extend(await self._fire_due(appointment_id, now))

        if fired:
            logger.info(
                "reminders.tick",
                fired=len(fired),
                failed=sum(1 for f in fired if f.status == ReminderStatus.FAILED),
            )
        return fired

    async def _fire_due(self, appointment_id: str, now: datetime) -> list[FiredReminder]:
        reminders = await self._store.get_models(_reminders_key(appointment_id), Reminder)
        fired: list[FiredReminder] = []
        updated: list[Reminder] = []

        for reminder in reminders:
            if reminder.status != ReminderStatus.SCHEDULED or reminder.scheduled_time > now:
                updated.append(reminder)
                continue

            payload = self._composer.reminder(
                reminder.recipient_role, reminder.kind, reminder.appointment_time, reminder.details
            )
            try:
                await self._sink.send(
                    reminder.recipient_id,
                    payload.title,
                    reminder.message,
                    {
                        "reminder_id": reminder.reminder_id,
                        "appointment_id": appointment_id,
                        "recipient_role": str(reminder.recipient_role),
                        "kind": str(reminder.kind),
                        "method": str(reminder.method),
                        "urgency_tag": str(payload.urgency_tag),
                        "action_required": payload.action_required,
                    },
                )
            except Exception as exc:
                logger.warning(
                    "reminders.delivery_failed",
                    reminder_id=reminder.reminder_id,
                    appointment_id=appointment_id,
                    error=str(exc),
                )
                reminder = reminder.model_copy(
                    update={"status": ReminderStatus.FAILED, "failure_reason": str(exc)}
                )
            else:
                reminder = reminder.model_copy(
                    update={"status": ReminderStatus.SENT, "sent_time": now}
                )

            updated.append(reminder)
            fired.append(
                FiredReminder(
                    reminder_id=reminder.reminder_id,
                    appointment_id=appointment_id,
                    recipient_id=reminder.recipient_id,
                    recipient_role=reminder.recipient_role,
                    kind=reminder.kind,
                    status=reminder.status,
                    title=payload.title,
                    body=reminder.message,
                )
            )

        if fired:
            await self._store.set_models(_reminders_key(appointment_id), updated)
        return fired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_reminders(self, appointment_id: str) -> list[Reminder]:
        return await self._store.get_models(_reminders_key(appointment_id), Reminder)

    async def get_plan(self, appointment_id: str) -> ReminderPlan | None:
        """Recipients, details and appointment time of the last schedule."""
        return await self._store.get_model(_plan_key(appointment_id), ReminderPlan)

    async def _all_reminders(self) -> list[Reminder]:
        reminders: list[Reminder] = []
        for appointment_id in await self._store.get_index(_INDEX_KEY):
            reminders.extend(await self.get_reminders(appointment_id))
        return reminders

    async def get_upcoming(self, user_id: str) -> list[Reminder]:
        """Scheduled reminders for *user_id*, soonest first."""
        upcoming = [
            r for r in await self._all_reminders()
            if r.recipient_id == user_id and r.status == ReminderStatus.SCHEDULED
        ]
        return sorted(upcoming, key=lambda r: r.scheduled_time)

    async def get_history(self, user_id: str, limit: int = 20) -> list[Reminder]:
        """Sent reminders for *user_id*, most recent first."""
        sent = [
            r for r in await self._all_reminders()
            if r.recipient_id == user_id and r.status == ReminderStatus.SENT
        ]
        sent.sort(key=lambda r: r.sent_time or r.scheduled_time, reverse=True)
        return sent[:limit]

    async def get_failed(self) -> list[Reminder]:
        return [r for r in await self._all_reminders() if r.status == ReminderStatus.FAILED]

    async def get_statistics(self) -> ReminderStatistics:
        stats = ReminderStatistics()
        for reminder in await self._all_reminders():
            stats.total += 1
            match reminder.status:
                case ReminderStatus.SCHEDULED:
                    stats.scheduled += 1
                case ReminderStatus.SENT:
                    stats.sent += 1
                case ReminderStatus.FAILED:
                    stats.failed += 1
                case ReminderStatus.CANCELLED:
                    stats.cancelled += 1
        return stats
