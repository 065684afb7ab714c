"""Tests for reminder scheduling, cancellation, rescheduling and ticking."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from src.models.enums import DeliveryMethod, RecipientRole, ReminderKind, ReminderStatus
from src.models.reminder import AppointmentDetails, ReminderPreferences, ReminderRecipient
from src.services.errors import DeliveryError, InvalidInputError, NotFoundError
from src.services.reminders import ReminderScheduler, reminder_offsets

NAIROBI = ZoneInfo("Africa/Nairobi")


def _prefs(user_id: str = "survivor-1", **flags) -> ReminderPreferences:
    return ReminderPreferences(user_id=user_id, **flags)


def _survivor(**flags) -> ReminderRecipient:
    return ReminderRecipient(
        recipient_id="survivor-1",
        role=RecipientRole.SURVIVOR,
        preferences=_prefs(**flags) if flags else None,
    )


def _provider() -> ReminderRecipient:
    return ReminderRecipient(recipient_id="provider-1", role=RecipientRole.PROVIDER)


@pytest.fixture
def sink() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def scheduler(store, composer, sink, clock) -> ReminderScheduler:
    return ReminderScheduler(store, composer, sink, clock)


# ---------------------------------------------------------------------------
# Offsets
# ---------------------------------------------------------------------------


class TestReminderOffsets:
    def test_defaults(self) -> None:
        assert reminder_offsets(_prefs()) == [
            (ReminderKind.TWENTY_FOUR_HOUR, 1440),
            (ReminderKind.TWO_HOUR, 120),
        ]

    def test_custom_offsets_deduplicated(self) -> None:
        prefs = _prefs(enable_30_minute=True, custom_offsets_minutes=[30, 60, 60])
        assert reminder_offsets(prefs) == [
            (ReminderKind.TWENTY_FOUR_HOUR, 1440),
            (ReminderKind.TWO_HOUR, 120),
            (ReminderKind.THIRTY_MINUTE, 30),
            (ReminderKind.CUSTOM, 60),
        ]

    def test_negative_offset_rejected(self) -> None:
        with pytest.raises(InvalidInputError):
            reminder_offsets(_prefs(custom_offsets_minutes=[-5]))


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class TestSchedule:
    async def test_appointment_in_25_hours_gets_two_reminders(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        now = clock.now()
        reminders = await scheduler.schedule_for_appointment(
            "appt-1",
            now + timedelta(hours=25),
            [_survivor(enable_24_hour=True, enable_2_hour=True, enable_30_minute=False)],
        )

        assert sorted(r.scheduled_time for r in reminders) == [
            now + timedelta(hours=1),
            now + timedelta(hours=23),
        ]
        assert all(r.status == ReminderStatus.SCHEDULED for r in reminders)

    async def test_appointment_in_10_minutes_gets_none(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        reminders = await scheduler.schedule_for_appointment(
            "appt-1",
            clock.now() + timedelta(minutes=10),
            [_survivor(enable_24_hour=True, enable_2_hour=True, enable_30_minute=True)],
        )
        assert reminders == []
        assert await scheduler.get_reminders("appt-1") == []

    async def test_past_appointment_gets_none(self, scheduler: ReminderScheduler, clock) -> None:
        reminders = await scheduler.schedule_for_appointment(
            "appt-1", clock.now() - timedelta(hours=1), [_survivor()]
        )
        assert reminders == []

    async def test_fire_time_exactly_now_is_skipped(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        reminders = await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(hours=2), [_survivor()]
        )
        assert reminders == []

    async def test_each_recipient_gets_own_reminders(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        reminders = await scheduler.schedule_for_appointment(
            "appt-1",
            clock.now() + timedelta(days=2),
            [_survivor(), _provider()],
            AppointmentDetails(patient_name="A.N.", provider_name="Dr. Mwangi"),
        )
        by_recipient = {r.recipient_id: r for r in reminders if r.offset_minutes == 120}
        assert len(reminders) == 4
        assert "with Dr. Mwangi" in by_recipient["survivor-1"].message
        assert "with A.N." in by_recipient["provider-1"].message

    async def test_stored_preferences_apply(self, scheduler: ReminderScheduler, clock) -> None:
        await scheduler.set_preferences(
            _prefs(
                "provider-1",
                role=RecipientRole.PROVIDER,
                enable_24_hour=False,
                enable_2_hour=False,
                enable_30_minute=True,
                delivery_method=DeliveryMethod.SMS,
            )
        )
        reminders = await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(days=2), [_provider()]
        )
        assert [(r.kind, r.method) for r in reminders] == [
            (ReminderKind.THIRTY_MINUTE, DeliveryMethod.SMS)
        ]

    async def test_default_preferences_when_none_stored(self, scheduler: ReminderScheduler) -> None:
        prefs = await scheduler.get_preferences(_provider())
        assert prefs.role == RecipientRole.PROVIDER
        assert (prefs.enable_24_hour, prefs.enable_2_hour, prefs.enable_30_minute) == (
            True,
            True,
            False,
        )
        assert prefs.delivery_method == DeliveryMethod.IN_APP

    async def test_negative_custom_offset_rejected_before_writing(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        with pytest.raises(InvalidInputError):
            await scheduler.schedule_for_appointment(
                "appt-1",
                clock.now() + timedelta(days=2),
                [_survivor(custom_offsets_minutes=[-10])],
            )
        assert await scheduler.get_reminders("appt-1") == []

    async def test_scheduling_twice_does_not_duplicate(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        when = clock.now() + timedelta(days=2)
        await scheduler.schedule_for_appointment("appt-1", when, [_survivor()])
        again = await scheduler.schedule_for_appointment("appt-1", when, [_survivor()])
        assert again == []
        assert len(await scheduler.get_reminders("appt-1")) == 2

    def test_naive_time_is_local(self, scheduler: ReminderScheduler) -> None:
        parsed = scheduler.parse_appointment_time("2026-10-22T14:00")
        assert parsed == datetime(2026, 10, 22, 14, 0, tzinfo=NAIROBI)

    def test_offset_time_kept(self, scheduler: ReminderScheduler) -> None:
        parsed = scheduler.parse_appointment_time("2026-10-22T11:00:00+00:00")
        assert parsed == datetime(2026, 10, 22, 14, 0, tzinfo=NAIROBI)

    def test_unparsable_time(self, scheduler: ReminderScheduler) -> None:
        with pytest.raises(InvalidInputError):
            scheduler.parse_appointment_time("next tuesday")


# ---------------------------------------------------------------------------
# Cancel and reschedule
# ---------------------------------------------------------------------------


class TestCancelAndReschedule:
    async def test_cancel_is_idempotent(self, scheduler: ReminderScheduler, clock) -> None:
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(days=2), [_survivor()]
        )
        assert await scheduler.cancel_for_appointment("appt-1") == 2
        assert await scheduler.cancel_for_appointment("appt-1") == 0
        statuses = {r.status for r in await scheduler.get_reminders("appt-1")}
        assert statuses == {ReminderStatus.CANCELLED}

    async def test_cancel_unknown_appointment(self, scheduler: ReminderScheduler) -> None:
        assert await scheduler.cancel_for_appointment("nothing") == 0

    async def test_per_appointment_locks_are_released(self, scheduler: ReminderScheduler) -> None:
        for index in range(500):
            await scheduler.cancel_for_appointment(f"appt-{index}")
        assert len(scheduler._locks) == 0

    async def test_cancelled_reminders_never_fire(
        self, scheduler: ReminderScheduler, sink: AsyncMock, clock
    ) -> None:
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(days=2), [_survivor()]
        )
        await scheduler.cancel_for_appointment("appt-1")
        clock.advance(days=3)
        assert await scheduler.tick() == []
        sink.send.assert_not_awaited()

    async def test_reschedule_reuses_recipients_and_details(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        details = AppointmentDetails(provider_name="Dr. Mwangi", location="Room 4")
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(days=2), [_survivor(), _provider()], details
        )

        new_time = clock.now() + timedelta(days=5)
        created = await scheduler.reschedule_for_appointment("appt-1", new_time)

        assert len(created) == 4
        assert {r.appointment_time for r in created} == {new_time}
        assert all("Room 4" in r.message for r in created)

        everything = await scheduler.get_reminders("appt-1")
        old = [r for r in everything if r.appointment_time != new_time]
        assert {r.status for r in old} == {ReminderStatus.CANCELLED}

    async def test_reschedule_without_prior_schedule(self, scheduler: ReminderScheduler, clock) -> None:
        with pytest.raises(NotFoundError):
            await scheduler.reschedule_for_appointment("ghost", clock.now() + timedelta(days=1))

    async def test_reschedule_with_explicit_recipients(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        created = await scheduler.reschedule_for_appointment(
            "fresh", clock.now() + timedelta(days=1, hours=1), recipients=[_provider()]
        )
        assert {r.recipient_id for r in created} == {"provider-1"}


# ---------------------------------------------------------------------------
# Tick
# ---------------------------------------------------------------------------


class TestTick:
    async def test_due_reminders_are_sent_once(
        self, scheduler: ReminderScheduler, sink: AsyncMock, clock
    ) -> None:
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(hours=25), [_survivor()]
        )

        assert await scheduler.tick() == []

        clock.advance(hours=1)
        fired = await scheduler.tick()
        assert [(f.kind, f.status) for f in fired] == [
            (ReminderKind.TWENTY_FOUR_HOUR, ReminderStatus.SENT)
        ]
        assert fired[0].title == "Appointment Tomorrow"

        sink.send.assert_awaited_once()
        recipient, title, body, metadata = sink.send.await_args.args
        assert recipient == "survivor-1"
        assert title == "Appointment Tomorrow"
        assert body.startswith("Reminder: You have an appointment with")
        assert metadata["appointment_id"] == "appt-1"
        assert metadata["recipient_role"] == "survivor"

        # ticking again at the same instant sends nothing new
        assert await scheduler.tick() == []
        assert sink.send.await_count == 1

    async def test_sent_reminder_records_time(self, scheduler: ReminderScheduler, clock) -> None:
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(hours=25), [_survivor()]
        )
        clock.advance(hours=2)
        await scheduler.tick()
        sent = [r for r in await scheduler.get_reminders("appt-1") if r.status == ReminderStatus.SENT]
        assert len(sent) == 1
        assert sent[0].sent_time == clock.now()

    async def test_failed_delivery_does_not_stop_others(
        self, store, composer, clock
    ) -> None:
        sink = AsyncMock()

        async def send(recipient_id, title, body, metadata):
            if recipient_id == "provider-1":
                raise DeliveryError("sms gateway down")

        sink.send.side_effect = send
        scheduler = ReminderScheduler(store, composer, sink, clock)
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(hours=25), [_survivor(), _provider()]
        )

        clock.advance(hours=1)
        fired = await scheduler.tick()

        statuses = {f.recipient_id: f.status for f in fired}
        assert statuses == {"survivor-1": ReminderStatus.SENT, "provider-1": ReminderStatus.FAILED}

        failed = await scheduler.get_failed()
        assert len(failed) == 1
        assert failed[0].failure_reason == "sms gateway down"

        # failed reminders are terminal and are not retried
        clock.advance(minutes=1)
        assert await scheduler.tick() == []

    async def test_tick_racing_cancel_never_sends_cancelled(
        self, store, composer, clock
    ) -> None:
        delivered: list[str] = []

        async def slow_send(recipient_id, title, body, metadata):
            await asyncio.sleep(0.01)
            delivered.append(metadata["reminder_id"])

        sink = AsyncMock()
        sink.send.side_effect = slow_send
        scheduler = ReminderScheduler(store, composer, sink, clock)
        for appointment_id in ("appt-1", "appt-2"):
            await scheduler.schedule_for_appointment(
                appointment_id, clock.now() + timedelta(hours=25), [_survivor(), _provider()]
            )
        clock.advance(hours=1)

        fired, cancelled_one, cancelled_two = await asyncio.gather(
            scheduler.tick(),
            scheduler.cancel_for_appointment("appt-1"),
            scheduler.cancel_for_appointment("appt-2"),
        )

        assert len(delivered) == len(set(delivered)) == len(fired)
        assert len(fired) + cancelled_one + cancelled_two == 8

        everything = [
            *await scheduler.get_reminders("appt-1"),
            *await scheduler.get_reminders("appt-2"),
        ]
        cancelled = {r.reminder_id for r in everything if r.status == ReminderStatus.CANCELLED}
        sent = {r.reminder_id for r in everything if r.status == ReminderStatus.SENT}
        assert cancelled.isdisjoint(delivered)
        assert sent == set(delivered)

        clock.advance(days=2)
        assert await scheduler.tick() == []
        assert len(delivered) == len(sent)

    async def test_tick_racing_reschedule_sends_nothing_stale(
        self, store, composer, clock
    ) -> None:
        delivered: list[str] = []

        async def slow_send(recipient_id, title, body, metadata):
            await asyncio.sleep(0.01)
            delivered.append(metadata["reminder_id"])

        sink = AsyncMock()
        sink.send.side_effect = slow_send
        scheduler = ReminderScheduler(store, composer, sink, clock)
        old_time = clock.now() + timedelta(hours=25)
        await scheduler.schedule_for_appointment("appt-1", old_time, [_survivor(), _provider()])
        clock.advance(hours=1)

        new_time = clock.now() + timedelta(days=3)
        await asyncio.gather(
            scheduler.tick(),
            scheduler.reschedule_for_appointment("appt-1", new_time),
        )

        assert len(delivered) == len(set(delivered))

        everything = await scheduler.get_reminders("appt-1")
        live = [r for r in everything if r.status == ReminderStatus.SCHEDULED]
        assert {r.appointment_time for r in live} == {new_time}
        assert len(live) == 4

        # past the old appointment: only reminders for the new time may fire
        clock.advance(hours=30)
        assert await scheduler.tick() == []
        stale = {r.reminder_id for r in everything if r.appointment_time == old_time}
        assert all(r.status != ReminderStatus.SCHEDULED for r in everything if r.reminder_id in stale)

    async def test_explicit_now_overrides_clock(
        self, scheduler: ReminderScheduler, sink: AsyncMock, clock
    ) -> None:
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(hours=25), [_survivor()]
        )
        fired = await scheduler.tick(clock.now() + timedelta(hours=24))
        assert len(fired) == 2


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_upcoming_history_and_statistics(
        self, scheduler: ReminderScheduler, clock
    ) -> None:
        await scheduler.schedule_for_appointment(
            "appt-1", clock.now() + timedelta(hours=25), [_survivor(), _provider()]
        )
        await scheduler.schedule_for_appointment(
            "appt-2", clock.now() + timedelta(days=3), [_survivor()]
        )
        await scheduler.cancel_for_appointment("appt-2")

        upcoming = await scheduler.get_upcoming("survivor-1")
        assert [r.appointment_id for r in upcoming] == ["appt-1", "appt-1"]
        assert upcoming[0].scheduled_time < upcoming[1].scheduled_time

        clock.advance(hours=1)
        await scheduler.tick()
        history = await scheduler.get_history("survivor-1")
        assert [r.kind for r in history] == [ReminderKind.TWENTY_FOUR_HOUR]

        stats = await scheduler.get_statistics()
        assert stats.model_dump() == {
            "total": 6,
            "scheduled": 2,
            "sent": 2,
            "failed": 0,
            "cancelled": 2,
        }
