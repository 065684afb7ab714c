"""Tests for the Tumaini pydantic models.

Covers field validation, derived properties and immutability.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from src.models.assignment import ProviderAssignment
from src.models.enums import AssignmentStatus, ProviderType, ReminderKind, ReminderStatus
from src.models.incident import Coordinates, Incident, IncidentLocation
from src.models.provider import ProviderLocation, ProviderProfile, WorkingHours
from src.models.reminder import Reminder


def _profile(**overrides) -> ProviderProfile:
    fields = {
        "provider_id": "p1",
        "name": "Test Provider",
        "provider_type": ProviderType.COUNSELING,
        "location": ProviderLocation(latitude=-1.28, longitude=36.81),
    }
    fields.update(overrides)
    return ProviderProfile(**fields)


# ---------------------------------------------------------------------------
# WorkingHours
# ---------------------------------------------------------------------------


class TestWorkingHours:
    def test_defaults_are_office_hours(self) -> None:
        hours = WorkingHours()
        assert (hours.start, hours.end, hours.is_24_hours) == ("08:00", "17:00", False)

    @pytest.mark.parametrize("value", ["8:00", "24:00", "12:60", "noon", ""])
    def test_rejects_malformed_times(self, value: str) -> None:
        with pytest.raises(ValidationError):
            WorkingHours(start=value)

    def test_both_ends_inclusive(self) -> None:
        hours = WorkingHours(start="08:00", end="17:00")
        assert hours.covers(8 * 60)
        assert hours.covers(17 * 60)
        assert not hours.covers(17 * 60 + 1)
        assert not hours.covers(7 * 60 + 59)

    def test_overnight_window_wraps_midnight(self) -> None:
        hours = WorkingHours(start="22:00", end="06:00")
        assert hours.covers(23 * 60)
        assert hours.covers(0)
        assert hours.covers(6 * 60)
        assert not hours.covers(12 * 60)

    def test_24_hours_covers_everything(self) -> None:
        hours = WorkingHours(start="09:00", end="10:00", is_24_hours=True)
        assert all(hours.covers(minute) for minute in (0, 600, 1439))


# ---------------------------------------------------------------------------
# ProviderProfile
# ---------------------------------------------------------------------------


class TestProviderProfile:
    def test_case_load_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError, match="exceeds"):
            _profile(current_case_load=6, max_case_load=5)

    def test_capacity_properties(self) -> None:
        profile = _profile(current_case_load=2, max_case_load=8)
        assert profile.has_capacity is True
        assert profile.load_ratio == pytest.approx(0.25)

        full = _profile(current_case_load=3, max_case_load=3)
        assert full.has_capacity is False

    def test_rating_bounds(self) -> None:
        with pytest.raises(ValidationError):
            _profile(rating=5.5)

    def test_specializations_deduplicated_in_order(self) -> None:
        profile = _profile(specializations=["trauma", "legal_aid", "trauma"])
        assert profile.specializations == ["trauma", "legal_aid"]

    def test_unknown_provider_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _profile(provider_type="astrologer")


# ---------------------------------------------------------------------------
# Incident
# ---------------------------------------------------------------------------


class TestIncident:
    def test_is_frozen(self) -> None:
        incident = Incident(support_services=("medical",))
        with pytest.raises(ValidationError):
            incident.urgency = "immediate"  # type: ignore[misc]

    def test_generated_ids_are_unique(self) -> None:
        assert Incident().incident_id != Incident().incident_id

    def test_location_shortcuts(self) -> None:
        incident = Incident(
            location=IncidentLocation(
                coordinates=Coordinates(latitude=-1.3, longitude=36.8),
                address="Kibera",
            )
        )
        assert incident.coordinates == Coordinates(latitude=-1.3, longitude=36.8)
        assert incident.address == "Kibera"

    def test_missing_location(self) -> None:
        incident = Incident()
        assert incident.coordinates is None
        assert incident.address is None

    def test_coordinates_are_range_checked(self) -> None:
        with pytest.raises(ValidationError):
            Coordinates(latitude=95.0, longitude=0.0)


# ---------------------------------------------------------------------------
# Terminal states
# ---------------------------------------------------------------------------


class TestTerminalStates:
    def test_assignment_terminal_only_after_pending(self) -> None:
        now = datetime.now(UTC)
        assignment = ProviderAssignment(
            incident_id="i1",
            provider_id="p1",
            provider_type=ProviderType.POLICE,
            priority=4,
            estimated_response_minutes=20,
            distance_km=0.0,
            created_at=now,
        )
        assert assignment.is_terminal is False
        assert assignment.model_copy(update={"status": AssignmentStatus.EXPIRED}).is_terminal

    def test_reminder_terminal_states(self) -> None:
        now = datetime.now(UTC)
        reminder = Reminder(
            appointment_id="a1",
            recipient_id="u1",
            recipient_role="survivor",
            kind=ReminderKind.TWO_HOUR,
            offset_minutes=120,
            appointment_time=now,
            scheduled_time=now,
            message="hi",
            created_at=now,
        )
        assert reminder.is_terminal is False
        for status in (ReminderStatus.SENT, ReminderStatus.FAILED, ReminderStatus.CANCELLED):
            assert reminder.model_copy(update={"status": status}).is_terminal
