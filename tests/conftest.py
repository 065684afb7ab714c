"""Shared fixtures: a frozen clock, an in-memory store and provider factories.

All tests run WITHOUT network access.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from src.models.enums import ProviderType
from src.models.provider import ContactInfo, ProviderLocation, ProviderProfile, WorkingHours
from src.services.clock import FixedClock
from src.services.notifications import NotificationComposer
from src.services.provider_directory import ProviderDirectory
from src.services.store import InMemoryKeyValueStore, JsonStateStore

NAIROBI = ZoneInfo("Africa/Nairobi")

# Wednesday 21 October 2026, 10:00 in Nairobi (07:00 UTC): inside office hours.
OFFICE_HOURS_NOW = datetime(2026, 10, 21, 10, 0, tzinfo=NAIROBI)

# Nairobi CBD
CBD_LAT, CBD_LON = -1.286389, 36.817223


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(OFFICE_HOURS_NOW)


@pytest.fixture
def backend() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def store(backend: InMemoryKeyValueStore) -> JsonStateStore:
    return JsonStateStore(backend, namespace="test:")


@pytest.fixture
def composer() -> NotificationComposer:
    return NotificationComposer()


@pytest.fixture
def directory(store: JsonStateStore, clock: FixedClock) -> ProviderDirectory:
    return ProviderDirectory(store, clock=clock)


@pytest.fixture
def make_provider() -> Callable[..., ProviderProfile]:
    """Factory for provider profiles located in the Nairobi CBD by default."""

    def _make(
        provider_id: str,
        provider_type: ProviderType = ProviderType.HEALTHCARE,
        *,
        latitude: float = CBD_LAT,
        longitude: float = CBD_LON,
        always_on: bool = False,
        start: str = "08:00",
        end: str = "17:00",
        **fields: Any,
    ) -> ProviderProfile:
        working_hours = (
            WorkingHours(start="00:00", end="23:59", is_24_hours=True)
            if always_on
            else WorkingHours(start=start, end=end)
        )
        fields.setdefault("name", f"Provider {provider_id}")
        fields.setdefault("contact", ContactInfo(phone="+254700000000"))
        return ProviderProfile(
            provider_id=provider_id,
            provider_type=provider_type,
            location=ProviderLocation(
                latitude=latitude,
                longitude=longitude,
                facility_name=f"{provider_id} facility",
            ),
            working_hours=working_hours,
            **fields,
        )

    return _make
