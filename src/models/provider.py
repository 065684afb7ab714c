"""Provider profile models.

A provider is any responder the routing engine can assign to an incident:
a clinician, a police desk, a counselor, a rescue team, a legal aid
advocate or a community health worker.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from src.models.enums import ProviderType

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class WorkingHours(BaseModel):
    """Daily reachability window, expressed in the directory's local time."""

    start: str = "08:00"
    end: str = "17:00"
    is_24_hours: bool = False

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        if not _HHMM_RE.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value

    @property
    def start_minute(self) -> int:
        hours, minutes = self.start.split(":")
        return int(hours) * 60 + int(minutes)

    @property
    def end_minute(self) -> int:
        hours, minutes = self.end.split(":")
        return int(hours) * 60 + int(minutes)

    def covers(self, minute_of_day: int) -> bool:
        """Return True if *minute_of_day* (0..1439) falls inside the window.

        Both ends are inclusive.  A window whose start is later than its
        end wraps past midnight (e.g. ``22:00``-``06:00``).
        """
        if self.is_24_hours:
            return True
        start, end = self.start_minute, self.end_minute
        if start <= end:
            return start <= minute_of_day <= end
        return minute_of_day >= start or minute_of_day <= end


class ProviderLocation(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    address: str = ""
    facility_name: str | None = None


class ContactInfo(BaseModel):
    phone: str | None = None
    email: str | None = None
    facility_name: str | None = None


class ProviderProfile(BaseModel):
    """A responder registered in the provider directory.

    ``current_case_load`` never exceeds ``max_case_load``; the directory
    enforces this on every mutation and the model rejects it on load.
    """

    provider_id: str
    name: str
    provider_type: ProviderType
    is_available: bool = True
    current_case_load: int = Field(default=0, ge=0)
    max_case_load: int = Field(default=5, ge=1)
    location: ProviderLocation
    specializations: list[str] = Field(default_factory=list)
    contact: ContactInfo = Field(default_factory=ContactInfo)
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    response_time_minutes: int = Field(default=30, ge=0)
    rating: float = Field(default=3.0, ge=0.0, le=5.0)
    gender: str | None = None
    last_active_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("specializations")
    @classmethod
    def _dedupe_specializations(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _check_capacity(self) -> ProviderProfile:
        if self.current_case_load > self.max_case_load:
            raise ValueError(
                f"current_case_load ({self.current_case_load}) exceeds "
                f"max_case_load ({self.max_case_load})"
            )
        return self

    @property
    def has_capacity(self) -> bool:
        return self.current_case_load < self.max_case_load

    @property
    def load_ratio(self) -> float:
        return self.current_case_load / self.max_case_load
