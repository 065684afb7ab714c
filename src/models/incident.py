"""Incident models consumed by the routing engine.

An incident is the survivor's report as seen by the routing core: which
support services were requested, how urgent the case is, and (optionally)
where it happened.  Everything else about the case (forms, evidence,
narrative) belongs to other subsystems and is not modelled here.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import CommunicationMethod, UrgencyLevel


class Coordinates(BaseModel):
    """A point in decimal degrees."""

    model_config = {"frozen": True}

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class IncidentLocation(BaseModel):
    model_config = {"frozen": True}

    coordinates: Coordinates | None = None
    address: str | None = None


class ProviderPreferences(BaseModel):
    """Survivor preferences about who responds and how they get in touch."""

    model_config = {"frozen": True}

    gender: str | None = None  # "female", "male", "any"
    proximity: str | None = None  # "nearest", "any"
    communication_method: CommunicationMethod | None = None


class Incident(BaseModel):
    """A reported case requiring one or more support services.

    Immutable once routed.  ``support_services`` holds raw service tags;
    unknown tags are tolerated and simply map to no provider type.
    """

    model_config = {"frozen": True}

    incident_id: str = Field(default_factory=lambda: uuid4().hex)
    case_number: str | None = None
    survivor_id: str | None = None
    incident_type: str | None = None  # "sexual", "physical", "emotional", ...
    support_services: tuple[str, ...] = ()
    urgency: UrgencyLevel = UrgencyLevel.ROUTINE
    location: IncidentLocation | None = None
    preferences: ProviderPreferences | None = None
    reported_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def coordinates(self) -> Coordinates | None:
        return self.location.coordinates if self.location else None

    @property
    def address(self) -> str | None:
        return self.location.address if self.location else None
