"""Incident routing API endpoints for Tumaini.

``POST /incidents/route`` takes a survivor's report, ranks eligible
providers, records the assignments and alerts the providers.  An empty
``assignments`` list means nobody was eligible; the client escalates
(e.g. to the national GBV hotline).
"""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from src.api.deps import require_service
from src.models.assignment import ProviderAssignment
from src.models.enums import CommunicationMethod, UrgencyLevel
from src.models.incident import Coordinates, Incident, IncidentLocation, ProviderPreferences
from src.services.errors import InvalidInputError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/incidents", tags=["incidents"])


class RouteIncidentRequest(BaseModel):
    incident_id: str | None = None
    case_number: str | None = None
    survivor_id: str | None = None
    incident_type: str | None = None
    support_services: list[str] = Field(default_factory=list)
    urgency: UrgencyLevel = UrgencyLevel.ROUTINE
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)
    address: str | None = None
    preferred_gender: str | None = None
    communication_method: CommunicationMethod | None = None
    reported_at: datetime | None = None

    def to_incident(self) -> Incident:
        coordinates = None
        if self.latitude is not None and self.longitude is not None:
            coordinates = Coordinates(latitude=self.latitude, longitude=self.longitude)

        fields: dict = {
            "case_number": self.case_number,
            "survivor_id": self.survivor_id,
            "incident_type": self.incident_type,
            "support_services": tuple(self.support_services),
            "urgency": self.urgency,
            "location": IncidentLocation(coordinates=coordinates, address=self.address),
            "preferences": ProviderPreferences(
                gender=self.preferred_gender,
                communication_method=self.communication_method,
            ),
        }
        if self.incident_id:
            fields["incident_id"] = self.incident_id
        if self.reported_at is not None:
            fields["reported_at"] = self.reported_at
        return Incident(**fields)


class RouteIncidentResponse(BaseModel):
    incident_id: str
    assignments: list[ProviderAssignment]
    providers_notified: int
    message: str


@router.post("/route", response_model=RouteIncidentResponse)
async def route_incident(body: RouteIncidentRequest, request: Request) -> RouteIncidentResponse:
    orchestrator = require_service(request, "orchestrator")

    try:
        outcome = await orchestrator.handle_incident(body.to_incident())
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=f"Unable to find provider: {exc}") from exc

    if outcome.has_providers:
        message = f"{len(outcome.assignments)} provider(s) assigned"
    else:
        message = "No provider is currently available; escalate to the GBV hotline"

    return RouteIncidentResponse(
        incident_id=outcome.incident_id,
        assignments=outcome.assignments,
        providers_notified=outcome.providers_notified,
        message=message,
    )


@router.get("/{incident_id}/assignments")
async def list_assignments(incident_id: str, request: Request) -> list[ProviderAssignment]:
    assignments = require_service(request, "assignments")
    return await assignments.list_for_incident(incident_id)
