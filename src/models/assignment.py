from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import AssignmentStatus, ProviderType
from src.models.provider import ContactInfo


class ProviderAssignment(BaseModel):
    """A candidate pairing of an incident to a provider.

    ``priority`` is a cost: lower is better.  ``status`` reaches exactly one
    terminal state (accepted, declined or expired) and never leaves it.
    """

    assignment_id: str = Field(default_factory=lambda: uuid4().hex)
    incident_id: str
    provider_id: str
    provider_type: ProviderType
    priority: int
    estimated_response_minutes: int
    distance_km: float
    specializations: list[str] = Field(default_factory=list)
    contact: ContactInfo = Field(default_factory=ContactInfo)
    status: AssignmentStatus = AssignmentStatus.PENDING
    created_at: datetime
    responded_at: datetime | None = None
    decline_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != AssignmentStatus.PENDING
