"""Assignment accept/decline API endpoints for Tumaini."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.api.deps import require_service
from src.models.assignment import ProviderAssignment

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/assignments", tags=["assignments"])


class AcceptRequest(BaseModel):
    notes: str = Field(default="", max_length=2000)


class DeclineRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


@router.get("/{assignment_id}")
async def get_assignment(assignment_id: str, request: Request) -> ProviderAssignment:
    assignments = require_service(request, "assignments")
    return await assignments.require(assignment_id)


@router.post("/{assignment_id}/accept")
async def accept_assignment(
    assignment_id: str, request: Request, body: AcceptRequest | None = None
) -> ProviderAssignment:
    """Accept a pending assignment.

    409 if the assignment was already accepted, declined or expired, or
    if the provider has no capacity left.
    """
    orchestrator = require_service(request, "orchestrator")
    return await orchestrator.accept_assignment(assignment_id, notes=body.notes if body else "")


@router.post("/{assignment_id}/decline")
async def decline_assignment(
    assignment_id: str, request: Request, body: DeclineRequest | None = None
) -> ProviderAssignment:
    orchestrator = require_service(request, "orchestrator")
    return await orchestrator.decline_assignment(
        assignment_id, reason=body.reason if body else None
    )
