"""Offline outbox API endpoints for Tumaini.

Operators can inspect the queue of changes still owed to the remote case
API, trigger a replay and re-arm operations that ran out of attempts.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from src.api.deps import require_service
from src.models.outbox import OutboxStatistics, PendingOperation

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/outbox", tags=["outbox"])


class ReplayResponse(BaseModel):
    succeeded: int
    failed: int
    skipped: int


class RetryResponse(BaseModel):
    reset: int


@router.get("")
async def list_pending(request: Request) -> list[PendingOperation]:
    """Queued operations in replay order."""
    outbox = require_service(request, "outbox")
    return await outbox.list_pending()


@router.get("/stats")
async def outbox_statistics(request: Request) -> OutboxStatistics:
    outbox = require_service(request, "outbox")
    return await outbox.get_statistics()


@router.post("/replay", response_model=ReplayResponse)
async def replay(request: Request) -> ReplayResponse:
    outbox = require_service(request, "outbox")
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="remote case API is not configured")

    result = await outbox.replay(gateway.handle)
    logger.info("outbox.replay_requested", **result)
    return ReplayResponse(**result)


@router.post("/retry-failed", response_model=RetryResponse)
async def retry_failed(request: Request) -> RetryResponse:
    outbox = require_service(request, "outbox")
    return RetryResponse(reset=await outbox.retry_failed())
