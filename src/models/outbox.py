from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import OutboxOperationType


class PendingOperation(BaseModel):
    """An operation waiting to be replayed against the remote case API.

    ``operation_id`` doubles as the idempotency key sent upstream, so a
    replay after a lost response never applies the same change twice.
    """

    operation_id: str = Field(default_factory=lambda: f"op_{uuid4().hex}")
    operation_type: OutboxOperationType
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int
    enqueued_at: datetime
    retry_count: int = 0
    last_attempt_at: datetime | None = None
    error: str | None = None


class OutboxStatistics(BaseModel):
    total: int = 0
    pending: int = 0
    failed: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
