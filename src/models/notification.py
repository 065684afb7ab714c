"""Notification payloads and queued delivery records."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import RecipientRole, UrgencyTag


class NotificationPayload(BaseModel):
    """Composer output: what to say, how urgently.  Not a delivery."""

    model_config = {"frozen": True}

    title: str
    body: str
    urgency_tag: UrgencyTag = UrgencyTag.NORMAL
    action_required: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class Notification(BaseModel):
    """A single notification handed to the delivery layer."""

    notification_id: str = Field(default_factory=lambda: uuid4().hex)
    recipient_id: str
    recipient_role: RecipientRole | None = None
    title: str
    body: str
    urgency_tag: UrgencyTag = UrgencyTag.NORMAL
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    sent: bool = False
    sent_at: datetime | None = None
