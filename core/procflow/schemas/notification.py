"""Notification records and per-user channel preferences."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationRecord(BaseModel):
    """
    One notification queued for delivery on one channel.

    Run-scoped records (created by notification nodes) carry ``run_id`` and
    ``node_id``. Records created by event handlers carry ``run_id=None`` and
    ``node_id="system"``. Delivery is out of scope: records stay pending
    until an external sender picks them up.
    """

    id: str
    run_id: str | None = None
    node_id: str = "system"
    channel: str
    recipient_type: str = "user"
    recipient_id: str | None = None
    recipient_email: str | None = None

    subject: str = ""
    body: str = ""
    action_url: str | None = None

    status: NotificationStatus = NotificationStatus.PENDING
    event_id: str | None = None  # Source domain event of handler-created records
    event_type: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None

    created_at: datetime = Field(default_factory=datetime.now)
    sent_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0


class NotificationPreference(BaseModel):
    """Whether a user wants a given event type on a given channel."""

    user_id: str
    event_type: str
    channel: str
    enabled: bool = True
