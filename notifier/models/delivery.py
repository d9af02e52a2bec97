"""DeliveryRecord entity model: one queued attempt per notification and channel."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, field_validator
from sqlalchemy import JSON, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Column, Field, SQLModel


class DeliveryChannel(str, Enum):
    """Notification delivery channels."""
    EMAIL = "email"
    PUSH = "push"


class DeliveryStatus(str, Enum):
    """Queue row status.

    Rows move pending -> processing -> sent | failed. Only the retry
    policy moves failed back to pending.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


# Ordinal priorities, higher is dispatched first
PRIORITY_LEVELS: dict[str, int] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}
DEFAULT_PRIORITY = PRIORITY_LEVELS["medium"]


def resolve_priority(value: int | str | None) -> int:
    """Map a priority name or ordinal to its ordinal."""
    if value is None:
        return DEFAULT_PRIORITY
    if isinstance(value, str):
        try:
            return PRIORITY_LEVELS[value.lower()]
        except KeyError:
            raise ValueError(f"Unknown priority: {value}") from None
    return int(value)


JSONType = JSON().with_variant(JSONB(), "postgresql")


class DeliveryRecord(SQLModel, table=True):
    """Delivery queue database model shared by the email and push channels."""

    __tablename__ = "delivery_queue"
    __table_args__ = (
        Index(
            "ix_delivery_queue_dispatch",
            "channel",
            "status",
            "priority",
            "scheduled_for",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    notification_id: UUID | None = Field(default=None, index=True)
    channel: DeliveryChannel
    target: str
    device_id: UUID | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONType, nullable=False))
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING, index=True)
    priority: int = Field(default=DEFAULT_PRIORITY)
    scheduled_for: datetime = Field(default_factory=datetime.utcnow)
    retry_count: int = Field(default=0)
    error_message: str | None = Field(default=None)
    error_code: str | None = Field(default=None, max_length=50)
    provider_message_id: str | None = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    sent_at: datetime | None = Field(default=None)


class DeliveryRecordCreate(SQLModel):
    """Producer contract for inserting a queue row."""

    notification_id: UUID | None = None
    channel: DeliveryChannel
    target: str = Field(min_length=1)
    device_id: UUID | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int | str | None = None
    scheduled_for: datetime | None = None


# -----------------------------------------------------------------------------
# Push payload wire shape
# -----------------------------------------------------------------------------


class PushPayloadData(BaseModel):
    """Routing data the client runtime needs to open the notification."""

    notification_id: str
    entity_type: str | None = None
    entity_id: str | None = None
    priority: str | int | None = None

    model_config = {"extra": "allow"}

    @field_validator("notification_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)


class PushPayload(BaseModel):
    """Payload rendered by the service worker on the user's device.

    A shared ``tag`` lets the client replace an older unread notification
    of the same thread instead of stacking a new one.
    """

    title: str
    body: str
    icon: str | None = None
    badge: str | None = None
    tag: str | None = None
    data: PushPayloadData

    def to_wire(self) -> dict[str, Any]:
        """Serialize without unset optional keys."""
        return self.model_dump(exclude_none=True)


def build_push_payload(
    notification_id: UUID | str,
    title: str,
    body: str,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    priority: str | int | None = None,
    icon: str | None = "/icon-192x192.png",
    badge: str | None = "/icon-72x72.png",
    tag: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the push payload dict stored on a queue row.

    Keys in ``extra`` override the named routing fields.
    """
    fields = {
        "notification_id": notification_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "priority": priority,
    }
    fields.update(extra or {})
    data = PushPayloadData(**fields)
    payload = PushPayload(
        title=title,
        body=body,
        icon=icon,
        badge=badge,
        tag=tag or f"notification-{notification_id}",
        data=data,
    )
    return payload.to_wire()
