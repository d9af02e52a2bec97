"""NotificationDeliveryStatus: per-channel outcome of one notification."""

from datetime import datetime
from uuid import UUID

from sqlmodel import Field, SQLModel

from notifier.models.delivery import DeliveryChannel, DeliveryStatus


class NotificationDeliveryStatus(SQLModel, table=True):
    """Externally visible delivery outcome, keyed by (notification_id, channel).

    Only the outcome reconciler writes to this table.
    """

    __tablename__ = "notification_delivery_status"

    notification_id: UUID = Field(primary_key=True)
    channel: DeliveryChannel = Field(primary_key=True)
    status: DeliveryStatus
    sent_at: datetime | None = Field(default=None)
    failed_at: datetime | None = Field(default=None)
    error_message: str | None = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DeliveryStatusResponse(SQLModel):
    """Schema for one channel's delivery status."""

    notification_id: UUID
    channel: DeliveryChannel
    status: DeliveryStatus
    sent_at: datetime | None
    failed_at: datetime | None
    error_message: str | None
    updated_at: datetime

    model_config = {"from_attributes": True}


class DeliveryStatusListResponse(SQLModel):
    """Schema for all channel statuses of a notification."""

    notification_id: UUID
    channels: list[DeliveryStatusResponse]
