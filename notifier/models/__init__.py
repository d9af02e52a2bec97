"""SQLModel entities for the notification delivery pipeline."""

from notifier.models.delivery import (
    DeliveryChannel,
    DeliveryRecord,
    DeliveryRecordCreate,
    DeliveryStatus,
    PushPayload,
    build_push_payload,
)
from notifier.models.delivery_status import NotificationDeliveryStatus
from notifier.models.device import DeviceEndpoint, DevicePlatform

__all__ = [
    "DeliveryChannel",
    "DeliveryRecord",
    "DeliveryRecordCreate",
    "DeliveryStatus",
    "PushPayload",
    "build_push_payload",
    "NotificationDeliveryStatus",
    "DeviceEndpoint",
    "DevicePlatform",
]
