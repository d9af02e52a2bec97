"""Delivery status of notifications."""

from uuid import UUID

from fastapi import APIRouter

from notifier.api.deps import DBSession, ServiceRole
from notifier.models.delivery_status import (
    DeliveryStatusListResponse,
    DeliveryStatusResponse,
)
from notifier.services.queue import get_delivery_status

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("/{notification_id}/delivery-status", response_model=DeliveryStatusListResponse)
def delivery_status_endpoint(
    session: DBSession,
    _: ServiceRole,
    notification_id: UUID,
) -> DeliveryStatusListResponse:
    """Per-channel delivery outcome of one notification."""
    rows = get_delivery_status(session, notification_id)
    return DeliveryStatusListResponse(
        notification_id=notification_id,
        channels=[DeliveryStatusResponse.model_validate(r) for r in rows],
    )
