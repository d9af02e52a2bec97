"""Device registry: push subscriptions per user.

All operations are idempotent. Subscribing twice re-enables and refreshes
the same row. Removing something already gone is not an error.
"""

import json
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete
from sqlmodel import Session, select

from notifier.errors import MalformedCredential
from notifier.models.delivery import DeliveryRecord
from notifier.models.device import DeviceEndpoint, DevicePlatform
from notifier.senders.push import parse_credential

logger = logging.getLogger(__name__)


def serialize_credential(subscription: str | dict[str, Any]) -> str:
    """Validate a subscription and return its canonical stored form."""
    parsed = parse_credential(subscription)
    return json.dumps(parsed, sort_keys=True, separators=(",", ":"))


def subscribe(
    session: Session,
    user_id: UUID,
    subscription: str | dict[str, Any],
    platform: DevicePlatform = DevicePlatform.WEB,
    device_name: str | None = None,
) -> DeviceEndpoint:
    """Register (or re-enable) a push subscription for a user.

    Raises:
        MalformedCredential: If the subscription lacks endpoint or keys
    """
    credential = serialize_credential(subscription)
    now = datetime.utcnow()

    device = session.exec(
        select(DeviceEndpoint).where(
            DeviceEndpoint.user_id == user_id,
            DeviceEndpoint.credential == credential,
        )
    ).first()

    if device is None:
        device = DeviceEndpoint(
            user_id=user_id,
            platform=platform,
            credential=credential,
            device_name=device_name,
        )
    else:
        device.enabled = True
        device.platform = platform
        if device_name:
            device.device_name = device_name
        device.updated_at = now

    session.add(device)
    session.commit()
    session.refresh(device)

    logger.info(
        "Push subscription stored",
        extra={"user_id": str(user_id), "device_id": str(device.id)},
    )
    return device


def _endpoint_of(device: DeviceEndpoint) -> str | None:
    try:
        return parse_credential(device.credential)["endpoint"]
    except MalformedCredential:
        return None


def unsubscribe(session: Session, user_id: UUID, endpoint: str) -> int:
    """Remove a user's subscriptions for one push endpoint.

    Returns:
        Number of devices removed (0 if none matched)
    """
    devices = session.exec(
        select(DeviceEndpoint).where(DeviceEndpoint.user_id == user_id)
    ).all()

    removed = 0
    for device in devices:
        if _endpoint_of(device) == endpoint:
            session.delete(device)
            removed += 1

    session.commit()
    return removed


def unsubscribe_all(session: Session, user_id: UUID) -> int:
    """Remove every subscription a user has registered."""
    result = session.exec(delete(DeviceEndpoint).where(DeviceEndpoint.user_id == user_id))
    session.commit()
    return result.rowcount


def list_devices(session: Session, user_id: UUID) -> list[DeviceEndpoint]:
    """List a user's registered devices, newest first."""
    return list(
        session.exec(
            select(DeviceEndpoint)
            .where(DeviceEndpoint.user_id == user_id)
            .order_by(DeviceEndpoint.created_at.desc())
        ).all()
    )


def get_enabled_devices(session: Session, user_id: UUID) -> list[DeviceEndpoint]:
    """Devices push deliveries should be queued for."""
    return list(
        session.exec(
            select(DeviceEndpoint).where(
                DeviceEndpoint.user_id == user_id,
                DeviceEndpoint.enabled == True,  # noqa: E712
            )
        ).all()
    )


def set_enabled(session: Session, device: DeviceEndpoint, enabled: bool) -> DeviceEndpoint:
    """Toggle push delivery for one device."""
    device.enabled = enabled
    device.updated_at = datetime.utcnow()
    session.add(device)
    session.commit()
    session.refresh(device)
    return device


def delete_device(session: Session, device_id: UUID) -> int:
    """Delete a device row. Deleting a missing row returns 0.

    Does not commit; callers own the transaction.
    """
    result = session.exec(delete(DeviceEndpoint).where(DeviceEndpoint.id == device_id))
    return result.rowcount


def delete_for_delivery(session: Session, record: DeliveryRecord) -> int:
    """Delete the device a push delivery was addressed to.

    Uses the row's device_id when present, otherwise matches the stored
    credential. Does not commit.
    """
    if record.device_id is not None:
        return delete_device(session, record.device_id)
    return delete_by_credential(session, record.target)


def delete_by_credential(session: Session, credential: str) -> int:
    """Delete every device registered with this exact credential. Does not commit."""
    result = session.exec(
        delete(DeviceEndpoint).where(DeviceEndpoint.credential == credential)
    )
    return result.rowcount


def touch_device(session: Session, device_id: UUID) -> None:
    """Record a successful delivery to a device. Does not commit."""
    device = session.get(DeviceEndpoint, device_id)
    if device is not None:
        device.last_used_at = datetime.utcnow()
        session.add(device)
