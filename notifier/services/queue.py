"""Delivery queue service.

Producer side of the queue plus the housekeeping around it:
1. Enqueue email and push deliveries (the producer contract)
2. Requeue retryable failures with exponential backoff
3. Report per-status queue depth
4. Purge old terminal rows
5. Read the per-channel delivery status of a notification
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlmodel import Session, col, select

from notifier.config import get_settings
from notifier.errors import RETRYABLE_CODES
from notifier.models.delivery import (
    DeliveryChannel,
    DeliveryRecord,
    DeliveryRecordCreate,
    DeliveryStatus,
    build_push_payload,
    resolve_priority,
)
from notifier.models.delivery_status import NotificationDeliveryStatus
from notifier.services import devices

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Producer contract
# -----------------------------------------------------------------------------


def enqueue_delivery(session: Session, data: DeliveryRecordCreate) -> DeliveryRecord:
    """Insert a PENDING delivery row.

    Args:
        session: Database session
        data: Target, payload, priority and optional schedule time

    Returns:
        The persisted DeliveryRecord
    """
    now = datetime.utcnow()
    record = DeliveryRecord(
        notification_id=data.notification_id,
        channel=data.channel,
        target=data.target,
        device_id=data.device_id,
        payload=data.payload,
        status=DeliveryStatus.PENDING,
        priority=resolve_priority(data.priority),
        scheduled_for=data.scheduled_for or now,
        created_at=now,
        updated_at=now,
    )
    session.add(record)
    session.commit()
    session.refresh(record)

    logger.debug(
        "Delivery queued",
        extra={
            "record_id": str(record.id),
            "channel": record.channel.value,
            "priority": record.priority,
        },
    )
    return record


def enqueue_email(
    session: Session,
    to_email: str,
    subject: str,
    *,
    notification_id: UUID | None = None,
    template_id: str | None = None,
    template_data: dict[str, Any] | None = None,
    to_name: str | None = None,
    html: str | None = None,
    text: str | None = None,
    priority: int | str | None = None,
    scheduled_for: datetime | None = None,
) -> DeliveryRecord:
    """Queue an email, either pre-rendered or by template."""
    payload: dict[str, Any] = {"subject": subject}
    if template_id:
        payload["template_id"] = template_id
    if template_data:
        payload["template_data"] = template_data
    if to_name:
        payload["to_name"] = to_name
    if html:
        payload["html"] = html
    if text:
        payload["text"] = text

    return enqueue_delivery(
        session,
        DeliveryRecordCreate(
            notification_id=notification_id,
            channel=DeliveryChannel.EMAIL,
            target=to_email,
            payload=payload,
            priority=priority,
            scheduled_for=scheduled_for,
        ),
    )


def enqueue_push_for_user(
    session: Session,
    user_id: UUID,
    notification_id: UUID,
    title: str,
    body: str,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    priority: int | str | None = None,
    data: dict[str, Any] | None = None,
    scheduled_for: datetime | None = None,
) -> list[DeliveryRecord]:
    """Queue one push delivery per enabled device of a user.

    Returns:
        Queued rows (empty when the user has no enabled device)
    """
    user_devices = devices.get_enabled_devices(session, user_id)
    if not user_devices:
        logger.info(
            "No push-enabled devices found for user",
            extra={"user_id": str(user_id), "notification_id": str(notification_id)},
        )
        return []

    payload = build_push_payload(
        notification_id,
        title,
        body,
        entity_type=entity_type,
        entity_id=entity_id,
        priority=priority,
        extra=data,
    )

    queued = []
    for device in user_devices:
        queued.append(
            enqueue_delivery(
                session,
                DeliveryRecordCreate(
                    notification_id=notification_id,
                    channel=DeliveryChannel.PUSH,
                    target=device.credential,
                    device_id=device.id,
                    payload=payload,
                    priority=priority,
                    scheduled_for=scheduled_for,
                ),
            )
        )
    return queued


# -----------------------------------------------------------------------------
# Retry policy
# -----------------------------------------------------------------------------


def retry_failed(
    session: Session,
    channel: DeliveryChannel | None = None,
    max_retries: int | None = None,
) -> int:
    """Move retryable FAILED rows back to PENDING.

    Only failures whose error_code is retryable and whose retry_count is
    below ``max_retries`` are requeued. Each row is rescheduled with
    exponential backoff and requeued by a conditional update on
    ``status = 'failed'``, so it goes through the normal claim again.

    Args:
        session: Database session
        channel: Limit to one channel (None for both)
        max_retries: Retry cap (default from config)

    Returns:
        Number of rows requeued
    """
    settings = get_settings()
    cap = max_retries if max_retries is not None else settings.WORKER_MAX_RETRIES

    query = (
        select(DeliveryRecord)
        .where(DeliveryRecord.status == DeliveryStatus.FAILED)
        .where(DeliveryRecord.retry_count < cap)
        .where(col(DeliveryRecord.error_code).in_(sorted(RETRYABLE_CODES)))
    )
    if channel is not None:
        query = query.where(DeliveryRecord.channel == channel)

    now = datetime.utcnow()
    requeued = 0
    for record in session.exec(query).all():
        backoff = settings.WORKER_RETRY_DELAY_SECONDS * (2 ** record.retry_count)
        result = session.exec(
            update(DeliveryRecord)
            .where(DeliveryRecord.id == record.id)
            .where(DeliveryRecord.status == DeliveryStatus.FAILED)
            .values(
                status=DeliveryStatus.PENDING,
                scheduled_for=now + timedelta(seconds=backoff),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        requeued += result.rowcount

    session.commit()

    if requeued:
        logger.info(
            f"Requeued {requeued} failed deliveries",
            extra={"requeued": requeued, "channel": channel.value if channel else None},
        )
    return requeued


# -----------------------------------------------------------------------------
# Queue status and cleanup
# -----------------------------------------------------------------------------


@dataclass
class QueueStatusRow:
    """Queue depth for one status."""

    status: DeliveryStatus
    count: int
    oldest_created_at: datetime | None
    newest_created_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value,
            "count": self.count,
            "oldest_created_at": (
                self.oldest_created_at.isoformat() if self.oldest_created_at else None
            ),
            "newest_created_at": (
                self.newest_created_at.isoformat() if self.newest_created_at else None
            ),
        }


def get_queue_status(session: Session, channel: DeliveryChannel) -> list[QueueStatusRow]:
    """Count queue rows per status for a channel."""
    rows = session.exec(
        select(
            DeliveryRecord.status,
            func.count(),
            func.min(DeliveryRecord.created_at),
            func.max(DeliveryRecord.created_at),
        )
        .where(DeliveryRecord.channel == channel)
        .group_by(DeliveryRecord.status)
        .order_by(DeliveryRecord.status)
    ).all()

    return [
        QueueStatusRow(
            status=status,
            count=count,
            oldest_created_at=oldest,
            newest_created_at=newest,
        )
        for status, count, oldest, newest in rows
    ]


def cleanup_queue(session: Session) -> dict[DeliveryChannel, int]:
    """Delete SENT/FAILED rows past their channel's retention window.

    Returns:
        Rows deleted per channel
    """
    settings = get_settings()
    retention = {
        DeliveryChannel.EMAIL: settings.EMAIL_RETENTION_DAYS,
        DeliveryChannel.PUSH: settings.PUSH_RETENTION_DAYS,
    }
    now = datetime.utcnow()

    cleaned: dict[DeliveryChannel, int] = {}
    for channel, days in retention.items():
        result = session.exec(
            delete(DeliveryRecord)
            .where(DeliveryRecord.channel == channel)
            .where(col(DeliveryRecord.status).in_([DeliveryStatus.SENT, DeliveryStatus.FAILED]))
            .where(DeliveryRecord.created_at < now - timedelta(days=days))
            .execution_options(synchronize_session=False)
        )
        cleaned[channel] = result.rowcount

    session.commit()

    logger.info(
        "Delivery queue cleaned",
        extra={channel.value: count for channel, count in cleaned.items()},
    )
    return cleaned


def get_delivery_status(
    session: Session, notification_id: UUID
) -> list[NotificationDeliveryStatus]:
    """Per-channel delivery status of one notification."""
    return list(
        session.exec(
            select(NotificationDeliveryStatus)
            .where(NotificationDeliveryStatus.notification_id == notification_id)
            .order_by(NotificationDeliveryStatus.channel)
        ).all()
    )
