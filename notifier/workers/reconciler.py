"""Outcome reconciler: writes delivery outcomes back to the store.

Each write is safe to repeat:

1. The queue row moves PROCESSING -> SENT/FAILED with a conditional
   update, so a second call matches no row and changes nothing.
2. The delivery status projection is an upsert that never moves a
   sent channel back to failed and keeps the first sent_at, so repeats
   and sibling rows of the same notification cannot regress it.
3. Device cleanup is a plain DELETE, and deleting a missing row is a no-op.

The three writes are not one transaction. A crash between them is
repaired by re-running the same call.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, select

from notifier.errors import (
    AbandonedClaim,
    DeliveryError,
    PermanentlyInvalidEndpoint,
    StoreUnavailable,
)
from notifier.models.delivery import DeliveryRecord, DeliveryStatus
from notifier.models.delivery_status import NotificationDeliveryStatus
from notifier.services import devices

logger = logging.getLogger(__name__)

class OutcomeReconciler:
    """Applies send outcomes to queue rows, status projection and devices."""

    def mark_sent(
        self,
        session: Session,
        record: DeliveryRecord,
        provider_message_id: str | None = None,
    ) -> bool:
        """Record a successful delivery.

        Args:
            session: Database session
            record: The claimed queue row
            provider_message_id: Id returned by the transport provider

        Returns:
            True if this call moved the row to SENT, False if it was
            already terminal

        Raises:
            StoreUnavailable: If the store cannot be written
        """
        now = datetime.utcnow()
        values = {
            "status": DeliveryStatus.SENT,
            "sent_at": now,
            "updated_at": now,
            "error_message": None,
            "error_code": None,
        }
        if provider_message_id:
            values["provider_message_id"] = provider_message_id

        try:
            result = session.exec(
                update(DeliveryRecord)
                .where(DeliveryRecord.id == record.id)
                .where(DeliveryRecord.status == DeliveryStatus.PROCESSING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            transitioned = result.rowcount == 1
            session.refresh(record)
            self.project_status(session, record)
            session.commit()
        except DBAPIError as e:
            session.rollback()
            raise StoreUnavailable(f"Failed to reconcile delivery {record.id}: {e}") from e

        if not transitioned:
            logger.debug(
                f"Delivery {record.id} already {record.status.value}, sent outcome ignored",
                extra={"record_id": str(record.id)},
            )
        return transitioned

    def mark_failed(
        self,
        session: Session,
        record: DeliveryRecord,
        error: DeliveryError,
    ) -> bool:
        """Record a failed delivery attempt.

        Increments retry_count in the same statement that moves the row
        to FAILED. Removes the device when the endpoint is permanently
        invalid.

        Args:
            session: Database session
            record: The claimed queue row
            error: Classified failure

        Returns:
            True if this call moved the row to FAILED

        Raises:
            StoreUnavailable: If the store cannot be written
        """
        now = datetime.utcnow()
        message = (error.message or error.__class__.__name__)[:500]

        try:
            result = session.exec(
                update(DeliveryRecord)
                .where(DeliveryRecord.id == record.id)
                .where(DeliveryRecord.status == DeliveryStatus.PROCESSING)
                .values(
                    status=DeliveryStatus.FAILED,
                    error_message=message,
                    error_code=error.code,
                    retry_count=DeliveryRecord.retry_count + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            transitioned = result.rowcount == 1
            session.refresh(record)
            self.project_status(session, record)

            if isinstance(error, PermanentlyInvalidEndpoint):
                removed = devices.delete_for_delivery(session, record)
                logger.info(
                    "Removing expired push subscription",
                    extra={
                        "record_id": str(record.id),
                        "device_id": str(record.device_id) if record.device_id else None,
                        "removed": removed,
                    },
                )

            session.commit()
        except DBAPIError as e:
            session.rollback()
            raise StoreUnavailable(f"Failed to reconcile delivery {record.id}: {e}") from e

        return transitioned

    def project_status(self, session: Session, record: DeliveryRecord) -> None:
        """Upsert the row's terminal outcome into NotificationDeliveryStatus.

        A push notification fans out to one row per device, all sharing
        the (notification_id, channel) key. The channel counts as sent once
        any of them is delivered: a later sent row keeps the first sent_at,
        and a failed row never overwrites a sent status.

        Rows without a notification, or not yet terminal, are skipped.
        """
        if record.notification_id is None:
            return
        if record.status not in (DeliveryStatus.SENT, DeliveryStatus.FAILED):
            return

        table = NotificationDeliveryStatus.__table__
        insert = sqlite_insert if session.get_bind().dialect.name == "sqlite" else pg_insert

        if record.status == DeliveryStatus.SENT:
            stmt = insert(table).values(
                notification_id=record.notification_id,
                channel=record.channel,
                status=DeliveryStatus.SENT,
                sent_at=record.sent_at,
                failed_at=None,
                error_message=None,
                updated_at=record.updated_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.notification_id, table.c.channel],
                set_={
                    "status": DeliveryStatus.SENT,
                    "sent_at": func.coalesce(table.c.sent_at, stmt.excluded.sent_at),
                    "failed_at": None,
                    "error_message": None,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
        else:
            stmt = insert(table).values(
                notification_id=record.notification_id,
                channel=record.channel,
                status=DeliveryStatus.FAILED,
                failed_at=record.updated_at,
                error_message=record.error_message,
                updated_at=record.updated_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.notification_id, table.c.channel],
                set_={
                    "status": DeliveryStatus.FAILED,
                    "failed_at": stmt.excluded.failed_at,
                    "error_message": stmt.excluded.error_message,
                    "updated_at": stmt.excluded.updated_at,
                },
                where=table.c.status != DeliveryStatus.SENT,
            )

        session.exec(stmt)

    def expire_stale_claims(self, session: Session, older_than_seconds: int) -> int:
        """Fail rows left in PROCESSING by a run that never reconciled them.

        The rows become FAILED with code ``abandoned`` so the retry policy
        can requeue them.

        Args:
            session: Database session
            older_than_seconds: Minimum claim age to consider stale

        Returns:
            Number of rows failed
        """
        cutoff = datetime.utcnow() - timedelta(seconds=older_than_seconds)
        abandoned = AbandonedClaim("Delivery attempt abandoned before completion")

        try:
            stale = session.exec(
                select(DeliveryRecord)
                .where(DeliveryRecord.status == DeliveryStatus.PROCESSING)
                .where(DeliveryRecord.updated_at < cutoff)
            ).all()
        except DBAPIError as e:
            session.rollback()
            raise StoreUnavailable(f"Delivery store unavailable: {e}") from e

        expired = 0
        for record in stale:
            if self.mark_failed(session, record, abandoned):
                expired += 1

        if expired:
            logger.warning(
                f"Expired {expired} stale delivery claims",
                extra={"expired": expired, "older_than_seconds": older_than_seconds},
            )
        return expired
