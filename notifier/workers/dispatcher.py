"""Dispatcher: claims due queue rows for one channel.

Claiming is a conditional update (``WHERE status = 'pending'``), so two
dispatchers racing over the same channel can never both win the same row.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, col, select

from notifier.errors import ClaimConflict, StoreUnavailable
from notifier.models.delivery import DeliveryChannel, DeliveryRecord, DeliveryStatus

logger = logging.getLogger(__name__)


class Dispatcher:
    """Selects and claims batches of pending deliveries."""

    def fetch_batch(
        self,
        session: Session,
        channel: DeliveryChannel,
        limit: int,
    ) -> list[DeliveryRecord]:
        """Claim up to ``limit`` due rows for a channel.

        Rows are ordered by priority (highest first), then by
        scheduled_for and created_at (oldest first). Every returned row
        has been moved to PROCESSING and the claim committed.

        Args:
            session: Database session
            channel: Channel to drain
            limit: Maximum rows to claim

        Returns:
            Claimed rows in dispatch order (empty when nothing is due)

        Raises:
            StoreUnavailable: If the store cannot be read or written
        """
        if limit <= 0:
            return []

        now = datetime.utcnow()

        try:
            candidate_ids = session.exec(
                select(DeliveryRecord.id)
                .where(DeliveryRecord.channel == channel)
                .where(DeliveryRecord.status == DeliveryStatus.PENDING)
                .where(DeliveryRecord.scheduled_for <= now)
                .order_by(
                    col(DeliveryRecord.priority).desc(),
                    col(DeliveryRecord.scheduled_for).asc(),
                    col(DeliveryRecord.created_at).asc(),
                )
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).all()

            claimed: list[UUID] = []
            for record_id in candidate_ids:
                try:
                    self.claim(session, record_id, now)
                except ClaimConflict:
                    logger.debug(
                        f"Delivery {record_id} already claimed, skipping",
                        extra={"record_id": str(record_id), "channel": channel.value},
                    )
                    continue
                claimed.append(record_id)

            session.commit()

            if not claimed:
                return []

            records = session.exec(
                select(DeliveryRecord).where(col(DeliveryRecord.id).in_(claimed))
            ).all()
        except DBAPIError as e:
            session.rollback()
            raise StoreUnavailable(f"Delivery store unavailable: {e}") from e

        by_id = {record.id: record for record in records}
        batch = [by_id[record_id] for record_id in claimed if record_id in by_id]

        logger.info(
            f"Claimed {len(batch)} {channel.value} deliveries",
            extra={"channel": channel.value, "claimed": len(batch), "limit": limit},
        )
        return batch

    def claim(self, session: Session, record_id: UUID, now: datetime | None = None) -> None:
        """Move one row from PENDING to PROCESSING.

        Args:
            session: Database session
            record_id: Row to claim
            now: Timestamp for updated_at

        Raises:
            ClaimConflict: If the row is no longer PENDING
        """
        result = session.exec(
            update(DeliveryRecord)
            .where(DeliveryRecord.id == record_id)
            .where(DeliveryRecord.status == DeliveryStatus.PENDING)
            .values(
                status=DeliveryStatus.PROCESSING,
                updated_at=now or datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ClaimConflict(f"Delivery {record_id} is not pending")
