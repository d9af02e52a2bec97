"""Push delivery worker.

Drains the push channel of the delivery queue. Dead subscriptions
(410/404) are removed from the device registry by the reconciler; a
successful send refreshes the device's last_used_at.
"""

import logging

from sqlalchemy.exc import DBAPIError
from sqlmodel import Session

from notifier.errors import StoreUnavailable
from notifier.models.delivery import DeliveryChannel, DeliveryRecord
from notifier.senders.push import PushSender
from notifier.services import devices
from notifier.workers.base import QueueWorker, SendRequest

logger = logging.getLogger(__name__)


class PushWorker(QueueWorker):
    """Worker for the push channel."""

    def __init__(self, sender: PushSender | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.sender = sender or PushSender(timeout=self.send_timeout)

    @property
    def worker_name(self) -> str:
        return "PushWorker"

    @property
    def channel(self) -> DeliveryChannel:
        return DeliveryChannel.PUSH

    def deliver(self, request: SendRequest) -> str | None:
        """Send one push message to the row's subscription credential."""
        self.sender.send(request.target, request.payload)
        return None

    def mark_completed(
        self, session: Session, item: DeliveryRecord, provider_message_id: str | None
    ) -> None:
        """Reconcile a successful push and refresh the device."""
        super().mark_completed(session, item, provider_message_id)
        if item.device_id is None:
            return
        try:
            devices.touch_device(session, item.device_id)
            session.commit()
        except DBAPIError as e:
            session.rollback()
            raise StoreUnavailable(f"Failed to update device {item.device_id}: {e}") from e
