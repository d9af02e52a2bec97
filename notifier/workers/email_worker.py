"""Email delivery worker.

Drains the email channel of the delivery queue:
1. Claims due email rows
2. Renders subject/html/text from the row payload
3. Sends through the email provider
4. Reconciles the outcome
"""

import logging

from notifier.models.delivery import DeliveryChannel
from notifier.senders.email import EmailSender
from notifier.senders.templates import EmailRenderer
from notifier.workers.base import QueueWorker, SendRequest

logger = logging.getLogger(__name__)


class EmailWorker(QueueWorker):
    """Worker for the email channel."""

    def __init__(
        self,
        sender: EmailSender | None = None,
        renderer: EmailRenderer | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.sender = sender or EmailSender(timeout=self.send_timeout)
        self.renderer = renderer or EmailRenderer()

    @property
    def worker_name(self) -> str:
        return "EmailWorker"

    @property
    def channel(self) -> DeliveryChannel:
        return DeliveryChannel.EMAIL

    def deliver(self, request: SendRequest) -> str | None:
        """Render and send one email.

        Args:
            request: Email send request (target is the address)

        Returns:
            Provider message id
        """
        rendered = self.renderer.render(request.payload, request.target)
        return self.sender.send(
            to=request.target,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
        )
