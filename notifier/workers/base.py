"""Base queue worker for one delivery channel.

One processing cycle:
1. fetch_pending() - claim a bounded batch through the Dispatcher
2. prepare() - copy each claimed row into a plain SendRequest
3. deliver() - one send per row on a small thread pool
4. mark_completed() or mark_failed() - reconcile each outcome as it completes

Design Principles:
- The thread pool never touches the database session
- A cycle ends when its batch is exhausted, it never loops
- Per-item failures never abort the batch; store failures do
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlmodel import Session

from notifier.config import get_settings
from notifier.errors import DeliveryError, MalformedCredential, StoreUnavailable, TransientFailure
from notifier.models.delivery import DeliveryChannel, DeliveryRecord, DeliveryStatus
from notifier.workers.dispatcher import Dispatcher
from notifier.workers.reconciler import OutcomeReconciler

logger = logging.getLogger(__name__)


class WorkerStatus(str, Enum):
    """Status of a worker run."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some items sent, some failed
    FAILED = "failed"
    NO_WORK = "no_work"
    SKIPPED = "skipped"  # Channel already running


@dataclass
class SendRequest:
    """Everything a send needs, detached from the ORM row."""

    record_id: UUID
    notification_id: UUID | None
    channel: DeliveryChannel
    target: str
    payload: dict[str, Any]


@dataclass
class ItemResult:
    """Outcome of one delivery in a batch."""

    id: UUID
    status: DeliveryStatus
    target: str | None = None
    provider_message_id: str | None = None
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        data: dict[str, Any] = {
            "id": str(self.id),
            "status": self.status.value,
            "to": self.target,
        }
        if self.provider_message_id:
            data["provider_id"] = self.provider_message_id
        if self.error:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return {key: value for key, value in data.items() if value is not None}


@dataclass
class WorkerResult:
    """Result of a worker processing cycle.

    Attributes:
        worker_name: Name of the worker
        channel: Channel that was drained
        status: Overall status of the worker run
        sent_count: Deliveries that succeeded
        failed_count: Deliveries that failed
        duration_ms: Time taken for the processing cycle
        results: Per-item outcomes in completion order
        errors: Run-level error details
    """

    worker_name: str
    channel: DeliveryChannel
    status: WorkerStatus
    sent_count: int = 0
    failed_count: int = 0
    duration_ms: float = 0.0
    results: list[ItemResult] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return self.sent_count + self.failed_count

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "worker_name": self.worker_name,
            "channel": self.channel.value,
            "status": self.status.value,
            "processed_count": self.processed_count,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
        }

    def to_response(self) -> dict[str, Any]:
        """Trigger response body: {processed, sent, failed, results}."""
        body: dict[str, Any] = {
            "processed": self.processed_count,
            "sent": self.sent_count,
            "failed": self.failed_count,
            "results": [item.to_dict() for item in self.results],
        }
        if self.status == WorkerStatus.SKIPPED:
            body["skipped"] = True
        return body


class QueueWorker(ABC):
    """Abstract base class for channel queue workers.

    Subclasses bind a channel and implement ``deliver()``, which runs on a
    worker thread and must only use the SendRequest it is given.
    """

    def __init__(
        self,
        batch_size: int | None = None,
        concurrency: int | None = None,
        send_timeout: float | None = None,
        dispatcher: Dispatcher | None = None,
        reconciler: OutcomeReconciler | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            batch_size: Maximum items to claim per cycle
            concurrency: Maximum parallel sends
            send_timeout: Seconds allowed per send
            dispatcher: Batch claimer (default Dispatcher)
            reconciler: Outcome writer (default OutcomeReconciler)
        """
        settings = get_settings()
        self.batch_size = batch_size or settings.WORKER_BATCH_SIZE
        self.concurrency = max(1, concurrency or settings.WORKER_CONCURRENCY)
        self.send_timeout = send_timeout or settings.SEND_TIMEOUT_SECONDS
        self.dispatcher = dispatcher or Dispatcher()
        self.reconciler = reconciler or OutcomeReconciler()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def worker_name(self) -> str:
        """Return the worker name for logging."""
        pass

    @property
    @abstractmethod
    def channel(self) -> DeliveryChannel:
        """Return the channel this worker drains."""
        pass

    @abstractmethod
    def deliver(self, request: SendRequest) -> str | None:
        """Perform one network delivery.

        Args:
            request: Detached send request

        Returns:
            Provider message id, if any

        Raises:
            DeliveryError: Classified failure
        """
        pass

    def fetch_pending(self, session: Session) -> list[DeliveryRecord]:
        """Claim the next batch for this worker's channel."""
        return self.dispatcher.fetch_batch(session, self.channel, self.batch_size)

    def prepare(self, item: DeliveryRecord) -> SendRequest:
        """Copy the fields a send needs out of the ORM row."""
        return SendRequest(
            record_id=item.id,
            notification_id=item.notification_id,
            channel=item.channel,
            target=item.target,
            payload=dict(item.payload or {}),
        )

    def mark_completed(
        self, session: Session, item: DeliveryRecord, provider_message_id: str | None
    ) -> None:
        """Reconcile a successful send."""
        self.reconciler.mark_sent(session, item, provider_message_id)

    def mark_failed(self, session: Session, item: DeliveryRecord, error: DeliveryError) -> None:
        """Reconcile a failed send."""
        self.reconciler.mark_failed(session, item, error)

    def run(self, session: Session) -> WorkerResult:
        """Execute one processing cycle.

        This is the main entry point for worker execution.

        Args:
            session: Database session

        Returns:
            WorkerResult with processing statistics
        """
        start_time = datetime.utcnow()
        result = WorkerResult(
            worker_name=self.worker_name,
            channel=self.channel,
            status=WorkerStatus.NO_WORK,
        )

        self._logger.info(
            f"[{self.worker_name}] Starting processing cycle",
            extra={"batch_size": self.batch_size, "concurrency": self.concurrency},
        )

        try:
            items = self.fetch_pending(session)
        except StoreUnavailable as e:
            self._logger.error(
                f"[{self.worker_name}] Could not fetch batch",
                extra={"error": str(e)},
                exc_info=True,
            )
            result.status = WorkerStatus.FAILED
            result.errors.append({"error": str(e)})
            result.duration_ms = self._elapsed_ms(start_time)
            return result

        if not items:
            self._logger.debug(f"[{self.worker_name}] No pending items")
            result.duration_ms = self._elapsed_ms(start_time)
            return result

        self._logger.info(f"[{self.worker_name}] Claimed {len(items)} items to process")

        try:
            self._process_batch(session, items, result)
        except StoreUnavailable as e:
            # Unreconciled rows stay PROCESSING for the stale-claim sweep
            self._logger.error(
                f"[{self.worker_name}] Worker cycle aborted",
                extra={"error": str(e)},
                exc_info=True,
            )
            result.status = WorkerStatus.FAILED
            result.errors.append({"error": str(e)})
            result.duration_ms = self._elapsed_ms(start_time)
            return result

        if result.failed_count == 0 and result.sent_count > 0:
            result.status = WorkerStatus.SUCCESS
        elif result.sent_count > 0 and result.failed_count > 0:
            result.status = WorkerStatus.PARTIAL
        elif result.failed_count > 0:
            result.status = WorkerStatus.FAILED
        else:
            result.status = WorkerStatus.NO_WORK

        result.duration_ms = self._elapsed_ms(start_time)

        self._logger.info(
            f"[{self.worker_name}] Cycle complete",
            extra=result.to_dict(),
        )

        return result

    def _process_batch(
        self,
        session: Session,
        items: list[DeliveryRecord],
        result: WorkerResult,
    ) -> None:
        """Send a claimed batch and reconcile outcomes as they complete."""
        requests = {item.id: self.prepare(item) for item in items}
        by_id = {item.id: item for item in items}
        deadline = len(items) * self.send_timeout

        executor = ThreadPoolExecutor(
            max_workers=min(self.concurrency, len(items)),
            thread_name_prefix=self.worker_name,
        )
        futures = {
            executor.submit(self._deliver_safely, request): record_id
            for record_id, request in requests.items()
        }
        reconciled: set[UUID] = set()

        try:
            try:
                for future in as_completed(futures, timeout=deadline):
                    record_id = futures[future]
                    provider_id, error = future.result()
                    self._reconcile(session, by_id[record_id], provider_id, error, result)
                    reconciled.add(record_id)
            except FuturesTimeoutError:
                for future, record_id in futures.items():
                    if record_id in reconciled:
                        continue
                    if future.done():
                        provider_id, error = future.result()
                    else:
                        provider_id = None
                        error = TransientFailure(
                            f"Delivery timed out after {self.send_timeout:g}s"
                        )
                    self._reconcile(session, by_id[record_id], provider_id, error, result)
                    reconciled.add(record_id)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _deliver_safely(
        self, request: SendRequest
    ) -> tuple[str | None, DeliveryError | None]:
        """Run deliver() and turn any exception into a classified error."""
        try:
            return self.deliver(request), None
        except DeliveryError as e:
            return None, e
        except Exception as e:
            return None, TransientFailure(str(e)[:500] or e.__class__.__name__)

    def _reconcile(
        self,
        session: Session,
        item: DeliveryRecord,
        provider_id: str | None,
        error: DeliveryError | None,
        result: WorkerResult,
    ) -> None:
        """Write one outcome back and add it to the run result."""
        item_id = item.id
        # Push targets are credentials and stay out of results
        target = item.target if item.channel == DeliveryChannel.EMAIL else None

        if error is None:
            self.mark_completed(session, item, provider_id)
            result.sent_count += 1
            result.results.append(
                ItemResult(
                    id=item_id,
                    status=DeliveryStatus.SENT,
                    target=target,
                    provider_message_id=provider_id,
                )
            )
            self._logger.info(
                f"[{self.worker_name}] Delivered item {item_id}",
                extra={"item_id": str(item_id)},
            )
            return

        self.mark_failed(session, item, error)
        result.failed_count += 1
        result.results.append(
            ItemResult(
                id=item_id,
                status=DeliveryStatus.FAILED,
                target=target,
                error=error.message,
                error_code=error.code,
            )
        )

        log = self._logger.warning if isinstance(error, MalformedCredential) else self._logger.error
        log(
            f"[{self.worker_name}] Failed to deliver item {item_id}",
            extra={
                "item_id": str(item_id),
                "error": error.message,
                "error_code": error.code,
                "retryable": error.retryable,
            },
        )

    def _elapsed_ms(self, start: datetime) -> float:
        """Calculate elapsed time in milliseconds."""
        return (datetime.utcnow() - start).total_seconds() * 1000
