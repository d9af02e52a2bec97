"""Queue runner for the delivery channels.

Each channel is Idle or Running. A trigger that arrives while its channel
is Running returns a SKIPPED result instead of starting a second run.
Different channels run independently.
"""

import logging
import signal
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlmodel import Session

from notifier.config import get_settings
from notifier.db.session import engine
from notifier.models.delivery import DeliveryChannel
from notifier.services import queue as queue_service
from notifier.workers.base import QueueWorker, WorkerResult, WorkerStatus
from notifier.workers.email_worker import EmailWorker
from notifier.workers.push_worker import PushWorker
from notifier.workers.reconciler import OutcomeReconciler

logger = logging.getLogger(__name__)


@dataclass
class RunnerResult:
    """Result of a complete runner cycle across channels.

    Attributes:
        started_at: When the run started
        completed_at: When the run completed
        workers_run: Number of channels that ran (skipped channels excluded)
        total_sent: Total deliveries sent across channels
        total_failed: Total deliveries failed across channels
        worker_results: Individual results per channel
        errors: Top-level errors during run
    """

    started_at: datetime
    completed_at: datetime | None = None
    workers_run: int = 0
    total_sent: int = 0
    total_failed: int = 0
    worker_results: dict[DeliveryChannel, WorkerResult] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return self.total_sent + self.total_failed

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": (
                (self.completed_at - self.started_at).total_seconds() * 1000
                if self.completed_at
                else None
            ),
            "workers_run": self.workers_run,
            "total_processed": self.total_processed,
            "total_sent": self.total_sent,
            "total_failed": self.total_failed,
            "worker_results": {
                channel.value: result.to_dict()
                for channel, result in self.worker_results.items()
            },
            "errors": self.errors,
        }


class QueueRunner:
    """Runs channel workers with per-channel overlap prevention.

    Usage:
        runner = get_queue_runner()
        result = runner.run_channel(DeliveryChannel.EMAIL)
    """

    def __init__(
        self,
        batch_size: int | None = None,
        workers: list[QueueWorker] | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        """Initialize the queue runner.

        Args:
            batch_size: Override default batch size
            workers: Channel workers (default email and push)
            session_factory: Creates a session per run (default bound to engine)
        """
        settings = get_settings()
        self.batch_size = batch_size or settings.WORKER_BATCH_SIZE

        if workers is None:
            workers = [
                EmailWorker(batch_size=self.batch_size),
                PushWorker(batch_size=self.batch_size),
            ]
        self._workers: dict[DeliveryChannel, QueueWorker] = {
            worker.channel: worker for worker in workers
        }
        self._locks: dict[DeliveryChannel, threading.Lock] = {
            channel: threading.Lock() for channel in self._workers
        }
        self._session_factory = session_factory or (lambda: Session(engine))
        self._reconciler = OutcomeReconciler()

        self._logger = logging.getLogger(self.__class__.__name__)
        self._shutdown_requested = False

    @property
    def channels(self) -> list[DeliveryChannel]:
        return list(self._workers)

    def is_running(self, channel: DeliveryChannel) -> bool:
        """Whether a run for this channel is in progress."""
        return self._locks[channel].locked()

    def run_channel(
        self, channel: DeliveryChannel, session: Session | None = None
    ) -> WorkerResult:
        """Drain one batch of a channel, unless that channel is already running.

        Args:
            channel: Channel to process
            session: Optional database session (creates new if not provided)

        Returns:
            WorkerResult (SKIPPED if the channel was busy)
        """
        worker = self._workers[channel]
        lock = self._locks[channel]

        if not lock.acquire(blocking=False):
            self._logger.info(
                f"{worker.worker_name} already running, skipping trigger",
                extra={"channel": channel.value},
            )
            return WorkerResult(
                worker_name=worker.worker_name,
                channel=channel,
                status=WorkerStatus.SKIPPED,
            )

        own_session = session is None
        if own_session:
            session = self._session_factory()

        try:
            return worker.run(session)
        finally:
            if own_session:
                session.close()
            lock.release()

    def run_once(self) -> RunnerResult:
        """Execute one complete processing cycle.

        Runs every channel concurrently, each on its own session, and
        aggregates results.

        Returns:
            RunnerResult with aggregated statistics
        """
        result = RunnerResult(started_at=datetime.utcnow())

        self._logger.info(
            "Starting queue run",
            extra={"batch_size": self.batch_size, "channels": [c.value for c in self.channels]},
        )

        with ThreadPoolExecutor(max_workers=len(self._workers)) as executor:
            futures = {
                channel: executor.submit(self.run_channel, channel)
                for channel in self._workers
            }

            for channel, future in futures.items():
                worker_name = self._workers[channel].worker_name
                try:
                    worker_result = future.result()
                except Exception as e:
                    error_msg = f"{worker_name} failed: {str(e)}"
                    result.errors.append(error_msg)
                    self._logger.error(
                        error_msg,
                        extra={"worker": worker_name},
                        exc_info=True,
                    )
                    continue

                result.worker_results[channel] = worker_result
                if worker_result.status == WorkerStatus.SKIPPED:
                    continue
                result.workers_run += 1
                result.total_sent += worker_result.sent_count
                result.total_failed += worker_result.failed_count
                if worker_result.status == WorkerStatus.FAILED and worker_result.errors:
                    result.errors.extend(
                        f"{worker_name}: {err.get('error')}" for err in worker_result.errors
                    )

        result.completed_at = datetime.utcnow()

        self._logger.info(
            "Queue run completed",
            extra=result.to_dict(),
        )

        return result

    def run_maintenance(self) -> dict[str, int]:
        """Fail stale claims, then requeue retryable failures.

        Returns:
            Counts of expired claims and requeued rows
        """
        settings = get_settings()
        session = self._session_factory()
        try:
            expired = self._reconciler.expire_stale_claims(
                session, settings.STALE_CLAIM_SECONDS
            )
            requeued = queue_service.retry_failed(session)
        finally:
            session.close()

        return {"expired": expired, "requeued": requeued}

    def run_loop(
        self,
        interval_seconds: int | None = None,
        max_iterations: int | None = None,
        maintenance: bool = True,
    ) -> None:
        """Run all channels continuously in a loop.

        Args:
            interval_seconds: Seconds between cycles (default from config)
            max_iterations: Max cycles to run (None for infinite)
            maintenance: Expire stale claims and requeue retries each cycle
        """
        settings = get_settings()
        interval = interval_seconds or settings.WORKER_POLL_INTERVAL_SECONDS
        iterations = 0

        # Setup signal handlers for clean shutdown
        self._setup_signal_handlers()

        self._logger.info(
            "Starting queue loop",
            extra={
                "interval_seconds": interval,
                "max_iterations": max_iterations,
            },
        )

        try:
            while not self._shutdown_requested:
                # Check iteration limit
                if max_iterations is not None and iterations >= max_iterations:
                    self._logger.info(
                        f"Reached max iterations ({max_iterations}), stopping"
                    )
                    break

                if maintenance:
                    try:
                        self.run_maintenance()
                    except Exception as e:
                        self._logger.error(
                            f"Queue maintenance failed: {e}", exc_info=True
                        )

                result = self.run_once()
                iterations += 1

                self._logger.info(
                    f"Iteration {iterations} complete",
                    extra={
                        "sent": result.total_sent,
                        "failed": result.total_failed,
                    },
                )

                # Sleep before next iteration
                if not self._shutdown_requested:
                    self._logger.debug(f"Sleeping for {interval} seconds")
                    time.sleep(interval)

        except KeyboardInterrupt:
            self._logger.info("Keyboard interrupt received, shutting down")

        self._logger.info(
            "Queue loop stopped",
            extra={"total_iterations": iterations},
        )

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def handle_signal(signum, frame):
            self._logger.info(f"Received signal {signum}, requesting shutdown")
            self._shutdown_requested = True

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the loop."""
        self._shutdown_requested = True


# Process-wide runner so HTTP triggers and the loop share channel locks
_runner_instance: QueueRunner | None = None
_runner_lock = threading.Lock()


def get_queue_runner() -> QueueRunner:
    """Get the process-wide QueueRunner."""
    global _runner_instance
    with _runner_lock:
        if _runner_instance is None:
            _runner_instance = QueueRunner()
        return _runner_instance


# Configure logging for worker runs
def configure_worker_logging(level: int = logging.INFO) -> None:
    """Configure logging for worker processes.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Set specific loggers
    logging.getLogger("notifier.workers").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
