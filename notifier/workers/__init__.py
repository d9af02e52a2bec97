"""Background workers for the notification delivery queue.

This module provides the queue draining pipeline:
- Dispatcher: claims due rows per channel
- Email and push channel workers
- Outcome reconciler
- Queue runner with per-channel overlap prevention

Start them with QueueRunner.run_once() or QueueRunner.run_loop(), or
from scripts/run_workers.py.
"""

from notifier.workers.base import (
    ItemResult,
    QueueWorker,
    SendRequest,
    WorkerResult,
    WorkerStatus,
)
from notifier.workers.dispatcher import Dispatcher
from notifier.workers.email_worker import EmailWorker
from notifier.workers.push_worker import PushWorker
from notifier.workers.reconciler import OutcomeReconciler
from notifier.workers.runner import (
    QueueRunner,
    RunnerResult,
    configure_worker_logging,
    get_queue_runner,
)

__all__ = [
    # Base classes
    "QueueWorker",
    "SendRequest",
    "ItemResult",
    "WorkerResult",
    "WorkerStatus",
    # Pipeline components
    "Dispatcher",
    "OutcomeReconciler",
    # Workers
    "EmailWorker",
    "PushWorker",
    # Runner
    "QueueRunner",
    "RunnerResult",
    "get_queue_runner",
    "configure_worker_logging",
]
