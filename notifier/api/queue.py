"""Queue trigger and housekeeping endpoints.

All endpoints require a service-role bearer token.
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from notifier.api.deps import DBSession, Runner, ServiceRole
from notifier.models.delivery import DeliveryChannel
from notifier.services.queue import cleanup_queue, get_queue_status, retry_failed
from notifier.workers.base import WorkerResult

router = APIRouter(prefix="/api/queue", tags=["Queue"])


def _run_error(result: WorkerResult) -> str | None:
    if not result.errors:
        return None
    return result.errors[0].get("error", "Delivery store unavailable")


def _trigger_response(result: WorkerResult) -> dict[str, Any]:
    """Map a worker run to the trigger body, or 503 on a run-level failure."""
    error = _run_error(result)
    if error:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error)
    return result.to_response()


@router.post("/email/process")
def process_email_queue(
    session: DBSession,
    runner: Runner,
    _: ServiceRole,
) -> dict[str, Any]:
    """Drain one batch of the email queue."""
    return _trigger_response(runner.run_channel(DeliveryChannel.EMAIL, session))


@router.post("/push/process")
def process_push_queue(
    session: DBSession,
    runner: Runner,
    _: ServiceRole,
) -> dict[str, Any]:
    """Drain one batch of the push queue."""
    return _trigger_response(runner.run_channel(DeliveryChannel.PUSH, session))


@router.post("/process")
def process_all_queues(
    session: DBSession,
    runner: Runner,
    _: ServiceRole,
) -> dict[str, Any]:
    """Drain one batch of every channel.

    Channels run independently. A channel whose run failed carries an
    ``error`` key next to its counts. The request fails with 503 only
    when every channel failed.
    """
    body: dict[str, Any] = {}
    errors = []
    for channel in runner.channels:
        result = runner.run_channel(channel, session)
        error = _run_error(result)
        if error:
            errors.append(f"{channel.value}: {error}")
            body[channel.value] = {**result.to_response(), "error": error}
        else:
            body[channel.value] = result.to_response()

    if errors and len(errors) == len(body):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="; ".join(errors),
        )
    return body


@router.post("/retry")
def retry_failed_deliveries(
    session: DBSession,
    _: ServiceRole,
    channel: DeliveryChannel | None = Query(default=None, description="Limit to one channel"),
) -> dict[str, int]:
    """Requeue retryable failures with backoff."""
    return {"requeued": retry_failed(session, channel)}


@router.get("/status")
def queue_status(
    session: DBSession,
    _: ServiceRole,
) -> dict[str, list[dict[str, Any]]]:
    """Per-status queue depth for each channel."""
    return {
        channel.value: [row.to_dict() for row in get_queue_status(session, channel)]
        for channel in DeliveryChannel
    }


@router.post("/cleanup")
def cleanup_deliveries(
    session: DBSession,
    _: ServiceRole,
) -> dict[str, int]:
    """Delete terminal rows past their retention window."""
    cleaned = cleanup_queue(session)
    return {channel.value: count for channel, count in cleaned.items()}
