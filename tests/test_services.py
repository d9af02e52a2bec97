"""Tests for the queue and device registry services."""

import json
from datetime import datetime, timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from notifier.errors import MalformedCredential
from notifier.models.delivery import DeliveryChannel, DeliveryRecord, DeliveryStatus
from notifier.models.delivery_status import NotificationDeliveryStatus
from notifier.models.device import DeviceEndpoint, DevicePlatform
from notifier.services import devices
from notifier.services.queue import (
    cleanup_queue,
    enqueue_email,
    enqueue_push_for_user,
    get_delivery_status,
    get_queue_status,
    retry_failed,
)


def _subscription(endpoint: str = "https://push.example.com/send/abc") -> dict:
    return {"endpoint": endpoint, "keys": {"p256dh": "p256dh-key", "auth": "auth-secret"}}


def _failed(session: Session, error_code: str, retry_count: int = 1, **kwargs) -> DeliveryRecord:
    record = DeliveryRecord(
        channel=kwargs.pop("channel", DeliveryChannel.EMAIL),
        target="user@example.com",
        payload={"subject": "s"},
        status=DeliveryStatus.FAILED,
        error_code=error_code,
        retry_count=retry_count,
        **kwargs,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


# ============================================================================
# Producer Tests
# ============================================================================

class TestEnqueue:
    """Tests for the producer contract."""

    def test_enqueue_email_defaults(self, db_session: Session):
        """An email row is pending, medium priority and due now."""
        record = enqueue_email(
            db_session,
            "user@example.com",
            "Welcome",
            template_id="system",
            template_data={"notification_title": "Welcome"},
        )

        assert record.status == DeliveryStatus.PENDING
        assert record.channel == DeliveryChannel.EMAIL
        assert record.priority == 2
        assert record.scheduled_for <= datetime.utcnow()
        assert record.payload == {
            "subject": "Welcome",
            "template_id": "system",
            "template_data": {"notification_title": "Welcome"},
        }

    def test_named_priority(self, db_session: Session):
        """Priority names resolve to their ordinal."""
        record = enqueue_email(db_session, "a@example.com", "x", priority="critical")

        assert record.priority == 4

    def test_unknown_priority_rejected(self, db_session: Session):
        """Unknown priority names are rejected."""
        with pytest.raises(ValueError):
            enqueue_email(db_session, "a@example.com", "x", priority="urgent")

    def test_push_queued_per_enabled_device(self, db_session: Session):
        """One push row per enabled device, none for disabled ones."""
        user_id = uuid4()
        first = devices.subscribe(db_session, user_id, _subscription("https://push/1"))
        second = devices.subscribe(db_session, user_id, _subscription("https://push/2"))
        devices.set_enabled(db_session, second, False)
        notification_id = uuid4()

        queued = enqueue_push_for_user(
            db_session, user_id, notification_id, "Task due", "Finish the report",
            entity_type="task", entity_id="t-1",
        )

        assert len(queued) == 1
        assert queued[0].device_id == first.id
        assert queued[0].target == first.credential
        assert queued[0].payload["tag"] == f"notification-{notification_id}"
        assert queued[0].payload["data"]["notification_id"] == str(notification_id)

    def test_push_data_may_repeat_routing_keys(self, db_session: Session):
        """Producer data containing entity keys is merged, not rejected."""
        user_id = uuid4()
        devices.subscribe(db_session, user_id, _subscription())

        queued = enqueue_push_for_user(
            db_session, user_id, uuid4(), "Task due", "Soon",
            entity_type="task", data={"entity_id": "t-7", "url": "/tasks/t-7"},
        )

        assert queued[0].payload["data"]["entity_id"] == "t-7"
        assert queued[0].payload["data"]["url"] == "/tasks/t-7"

    def test_push_without_devices_queues_nothing(self, db_session: Session):
        """Users with no devices get no push rows."""
        assert enqueue_push_for_user(db_session, uuid4(), uuid4(), "t", "b") == []


# ============================================================================
# Retry Policy Tests
# ============================================================================

class TestRetryFailed:
    """Tests for retry_failed."""

    def test_retryable_failure_requeued_with_backoff(self, db_session: Session):
        """Transient failures go back to pending, scheduled later."""
        record = _failed(db_session, "transient_failure", retry_count=2)

        with patch("notifier.services.queue.get_settings") as mock_settings:
            mock_settings.return_value.WORKER_MAX_RETRIES = 3
            mock_settings.return_value.WORKER_RETRY_DELAY_SECONDS = 60
            before = datetime.utcnow()
            requeued = retry_failed(db_session)

        assert requeued == 1
        db_session.refresh(record)
        assert record.status == DeliveryStatus.PENDING
        assert record.retry_count == 2
        assert record.scheduled_for >= before + timedelta(seconds=240)

    @pytest.mark.parametrize(
        "error_code",
        ["malformed_credential", "invalid_endpoint", "payload_too_large"],
    )
    def test_permanent_failure_not_requeued(self, db_session: Session, error_code):
        """Permanent failures stay failed."""
        record = _failed(db_session, error_code)

        assert retry_failed(db_session) == 0
        db_session.refresh(record)
        assert record.status == DeliveryStatus.FAILED

    def test_retry_cap(self, db_session: Session):
        """Rows at the retry cap stay failed."""
        _failed(db_session, "rate_limited", retry_count=3)

        assert retry_failed(db_session, max_retries=3) == 0

    def test_channel_filter(self, db_session: Session):
        """Only the requested channel is requeued."""
        _failed(db_session, "transient_failure")
        push = _failed(db_session, "transient_failure", channel=DeliveryChannel.PUSH)

        assert retry_failed(db_session, DeliveryChannel.PUSH) == 1
        db_session.refresh(push)
        assert push.status == DeliveryStatus.PENDING

    def test_abandoned_claims_requeued(self, db_session: Session):
        """Rows failed by the stale-claim sweep are retryable."""
        _failed(db_session, "abandoned")

        assert retry_failed(db_session) == 1


# ============================================================================
# Status and Cleanup Tests
# ============================================================================

class TestQueueStatus:
    """Tests for get_queue_status, cleanup_queue and get_delivery_status."""

    def test_counts_per_status(self, db_session: Session):
        """Queue status groups counts by status."""
        enqueue_email(db_session, "a@example.com", "1")
        enqueue_email(db_session, "b@example.com", "2")
        _failed(db_session, "transient_failure")

        rows = {row.status: row for row in get_queue_status(db_session, DeliveryChannel.EMAIL)}

        assert rows[DeliveryStatus.PENDING].count == 2
        assert rows[DeliveryStatus.FAILED].count == 1
        assert rows[DeliveryStatus.PENDING].to_dict()["oldest_created_at"] is not None
        assert get_queue_status(db_session, DeliveryChannel.PUSH) == []

    def test_cleanup_respects_retention(self, db_session: Session):
        """Old terminal rows are purged, pending and recent rows kept."""
        old = datetime.utcnow() - timedelta(days=40)
        _failed(db_session, "transient_failure", created_at=old)
        _failed(db_session, "transient_failure", channel=DeliveryChannel.PUSH,
                created_at=datetime.utcnow() - timedelta(days=8))
        _failed(db_session, "transient_failure")
        pending = enqueue_email(db_session, "a@example.com", "x")
        pending.created_at = old
        db_session.add(pending)
        db_session.commit()

        cleaned = cleanup_queue(db_session)

        assert cleaned == {DeliveryChannel.EMAIL: 1, DeliveryChannel.PUSH: 1}
        remaining = db_session.exec(select(DeliveryRecord)).all()
        assert len(remaining) == 2

    def test_delivery_status_per_channel(self, db_session: Session):
        """Delivery status lists each channel's projection."""
        notification_id = uuid4()
        db_session.add(NotificationDeliveryStatus(
            notification_id=notification_id,
            channel=DeliveryChannel.EMAIL,
            status=DeliveryStatus.SENT,
            sent_at=datetime.utcnow(),
        ))
        db_session.add(NotificationDeliveryStatus(
            notification_id=notification_id,
            channel=DeliveryChannel.PUSH,
            status=DeliveryStatus.FAILED,
            error_message="gone",
        ))
        db_session.commit()

        statuses = get_delivery_status(db_session, notification_id)

        assert {s.channel: s.status for s in statuses} == {
            DeliveryChannel.EMAIL: DeliveryStatus.SENT,
            DeliveryChannel.PUSH: DeliveryStatus.FAILED,
        }


# ============================================================================
# Device Registry Tests
# ============================================================================

class TestDevices:
    """Tests for the device registry."""

    def test_subscribe_stores_canonical_credential(self, db_session: Session):
        """Credentials are stored as sorted JSON."""
        device = devices.subscribe(
            db_session, uuid4(), _subscription(), platform=DevicePlatform.ANDROID,
            device_name="Pixel",
        )

        assert json.loads(device.credential) == _subscription()
        assert device.credential == devices.serialize_credential(json.dumps(_subscription()))
        assert device.platform == DevicePlatform.ANDROID
        assert device.enabled is True

    def test_subscribe_twice_reenables_same_row(self, db_session: Session):
        """Re-subscribing updates instead of duplicating."""
        user_id = uuid4()
        device = devices.subscribe(db_session, user_id, _subscription())
        devices.set_enabled(db_session, device, False)

        again = devices.subscribe(db_session, user_id, _subscription(), device_name="Laptop")

        assert again.id == device.id
        assert again.enabled is True
        assert again.device_name == "Laptop"
        assert len(devices.list_devices(db_session, user_id)) == 1

    def test_subscribe_rejects_malformed(self, db_session: Session):
        """Subscriptions without keys are rejected."""
        with pytest.raises(MalformedCredential):
            devices.subscribe(db_session, uuid4(), {"endpoint": "https://push"})

    def test_unsubscribe_by_endpoint(self, db_session: Session):
        """Unsubscribe removes only the matching endpoint, and is idempotent."""
        user_id = uuid4()
        devices.subscribe(db_session, user_id, _subscription("https://push/1"))
        devices.subscribe(db_session, user_id, _subscription("https://push/2"))

        assert devices.unsubscribe(db_session, user_id, "https://push/1") == 1
        assert devices.unsubscribe(db_session, user_id, "https://push/1") == 0
        assert len(devices.list_devices(db_session, user_id)) == 1

    def test_unsubscribe_all_only_touches_user(self, db_session: Session):
        """unsubscribe_all leaves other users' devices alone."""
        user_id, other_id = uuid4(), uuid4()
        devices.subscribe(db_session, user_id, _subscription("https://push/1"))
        devices.subscribe(db_session, other_id, _subscription("https://push/2"))

        assert devices.unsubscribe_all(db_session, user_id) == 1
        assert devices.list_devices(db_session, other_id) != []

    def test_delete_missing_device_is_noop(self, db_session: Session):
        """Deleting an unknown device removes nothing."""
        assert devices.delete_device(db_session, uuid4()) == 0

    def test_delete_by_credential(self, db_session: Session):
        """Devices are removable by their stored credential."""
        device = devices.subscribe(db_session, uuid4(), _subscription())
        credential = device.credential

        assert devices.delete_by_credential(db_session, credential) == 1
        db_session.commit()
        assert db_session.exec(select(DeviceEndpoint)).all() == []


# ============================================================================
# Pytest Fixtures
# ============================================================================

@pytest.fixture
def db_session():
    """Create a test database session."""
    from sqlmodel import create_engine, SQLModel
    from sqlmodel.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Import all models to register them
    from notifier.models.delivery import DeliveryRecord  # noqa: F401
    from notifier.models.delivery_status import NotificationDeliveryStatus  # noqa: F401
    from notifier.models.device import DeviceEndpoint  # noqa: F401

    SQLModel.metadata.create_all(engine)

    with Session(engine) as session:
        yield session
