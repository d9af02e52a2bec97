"""Tests for the HTTP trigger and device endpoints."""

from unittest.mock import Mock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import Session

from notifier.api.deps import get_db_session, get_runner
from notifier.errors import StoreUnavailable
from notifier.main import app
from notifier.models.delivery import DeliveryChannel, DeliveryRecord, DeliveryStatus
from notifier.models.delivery_status import NotificationDeliveryStatus
from notifier.services.queue import enqueue_email
from notifier.workers.email_worker import EmailWorker
from notifier.workers.push_worker import PushWorker
from notifier.workers.runner import QueueRunner

SECRET = "test-secret"


def _token(**claims) -> dict[str, str]:
    return {"Authorization": f"Bearer {jwt.encode(claims, SECRET, algorithm='HS256')}"}


SERVICE_HEADERS = _token(role="service_role", sub="scheduler")

SUBSCRIPTION = {
    "endpoint": "https://push.example.com/send/abc",
    "keys": {"p256dh": "p256dh-key", "auth": "auth-secret"},
}


# ============================================================================
# Queue Trigger Tests
# ============================================================================

class TestQueueEndpoints:
    """Tests for /api/queue endpoints."""

    def test_requires_token(self, client: TestClient):
        """Triggers without a bearer token are rejected."""
        response = client.post("/api/queue/email/process")
        assert response.status_code in (401, 403)

    def test_requires_service_role(self, client: TestClient):
        """User tokens cannot trigger queue processing."""
        response = client.post(
            "/api/queue/email/process", headers=_token(sub=str(uuid4()), role="authenticated")
        )
        assert response.status_code == 403

    def test_invalid_signature_rejected(self, client: TestClient):
        """Tokens signed with another secret are rejected."""
        token = jwt.encode({"role": "service_role"}, "other-secret", algorithm="HS256")
        response = client.post(
            "/api/queue/email/process", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_empty_queue(self, client: TestClient):
        """An empty queue returns zero counts."""
        response = client.post("/api/queue/email/process", headers=SERVICE_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"processed": 0, "sent": 0, "failed": 0, "results": []}

    def test_process_email_queue(self, client: TestClient, db_session: Session, email_sender):
        """The email trigger sends due rows and reports each outcome."""
        record = enqueue_email(
            db_session, "user@example.com", "Hi", html="<p>Hi</p>", text="Hi"
        )

        response = client.post("/api/queue/email/process", headers=SERVICE_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] == 1
        assert body["sent"] == 1
        assert body["results"] == [
            {"id": str(record.id), "status": "sent", "to": "user@example.com",
             "provider_id": "re_123"}
        ]
        email_sender.send.assert_called_once()

    def test_store_unavailable_returns_503(self, client: TestClient, runner: QueueRunner):
        """A run-level store failure surfaces as 503."""
        email_worker = runner._workers[DeliveryChannel.EMAIL]
        email_worker.dispatcher = Mock()
        email_worker.dispatcher.fetch_batch.side_effect = StoreUnavailable("db down")

        response = client.post("/api/queue/email/process", headers=SERVICE_HEADERS)

        assert response.status_code == 503
        assert response.json()["detail"] == "db down"

    def test_composite_trigger(self, client: TestClient):
        """The composite trigger reports every channel."""
        response = client.post("/api/queue/process", headers=SERVICE_HEADERS)

        assert response.status_code == 200
        assert set(response.json()) == {"email", "push"}
        assert response.json()["push"]["processed"] == 0

    def test_composite_trigger_runs_every_channel_on_failure(
        self, client: TestClient, runner: QueueRunner
    ):
        """A failed email run does not stop the push run."""
        email_worker = runner._workers[DeliveryChannel.EMAIL]
        email_worker.dispatcher = Mock()
        email_worker.dispatcher.fetch_batch.side_effect = StoreUnavailable("db down")
        push_worker = runner._workers[DeliveryChannel.PUSH]
        push_worker.dispatcher = Mock()
        push_worker.dispatcher.fetch_batch.return_value = []

        response = client.post("/api/queue/process", headers=SERVICE_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["email"]["error"] == "db down"
        assert body["email"]["processed"] == 0
        assert body["push"] == {"processed": 0, "sent": 0, "failed": 0, "results": []}
        push_worker.dispatcher.fetch_batch.assert_called_once()

    def test_composite_trigger_all_channels_failed(
        self, client: TestClient, runner: QueueRunner
    ):
        """The composite trigger is a 503 only when every channel failed."""
        for worker in runner._workers.values():
            worker.dispatcher = Mock()
            worker.dispatcher.fetch_batch.side_effect = StoreUnavailable("db down")

        response = client.post("/api/queue/process", headers=SERVICE_HEADERS)

        assert response.status_code == 503
        assert response.json()["detail"] == "email: db down; push: db down"

    def test_retry_endpoint(self, client: TestClient, db_session: Session):
        """The retry endpoint requeues retryable failures."""
        db_session.add(DeliveryRecord(
            channel=DeliveryChannel.EMAIL,
            target="a@example.com",
            payload={},
            status=DeliveryStatus.FAILED,
            error_code="rate_limited",
            retry_count=1,
        ))
        db_session.commit()

        response = client.post("/api/queue/retry", headers=SERVICE_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"requeued": 1}

    def test_status_endpoint(self, client: TestClient, db_session: Session):
        """Queue status lists both channels."""
        enqueue_email(db_session, "a@example.com", "x")

        response = client.get("/api/queue/status", headers=SERVICE_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["email"][0]["status"] == "pending"
        assert body["email"][0]["count"] == 1
        assert body["push"] == []

    def test_cleanup_endpoint(self, client: TestClient):
        """Cleanup reports deletions per channel."""
        response = client.post("/api/queue/cleanup", headers=SERVICE_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"email": 0, "push": 0}


# ============================================================================
# Delivery Status Tests
# ============================================================================

class TestDeliveryStatusEndpoint:
    """Tests for /api/notifications/{id}/delivery-status."""

    def test_returns_channels(self, client: TestClient, db_session: Session):
        """Each channel's projection is returned."""
        notification_id = uuid4()
        db_session.add(NotificationDeliveryStatus(
            notification_id=notification_id,
            channel=DeliveryChannel.PUSH,
            status=DeliveryStatus.FAILED,
            error_message="Push subscription gone (410)",
        ))
        db_session.commit()

        response = client.get(
            f"/api/notifications/{notification_id}/delivery-status", headers=SERVICE_HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["notification_id"] == str(notification_id)
        assert body["channels"][0]["channel"] == "push"
        assert body["channels"][0]["status"] == "failed"


# ============================================================================
# Device Endpoint Tests
# ============================================================================

class TestDeviceEndpoints:
    """Tests for /api/devices endpoints."""

    def test_subscribe_and_list(self, client: TestClient):
        """A subscribed device appears in the user's list."""
        headers = _token(sub=str(uuid4()))

        response = client.post(
            "/api/devices/subscribe",
            headers=headers,
            json={"subscription": SUBSCRIPTION, "device_name": "Chrome"},
        )
        assert response.status_code == 201
        assert "credential" not in response.json()

        listed = client.get("/api/devices", headers=headers).json()
        assert listed["total"] == 1
        assert listed["devices"][0]["device_name"] == "Chrome"
        assert listed["devices"][0]["platform"] == "web"

    def test_subscribe_malformed(self, client: TestClient):
        """Malformed subscriptions are a 400."""
        response = client.post(
            "/api/devices/subscribe",
            headers=_token(sub=str(uuid4())),
            json={"subscription": {}},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid device token format: missing endpoint or keys"

    def test_unsubscribe(self, client: TestClient):
        """Unsubscribing by endpoint removes the device."""
        headers = _token(sub=str(uuid4()))
        client.post("/api/devices/subscribe", headers=headers, json={"subscription": SUBSCRIPTION})

        response = client.post(
            "/api/devices/unsubscribe", headers=headers, json={"endpoint": SUBSCRIPTION["endpoint"]}
        )

        assert response.json() == {"removed": 1}
        assert client.get("/api/devices", headers=headers).json()["total"] == 0

    def test_unsubscribe_all(self, client: TestClient):
        """DELETE /api/devices removes every device of the user."""
        headers = _token(sub=str(uuid4()))
        client.post("/api/devices/subscribe", headers=headers, json={"subscription": SUBSCRIPTION})

        response = client.delete("/api/devices", headers=headers)

        assert response.json() == {"removed": 1}

    def test_non_uuid_subject_rejected(self, client: TestClient):
        """Device endpoints need a user id in the sub claim."""
        response = client.get("/api/devices", headers=_token(role="service_role"))

        assert response.status_code == 401


# ============================================================================
# Push Configuration Tests
# ============================================================================

class TestVapidKeyEndpoint:
    """Tests for /api/push/vapid-key."""

    def test_configured_key(self, client: TestClient):
        """The configured public key is returned without authentication."""
        with patch("notifier.api.push.get_settings") as mock_settings:
            mock_settings.return_value.VAPID_PUBLIC_KEY = "BPublicKey"
            response = client.get("/api/push/vapid-key")

        assert response.status_code == 200
        assert response.json() == {"publicKey": "BPublicKey", "configured": True}

    def test_missing_key(self, client: TestClient):
        """Without a key the endpoint reports it as unconfigured."""
        with patch("notifier.api.push.get_settings") as mock_settings:
            mock_settings.return_value.VAPID_PUBLIC_KEY = ""
            response = client.get("/api/push/vapid-key")

        assert response.json() == {"publicKey": None, "configured": False}


def test_health(client: TestClient):
    """Health check endpoint."""
    response = client.get("/health")
    assert response.json() == {"status": "healthy"}


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


@pytest.fixture
def email_sender():
    """Email sender that accepts everything."""
    sender = Mock()
    sender.send.return_value = "re_123"
    return sender


@pytest.fixture
def runner(email_sender):
    """Queue runner with mocked transports."""
    return QueueRunner(
        workers=[
            EmailWorker(sender=email_sender, batch_size=10),
            PushWorker(sender=Mock(), batch_size=10),
        ],
        session_factory=Mock,
    )


@pytest.fixture
def client(db_session: Session, runner: QueueRunner):
    """Test client bound to the in-memory store and mocked runner."""
    app.dependency_overrides[get_db_session] = lambda: db_session
    app.dependency_overrides[get_runner] = lambda: runner

    with patch("notifier.api.deps.get_settings") as mock_settings:
        mock_settings.return_value.JWT_SECRET = SECRET
        mock_settings.return_value.JWT_ALGORITHM = "HS256"
        mock_settings.return_value.SERVICE_ROLE = "service_role"
        yield TestClient(app)

    app.dependency_overrides.clear()
