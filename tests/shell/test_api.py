"""Integration tests for API endpoints using Starlette TestClient."""

import asyncio
import logging

import pytest
from unittest.mock import MagicMock, patch
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from footprint.main import _stop_sender, create_app
from footprint.shell import mcp_server
from footprint.shell.auth import generate_api_key, hash_api_key
from footprint.shell.notifications import NotificationHub


@pytest.fixture
def mock_firestore(monkeypatch):
    """Mock Firestore client for testing."""
    for name in ("_firestore_client", "_auth_client", "_tracker"):
        monkeypatch.setattr(mcp_server, name, None)
    monkeypatch.setattr(mcp_server, "_notification_hub", NotificationHub())

    with patch("footprint.shell.firestore_client.firestore") as mock_fs:
        mock_client = MagicMock()
        mock_fs.Client.return_value = mock_client
        yield mock_client


@pytest.fixture
def client(mock_firestore):
    """Create test client with mocked Firestore."""
    app = create_app()
    return TestClient(app)


def user_lookup(mock_firestore, exists: bool) -> None:
    mock_firestore.collection.return_value.document.return_value.get.return_value.exists = exists


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_json(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "footprint-mcp"}


class TestRegisterEndpoint:
    """Tests for /auth/register endpoint."""

    def test_register_success(self, client, mock_firestore):
        """Successful registration returns API key."""
        mock_firestore.collection.return_value.where.return_value.limit.return_value.stream.return_value = []

        response = client.post(
            "/auth/register",
            json={"email": "test@example.com", "username": "greenrider"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["api_key"].startswith("fpt_")
        assert "message" in data

    def test_register_invalid_email(self, client):
        response = client.post("/auth/register", json={"email": "not-an-email", "username": "x"})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_register_missing_username(self, client):
        response = client.post("/auth/register", json={"email": "test@example.com", "username": "  "})
        assert response.status_code == 400
        assert response.json()["error"] == "Username is required"

    def test_register_taken_username(self, client, mock_firestore):
        mock_firestore.collection.return_value.where.return_value.limit.return_value.stream.return_value = [
            MagicMock()
        ]

        response = client.post(
            "/auth/register",
            json={"email": "test@example.com", "username": "greenrider"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Username is already taken"

    def test_register_storage_failure(self, client, mock_firestore):
        """Unexpected errors become a generic 500."""
        mock_firestore.collection.side_effect = RuntimeError("unavailable")

        response = client.post(
            "/auth/register",
            json={"email": "test@example.com", "username": "greenrider"}
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Registration failed."}


class TestValidateEndpoint:
    """Tests for /auth/validate endpoint."""

    def test_validate_missing_key(self, client):
        assert client.post("/auth/validate", json={}).json()["valid"] is False

    def test_validate_invalid_format(self, client):
        response = client.post("/auth/validate", json={"api_key": "invalid_key"})
        assert response.json()["valid"] is False

    def test_validate_nonexistent_key(self, client, mock_firestore):
        user_lookup(mock_firestore, exists=False)
        response = client.post("/auth/validate", json={"api_key": generate_api_key()})
        assert response.json()["valid"] is False

    def test_validate_existing_key(self, client, mock_firestore):
        user_lookup(mock_firestore, exists=True)
        response = client.post("/auth/validate", json={"api_key": generate_api_key()})
        assert response.json()["valid"] is True


class TestCORS:
    """Tests for CORS configuration."""

    def test_cors_preflight_localhost(self, client):
        """CORS preflight from the dev frontend is allowed by default."""
        response = client.options(
            "/auth/register",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "POST",
            }
        )
        assert response.status_code == 200
        assert response.headers.get("access-control-allow-origin") == "http://localhost:5173"

    def test_cors_origins_from_env(self, mock_firestore, monkeypatch):
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://footprint.example, https://admin.example")
        client = TestClient(create_app())

        response = client.get("/health", headers={"Origin": "https://admin.example"})

        assert response.headers.get("access-control-allow-origin") == "https://admin.example"

    def test_cors_unknown_origin(self, client):
        response = client.get("/health", headers={"Origin": "https://elsewhere.example"})
        assert "access-control-allow-origin" not in response.headers


class TestWeeklyInsightsTask:
    """Tests for /tasks/weekly-insights."""

    def test_not_configured(self, client, monkeypatch):
        monkeypatch.delenv("TASKS_TOKEN", raising=False)
        response = client.post("/tasks/weekly-insights")
        assert response.status_code == 503

    def test_wrong_token(self, client, monkeypatch):
        monkeypatch.setenv("TASKS_TOKEN", "s3cret")
        response = client.post("/tasks/weekly-insights", headers={"X-Task-Token": "guess"})
        assert response.status_code == 401

    def test_runs_batch(self, client, monkeypatch, store, tracker):
        """Active users are processed, idle users are skipped."""
        monkeypatch.setenv("TASKS_TOKEN", "s3cret")
        monkeypatch.setattr(mcp_server, "_tracker", tracker)
        store.add_user("user-a", "ada")
        store.add_user("user-b", "bob")
        tracker.log_activity("user-a", "Car Travel", "transport", 40, "km")

        response = client.post("/tasks/weekly-insights", headers={"X-Task-Token": "s3cret"})

        assert response.status_code == 200
        assert response.json() == {"processed": 1, "skipped": 1, "failed": 0}
        assert any(g.user_id == "user-a" for g in store.goals.values())


class TestNotificationsSocket:
    """Tests for the /ws notification channel."""

    def test_rejects_invalid_key(self, client):
        with client.websocket_connect("/ws", headers={"Authorization": "Bearer nope"}) as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_first_message_auth_and_delivery(self, client, mock_firestore):
        """A key sent as the first message subscribes the user to their events."""
        user_lookup(mock_firestore, exists=True)
        api_key = generate_api_key()
        user_id = hash_api_key(api_key)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"api_key": api_key})
            assert ws.receive_json() == {"event": "joined", "data": {"user_id": user_id}}

            hub = mcp_server.get_notification_hub()
            assert hub.subscriber_count(user_id) == 1
            hub.publish(user_id, "goal-deleted", {"goal_id": "g1"})

            assert ws.receive_json() == {"event": "goal-deleted", "data": {"goal_id": "g1"}}


class TestStopSender:
    """Tests for shutting down the per-connection forwarding task."""

    def test_running_sender_is_cancelled(self):
        async def scenario():
            sender = asyncio.create_task(asyncio.sleep(10))
            await asyncio.sleep(0)
            await _stop_sender(sender, "user-abcdefgh")
            return sender

        assert asyncio.run(scenario()).cancelled()

    def test_failed_delivery_is_logged(self, caplog):
        """A send error that already ended the task is collected and logged."""
        async def broken_send():
            raise RuntimeError("socket closed")

        async def scenario():
            sender = asyncio.create_task(broken_send())
            await asyncio.sleep(0)
            await _stop_sender(sender, "user-abcdefgh")
            return sender

        with caplog.at_level(logging.WARNING, logger="footprint.main"):
            sender = asyncio.run(scenario())

        assert sender.done() and not sender.cancelled()
        assert "Notification delivery to user-abc failed: socket closed" in caplog.text
