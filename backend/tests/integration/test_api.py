"""Integration tests for the HTTP and WebSocket surface

Runs the full application (lifespan included, so the SMTP listener binds
an ephemeral port) through Starlette's TestClient.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from tempmail.channels import INVALID_MAILBOX, NORMAL_CLOSURE
from tempmail.lifecycle import Mailroom
from tempmail.main import create_app


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mailroom(app) -> Mailroom:
    return app.state.mailroom


class TestGenerateEmail:
    """Integration tests for POST /api/email/generate"""

    def test_generate_with_prefix(self, client):
        before_ms = int(time.time() * 1000)

        response = client.post("/api/email/generate", json={"prefix": "test1"})

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "test1@example.com"
        expected = before_ms + 60 * 60 * 1000
        assert expected - 1000 <= data["expiresAt"] <= expected + 5000

    def test_generate_random(self, client):
        response = client.post("/api/email/generate")

        assert response.status_code == 200
        local, domain = response.json()["email"].split("@")
        assert domain == "example.com"
        assert len(local) == 12

    def test_generate_with_null_prefix(self, client):
        response = client.post("/api/email/generate", json={"prefix": None})
        assert response.status_code == 200

    @pytest.mark.parametrize("prefix", ["bad prefix!", "", "x" * 33])
    def test_invalid_prefix(self, client, mailroom, prefix):
        response = client.post("/api/email/generate", json={"prefix": prefix})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert len(mailroom.directory) == 0

    def test_reserved_prefix(self, client):
        response = client.post("/api/email/generate", json={"prefix": "Admin"})

        assert response.status_code == 400
        assert "reserved" in response.json()["error"]

    def test_malformed_body(self, client):
        response = client.post("/api/email/generate", json={"prefix": 42})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestGetEmail:
    def test_live_mailbox(self, client):
        created = client.post("/api/email/generate", json={"prefix": "reader"}).json()

        response = client.get("/api/email/reader@example.com")

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "reader@example.com"
        assert data["expiresAt"] == created["expiresAt"]
        assert data["createdAt"] < data["expiresAt"]

    def test_unknown_mailbox(self, client):
        response = client.get("/api/email/nobody@example.com")

        assert response.status_code == 404
        assert response.json() == {"error": "Email not found or expired", "code": "NOT_FOUND"}


class TestStatsAndHealth:
    def test_stats(self, client, mailroom):
        client.post("/api/email/generate", json={"prefix": "one"})
        client.post("/api/email/generate", json={"prefix": "two"})
        mailroom.directory.record_message("one@example.com")

        response = client.get("/api/stats")

        assert response.status_code == 200
        assert response.json() == {
            "totalEmailsCreated": 2,
            "totalMessagesReceived": 1,
            "activeEmails": 2,
            "activeConnections": 0,
        }

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["domain"] == "example.com"
        assert data["uptime"] >= 0

    def test_request_id_header(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_metrics(self, client):
        client.post("/api/email/generate", json={"prefix": "metered"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "tempmail_mailboxes_created_total" in response.text

    def test_smtp_listener_started(self, client, mailroom):
        assert mailroom.smtp_port is not None
        assert mailroom.smtp_port > 0


class TestRateLimiting:
    @pytest.fixture
    def strict_client(self, settings):
        strict = settings.model_copy(update={"RATE_LIMIT_GENERATE_MAX": 2})
        with TestClient(create_app(strict)) as test_client:
            yield test_client

    def test_generate_limit(self, strict_client):
        for _ in range(2):
            assert strict_client.post("/api/email/generate").status_code == 200

        response = strict_client.post("/api/email/generate")

        assert response.status_code == 429
        data = response.json()
        assert data["code"] == "RATE_LIMIT_EXCEEDED"
        assert 1 <= data["retryAfter"] <= 60
        assert response.headers["Retry-After"] == str(data["retryAfter"])

    def test_generate_limit_does_not_affect_other_routes(self, strict_client):
        for _ in range(3):
            strict_client.post("/api/email/generate")

        assert strict_client.get("/api/stats").status_code == 200


class TestWebSocket:
    """Integration tests for the /ws notification channel"""

    def test_connected_event(self, client, mailroom):
        created = client.post("/api/email/generate", json={"prefix": "live"}).json()

        with client.websocket_connect("/ws?email=live@example.com") as websocket:
            event = websocket.receive_json()

            assert event == {
                "type": "connected",
                "email": "live@example.com",
                "expiresAt": created["expiresAt"],
            }
            assert mailroom.registry.lookup("live@example.com") is not None
            assert client.get("/api/stats").json()["activeConnections"] == 1

    def test_binding_released_on_disconnect(self, client, mailroom):
        client.post("/api/email/generate", json={"prefix": "brief"})

        with client.websocket_connect("/ws?email=brief@example.com") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "pong"})

        # The handler's cleanup runs after the client closes
        for _ in range(50):
            if mailroom.registry.lookup("brief@example.com") is None:
                break
            time.sleep(0.01)
        assert mailroom.registry.lookup("brief@example.com") is None

    @pytest.mark.parametrize("query", ["?email=nobody@example.com", "?email=", ""])
    def test_invalid_email_closes_with_4000(self, client, query):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws{query}") as websocket:
                websocket.receive_json()

        assert exc_info.value.code == INVALID_MAILBOX

    def test_new_connection_replaces_previous(self, client, mailroom):
        client.post("/api/email/generate", json={"prefix": "twice"})

        with client.websocket_connect("/ws?email=twice@example.com") as first:
            first.receive_json()
            first_channel = mailroom.registry.lookup("twice@example.com")
            with client.websocket_connect("/ws?email=twice@example.com") as second:
                second.receive_json()
                assert mailroom.registry.lookup("twice@example.com") is not first_channel


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_closes_channels_and_tasks(self, settings, channel_factory):
        mailroom = Mailroom(settings)
        await mailroom.start()
        channel = channel_factory("bye@example.com")
        mailroom.registry.bind("bye@example.com", channel)

        await mailroom.shutdown()

        assert channel.close_code == NORMAL_CLOSURE
        assert channel.close_reason == "Server shutting down"
        assert len(mailroom.registry) == 0
        assert not mailroom.sweep_task.running
        assert not mailroom.heartbeat_task.running
        assert not mailroom.smtp_server.is_serving()

    @pytest.mark.asyncio
    async def test_stalled_shutdown_is_bounded(self, settings, channel_factory):
        fast = settings.model_copy(update={"SHUTDOWN_TIMEOUT": 0.05})
        mailroom = Mailroom(fast)
        await mailroom.start()

        class StuckChannel(type(channel_factory())):
            async def close(self, code=1000, reason=""):
                await asyncio.sleep(10)

        mailroom.registry.bind("stuck@example.com", StuckChannel("stuck@example.com"))

        started = time.monotonic()
        await mailroom.shutdown()

        assert time.monotonic() - started < 2
        # Timed-out shutdown leaves background tasks to process teardown
        await mailroom.sweep_task.stop()
        await mailroom.heartbeat_task.stop()
        await mailroom.purge_task.stop()
