"""
HTTP API tests for the chat room service.
"""
import base64

import pytest
from fastapi.testclient import TestClient

from chatroom.core.errors import StoreUnavailable
from chatroom.core.metrics import get_chat_event_count
from chatroom.main import create_app
from tests.conftest import FakeClock, get_test_settings


def post_message(client, sender="alice", body="hi", **extra):
    return client.post("/api/messages", json={"sender": sender, "body": body, **extra})


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_liveness_always_returns_ok(self, client):
        """GET /health/live should always return 200."""
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_readiness_returns_ok_with_memory_store(self, client):
        """GET /health/ready should return 200 when the store is reachable."""
        response = client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["checks"]["message_store"] == "ok"
        assert data["checks"]["connections"] == 0

    def test_readiness_fails_when_store_is_down(self, client, chat, monkeypatch):
        monkeypatch.setattr(chat.store, "is_available", lambda: False)
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["checks"]["message_store"] == "failed"


class TestPostMessage:
    """Tests for POST /api/messages."""

    def test_post_returns_created_message(self, client):
        response = post_message(client)
        assert response.status_code == 201
        data = response.json()
        assert data["id"]
        assert data["sender"] == "alice"
        assert data["body"] == "hi"
        assert data["kind"] == "text"
        assert data["attachment"] is None
        assert data["created_at"]

    def test_rate_limit_scenario(self, client, clock):
        """Second send inside the cooldown is 429, after it elapses it is accepted."""
        assert post_message(client, body="hi").status_code == 201

        clock.advance(0.5)
        rejected = post_message(client, body="hi again")
        assert rejected.status_code == 429
        assert rejected.json()["code"] == "rate_limited"
        assert "Retry-After" in rejected.headers

        clock.advance(0.6)
        accepted = post_message(client, body="hi again")
        assert accepted.status_code == 201
        assert [m["body"] for m in client.get("/api/messages").json()] == ["hi", "hi again"]

    def test_rate_limit_is_per_sender(self, client):
        assert post_message(client, sender="alice").status_code == 201
        assert post_message(client, sender="bob").status_code == 201

    @pytest.mark.parametrize("payload", [
        {"sender": "a", "body": "hi"},
        {"sender": "x" * 21, "body": "hi"},
        {"sender": "al ice", "body": "hi"},
        {"sender": "alice", "body": "x" * 501},
        {"body": "hi"},
        {"sender": "alice", "body": "hi", "kind": "image"},
        {"sender": "alice", "body": "hi", "kind": "video"},
    ])
    def test_validation_errors_are_400(self, client, payload):
        response = client.post("/api/messages", json=payload)
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert client.get("/api/messages").json() == []

    def test_validation_failure_does_not_charge_cooldown(self, client):
        assert post_message(client, body="x" * 501).status_code == 400
        assert post_message(client, body="ok").status_code == 201

    def test_store_failure_is_500_and_does_not_charge_cooldown(self, client, chat, monkeypatch):
        def broken_append(*args, **kwargs):
            raise StoreUnavailable("Failed to store message")

        monkeypatch.setattr(chat.store, "append", broken_append)
        response = post_message(client)
        assert response.status_code == 500
        assert response.json()["code"] == "store_unavailable"
        assert "alice" not in chat.rate_limiter

    def test_attachment_message_via_json(self, client):
        response = post_message(
            client,
            body="cat.png",
            kind="image",
            attachment={"url": "https://files.example/cat.png", "filename": "cat.png", "size": "1.2 KB"},
        )
        assert response.status_code == 201
        assert response.json()["attachment"]["filename"] == "cat.png"

    def test_attachment_via_json_is_bounded_like_an_upload(self):
        app = create_app(get_test_settings(max_upload_bytes=1024), clock=FakeClock())
        with TestClient(app) as client:
            too_big = "data:image/png;base64," + "A" * 200_000
            response = post_message(
                client,
                body="big.png",
                kind="image",
                attachment={"url": too_big, "filename": "big.png", "size": "146 KB"},
            )
            assert response.status_code == 400
            assert response.json()["code"] == "attachment_too_large"
            assert client.get("/api/messages").json() == []
            assert "alice" not in app.state.chat.rate_limiter

            at_ceiling = "data:image/png;base64," + base64.b64encode(b"x" * 1024).decode()
            response = post_message(
                client,
                body="ok.png",
                kind="image",
                attachment={"url": at_ceiling, "filename": "ok.png", "size": "1 KB"},
            )
            assert response.status_code == 201

    @pytest.mark.parametrize("size", ["huge", "", "12", "1.5 TB", "1e3 KB"])
    def test_attachment_size_must_be_human_readable(self, client, size):
        response = post_message(
            client,
            body="doc.pdf",
            kind="file",
            attachment={"url": "https://files.example/doc.pdf", "filename": "doc.pdf", "size": size},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"


class TestRecentMessages:
    """Tests for GET /api/messages."""

    def _create_messages(self, client, clock, count: int = 5):
        """Helper to create test messages."""
        for i in range(count):
            assert post_message(client, sender=f"user{i % 3}", body=f"Message {i}").status_code == 201
            clock.advance(1.0)

    def test_empty_list(self, client):
        response = client.get("/api/messages")
        assert response.status_code == 200
        assert response.json() == []

    def test_default_limit_is_50(self, client, clock):
        self._create_messages(client, clock, 55)
        data = client.get("/api/messages").json()
        assert len(data) == 50
        assert data[-1]["body"] == "Message 54"

    def test_limit(self, client, clock):
        self._create_messages(client, clock, 5)
        data = client.get("/api/messages?limit=2").json()
        assert [m["body"] for m in data] == ["Message 3", "Message 4"]

    def test_limit_bounds(self, client):
        assert client.get("/api/messages?limit=0").status_code == 400
        assert client.get("/api/messages?limit=1001").status_code == 400

    def test_ordering(self, client, clock):
        self._create_messages(client, clock, 5)
        data = client.get("/api/messages").json()
        timestamps = [m["created_at"] for m in data]
        assert timestamps == sorted(timestamps)
        assert [m["body"] for m in data] == [f"Message {i}" for i in range(5)]


class TestRetention:

    def test_oldest_message_is_evicted(self):
        clock = FakeClock()
        app = create_app(get_test_settings(message_retention=3), clock=clock)
        with TestClient(app) as client:
            for i in range(4):
                assert post_message(client, body=f"m{i}").status_code == 201
                clock.advance(1.0)

            data = client.get("/api/messages?limit=50").json()
            assert [m["body"] for m in data] == ["m1", "m2", "m3"]

            everything = client.get("/api/messages/poll", params={"after": "1970-01-01T00:00:00Z"}).json()
            assert "m0" not in [m["body"] for m in everything]


class TestPollMessages:
    """Tests for GET /api/messages/poll."""

    def test_poll_is_strictly_after_cursor(self, client, clock):
        sent = []
        for body in ["one", "two", "three"]:
            sent.append(post_message(client, body=body).json())
            clock.advance(1.0)

        response = client.get("/api/messages/poll", params={"after": sent[0]["created_at"]})
        assert response.status_code == 200
        assert [m["id"] for m in response.json()] == [sent[1]["id"], sent[2]["id"]]

        response = client.get("/api/messages/poll", params={"after": sent[2]["created_at"]})
        assert response.json() == []

    def test_poll_requires_cursor(self, client):
        response = client.get("/api/messages/poll")
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_poll_rejects_unparseable_cursor(self, client):
        response = client.get("/api/messages/poll", params={"after": "yesterday-ish"})
        assert response.status_code == 400


class TestValidateUsername:
    """Tests for POST /api/validate-username."""

    def test_valid_name(self, client):
        response = client.post("/api/validate-username", json={"name": "  alice_1 "})
        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["name"] == "alice_1"

    @pytest.mark.parametrize("name", [None, "", "   ", "a", "x" * 21, "al ice", "bob-2", "émile"])
    def test_invalid_names(self, client, name):
        response = client.post("/api/validate-username", json={"name": name})
        assert response.status_code == 400
        assert response.json()["detail"]


class TestUploadEndpoint:
    """Tests for POST /api/upload."""

    PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24

    def test_image_upload_creates_image_message(self, client):
        response = client.post(
            "/api/upload",
            data={"sender": "alice"},
            files={"file": ("cat.png", self.PNG, "image/png")},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["kind"] == "image"
        assert data["body"] == "cat.png"
        assert data["attachment"]["filename"] == "cat.png"
        assert data["attachment"]["size"] == "32 Bytes"
        assert data["attachment"]["url"] == "data:image/png;base64," + base64.b64encode(self.PNG).decode()

    def test_document_upload_creates_file_message(self, client):
        response = client.post(
            "/api/upload",
            data={"sender": "alice"},
            files={"file": ("notes.txt", b"hello" * 400, "text/plain")},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["kind"] == "file"
        assert data["attachment"]["size"] == "1.95 KB"

    def test_oversize_upload_is_rejected(self):
        app = create_app(get_test_settings(max_upload_bytes=1024), clock=FakeClock())
        with TestClient(app) as client:
            response = client.post(
                "/api/upload",
                data={"sender": "alice"},
                files={"file": ("big.pdf", b"x" * 2048, "application/pdf")},
            )
            assert response.status_code == 400
            assert response.json()["code"] == "attachment_too_large"
            assert client.get("/api/messages").json() == []

    @pytest.mark.parametrize("filename,content_type", [
        ("run.exe", "application/octet-stream"),
        ("noextension", "image/png"),
        ("fake.png", "application/x-msdownload"),
    ])
    def test_disallowed_type_is_rejected(self, client, filename, content_type):
        response = client.post(
            "/api/upload",
            data={"sender": "alice"},
            files={"file": (filename, b"MZ", content_type)},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "attachment_type_rejected"
        assert client.get("/api/messages").json() == []
        assert get_chat_event_count("upload_rejected") == 1

    def test_upload_requires_sender(self, client):
        response = client.post("/api/upload", files={"file": ("cat.png", self.PNG, "image/png")})
        assert response.status_code == 400

    def test_upload_requires_file(self, client):
        response = client.post("/api/upload", data={"sender": "alice"})
        assert response.status_code == 400

    def test_upload_is_rate_limited(self, client):
        assert post_message(client).status_code == 201
        response = client.post(
            "/api/upload",
            data={"sender": "alice"},
            files={"file": ("cat.png", self.PNG, "image/png")},
        )
        assert response.status_code == 429


class TestPresenceEndpoint:

    def test_presence_counts_live_connections(self, client):
        assert client.get("/api/presence").json() == {"online": 0, "names": []}

        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"event": "join_chat", "data": "alice"})
            # Round trip through an invalid frame so the join has been handled
            ws.send_json({"event": "bogus"})
            assert ws.receive_json()["event"] == "error"

            assert client.get("/api/presence").json() == {"online": 1, "names": ["alice"]}


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    def test_metrics_returns_prometheus_format(self, client):
        """GET /metrics returns Prometheus format."""
        post_message(client)
        post_message(client)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]

        content = response.text
        assert "http_requests_total" in content
        assert 'chat_events_total{event="message_accepted"} 1' in content
        assert 'chat_events_total{event="rate_limited"} 1' in content
        assert "chat_connections 0" in content
