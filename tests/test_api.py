"""
test_api.py - HTTP surface

Endpoints:
- GET /health
- POST /upload
- POST /webhook/response/{messageId}
- GET /api/response/{messageId}
- GET /api/debug/messages
"""

import base64
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from core.config import settings
from services.message_service import MessageService
from services.message_store import MessageStore


def upload_text(client: TestClient, text: str = "hola") -> str:
    response = client.post("/upload", data={"description": text})
    assert response.status_code == 200
    return response.json()["data"]["messageId"]


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    def test_reports_connected_broker(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["rabbitmq"] == "connected"
        assert body["rabbitmqConnected"] is True
        assert body["timestamp"].endswith("Z")

    def test_reports_disconnected_broker(self, client, publisher):
        publisher.connected = False
        body = client.get("/health").json()

        assert body["rabbitmq"] == "disconnected"
        assert body["rabbitmqConnected"] is False

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"


# =============================================================================
# POST /upload
# =============================================================================


class TestUpload:
    def test_text_only(self, client, store: MessageStore, publisher):
        response = client.post("/upload", data={"description": "hola"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["hasImage"] is False
        assert data["description"] == "hola"
        assert store.contains(data["messageId"])

        # published after the response, with the callback URL embedding the ID
        assert len(publisher.published) == 1
        envelope = publisher.published[0]
        assert envelope.id == data["messageId"]
        assert envelope.webhook_url.endswith(f"/webhook/response/{data['messageId']}")

    def test_image_only(self, client, store: MessageStore, publisher, png_bytes: bytes):
        response = client.post(
            "/upload",
            files={"image": ("cat.png", png_bytes, "image/png")},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["hasImage"] is True
        assert data["description"] == ""

        envelope = publisher.published[0]
        assert envelope.metadata == {"filename": "cat.png", "size": len(png_bytes), "mimetype": "image/png"}
        assert envelope.content.image == "data:image/png;base64," + base64.b64encode(png_bytes).decode()

    def test_text_and_image(self, client, png_bytes: bytes):
        response = client.post(
            "/upload",
            data={"description": "mira"},
            files={"image": ("cat.png", png_bytes, "image/png")},
        )

        data = response.json()["data"]
        assert data["hasImage"] is True
        assert data["description"] == "mira"

    def test_ids_are_unique(self, client):
        ids = [upload_text(client, f"msg {i}") for i in range(20)]
        assert len(set(ids)) == 20

    def test_new_message_has_no_response_yet(self, client):
        message_id = upload_text(client)
        data = client.get(f"/api/response/{message_id}").json()["data"]

        assert data["hasResponse"] is False
        assert data["response"] is None

    def test_empty_submission_rejected(self, client, store: MessageStore, publisher):
        response = client.post("/upload", data={})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Description or image is required"}
        assert len(store) == 0
        assert publisher.published == []

    def test_non_image_rejected(self, client, store: MessageStore):
        response = client.post(
            "/upload",
            data={"description": "hola"},
            files={"image": ("notes.txt", b"plain text", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert len(store) == 0

    def test_oversize_image_rejected(self, client, store: MessageStore):
        too_big = b"\x00" * (settings.MAX_UPLOAD_BYTES + 1)
        response = client.post(
            "/upload",
            files={"image": ("big.png", too_big, "image/png")},
        )

        assert response.status_code == 400
        assert len(store) == 0

    def test_unexpected_read_error_is_json_500(self, client, store: MessageStore, publisher, png_bytes: bytes, monkeypatch):
        monkeypatch.setattr(MessageService, "read_image", AsyncMock(side_effect=RuntimeError("disk full")))

        response = client.post(
            "/upload",
            data={"description": "hola"},
            files={"image": ("cat.png", png_bytes, "image/png")},
        )

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to process message"}
        assert len(store) == 0
        assert publisher.published == []

    def test_accepted_when_broker_is_down(self, client, store: MessageStore, publisher):
        publisher.connected = False

        response = client.post("/upload", data={"description": "hola"})

        assert response.status_code == 200
        assert store.contains(response.json()["data"]["messageId"])
        assert client.get("/health").json()["rabbitmqConnected"] is False


# =============================================================================
# POST /webhook/response/{messageId}
# =============================================================================


class TestWebhook:
    def test_text_callback(self, client):
        message_id = upload_text(client)

        response = client.post(f"/webhook/response/{message_id}", data={"text": "listo"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Response received and stored",
            "messageId": message_id,
        }

    def test_default_text_when_empty(self, client):
        message_id = upload_text(client)
        client.post(f"/webhook/response/{message_id}", data={})

        data = client.get(f"/api/response/{message_id}").json()["data"]
        assert data["response"]["text"] == settings.DEFAULT_RESPONSE_TEXT

    def test_file_callback_any_media_type(self, client):
        message_id = upload_text(client)
        client.post(
            f"/webhook/response/{message_id}",
            data={"text": "aquí está"},
            files={"data": ("result.pdf", b"%PDF-1.4", "application/pdf")},
        )

        response = client.get(f"/api/response/{message_id}").json()["data"]["response"]
        assert response["text"] == "aquí está"
        assert response["image"] == "data:application/pdf;base64,JVBERi0xLjQ="

    def test_json_callback(self, client):
        message_id = upload_text(client)

        response = client.post(f"/webhook/response/{message_id}", json={"text": "listo"})

        assert response.status_code == 200
        data = client.get(f"/api/response/{message_id}").json()["data"]
        assert data["response"]["text"] == "listo"

    def test_malformed_json_callback(self, client):
        message_id = upload_text(client)

        response = client.post(
            f"/webhook/response/{message_id}",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert client.get(f"/api/response/{message_id}").json()["data"]["hasResponse"] is False

    def test_malformed_multipart_callback(self, client):
        message_id = upload_text(client)

        response = client.post(
            f"/webhook/response/{message_id}",
            content=b"garbage",
            headers={"content-type": "multipart/form-data"},
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert client.get(f"/api/response/{message_id}").json()["data"]["hasResponse"] is False

    def test_unknown_id_is_404_and_mutates_nothing(self, client, store: MessageStore):
        existing = upload_text(client)

        response = client.post("/webhook/response/never-issued", data={"text": "listo"})

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Message ID not found",
            "messageId": "never-issued",
        }
        assert len(store) == 1
        assert store.get(existing).has_response is False

    def test_second_callback_overwrites(self, client):
        message_id = upload_text(client)
        client.post(f"/webhook/response/{message_id}", data={"text": "first"})
        second = client.post(f"/webhook/response/{message_id}", data={"text": "second"})

        assert second.status_code == 200
        data = client.get(f"/api/response/{message_id}").json()["data"]
        assert data["response"]["text"] == "second"


# =============================================================================
# GET /api/response/{messageId}
# =============================================================================


class TestResolution:
    def test_unknown_id_is_404(self, client):
        response = client.get("/api/response/never-issued")

        assert response.status_code == 404
        assert response.json()["messageId"] == "never-issued"

    def test_idempotent_before_callback(self, client):
        message_id = upload_text(client)
        bodies = [client.get(f"/api/response/{message_id}").json() for _ in range(5)]

        assert all(body == bodies[0] for body in bodies)
        assert bodies[0]["data"]["hasResponse"] is False

    def test_idempotent_after_callback(self, client):
        message_id = upload_text(client)
        client.post(f"/webhook/response/{message_id}", data={"text": "listo"})

        bodies = [client.get(f"/api/response/{message_id}").json() for _ in range(5)]

        assert all(body == bodies[0] for body in bodies)
        data = bodies[0]["data"]
        assert data["hasResponse"] is True
        assert data["response"]["text"] == "listo"
        assert data["responseTimestamp"] is not None


# =============================================================================
# GET /api/debug/messages
# =============================================================================


class TestDebugMessages:
    def test_lists_entries_in_order(self, client):
        first = upload_text(client, "uno")
        second = upload_text(client, "dos")
        client.post(f"/webhook/response/{second}", data={"text": "listo"})

        body = client.get("/api/debug/messages").json()

        assert body["success"] is True
        assert body["totalMessages"] == 2
        assert [m["messageId"] for m in body["messages"]] == [first, second]
        assert [m["hasResponse"] for m in body["messages"]] == [False, True]
        assert body["messages"][0]["responseTimestamp"] is None

    def test_can_be_disabled(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ENABLE_DEBUG_ENDPOINTS", False)
        assert client.get("/api/debug/messages").status_code == 404


# =============================================================================
# Scenario
# =============================================================================


class TestRoundTrip:
    def test_hola_listo(self, client):
        message_id = upload_text(client, "hola")

        assert client.get(f"/api/response/{message_id}").json()["data"]["hasResponse"] is False

        callback = client.post(f"/webhook/response/{message_id}", data={"text": "listo"})
        assert callback.json()["success"] is True

        data = client.get(f"/api/response/{message_id}").json()["data"]
        assert data["hasResponse"] is True
        assert data["response"]["text"] == "listo"


@pytest.mark.parametrize("path", ["/api/response/x", "/api/debug/messages"])
def test_read_endpoints_do_not_publish(client, publisher, path):
    client.get(path)
    assert publisher.published == []
