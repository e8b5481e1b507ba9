"""
Tests for the FastAPI endpoints.

Tests cover:
- Root and health endpoints
- Room state snapshot and prompt submission over HTTP
- HTTP status mapping for rejected submissions
- The listener WebSocket (snapshot, ping, submit_prompt RPC, broadcasts)
- Settings-driven apps (connection cap, security headers, CORS)
- 503 mapping when a room cannot be opened or has stopped
"""

from contextlib import contextmanager
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from vibe_server import __version__
from vibe_server.api.server import create_app
from vibe_server.config import ServerConfig
from vibe_server.core.coordinator import RoomCoordinator
from vibe_server.core.rooms import RoomManager
from vibe_server.db.errors import DatabaseOperationContext, DatabaseWriteError
from vibe_server.db.store import RoomStore

pytestmark = pytest.mark.api


def _receive_until(ws, kinds: set[str], limit: int = 20) -> dict[str, dict[str, Any]]:
    """Read JSON frames until one of each type in ``kinds`` has arrived."""
    seen: dict[str, dict[str, Any]] = {}
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] in kinds:
            seen.setdefault(frame["type"], frame)
        if kinds <= seen.keys():
            return seen
    raise AssertionError(f"did not receive {kinds - seen.keys()}")


# ============================================================================
# ROOT AND HEALTH
# ============================================================================


def test_root(test_client):
    response = test_client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Vibe Server API", "version": __version__}


def test_health_counts_active_rooms(test_client):
    assert test_client.get("/health").json() == {"status": "ok", "rooms": 0, "listeners": 0}

    test_client.get("/rooms/room/state")
    assert test_client.get("/health").json()["rooms"] == 1


def test_security_headers(test_client):
    response = test_client.get("/health")
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "challenges.cloudflare.com" in response.headers["Content-Security-Policy"]


# ============================================================================
# HTTP ROOM ENDPOINTS
# ============================================================================


def test_room_state(test_client):
    response = test_client.get("/rooms/room/state")
    assert response.status_code == 200
    data = response.json()
    assert data["state"]["tempo"] == 72
    assert data["state"]["instruments"] == ["pad", "pluck", "bass"]
    assert data["recentPrompts"] == []
    assert data["listenerCount"] == 0


def test_unknown_room_returns_404(test_client):
    assert test_client.get("/rooms/lobby/state").status_code == 404
    assert test_client.post("/rooms/lobby/prompts", json={"text": "rain"}).status_code == 404


def test_submit_prompt(test_client):
    response = test_client.post(
        "/rooms/room/prompts", json={"text": "a dark thunderstorm", "authorName": "Ada"}
    )
    assert response.status_code == 200
    prompt_id = response.json()["id"]

    prompts = test_client.get("/rooms/room/state").json()["recentPrompts"]
    assert prompt_id in [p["id"] for p in prompts]


def test_submit_prohibited_text_returns_400(test_client):
    response = test_client.post("/rooms/room/prompts", json={"text": "<script>alert(1)</script>"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Input contains prohibited content."


def test_submit_missing_text_returns_422(test_client):
    assert test_client.post("/rooms/room/prompts", json={}).status_code == 422


def test_submit_rate_limited_returns_429(test_client):
    for _ in range(3):
        assert test_client.post("/rooms/room/prompts", json={"text": "rain"}).status_code == 200

    response = test_client.post("/rooms/room/prompts", json={"text": "rain"})
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert response.json()["detail"] == "Rate limited. Try again in 60s"

    # A different forwarded address has its own quota.
    other = test_client.post(
        "/rooms/room/prompts", json={"text": "rain"}, headers={"CF-Connecting-IP": "9.9.9.9"}
    )
    assert other.status_code == 200


# ============================================================================
# WEBSOCKET
# ============================================================================


def test_websocket_snapshot_then_count(test_client):
    with test_client.websocket_connect("/rooms/room/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "vibe_state"
        assert first["state"]["key"] == "C"
        assert ws.receive_json() == {"type": "listener_count", "count": 1}

        with test_client.websocket_connect("/rooms/room/ws") as other:
            other.receive_json()
            other.receive_json()
            assert ws.receive_json() == {"type": "listener_count", "count": 2}

        assert ws.receive_json() == {"type": "listener_count", "count": 1}


def test_websocket_ping(test_client):
    with test_client.websocket_connect("/rooms/room/ws") as ws:
        ws.receive_json()
        ws.receive_json()
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_websocket_submit_prompt(test_client):
    with test_client.websocket_connect("/rooms/room/ws") as ws:
        ws.receive_json()
        ws.receive_json()
        ws.send_json(
            {"type": "submit_prompt", "requestId": "r1", "text": "a dark thunderstorm"}
        )

        frames = _receive_until(ws, {"rpc_result", "vibe_updated"})
        result = frames["rpc_result"]
        assert result["requestId"] == "r1"
        assert result["success"] is True

        update = frames["vibe_updated"]
        assert update["prompt"]["id"] == result["result"]["id"]
        assert update["state"]["tempo"] == 56


def test_websocket_submit_rejected(test_client):
    with test_client.websocket_connect("/rooms/room/ws") as ws:
        ws.receive_json()
        ws.receive_json()
        ws.send_json({"type": "submit_prompt", "requestId": 5, "text": "   "})
        assert ws.receive_json() == {
            "type": "rpc_result",
            "requestId": 5,
            "success": False,
            "error": "Text cannot be empty.",
        }

        ws.send_json({"type": "submit_prompt", "requestId": 6})
        reply = ws.receive_json()
        assert reply["success"] is False
        assert reply["error"] == "Invalid request."


def test_websocket_moderation_rejection_broadcast(test_client, fake_oracle):
    fake_oracle.moderation = "UNSAFE"
    with test_client.websocket_connect("/rooms/room/ws") as ws:
        ws.receive_json()
        ws.receive_json()
        ws.send_json({"type": "submit_prompt", "requestId": "r1", "text": "storm"})

        frames = _receive_until(ws, {"rpc_result", "prompt_rejected"})
        assert frames["prompt_rejected"]["error"] == "Content flagged by moderation."
        assert frames["prompt_rejected"]["promptId"] == frames["rpc_result"]["result"]["id"]

    assert test_client.get("/rooms/room/state").json()["recentPrompts"] == []


def test_websocket_unknown_room_closes_with_policy_violation(test_client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with test_client.websocket_connect("/rooms/lobby/ws") as ws:
            ws.receive_json()
    assert exc_info.value.code == 1008


# ============================================================================
# SETTINGS-DRIVEN APPS
# ============================================================================


@contextmanager
def _client_with(settings: ServerConfig, fake_oracle, clock):
    manager = RoomManager(settings, oracle=fake_oracle, clock=clock)
    with TestClient(create_app(manager)) as client:
        yield client


@pytest.fixture
def settings(temp_rooms_dir) -> ServerConfig:
    cfg = ServerConfig()
    cfg.database.rooms_dir = str(temp_rooms_dir)
    return cfg


def test_websocket_room_full_closes_1013(settings, fake_oracle, clock):
    settings.rooms.max_connections = 1
    with _client_with(settings, fake_oracle, clock) as client:
        with client.websocket_connect("/rooms/room/ws") as first:
            first.receive_json()
            first.receive_json()

            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/rooms/room/ws") as second:
                    second.receive_json()
            assert exc_info.value.code == 1013
            assert exc_info.value.reason == "Too many connections"

            assert client.get("/health").json()["listeners"] == 1


def test_app_reads_security_settings_from_manager(settings, fake_oracle, clock):
    settings.security.security_headers = False
    settings.security.cors_origins = ["https://vibes.example"]
    with _client_with(settings, fake_oracle, clock) as client:
        response = client.get("/health", headers={"Origin": "https://vibes.example"})
    assert "X-Frame-Options" not in response.headers
    assert response.headers["access-control-allow-origin"] == "https://vibes.example"


# ============================================================================
# UNAVAILABLE ROOMS
# ============================================================================


def test_storage_failure_opening_room_returns_503(test_client):
    error = DatabaseWriteError(context=DatabaseOperationContext(operation="schema.init_database"))
    with patch.object(RoomStore, "initialize", side_effect=error):
        assert test_client.get("/rooms/room/state").status_code == 503
        response = test_client.post("/rooms/room/prompts", json={"text": "rain"})
    assert response.status_code == 503
    assert response.json()["detail"] == "Room unavailable"


def test_stopped_room_submission_returns_503(test_client):
    with patch.object(
        RoomCoordinator, "submit_prompt", side_effect=RuntimeError("Room room stopped")
    ):
        response = test_client.post("/rooms/room/prompts", json={"text": "rain"})
    assert response.status_code == 503
    assert response.json()["detail"] == "Failed to submit your vibe. Try again."
