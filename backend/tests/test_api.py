"""API endpoint tests using FastAPI TestClient."""
import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient
from main import app
from socket_manager import socket_manager


@pytest.fixture(autouse=True)
def clear_state():
    """Clear in-memory state before each test."""
    socket_manager.reset()
    yield
    socket_manager.reset()


client = TestClient(app)


# ---------------------------------------------------------------------------
# Health & Root
# ---------------------------------------------------------------------------

class TestHealthEndpoints:
    def test_root(self):
        res = client.get("/")
        assert res.status_code == 200
        assert "running" in res.json()["message"].lower()

    def test_health(self):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json() == {"status": "healthy", "rooms": 0}

    def test_health_counts_rooms(self):
        socket_manager.registry.create("host-1", "Quinn", "Finals", 2)
        res = client.get("/health")
        assert res.json()["rooms"] == 1


# ---------------------------------------------------------------------------
# Room snapshot
# ---------------------------------------------------------------------------

class TestRoomSnapshot:
    def test_unknown_room(self):
        res = client.get("/rooms/NOPE00")
        assert res.status_code == 404
        assert res.json()["detail"] == "Room not found"

    def test_snapshot_of_new_room(self):
        room = socket_manager.registry.create("host-1", "Quinn", "Finals", 4)
        res = client.get(f"/rooms/{room.code.lower()}")
        assert res.status_code == 200
        data = res.json()
        assert data["code"] == room.code
        assert data["room_name"] == "Finals"
        assert data["phase"] == "lobby"
        assert len(data["teams"]) == 4
        assert data["buzz"] == {"locked": False}
        assert data["ledger"] == {"tossup_number": 0, "rows": []}
        assert data["tossup_locked_teams"] == []

    def test_snapshot_is_read_only(self):
        room = socket_manager.registry.create("host-1", "Quinn", "Finals", 2)
        client.get(f"/rooms/{room.code}")
        client.get(f"/rooms/{room.code}")
        assert room.revision == 0

    def test_cors_allows_get_only(self):
        res = client.options(
            "/rooms/NOPE00",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
        )
        assert res.status_code == 400
