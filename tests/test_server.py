"""Tests for the FastAPI server."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.config import AppConfig, PathsConfig, PersistenceConfig
from src.protocol.messages import create_player_info, create_roll_request
from src.web import server


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client with snapshots in a temporary database."""
    config = AppConfig(
        paths=PathsConfig(saves=tmp_path, database=tmp_path / "rooms.db"),
        persistence=PersistenceConfig(debounce_ms=0),
    )
    monkeypatch.setattr(server, "get_config", lambda: config)
    with TestClient(server.app) as test_client:
        yield test_client
    server.room_registry.rooms.clear()


def open_room(client, name="table1", **extra):
    response = client.post("/api/rooms", json={"room_name": name, **extra})
    assert response.status_code == 200
    return response.json()


def receive_until(ws, kind):
    """Read messages until one of the given type arrives."""
    for _ in range(20):
        message = ws.receive_json()
        if message["type"] == kind:
            return message
    raise AssertionError(f"No {kind} received")


class TestRoomEndpoints:
    """Test the host REST API."""

    def test_status(self, client):
        response = client.get("/api/status")
        assert response.status_code == 200
        assert response.json()["status"] == "online"

    def test_open_room(self, client):
        data = open_room(client, host_nick="Keeper")
        assert data["room_name"] == "table1"
        assert data["host_key"]
        assert data["restored"] is False

        summary = client.get("/api/rooms/table1").json()
        assert summary["host_nick"] == "Keeper"
        assert [r["room_name"] for r in client.get("/api/rooms").json()["rooms"]] == ["table1"]

    def test_duplicate_room(self, client):
        open_room(client)
        response = client.post("/api/rooms", json={"room_name": "table1"})
        assert response.status_code == 409

    def test_unknown_room(self, client):
        assert client.get("/api/rooms/nowhere").status_code == 404
        assert client.get("/api/rooms/nowhere/state", headers={"X-Host-Key": "x"}).status_code == 404

    def test_host_key_required(self, client):
        open_room(client)
        assert client.get("/api/rooms/table1/state").status_code == 403
        assert client.get("/api/rooms/table1/state", headers={"X-Host-Key": "wrong"}).status_code == 403

    def test_host_roll(self, client):
        key = open_room(client)["host_key"]
        headers = {"X-Host-Key": key}
        response = client.post(
            "/api/rooms/table1/roll",
            json={"dice": [{"sides": 20, "count": 2}]},
            headers=headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert 2 <= data["total"] <= 40
        assert len(data["dice"][0]["results"]) == 2

        state = client.get("/api/rooms/table1/state", headers=headers).json()["state"]
        assert state["hostTable"][0]["total"] == data["total"]

    def test_host_roll_limits(self, client):
        key = open_room(client)["host_key"]
        response = client.post(
            "/api/rooms/table1/roll",
            json={"dice": [{"sides": 20, "count": 101}]},
            headers={"X-Host-Key": key},
        )
        assert response.status_code == 422

    def test_host_roll_notation(self, client):
        key = open_room(client)["host_key"]
        response = client.post(
            "/api/rooms/table1/roll",
            json={"notation": "2d6 + 1D4"},
            headers={"X-Host-Key": key},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["notation"] == "2d6 + 1d4"
        assert [(g["count"], g["sides"]) for g in data["dice"]] == [(2, 6), (1, 4)]
        assert 3 <= data["total"] <= 16

    def test_host_roll_bad_notation(self, client):
        key = open_room(client)["host_key"]
        headers = {"X-Host-Key": key}
        for notation in ("1d20+5", "101d6", ""):
            response = client.post("/api/rooms/table1/roll", json={"notation": notation}, headers=headers)
            assert response.status_code == 422, notation
        assert client.post("/api/rooms/table1/roll", json={}, headers=headers).status_code == 422

    def test_host_roll_criticals(self, client):
        key = open_room(client)["host_key"]
        headers = {"X-Host-Key": key}
        client.put("/api/rooms/table1/settings", json={"crit_hit": 2}, headers=headers)
        data = client.post("/api/rooms/table1/roll", json={"notation": "3d20"}, headers=headers).json()
        results = data["dice"][0]["results"]
        # With crit_hit 2 every d20 face is either a hit or a natural 1
        assert data["crit_hits"] == sum(1 for r in results if r >= 2)
        assert data["crit_fails"] == results.count(1)
        assert data["crit_hits"] + data["crit_fails"] == 3

    def test_settings(self, client):
        key = open_room(client)["host_key"]
        response = client.put("/api/rooms/table1/settings", json={"crit_hit": 19}, headers={"X-Host-Key": key})
        assert response.json()["crit_hit"] == 19
        assert response.json()["crit_fail"] == 1

    def test_kick_unknown(self, client):
        key = open_room(client)["host_key"]
        assert client.post("/api/rooms/table1/kick/ghost", headers={"X-Host-Key": key}).status_code == 404

    def test_close_forgets(self, client):
        key = open_room(client)["host_key"]
        assert client.delete("/api/rooms/table1", headers={"X-Host-Key": key}).status_code == 200
        assert client.get("/api/rooms/table1").status_code == 404
        assert client.get("/api/saves").json()["saves"] == []

    def test_restore_saved_room(self, client):
        key = open_room(client)["host_key"]
        client.post("/api/rooms/table1/roll", json={"dice": [{"sides": 6, "count": 1}]}, headers={"X-Host-Key": key})
        server.room_registry.close_room("table1", forget=False)

        data = open_room(client)
        assert data["restored"] is True
        state = client.get("/api/rooms/table1/state", headers={"X-Host-Key": data["host_key"]}).json()["state"]
        assert len(state["history"]) == 1

    def test_start_fresh(self, client):
        key = open_room(client)["host_key"]
        client.post("/api/rooms/table1/roll", json={"dice": [{"sides": 6, "count": 1}]}, headers={"X-Host-Key": key})
        server.room_registry.close_room("table1", forget=False)

        data = open_room(client, restore=False)
        assert data["restored"] is False
        state = client.get("/api/rooms/table1/state", headers={"X-Host-Key": data["host_key"]}).json()["state"]
        assert state["history"] == []


class TestWebSocket:
    """Test players connecting over WebSocket."""

    def test_unknown_room(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/nowhere") as ws:
                ws.receive_json()

    def test_join_and_roll(self, client):
        key = open_room(client)["host_key"]
        with client.websocket_connect("/ws/table1") as ws:
            ws.send_json(create_player_info("Alice"))
            sync = ws.receive_json()
            assert sync["type"] == "STATE_SYNC"
            assert sync["state"]["roomName"] == "table1"
            player_id = sync["playerId"]

            ws.send_json(create_roll_request([{"sides": 20, "count": 1}]))
            result = receive_until(ws, "ROLL_RESULT")
            assert result["playerId"] == player_id
            assert result["nick"] == "Alice"
            assert 1 <= result["total"] <= 20

        state = client.get("/api/rooms/table1/state", headers={"X-Host-Key": key}).json()["state"]
        assert state["players"][player_id]["nick"] == "Alice"
        assert state["history"][0]["total"] == result["total"]

    def test_nick_taken(self, client):
        open_room(client, host_nick="Keeper")
        with client.websocket_connect("/ws/table1") as ws:
            ws.send_json(create_player_info("Keeper"))
            assert ws.receive_json()["type"] == "NICK_TAKEN"

    def test_invalid_message_ignored(self, client):
        open_room(client)
        with client.websocket_connect("/ws/table1") as ws:
            ws.send_text("not json")
            ws.send_json({"type": "PING"})
            assert ws.receive_json() == {"type": "PONG"}
