"""Tests for the snapshot schema."""

import json

from conftest import make_record

from src.room.models import HOST_ID, Visibility
from src.room.snapshot import SNAPSHOT_VERSION, apply_snapshot_defaults, deserialize, serialize


class TestSerialize:
    """Test the wire form of a room."""

    def test_camel_case_keys(self, store):
        store.add_participant("p1", "Alice", "builtin:1")
        store.append_roll("p1", make_record("p1", "Alice", ((20, (17,)),), timestamp=1234))
        data = serialize(store.room)

        assert data["version"] == SNAPSHOT_VERSION
        assert data["roomName"] == "table1"
        assert data["hostNick"] == "DM"
        assert data["hostTable"] == []
        assert data["players"]["p1"]["avatarData"] == "builtin:1"
        assert data["settings"]["critHit"] == 20

        entry = data["players"]["p1"]["table"][0]
        assert entry == {
            "playerId": "p1",
            "nick": "Alice",
            "dice": [{"sides": 20, "count": 1, "results": [17]}],
            "total": 17,
            "visibility": "PUBLIC",
            "targets": [],
            "timestamp": 1234,
        }
        assert data["history"] == [entry]

    def test_json_safe(self, store):
        store.append_host_roll(make_record(HOST_ID, "DM", visibility=Visibility.TARGETED, targets=["p1"]), False)
        text = json.dumps(serialize(store.room))
        room = deserialize(text)
        assert room.host_table.targets == ["p1"]
        assert room.history[0].targets == ("p1",)


class TestDefaults:
    """Test default merging on load."""

    def test_minimal(self):
        room = deserialize({"roomName": "table1"})
        assert room.room_name == "table1"
        assert room.host_nick == "DM"
        assert room.participants == {}
        assert room.history == []
        assert room.host_table is None
        assert room.settings.crit_hit == 20
        assert room.created_at > 0

    def test_null_collections(self):
        room = deserialize({"roomName": "t", "players": None, "history": None, "hostTable": None})
        assert room.participants == {}
        assert room.history == []

    def test_partial_settings(self):
        room = deserialize({"roomName": "t", "settings": {"critHit": 19}})
        assert room.settings.crit_hit == 19
        assert room.settings.crit_fail == 1
        assert room.settings.autoclear_seconds == 0

    def test_legacy_keys(self):
        room = deserialize(
            {
                "roomName": "t",
                "dmNick": "Keeper",
                "dmAvatar": "builtin:7",
                "dmTable": [{"playerId": "dm", "nick": "Keeper", "dice": [{"sides": 6, "count": 1, "results": [4]}], "total": 4}],
            }
        )
        assert room.host_nick == "Keeper"
        assert room.host_avatar == "builtin:7"
        assert room.host_table.total == 4

    def test_current_key_beats_legacy(self):
        merged = apply_snapshot_defaults({"roomName": "t", "dmNick": "Old", "hostNick": "New"})
        assert merged["hostNick"] == "New"
        assert "dmNick" not in merged

    def test_input_not_mutated(self):
        data = {"roomName": "t", "dmNick": "Old"}
        apply_snapshot_defaults(data)
        assert data == {"roomName": "t", "dmNick": "Old"}

    def test_participant_defaults(self):
        room = deserialize({"roomName": "t", "players": {"p1": {"nick": "Alice"}}})
        alice = room.participants["p1"]
        assert alice.nickname == "Alice"
        assert alice.table is None
        assert not alice.connected
        assert not alice.autoclear

    def test_unknown_keys_ignored(self):
        room = deserialize({"roomName": "t", "theme": "dark", "settings": {"sound": True}})
        assert room is not None

    def test_newer_version_loads(self):
        room = deserialize({"roomName": "t", "version": SNAPSHOT_VERSION + 1})
        assert room.room_name == "t"


class TestInvalid:
    """Unusable snapshots come back as None."""

    def test_bad_json(self):
        assert deserialize("{not json") is None
        assert deserialize(b"\xff\xfe") is None

    def test_missing_room_name(self):
        assert deserialize({}) is None
        assert deserialize({"roomName": ""}) is None

    def test_not_an_object(self):
        assert deserialize("[1, 2]") is None
        assert deserialize(None) is None

    def test_wrong_types(self):
        assert deserialize({"roomName": "t", "players": "everyone"}) is None
        assert deserialize({"roomName": "t", "history": [{"dice": [{"sides": 1, "count": 1}]}]}) is None
