"""Shared test helpers for the dice table."""

import copy

import pytest

from src.game.dice import DiceRoller
from src.host.dispatcher import HostDispatcher
from src.room.models import DiceGroup, RollRecord, Visibility
from src.room.store import RoomStateStore


class ScriptedRng:
    """Random source that returns queued die results in order."""

    def __init__(self, values=()):
        self.values = list(values)

    def randint(self, low, high):
        value = self.values.pop(0)
        assert low <= value <= high
        return value


class FakeTransport:
    """In-memory transport with one inbox per connected peer."""

    def __init__(self):
        self.inboxes: dict[str, list[dict]] = {}
        self.closed: dict[str, list[dict]] = {}

    def connect(self, peer_id):
        self.inboxes[peer_id] = []

    def disconnect(self, peer_id):
        self.inboxes.pop(peer_id, None)

    def send_to(self, peer_id, message):
        if peer_id in self.inboxes:
            self.inboxes[peer_id].append(copy.deepcopy(message))

    def broadcast(self, message):
        for inbox in self.inboxes.values():
            inbox.append(copy.deepcopy(message))

    def close(self, peer_id):
        self.closed[peer_id] = self.inboxes.pop(peer_id, [])

    def types(self, peer_id):
        return [m["type"] for m in self.inboxes[peer_id]]

    def of_type(self, peer_id, kind):
        return [m for m in self.inboxes[peer_id] if m["type"] == kind]

    def drain(self):
        for inbox in self.inboxes.values():
            inbox.clear()


class RecordingPersistence:
    """Snapshot store that keeps every save in memory."""

    def __init__(self, fail=False):
        self.saves: list[tuple[str, dict]] = []
        self.fail = fail

    def save(self, room_name, snapshot):
        if self.fail:
            raise OSError("disk full")
        self.saves.append((room_name, snapshot))

    def load(self, room_name):
        for name, snapshot in reversed(self.saves):
            if name == room_name:
                return snapshot
        return None

    def clear(self, room_name):
        self.saves = [(n, s) for n, s in self.saves if n != room_name]


def make_record(
    roller_id="p1",
    nick="Alice",
    groups=((20, (17,)),),
    visibility=Visibility.PUBLIC,
    targets=(),
    timestamp=1000,
):
    """Build a RollRecord from (sides, results) pairs."""
    dice_groups = tuple(DiceGroup(sides=s, count=len(r), results=tuple(r)) for s, r in groups)
    return RollRecord(
        roller_id=roller_id,
        roller_nick=nick,
        dice_groups=dice_groups,
        total=sum(g.subtotal for g in dice_groups),
        visibility=visibility,
        targets=tuple(targets),
        timestamp=timestamp,
    )


@pytest.fixture
def store():
    """Empty room hosted by 'DM'."""
    return RoomStateStore.create("table1", "DM", "builtin:0")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def persistence():
    return RecordingPersistence()


@pytest.fixture
def rng():
    return ScriptedRng()


@pytest.fixture
def dispatcher(store, transport, persistence, rng):
    """Dispatcher whose dice results come from the ``rng`` fixture."""
    return HostDispatcher(store, transport, persistence=persistence, roller=DiceRoller(rng=rng))
