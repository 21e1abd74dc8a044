"""Room data model for a shared dice table.

The host owns one ``Room``. Everything else (participant tables, the roll
history, the host's own table) hangs off it and is only mutated through
``RoomStateStore``.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Sentinel participant id used for the host in roll records, table
# broadcasts and profile updates.
HOST_ID = "dm"

MAX_HISTORY = 500


def now_ms() -> int:
    """Current time as epoch milliseconds, the unit used on the wire."""
    return int(time.time() * 1000)


class Visibility(str, Enum):
    """Who may see a roll."""

    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"  # roller + host
    TARGETED = "TARGETED"  # roller + targets + host


@dataclass(frozen=True)
class DiceGroup:
    """One group of identical dice and their rolled results."""

    sides: int
    count: int
    results: tuple[int, ...] = ()

    @property
    def subtotal(self) -> int:
        return sum(self.results)


@dataclass(frozen=True)
class RollRecord:
    """A single resolved roll. Never changes after it is created."""

    roller_id: str
    roller_nick: str
    dice_groups: tuple[DiceGroup, ...]
    total: int
    visibility: Visibility = Visibility.PUBLIC
    targets: tuple[str, ...] = ()
    timestamp: int = field(default_factory=now_ms)


@dataclass
class RollEntry:
    """Aggregation cell shown on a table until it is cleared."""

    roller_id: str
    roller_nick: str
    dice_groups: list[DiceGroup]
    total: int
    visibility: Visibility
    targets: list[str]
    timestamp: int

    @classmethod
    def from_record(cls, record: RollRecord) -> "RollEntry":
        """Start a table entry from a roll, with its own dice list."""
        return cls(
            roller_id=record.roller_id,
            roller_nick=record.roller_nick,
            dice_groups=list(record.dice_groups),
            total=record.total,
            visibility=record.visibility,
            targets=list(record.targets),
            timestamp=record.timestamp,
        )

    def accepts(self, record: RollRecord) -> bool:
        """Whether a roll may be merged here without changing who can see the entry."""
        if record.visibility != self.visibility:
            return False
        if self.visibility == Visibility.TARGETED:
            return set(record.targets) == set(self.targets)
        return True

    def merge(self, record: RollRecord) -> None:
        """Fold another roll into this entry.

        Groups are concatenated (never combined, even with equal sides),
        totals are summed and the timestamp follows the latest write.
        """
        self.dice_groups = self.dice_groups + list(record.dice_groups)
        self.total += record.total
        self.timestamp = record.timestamp


@dataclass
class Participant:
    """A non-host player in the room."""

    nickname: str
    avatar_ref: Any = None
    connected: bool = True
    table: Optional[RollEntry] = None
    autoclear: bool = False
    joined_at: int = field(default_factory=now_ms)


@dataclass
class RoomSettings:
    """Host-controlled room settings."""

    crit_hit: int = 20
    crit_fail: int = 1
    autoclear_seconds: int = 0  # 0 = disabled
    force_autoclear: bool = False
    notify_hidden: bool = False


@dataclass
class Room:
    """Authoritative room state held by the host."""

    room_name: str
    host_nick: str
    host_avatar: Any = None
    host_table: Optional[RollEntry] = None
    participants: dict[str, Participant] = field(default_factory=dict)
    history: list[RollRecord] = field(default_factory=list)
    settings: RoomSettings = field(default_factory=RoomSettings)
    created_at: int = field(default_factory=now_ms)


@dataclass
class PlayerSummary:
    """Row of the participant list sent in PLAYER_LIST."""

    id: str
    nick: str
    avatar_data: Any
    connected: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "nick": self.nick,
            "avatarData": self.avatar_data,
            "connected": self.connected,
        }
