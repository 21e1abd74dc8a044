"""Versioned snapshot schema for room state.

A snapshot is the plain-JSON form of a ``Room``. It is what gets saved
to the database, and a projected snapshot is what players receive in
STATE_SYNC. Keys are camelCase; roll entries reuse the ROLL_RESULT field
names so clients can treat table entries, history records and live roll
results alike.
"""

import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .models import (
    DiceGroup,
    Participant,
    RollEntry,
    RollRecord,
    Room,
    RoomSettings,
    Visibility,
    now_ms,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

# Keys written by older clients, mapped to their current names.
LEGACY_KEYS = {
    "dmNick": "hostNick",
    "dmAvatar": "hostAvatar",
    "dmTable": "hostTable",
}


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class DiceGroupSchema(_Schema):
    sides: int = Field(ge=2)
    count: int = Field(ge=1)
    results: list[int] = Field(default_factory=list)


class RollSchema(_Schema):
    """A roll record or table entry as it appears on the wire."""

    player_id: str = ""
    nick: str = ""
    dice: list[DiceGroupSchema] = Field(default_factory=list)
    total: int = 0
    visibility: Visibility = Visibility.PUBLIC
    targets: list[str] = Field(default_factory=list)
    timestamp: int = 0

    @classmethod
    def from_roll(cls, roll: RollRecord | RollEntry) -> "RollSchema":
        return cls(
            player_id=roll.roller_id,
            nick=roll.roller_nick,
            dice=[
                DiceGroupSchema(sides=g.sides, count=g.count, results=list(g.results))
                for g in roll.dice_groups
            ],
            total=roll.total,
            visibility=roll.visibility,
            targets=list(roll.targets),
            timestamp=roll.timestamp,
        )

    def _groups(self) -> list[DiceGroup]:
        return [DiceGroup(sides=g.sides, count=g.count, results=tuple(g.results)) for g in self.dice]

    def to_record(self) -> RollRecord:
        return RollRecord(
            roller_id=self.player_id,
            roller_nick=self.nick,
            dice_groups=tuple(self._groups()),
            total=self.total,
            visibility=self.visibility,
            targets=tuple(self.targets),
            timestamp=self.timestamp,
        )

    def to_entry(self) -> RollEntry:
        return RollEntry(
            roller_id=self.player_id,
            roller_nick=self.nick,
            dice_groups=self._groups(),
            total=self.total,
            visibility=self.visibility,
            targets=list(self.targets),
            timestamp=self.timestamp,
        )


class ParticipantSchema(_Schema):
    nick: str
    avatar_data: Any = None
    connected: bool = False
    table: list[RollSchema] = Field(default_factory=list)
    autoclear: bool = False
    joined_at: int = 0


class SettingsSchema(_Schema):
    crit_hit: int = 20
    crit_fail: int = 1
    autoclear_seconds: int = Field(default=0, ge=0)
    force_autoclear: bool = False
    notify_hidden: bool = False


class RoomSnapshot(_Schema):
    """Top-level snapshot document."""

    version: int = SNAPSHOT_VERSION
    room_name: str = Field(min_length=1)
    host_nick: str = "DM"
    host_avatar: Any = None
    host_table: list[RollSchema] = Field(default_factory=list)
    players: dict[str, ParticipantSchema] = Field(default_factory=dict)
    history: list[RollSchema] = Field(default_factory=list)
    settings: SettingsSchema = Field(default_factory=SettingsSchema)
    created_at: int = 0

    @classmethod
    def from_room(cls, room: Room) -> "RoomSnapshot":
        players = {}
        for participant_id, p in room.participants.items():
            players[participant_id] = ParticipantSchema(
                nick=p.nickname,
                avatar_data=p.avatar_ref,
                connected=p.connected,
                table=[RollSchema.from_roll(p.table)] if p.table is not None else [],
                autoclear=p.autoclear,
                joined_at=p.joined_at,
            )
        s = room.settings
        return cls(
            room_name=room.room_name,
            host_nick=room.host_nick,
            host_avatar=room.host_avatar,
            host_table=[RollSchema.from_roll(room.host_table)] if room.host_table is not None else [],
            players=players,
            history=[RollSchema.from_roll(r) for r in room.history],
            settings=SettingsSchema(
                crit_hit=s.crit_hit,
                crit_fail=s.crit_fail,
                autoclear_seconds=s.autoclear_seconds,
                force_autoclear=s.force_autoclear,
                notify_hidden=s.notify_hidden,
            ),
            created_at=room.created_at,
        )

    def to_room(self) -> Room:
        participants = {}
        for participant_id, p in self.players.items():
            participants[participant_id] = Participant(
                nickname=p.nick,
                avatar_ref=p.avatar_data,
                connected=p.connected,
                # A table holds at most one entry; extra entries are dropped
                table=p.table[0].to_entry() if p.table else None,
                autoclear=p.autoclear,
                joined_at=p.joined_at,
            )
        s = self.settings
        return Room(
            room_name=self.room_name,
            host_nick=self.host_nick,
            host_avatar=self.host_avatar,
            host_table=self.host_table[0].to_entry() if self.host_table else None,
            participants=participants,
            history=[r.to_record() for r in self.history],
            settings=RoomSettings(
                crit_hit=s.crit_hit,
                crit_fail=s.crit_fail,
                autoclear_seconds=s.autoclear_seconds,
                force_autoclear=s.force_autoclear,
                notify_hidden=s.notify_hidden,
            ),
            created_at=self.created_at,
        )


def apply_snapshot_defaults(data: dict) -> dict:
    """Normalize a raw snapshot dict before validation.

    This is the only place defaults are merged in:

    - legacy ``dm*`` keys are renamed to their ``host*`` equivalents
      (the current key wins if both are present);
    - a missing or null ``hostNick`` becomes "DM";
    - missing or null collections become empty (``hostTable``,
      ``players``, ``history``);
    - ``settings`` is merged key by key over the defaults, so a snapshot
      written before a setting existed still loads;
    - a missing ``createdAt`` becomes now, a missing ``version`` becomes
      the current one.

    Unknown keys are left in place and ignored by the schema.
    """
    merged = dict(data)
    for old_key, new_key in LEGACY_KEYS.items():
        if old_key in merged:
            value = merged.pop(old_key)
            if merged.get(new_key) is None:
                merged[new_key] = value

    if not merged.get("hostNick"):
        merged["hostNick"] = "DM"
    for key in ("hostTable", "history"):
        if merged.get(key) is None:
            merged[key] = []
    if merged.get("players") is None:
        merged["players"] = {}

    settings = SettingsSchema().model_dump(by_alias=True)
    if isinstance(merged.get("settings"), dict):
        settings.update({k: v for k, v in merged["settings"].items() if v is not None})
    merged["settings"] = settings

    if not merged.get("createdAt"):
        merged["createdAt"] = now_ms()
    merged.setdefault("version", SNAPSHOT_VERSION)
    return merged


def serialize(room: Room) -> dict:
    """Snapshot a room as a JSON-compatible dict."""
    return RoomSnapshot.from_room(room).model_dump(mode="json", by_alias=True)


def deserialize(blob: Any) -> Optional[Room]:
    """Rebuild a room from a snapshot.

    Args:
        blob: A snapshot dict, or its JSON text

    Returns:
        The restored Room, or None if the blob cannot be parsed or has
        no room name
    """
    if isinstance(blob, (str, bytes, bytearray)):
        try:
            blob = json.loads(blob)
        except ValueError:
            logger.warning("Snapshot is not valid JSON")
            return None

    if not isinstance(blob, dict) or not blob.get("roomName"):
        return None

    try:
        snapshot = RoomSnapshot.model_validate(apply_snapshot_defaults(blob))
    except ValidationError as e:
        logger.warning(f"Snapshot for '{blob.get('roomName')}' failed validation: {e}")
        return None

    if snapshot.version > SNAPSHOT_VERSION:
        logger.warning(
            f"Snapshot for '{snapshot.room_name}' has newer version {snapshot.version}, loading known fields"
        )
    return snapshot.to_room()
