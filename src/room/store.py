"""Room State Store - the single authoritative copy of a room.

Only the host process owns a store. All mutation goes through the named
operations below; nothing else writes Room fields directly.
"""

import logging
from typing import Any, Optional

from . import snapshot
from .identity import find_reconnect_candidate
from .models import (
    HOST_ID,
    MAX_HISTORY,
    Participant,
    PlayerSummary,
    RollEntry,
    RollRecord,
    Room,
    RoomSettings,
    now_ms,
)

logger = logging.getLogger(__name__)


class RoomStateStore:
    """Owns one Room and the operations allowed on it."""

    def __init__(self, room: Room, max_history: int = MAX_HISTORY):
        if room is None:
            raise ValueError("RoomStateStore needs a room")
        self.room = room
        self.max_history = max_history

    # --- Construction ---

    @classmethod
    def create(
        cls,
        room_name: str,
        host_nick: str,
        host_avatar: Any = None,
        settings: RoomSettings | None = None,
    ) -> "RoomStateStore":
        """Create a store around a fresh, empty room."""
        room = Room(
            room_name=room_name,
            host_nick=host_nick,
            host_avatar=host_avatar,
            settings=settings or RoomSettings(),
        )
        return cls(room)

    @classmethod
    def restore(
        cls,
        blob: Any,
        host_nick: str | None = None,
        host_avatar: Any = None,
    ) -> Optional["RoomStateStore"]:
        """Rebuild a store from a saved snapshot after a host reload.

        Every restored participant starts disconnected; they are matched
        back by nickname when they identify again. The new host session's
        nick and avatar replace the saved ones when given.
        """
        room = snapshot.deserialize(blob)
        if room is None:
            return None
        for participant in room.participants.values():
            participant.connected = False
        if host_nick:
            room.host_nick = host_nick
        if host_avatar is not None:
            room.host_avatar = host_avatar
        return cls(room)

    # --- Participants ---

    def get(self, participant_id: str) -> Optional[Participant]:
        return self.room.participants.get(participant_id)

    def add_participant(self, participant_id: str, nick: str, avatar_ref: Any = None) -> Participant:
        """Insert a connected participant, replacing any entry at that id."""
        participant = Participant(nickname=nick, avatar_ref=avatar_ref)
        self.room.participants[participant_id] = participant
        return participant

    def remove_participant(self, participant_id: str) -> Optional[Participant]:
        """Delete a participant entirely. History keeps their old rolls."""
        return self.room.participants.pop(participant_id, None)

    def mark_disconnected(self, participant_id: str) -> bool:
        participant = self.get(participant_id)
        if participant is None:
            return False
        participant.connected = False
        return True

    def resolve_reconnection(self, new_id: str, nick: str, avatar_ref: Any = None) -> Optional[str]:
        """Move a disconnected participant with this nick to a new id.

        The candidate is chosen first, then the old key is removed and the
        new one inserted in one step. Their table and autoclear preference
        carry over; the avatar is replaced only when one is given.

        Returns:
            The old participant id, or None if nobody matched
        """
        old_id = find_reconnect_candidate(self.room.participants, nick)
        if old_id is None:
            return None

        participant = self.room.participants.pop(old_id)
        participant.connected = True
        if avatar_ref is not None:
            participant.avatar_ref = avatar_ref
        # The table entry follows its owner; history keeps the old id
        if participant.table is not None:
            participant.table.roller_id = new_id
        self.room.participants[new_id] = participant
        return old_id

    def is_nickname_taken(self, nick: str, exclude_id: Optional[str] = None) -> bool:
        """Check a nick against the host and every connected participant.

        Disconnected participants never block a nick; their records are
        what a returning player reclaims.
        """
        if nick == self.room.host_nick and exclude_id != HOST_ID:
            return True
        for participant_id, participant in self.room.participants.items():
            if participant_id == exclude_id or not participant.connected:
                continue
            if participant.nickname == nick:
                return True
        return False

    def update_profile(self, participant_id: str, nick: str, avatar_ref: Any = None) -> bool:
        """Overwrite a nick and avatar in place. Uniqueness is the caller's job."""
        if participant_id == HOST_ID:
            self.room.host_nick = nick
            self.room.host_avatar = avatar_ref
            return True
        participant = self.get(participant_id)
        if participant is None:
            return False
        participant.nickname = nick
        participant.avatar_ref = avatar_ref
        return True

    def set_autoclear(self, participant_id: str, enabled: bool) -> bool:
        participant = self.get(participant_id)
        if participant is None:
            return False
        participant.autoclear = enabled
        return True

    def connected_ids(self) -> list[str]:
        return [pid for pid, p in self.room.participants.items() if p.connected]

    def player_list(self) -> list[PlayerSummary]:
        return [
            PlayerSummary(id=pid, nick=p.nickname, avatar_data=p.avatar_ref, connected=p.connected)
            for pid, p in self.room.participants.items()
        ]

    # --- Rolls and tables ---

    def autoclear_active(self, participant_id: str, now: Optional[int] = None) -> bool:
        """Whether the participant's next roll replaces their table.

        True when the participant asked for it, when the host forces it for
        everyone, or when the current table entry has aged past the room's
        autoclear timer.
        """
        participant = self.get(participant_id)
        if participant is None:
            return False
        settings = self.room.settings
        if participant.autoclear or settings.force_autoclear:
            return True
        return self._expired(participant.table, now)

    def host_autoclear_active(self, preference: bool, now: Optional[int] = None) -> bool:
        return preference or self._expired(self.room.host_table, now)

    def _expired(self, entry: Optional[RollEntry], now: Optional[int]) -> bool:
        seconds = self.room.settings.autoclear_seconds
        if entry is None or seconds <= 0:
            return False
        now = now_ms() if now is None else now
        return now - entry.timestamp >= seconds * 1000

    def _append_history(self, record: RollRecord) -> None:
        self.room.history.append(record)
        overflow = len(self.room.history) - self.max_history
        if overflow > 0:
            del self.room.history[:overflow]

    @staticmethod
    def replaces_table(table: Optional[RollEntry], record: RollRecord, autoclear: bool) -> bool:
        """Whether a roll starts a new table entry instead of merging.

        A roll with a different visibility or target set never joins an
        existing entry, so nobody sees dice through an entry they could
        see before.
        """
        return autoclear or table is None or not table.accepts(record)

    @classmethod
    def _merge(cls, table: Optional[RollEntry], record: RollRecord, autoclear: bool) -> RollEntry:
        if cls.replaces_table(table, record, autoclear):
            return RollEntry.from_record(record)
        table.merge(record)
        return table

    def append_roll(self, participant_id: str, record: RollRecord, autoclear: Optional[bool] = None) -> bool:
        """Record a participant's roll in history and on their table.

        Args:
            participant_id: Who rolled
            record: The resolved roll
            autoclear: Override for the table policy; defaults to
                ``autoclear_active(participant_id)``

        Returns:
            False (and nothing changes) if the participant is unknown
        """
        participant = self.get(participant_id)
        if participant is None:
            return False
        if autoclear is None:
            autoclear = self.autoclear_active(participant_id, now=record.timestamp)

        self._append_history(record)
        participant.table = self._merge(participant.table, record, autoclear)
        return True

    def append_host_roll(self, record: RollRecord, autoclear: bool) -> None:
        """Host-table analogue of append_roll."""
        self._append_history(record)
        self.room.host_table = self._merge(self.room.host_table, record, autoclear)

    def clear_table(self, participant_id: Optional[str] = None) -> bool:
        """Clear one participant's table, or every participant table for None.

        The host table is left alone; use clear_host_table for that.
        """
        if participant_id is None:
            for participant in self.room.participants.values():
                participant.table = None
            return True
        participant = self.get(participant_id)
        if participant is None:
            return False
        participant.table = None
        return True

    def clear_host_table(self) -> None:
        self.room.host_table = None

    def clear_history(self) -> None:
        self.room.history = []

    # --- Settings ---

    def update_settings(self, **changes: Any) -> RoomSettings:
        """Apply a partial settings update; unknown keys are ignored."""
        settings = self.room.settings
        for key, value in changes.items():
            if value is None:
                continue
            if hasattr(settings, key):
                setattr(settings, key, value)
            else:
                logger.debug(f"Ignoring unknown setting '{key}'")
        return settings

    # --- Snapshots ---

    def serialize(self) -> dict:
        return snapshot.serialize(self.room)

    @staticmethod
    def deserialize(blob: Any) -> Optional[Room]:
        return snapshot.deserialize(blob)
