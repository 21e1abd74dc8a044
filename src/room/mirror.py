"""Player-side mirror of the host's room.

A player never computes state of its own. It rebuilds the room from
STATE_SYNC and then folds in each broadcast as it arrives; whatever the
host sent last wins, including over the player's optimistic edits.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from ..protocol.messages import MessageType
from .models import HOST_ID, MAX_HISTORY, Participant, RollEntry, Room
from .snapshot import RollSchema, deserialize

logger = logging.getLogger(__name__)


class RoomMirror:
    """Read-only copy of a room as one player sees it."""

    def __init__(self, room_name: str, my_id: Optional[str] = None):
        self.room = Room(room_name=room_name, host_nick="DM")
        self.my_id = my_id
        self.kicked = False
        self.rejection: Optional[str] = None
        self.notices: list[str] = []

    def apply(self, message: dict) -> bool:
        """Fold one host message into the mirror.

        Returns:
            False if the message kind is not one a mirror tracks
        """
        try:
            kind = MessageType(message.get("type"))
        except ValueError:
            logger.debug(f"Mirror ignoring unknown message: {message.get('type')}")
            return False

        handler = getattr(self, f"_on_{kind.value.lower()}", None)
        if handler is None:
            logger.debug(f"Mirror ignoring message: {message.get('type')}")
            return False
        handler(message)
        return True

    def clear_my_table(self) -> None:
        """Optimistic local clear; the host's TABLE_CLEARED confirms it."""
        me = self.room.participants.get(self.my_id)
        if me is not None:
            me.table = None

    # --- Handlers, named after MessageType values ---

    def _on_state_sync(self, message: dict) -> None:
        if message.get("playerId"):
            self.my_id = message["playerId"]
        room = deserialize(message.get("state"))
        if room is None:
            logger.warning("Mirror received an unusable STATE_SYNC")
            return
        self.room = room

    def _on_roll_result(self, message: dict) -> None:
        try:
            record = RollSchema.model_validate(message).to_record()
        except ValidationError:
            logger.warning("Mirror received a malformed ROLL_RESULT")
            return

        if record.roller_id == HOST_ID:
            self.room.host_table = self._merge(self.room.host_table, record)
        else:
            participant = self.room.participants.get(record.roller_id)
            if participant is not None:
                participant.table = self._merge(participant.table, record)

        self.room.history.append(record)
        if len(self.room.history) > MAX_HISTORY:
            del self.room.history[: len(self.room.history) - MAX_HISTORY]

    @staticmethod
    def _merge(table: Optional[RollEntry], record) -> RollEntry:
        if table is None or not table.accepts(record):
            return RollEntry.from_record(record)
        table.merge(record)
        return table

    def _on_player_joined(self, message: dict) -> None:
        player_id = message.get("playerId")
        if not player_id or player_id == self.my_id:
            return
        participant = self.room.participants.get(player_id)
        if participant is None:
            self.room.participants[player_id] = Participant(
                nickname=message.get("nick", ""),
                avatar_ref=message.get("avatarData"),
            )
        else:
            # Already known from PLAYER_LIST or a resync; keep the table
            participant.nickname = message.get("nick", participant.nickname)
            participant.avatar_ref = message.get("avatarData")
            participant.connected = True

    def _on_player_left(self, message: dict) -> None:
        participant = self.room.participants.get(message.get("playerId"))
        if participant is not None:
            participant.connected = False

    def _on_player_kicked(self, message: dict) -> None:
        player_id = message.get("playerId")
        if player_id == self.my_id:
            self.kicked = True
        else:
            self.room.participants.pop(player_id, None)

    def _on_table_cleared(self, message: dict) -> None:
        player_id = message.get("playerId")
        if player_id is None:
            for participant in self.room.participants.values():
                participant.table = None
            self.room.host_table = None
        elif player_id == HOST_ID:
            self.room.host_table = None
        elif player_id in self.room.participants:
            self.room.participants[player_id].table = None

    def _on_history_cleared(self, message: dict) -> None:
        self.room.history = []

    def _on_player_list(self, message: dict) -> None:
        players = message.get("players") or []
        for entry in players:
            player_id = entry.get("id")
            participant = self.room.participants.get(player_id)
            if participant is not None:
                participant.nickname = entry.get("nick", participant.nickname)
                participant.avatar_ref = entry.get("avatarData")
                participant.connected = bool(entry.get("connected"))
            elif player_id and player_id != self.my_id:
                self.room.participants[player_id] = Participant(
                    nickname=entry.get("nick", ""),
                    avatar_ref=entry.get("avatarData"),
                    connected=bool(entry.get("connected")),
                )

        active = {entry.get("id") for entry in players}
        for player_id in list(self.room.participants):
            if player_id != self.my_id and player_id not in active:
                del self.room.participants[player_id]

    def _on_avatar_update(self, message: dict) -> None:
        player_id = message.get("playerId")
        if player_id == HOST_ID:
            self.room.host_nick = message.get("nick", self.room.host_nick)
            self.room.host_avatar = message.get("avatarData")
        elif player_id in self.room.participants:
            participant = self.room.participants[player_id]
            participant.nickname = message.get("nick", participant.nickname)
            participant.avatar_ref = message.get("avatarData")

    def _on_nick_taken(self, message: dict) -> None:
        self.rejection = message.get("message") or f'The nickname "{message.get("nick")}" is already taken.'

    def _on_profile_update_rejected(self, message: dict) -> None:
        self.notices.append(message.get("message") or "Profile update rejected: nickname already taken.")

    def _on_system_message(self, message: dict) -> None:
        self.notices.append(message.get("text", ""))

    def _on_pong(self, message: dict) -> None:
        pass
