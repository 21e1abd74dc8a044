"""Host-side message dispatcher.

Every inbound player message and every host action lands here. The
dispatcher validates, calls the room store, builds per-recipient views
and hands outbound messages to the transport. Messages are handled one
at a time and nothing here awaits, so the store has a single writer.
"""

import logging
from typing import Any, Callable, Iterable, Optional

from ..game.dice import DicePool, DiceRoller, format_dice_spec
from ..protocol import messages as proto
from ..protocol.messages import (
    ClearMyTable,
    DiceSpec,
    Ping,
    PlayerInfo,
    RollRequest,
    UpdateProfile,
)
from ..room.models import HOST_ID, RollEntry, RollRecord, RoomSettings, Visibility, now_ms
from ..room.projector import project_view
from ..room.snapshot import serialize
from ..room.store import RoomStateStore
from .persistence import SnapshotStore
from .transport import Transport, send_to_many

logger = logging.getLogger(__name__)


class HostDispatcher:
    """Runs one hosted room on top of a RoomStateStore."""

    def __init__(
        self,
        store: RoomStateStore,
        transport: Transport,
        persistence: Optional[SnapshotStore] = None,
        roller: Optional[DiceRoller] = None,
        host_autoclear: bool = True,
    ):
        self.store = store
        self.transport = transport
        self.persistence = persistence
        self.roller = roller or DiceRoller()
        self.host_autoclear = host_autoclear
        self._handlers: dict[type, Callable[[str, Any], None]] = {
            PlayerInfo: self._handle_player_info,
            RollRequest: self._handle_roll_request,
            ClearMyTable: self._handle_clear_my_table,
            UpdateProfile: self._handle_update_profile,
            Ping: self._handle_ping,
        }

    @property
    def room_name(self) -> str:
        return self.store.room.room_name

    # --- Transport callbacks ---

    def on_connected(self, peer_id: str) -> None:
        # Nothing happens until the player identifies with PLAYER_INFO
        logger.info(f"[{self.room_name}] Connection opened: {peer_id}, awaiting player info")

    def on_disconnected(self, peer_id: str) -> None:
        """Flag a participant offline; their table and nick stay for a rejoin."""
        participant = self.store.get(peer_id)
        if participant is None or not self.store.mark_disconnected(peer_id):
            return
        logger.info(f"[{self.room_name}] Player disconnected: {participant.nickname} ({peer_id})")
        self.transport.broadcast(proto.create_player_left(peer_id, participant.nickname))
        self._broadcast_player_list()
        self._persist()

    def handle_message(self, sender_id: str, raw: Any) -> None:
        """Validate and handle one inbound message. Never raises on bad input."""
        message = proto.parse_inbound(raw)
        if message is None:
            kind = raw.get("type") if isinstance(raw, dict) else type(raw).__name__
            logger.warning(f"[{self.room_name}] Ignoring invalid message from {sender_id}: {kind}")
            return

        handler = self._handlers.get(type(message))
        if handler is None:
            logger.error(f"[{self.room_name}] No handler for {type(message).__name__}")
            return
        handler(sender_id, message)

    # --- Inbound handlers ---

    def _handle_player_info(self, sender_id: str, message: PlayerInfo) -> None:
        nick = message.display_nick
        if self.store.is_nickname_taken(nick, exclude_id=sender_id):
            logger.info(f"[{self.room_name}] Rejected player {sender_id}: nick '{nick}' already taken")
            self.transport.send_to(sender_id, proto.create_nick_taken(nick))
            return

        if self.store.get(sender_id) is not None:
            # Identifying twice refreshes the profile; the table stays
            logger.info(f"[{self.room_name}] Player {sender_id} re-identified as '{nick}'")
            self._apply_profile(sender_id, nick, message.avatar_data)
            self.transport.send_to(sender_id, proto.create_state_sync(self.state_for(sender_id), sender_id))
            return

        old_id = self.store.resolve_reconnection(sender_id, nick, message.avatar_data)
        if old_id is not None:
            logger.info(f"[{self.room_name}] Player reconnected: {nick} (was {old_id}, now {sender_id})")
        else:
            self.store.add_participant(sender_id, nick, message.avatar_data)
            logger.info(f"[{self.room_name}] New player joined: {nick} ({sender_id})")

        participant = self.store.get(sender_id)
        self.transport.send_to(sender_id, proto.create_state_sync(self.state_for(sender_id), sender_id))
        self._broadcast_player_list()

        for other_id, other in self.store.room.participants.items():
            if other_id != sender_id and other.avatar_ref:
                self.transport.send_to(
                    sender_id, proto.create_avatar_update(other_id, other.nickname, other.avatar_ref)
                )
        room = self.store.room
        self.transport.send_to(sender_id, proto.create_avatar_update(HOST_ID, room.host_nick, room.host_avatar))
        if participant.avatar_ref:
            others = [pid for pid in self.store.connected_ids() if pid != sender_id]
            send_to_many(self.transport, others, proto.create_avatar_update(sender_id, nick, participant.avatar_ref))
        self.transport.broadcast(proto.create_player_joined(sender_id, nick, participant.avatar_ref))
        if old_id is not None:
            # Mirrors still hold the table under the old id
            self._resync(exclude_id=sender_id)
        self._persist()

    def _handle_roll_request(self, sender_id: str, message: RollRequest) -> None:
        participant = self.store.get(sender_id)
        if participant is None:
            logger.warning(f"[{self.room_name}] Roll request from unidentified peer {sender_id}")
            return

        record = self._roll(sender_id, participant.nickname, message.dice, message.visibility, message.targets)
        autoclear = self.store.autoclear_active(sender_id, now=record.timestamp)
        replace = self._clear_before(sender_id, participant.table, record, autoclear)
        self.store.append_roll(sender_id, record, autoclear=replace)

        self._route(record)
        self._persist()

    def _handle_clear_my_table(self, sender_id: str, message: ClearMyTable) -> None:
        if not self.store.clear_table(sender_id):
            logger.debug(f"[{self.room_name}] Clear request from unknown peer {sender_id}")
            return
        # The sender gets the broadcast too and reconciles any optimistic clear
        self.transport.broadcast(proto.create_table_cleared(sender_id))
        self._persist()

    def _handle_update_profile(self, sender_id: str, message: UpdateProfile) -> None:
        if self.store.get(sender_id) is None:
            logger.debug(f"[{self.room_name}] Profile update from unknown peer {sender_id}")
            return

        nick = message.display_nick
        if self.store.is_nickname_taken(nick, exclude_id=sender_id):
            logger.info(f"[{self.room_name}] Rejected profile update from {sender_id}: nick '{nick}' taken")
            self.transport.send_to(sender_id, proto.create_profile_update_rejected(nick))
            return

        self._apply_profile(sender_id, nick, message.avatar_data)

    def _handle_ping(self, sender_id: str, message: Ping) -> None:
        self.transport.send_to(sender_id, proto.create_pong())

    # --- Host actions ---

    def dm_roll(
        self,
        dice: list[DiceSpec],
        visibility: Visibility = Visibility.PUBLIC,
        targets: Optional[list[str]] = None,
    ) -> RollRecord:
        """Roll for the host, merging into the host table and routing like a player roll.

        When the host table is about to be replaced, TABLE_CLEARED('dm') goes
        out first: every mirror holds its own copy of the host table and
        would otherwise append the new roll to it.
        """
        room = self.store.room
        record = self._roll(HOST_ID, room.host_nick, dice, visibility, targets)
        autoclear = self.store.host_autoclear_active(self.host_autoclear, now=record.timestamp)
        replace = self._clear_before(HOST_ID, room.host_table, record, autoclear)
        self.store.append_host_roll(record, replace)

        self._route(record)
        self._persist()
        return record

    def kick_participant(self, participant_id: str) -> bool:
        participant = self.store.get(participant_id)
        if participant is None:
            return False

        self.transport.send_to(participant_id, proto.create_player_kicked(participant_id, participant.nickname))
        self.transport.close(participant_id)
        self.store.remove_participant(participant_id)
        logger.info(f"[{self.room_name}] Kicked player: {participant.nickname} ({participant_id})")

        self.transport.broadcast(proto.create_player_left(participant_id, participant.nickname))
        self._broadcast_player_list()
        self._persist()
        return True

    def clear_participant_table(self, participant_id: str) -> bool:
        if not self.store.clear_table(participant_id):
            return False
        self.transport.broadcast(proto.create_table_cleared(participant_id))
        self._persist()
        return True

    def clear_host_table(self) -> None:
        self.store.clear_host_table()
        self.transport.broadcast(proto.create_table_cleared(HOST_ID))
        self._persist()

    def clear_all_tables(self) -> None:
        """Clear every participant table and the host table."""
        self.store.clear_table(None)
        self.store.clear_host_table()
        self.transport.broadcast(proto.create_table_cleared(None))
        self._persist()

    def clear_history(self) -> None:
        self.store.clear_history()
        self.transport.broadcast(proto.create_history_cleared())
        self._persist()

    def update_host_profile(self, nick: str, avatar_ref: Any = None) -> bool:
        """Rename the host. Refused while a connected player holds the nick."""
        if self.store.is_nickname_taken(nick, exclude_id=HOST_ID):
            return False
        self.store.update_profile(HOST_ID, nick, avatar_ref)
        self.transport.broadcast(proto.create_avatar_update(HOST_ID, nick, avatar_ref))
        self._persist()
        return True

    def update_settings(self, **changes: Any) -> RoomSettings:
        """Change room settings and resync every connected player."""
        settings = self.store.update_settings(**changes)
        self._resync()
        self._persist()
        return settings

    def set_participant_autoclear(self, participant_id: str, enabled: bool) -> bool:
        if not self.store.set_autoclear(participant_id, enabled):
            return False
        self._persist()
        return True

    def set_host_autoclear(self, enabled: bool) -> None:
        self.host_autoclear = enabled

    def send_system_message(self, text: str) -> None:
        self.transport.broadcast(proto.create_system_message(text))

    def state_for(self, viewer_id: str) -> dict:
        """Snapshot of the room as one viewer is allowed to see it."""
        return serialize(project_view(self.store.room, viewer_id))

    def save_snapshot(self) -> None:
        self._persist()

    # --- Internals ---

    def _roll(
        self,
        roller_id: str,
        roller_nick: str,
        dice: Iterable[DiceSpec],
        visibility: Visibility,
        targets: Optional[list[str]],
    ) -> RollRecord:
        pools = [DicePool(count=d.count, sides=d.sides) for d in dice]
        outcome = self.roller.roll_multiple(pools)
        logger.debug(f"[{self.room_name}] {roller_nick} rolled {format_dice_spec(pools)} = {outcome.total}")
        return RollRecord(
            roller_id=roller_id,
            roller_nick=roller_nick,
            dice_groups=tuple(outcome.dice_groups),
            total=outcome.total,
            visibility=Visibility(visibility),
            targets=tuple(targets or ()),
            timestamp=now_ms(),
        )

    def _clear_before(
        self, table_id: str, table: Optional[RollEntry], record: RollRecord, autoclear: bool
    ) -> bool:
        """Announce a table replacement before the roll that causes it.

        Returns:
            True if the roll replaces the table rather than merging
        """
        if not RoomStateStore.replaces_table(table, record, autoclear):
            return False
        if table is not None:
            self.transport.broadcast(proto.create_table_cleared(table_id))
        return True

    def _apply_profile(self, participant_id: str, nick: str, avatar_ref: Any) -> None:
        self.store.update_profile(participant_id, nick, avatar_ref)
        self.transport.broadcast(proto.create_avatar_update(participant_id, nick, avatar_ref))
        self._broadcast_player_list()
        self._persist()

    def _resync(self, exclude_id: Optional[str] = None) -> None:
        """Send every connected participant a fresh STATE_SYNC."""
        for participant_id in self.store.connected_ids():
            if participant_id != exclude_id:
                state = self.state_for(participant_id)
                self.transport.send_to(participant_id, proto.create_state_sync(state, participant_id))

    def _recipients(self, record: RollRecord) -> Optional[list[str]]:
        """Who receives a roll result; None means everyone."""
        if record.visibility == Visibility.PUBLIC:
            return None
        recipients = [record.roller_id]
        if record.visibility == Visibility.TARGETED:
            recipients.extend(record.targets)
        # The host sees every roll through its own store
        return [r for r in dict.fromkeys(recipients) if r != HOST_ID]

    def _route(self, record: RollRecord) -> None:
        result = proto.create_roll_result(record)
        recipients = self._recipients(record)
        if recipients is None:
            self.transport.broadcast(result)
            return
        send_to_many(self.transport, recipients, result)

        if self.store.room.settings.notify_hidden:
            notice = proto.create_system_message(f"{record.roller_nick} rolled in secret.")
            others = [pid for pid in self.store.connected_ids() if pid not in recipients]
            send_to_many(self.transport, others, notice)

    def _broadcast_player_list(self) -> None:
        self.transport.broadcast(proto.create_player_list(self.store.player_list()))

    def _persist(self) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save(self.room_name, self.store.serialize())
        except Exception as e:
            logger.warning(f"[{self.room_name}] Failed to persist room state: {e}")
