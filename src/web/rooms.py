"""Registry of the rooms this server is hosting."""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..config import RoomDefaults
from ..host.dispatcher import HostDispatcher
from ..host.persistence import DebouncedSaver
from ..room.store import RoomStateStore
from .connections import WebSocketTransport

logger = logging.getLogger(__name__)


class RoomAlreadyHosted(Exception):
    """A room with this name is already open on this server."""


def generate_peer_id() -> str:
    """Fresh id for one player connection."""
    return uuid.uuid4().hex[:12]


@dataclass
class HostedRoom:
    """One open room: its store, dispatcher and connections."""

    store: RoomStateStore
    dispatcher: HostDispatcher
    transport: WebSocketTransport
    host_key: str
    restored: bool = False
    opened_at: datetime = field(default_factory=datetime.now)

    @property
    def name(self) -> str:
        return self.store.room.room_name

    def summary(self) -> dict:
        room = self.store.room
        return {
            "room_name": room.room_name,
            "host_nick": room.host_nick,
            "players": len(room.participants),
            "connected": len(self.store.connected_ids()),
            "history": len(room.history),
            "opened_at": self.opened_at.isoformat(),
        }


class RoomRegistry:
    """Opens, looks up and closes hosted rooms."""

    def __init__(self, saver: Optional[DebouncedSaver] = None, defaults: Optional[RoomDefaults] = None):
        self.rooms: dict[str, HostedRoom] = {}
        self.saver = saver
        self.defaults = defaults or RoomDefaults()

    def configure(self, saver: Optional[DebouncedSaver], defaults: RoomDefaults) -> None:
        self.saver = saver
        self.defaults = defaults

    def open_room(
        self,
        room_name: str,
        host_nick: Optional[str] = None,
        host_avatar: Any = None,
        restore: bool = True,
    ) -> HostedRoom:
        """Open a room, restoring its saved state unless asked to start fresh.

        Raises:
            RoomAlreadyHosted: If the room is already open
        """
        if room_name in self.rooms:
            raise RoomAlreadyHosted(room_name)

        nick = host_nick or self.defaults.host_nick
        avatar = host_avatar if host_avatar is not None else self.defaults.host_avatar

        store = None
        if self.saver is not None:
            if restore:
                saved = self.saver.load(room_name)
                if saved is not None:
                    store = RoomStateStore.restore(saved, host_nick=nick, host_avatar=avatar)
                    if store is None:
                        logger.warning(f"[{room_name}] Saved state is unusable, starting fresh")
            else:
                self.saver.clear(room_name)

        restored = store is not None
        if store is None:
            store = RoomStateStore.create(room_name, nick, avatar, settings=self.defaults.to_settings())

        transport = WebSocketTransport(room_name)
        dispatcher = HostDispatcher(
            store,
            transport,
            persistence=self.saver,
            host_autoclear=self.defaults.host_autoclear,
        )
        hosted = HostedRoom(
            store=store,
            dispatcher=dispatcher,
            transport=transport,
            host_key=secrets.token_urlsafe(16),
            restored=restored,
        )
        self.rooms[room_name] = hosted
        dispatcher.save_snapshot()

        if restored:
            logger.info(f"[{room_name}] Restored room with {len(store.room.participants)} player(s)")
        else:
            logger.info(f"[{room_name}] Created room for host '{nick}'")
        return hosted

    def get(self, room_name: str) -> Optional[HostedRoom]:
        return self.rooms.get(room_name)

    def close_room(self, room_name: str, forget: bool = True) -> bool:
        """Disconnect every player and stop hosting.

        Args:
            room_name: Room to close
            forget: Also delete the saved snapshot
        """
        hosted = self.rooms.pop(room_name, None)
        if hosted is None:
            return False
        hosted.transport.close_all()
        if self.saver is not None:
            if forget:
                self.saver.clear(room_name)
            else:
                self.saver.save_now(room_name, hosted.store.serialize())
        logger.info(f"[{room_name}] Room closed")
        return True

    def save_all(self) -> None:
        """Write every open room now (used on shutdown)."""
        if self.saver is None:
            return
        for room_name, hosted in self.rooms.items():
            self.saver.save_now(room_name, hosted.store.serialize())

    def list_rooms(self) -> list[dict]:
        return [hosted.summary() for hosted in self.rooms.values()]
