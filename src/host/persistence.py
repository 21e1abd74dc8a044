"""Snapshot persistence used by the host.

Saves are an optimization for surviving a host reload; the in-memory
store stays authoritative, so every failure here is logged and
swallowed.
"""

import asyncio
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    """Where snapshots end up (see ``src.database.repository``)."""

    def save(self, room_name: str, snapshot: dict) -> None:
        ...

    def load(self, room_name: str) -> Optional[dict]:
        ...

    def clear(self, room_name: str) -> None:
        ...


class DebouncedSaver:
    """Coalesce bursts of saves for the same room into one write.

    With a running asyncio loop, a save is deferred by ``debounce_ms`` and
    only the latest snapshot per room is written. Without a loop (scripts,
    tests) it writes straight through.
    """

    def __init__(self, backend: SnapshotStore, debounce_ms: int = 100):
        self.backend = backend
        self.debounce_ms = debounce_ms
        self._pending: dict[str, dict] = {}
        self._handles: dict[str, asyncio.TimerHandle] = {}

    def save(self, room_name: str, snapshot: dict) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None or self.debounce_ms <= 0:
            self.save_now(room_name, snapshot)
            return

        self._pending[room_name] = snapshot
        handle = self._handles.pop(room_name, None)
        if handle is not None:
            handle.cancel()
        self._handles[room_name] = loop.call_later(self.debounce_ms / 1000, self._flush_room, room_name)

    def save_now(self, room_name: str, snapshot: dict) -> None:
        """Write immediately, dropping any pending write for the room."""
        handle = self._handles.pop(room_name, None)
        if handle is not None:
            handle.cancel()
        self._pending.pop(room_name, None)
        self._write(room_name, snapshot)

    def load(self, room_name: str) -> Optional[dict]:
        try:
            return self.backend.load(room_name)
        except Exception as e:
            logger.warning(f"[{room_name}] Failed to load snapshot: {e}")
            return None

    def clear(self, room_name: str) -> None:
        handle = self._handles.pop(room_name, None)
        if handle is not None:
            handle.cancel()
        self._pending.pop(room_name, None)
        try:
            self.backend.clear(room_name)
        except Exception as e:
            logger.warning(f"[{room_name}] Failed to clear snapshot: {e}")

    def flush(self) -> None:
        """Write every pending snapshot now."""
        for room_name in list(self._pending):
            handle = self._handles.get(room_name)
            if handle is not None:
                handle.cancel()
            self._flush_room(room_name)

    def _flush_room(self, room_name: str) -> None:
        self._handles.pop(room_name, None)
        snapshot = self._pending.pop(room_name, None)
        if snapshot is not None:
            self._write(room_name, snapshot)

    def _write(self, room_name: str, snapshot: dict) -> None:
        try:
            self.backend.save(room_name, snapshot)
            logger.debug(f"[{room_name}] Snapshot saved")
        except Exception as e:
            logger.warning(f"[{room_name}] Failed to save snapshot: {e}")
