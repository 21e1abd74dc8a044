"""Snapshot storage backed by the rooms database."""

import logging
from datetime import datetime
from typing import Optional

from .models import RoomSnapshotRecord
from .session import session_scope

logger = logging.getLogger(__name__)


class SnapshotRepository:
    """Save and load room snapshots, one row per room name.

    The database must be initialized with ``init_db`` first.
    """

    def save(self, room_name: str, snapshot: dict) -> None:
        with session_scope() as db:
            record = db.get(RoomSnapshotRecord, room_name)
            if record is None:
                record = RoomSnapshotRecord(room_name=room_name)
                db.add(record)
            record.payload = snapshot
            record.schema_version = snapshot.get("version", 1)
            record.player_count = len(snapshot.get("players") or {})
            record.updated_at = datetime.utcnow()

    def load(self, room_name: str) -> Optional[dict]:
        with session_scope() as db:
            record = db.get(RoomSnapshotRecord, room_name)
            if record is None:
                return None
            return record.payload

    def clear(self, room_name: str) -> None:
        with session_scope() as db:
            record = db.get(RoomSnapshotRecord, room_name)
            if record is not None:
                db.delete(record)
                logger.info(f"[{room_name}] Saved room deleted")

    def list_rooms(self) -> list[dict]:
        """Summaries of saved rooms, most recently updated first."""
        with session_scope() as db:
            records = db.query(RoomSnapshotRecord).order_by(RoomSnapshotRecord.updated_at.desc()).all()
            return [
                {
                    "room_name": r.room_name,
                    "players": r.player_count,
                    "updated_at": r.updated_at.isoformat() if r.updated_at else None,
                }
                for r in records
            ]
