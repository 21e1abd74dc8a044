"""Database module for saved room snapshots."""

from .models import Base, RoomSnapshotRecord
from .repository import SnapshotRepository
from .session import get_session, init_db

__all__ = [
    "Base",
    "RoomSnapshotRecord",
    "SnapshotRepository",
    "get_session",
    "init_db",
]
