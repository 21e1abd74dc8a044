"""SQLAlchemy database models for saved rooms."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class RoomSnapshotRecord(Base):
    """Latest saved snapshot of one hosted room."""

    __tablename__ = "room_snapshots"

    room_name = Column(String(100), primary_key=True)
    schema_version = Column(Integer, nullable=False, default=1)
    payload = Column(JSON, nullable=False)
    player_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<RoomSnapshotRecord(room_name='{self.room_name}', players={self.player_count})>"
