"""Room state: data model, store, projections and snapshots."""

from .models import (
    HOST_ID,
    MAX_HISTORY,
    DiceGroup,
    Participant,
    RollEntry,
    RollRecord,
    Room,
    RoomSettings,
    Visibility,
)
from .projector import is_visible, project_view
from .snapshot import deserialize, serialize
from .store import RoomStateStore

__all__ = [
    "HOST_ID",
    "MAX_HISTORY",
    "DiceGroup",
    "Participant",
    "RollEntry",
    "RollRecord",
    "Room",
    "RoomSettings",
    "Visibility",
    "is_visible",
    "project_view",
    "deserialize",
    "serialize",
    "RoomStateStore",
]
