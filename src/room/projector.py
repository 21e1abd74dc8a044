"""Per-viewer filtered copies of room state."""

import copy
from typing import Optional, Union

from .models import HOST_ID, Room, RollEntry, RollRecord, Visibility


def is_visible(record: Union[RollRecord, RollEntry], viewer_id: Optional[str]) -> bool:
    """Check whether a roll may be shown to a viewer."""
    if record.visibility == Visibility.PUBLIC:
        return True
    if record.roller_id == viewer_id:
        return True
    targets = record.targets or ()
    if record.visibility == Visibility.TARGETED and viewer_id in targets:
        return True
    return False


def project_view(room: Room, viewer_id: Optional[str]) -> Room:
    """Build a copy of the room that is safe to send to one viewer.

    Tables whose entry the viewer may not see come back empty and hidden
    history records are dropped. The host holds the authoritative state
    and gets an unfiltered copy.
    """
    view = copy.deepcopy(room)
    if viewer_id == HOST_ID:
        return view

    for participant in view.participants.values():
        if participant.table is not None and not is_visible(participant.table, viewer_id):
            participant.table = None

    if view.host_table is not None and not is_visible(view.host_table, viewer_id):
        view.host_table = None

    view.history = [record for record in view.history if is_visible(record, viewer_id)]
    return view
