"""Re-identify returning players by nickname."""

from typing import Optional

from .models import Participant


def find_reconnect_candidate(participants: dict[str, Participant], nick: str) -> Optional[str]:
    """Find the participant id a returning player should take over.

    Only disconnected participants with exactly the same nickname match.
    When several stale records share the nick, the earliest-joined one
    wins; equal join times fall back to insertion order.

    Args:
        participants: Room participants keyed by id
        nick: Nickname the new connection identified with

    Returns:
        The old participant id, or None if nobody matches
    """
    best_id = None
    best_joined = None
    for participant_id, participant in participants.items():
        if participant.connected or participant.nickname != nick:
            continue
        if best_joined is None or participant.joined_at < best_joined:
            best_id = participant_id
            best_joined = participant.joined_at
    return best_id
