"""Host <-> player wire protocol."""

from .messages import MAX_DICE_GROUPS, MAX_DICE_PER_GROUP, MessageType, parse_inbound

__all__ = ["MAX_DICE_GROUPS", "MAX_DICE_PER_GROUP", "MessageType", "parse_inbound"]
