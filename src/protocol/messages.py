"""Wire protocol between the host and the players.

Every message is a JSON object discriminated by ``type``. Inbound
messages (player -> host) are validated here into typed models;
anything that does not validate is dropped by the caller. Outbound
messages are built with the ``create_*`` factories, which return the
JSON-ready dict.
"""

import json
import logging
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ..room.models import PlayerSummary, RollRecord, Visibility
from ..room.snapshot import RollSchema

logger = logging.getLogger(__name__)

# Limits to prevent abuse
MAX_DICE_PER_GROUP = 100
MAX_DICE_GROUPS = 20

DEFAULT_NICK = "Player"


class MessageType(str, Enum):
    """Every message kind on the wire."""

    # Player -> host
    PLAYER_INFO = "PLAYER_INFO"
    ROLL_REQUEST = "ROLL_REQUEST"
    CLEAR_MY_TABLE = "CLEAR_MY_TABLE"
    UPDATE_PROFILE = "UPDATE_PROFILE"

    # Host -> player(s)
    ROLL_RESULT = "ROLL_RESULT"
    STATE_SYNC = "STATE_SYNC"
    PLAYER_JOINED = "PLAYER_JOINED"
    PLAYER_LEFT = "PLAYER_LEFT"
    PLAYER_KICKED = "PLAYER_KICKED"
    TABLE_CLEARED = "TABLE_CLEARED"
    HISTORY_CLEARED = "HISTORY_CLEARED"
    PLAYER_LIST = "PLAYER_LIST"
    AVATAR_UPDATE = "AVATAR_UPDATE"
    NICK_TAKEN = "NICK_TAKEN"
    PROFILE_UPDATE_REJECTED = "PROFILE_UPDATE_REJECTED"
    SYSTEM_MESSAGE = "SYSTEM_MESSAGE"

    # Bidirectional
    PING = "PING"
    PONG = "PONG"


class _Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DiceSpec(_Message):
    """One requested dice group: ``count`` dice with ``sides`` faces."""

    sides: StrictInt = Field(ge=2)
    count: StrictInt = Field(ge=1, le=MAX_DICE_PER_GROUP)


# --- Inbound ---


class PlayerInfo(_Message):
    type: Literal["PLAYER_INFO"]
    nick: Optional[str] = None
    avatar_data: Any = None

    @property
    def display_nick(self) -> str:
        return self.nick or DEFAULT_NICK


class RollRequest(_Message):
    type: Literal["ROLL_REQUEST"]
    dice: list[DiceSpec] = Field(min_length=1, max_length=MAX_DICE_GROUPS)
    visibility: Visibility
    targets: Optional[list[str]] = None


class ClearMyTable(_Message):
    type: Literal["CLEAR_MY_TABLE"]


class UpdateProfile(_Message):
    type: Literal["UPDATE_PROFILE"]
    nick: Optional[str] = None
    avatar_data: Any = None

    @property
    def display_nick(self) -> str:
        return self.nick or DEFAULT_NICK


class Ping(_Message):
    type: Literal["PING"]


InboundMessage = Annotated[
    Union[PlayerInfo, RollRequest, ClearMyTable, UpdateProfile, Ping],
    Field(discriminator="type"),
]

INBOUND_TYPES = (PlayerInfo, RollRequest, ClearMyTable, UpdateProfile, Ping)

_inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(raw: Any) -> Optional[Union[PlayerInfo, RollRequest, ClearMyTable, UpdateProfile, Ping]]:
    """Validate a raw inbound message.

    Args:
        raw: Decoded JSON object, or the JSON text itself

    Returns:
        The typed message, or None if it is malformed, of an unknown
        kind, or out of range
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.debug("Dropping non-JSON message")
            return None
    if not isinstance(raw, dict):
        logger.debug(f"Dropping non-object message: {type(raw).__name__}")
        return None
    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as e:
        logger.debug(f"Dropping invalid '{raw.get('type')}' message: {e.error_count()} error(s)")
        return None


def is_valid_dice_spec(dice: Any) -> bool:
    """Check a raw dice spec list against the protocol limits."""
    if not isinstance(dice, list) or not 1 <= len(dice) <= MAX_DICE_GROUPS:
        return False
    try:
        for group in dice:
            DiceSpec.model_validate(group)
    except ValidationError:
        return False
    return True


def parse_dice_spec(dice: Any) -> Optional[list[DiceSpec]]:
    if not is_valid_dice_spec(dice):
        return None
    return [DiceSpec.model_validate(group) for group in dice]


# --- Outbound ---


def create_roll_result(record: RollRecord) -> dict:
    payload = RollSchema.from_roll(record).model_dump(mode="json", by_alias=True)
    return {"type": MessageType.ROLL_RESULT.value, **payload}


def create_state_sync(state: dict, player_id: Optional[str] = None) -> dict:
    """Full (projected) room state; ``playerId`` tells the recipient its own id."""
    message = {"type": MessageType.STATE_SYNC.value, "state": state}
    if player_id is not None:
        message["playerId"] = player_id
    return message


def create_player_joined(player_id: str, nick: str, avatar_data: Any) -> dict:
    return {
        "type": MessageType.PLAYER_JOINED.value,
        "playerId": player_id,
        "nick": nick,
        "avatarData": avatar_data,
    }


def create_player_left(player_id: str, nick: str) -> dict:
    return {"type": MessageType.PLAYER_LEFT.value, "playerId": player_id, "nick": nick}


def create_player_kicked(player_id: str, nick: str) -> dict:
    return {"type": MessageType.PLAYER_KICKED.value, "playerId": player_id, "nick": nick}


def create_table_cleared(player_id: Optional[str]) -> dict:
    # None means every table
    return {"type": MessageType.TABLE_CLEARED.value, "playerId": player_id}


def create_history_cleared() -> dict:
    return {"type": MessageType.HISTORY_CLEARED.value}


def create_player_list(players: list[PlayerSummary]) -> dict:
    return {"type": MessageType.PLAYER_LIST.value, "players": [p.to_dict() for p in players]}


def create_avatar_update(player_id: str, nick: str, avatar_data: Any) -> dict:
    return {
        "type": MessageType.AVATAR_UPDATE.value,
        "playerId": player_id,
        "nick": nick,
        "avatarData": avatar_data,
    }


def create_nick_taken(nick: str) -> dict:
    return {
        "type": MessageType.NICK_TAKEN.value,
        "nick": nick,
        "message": f'The nickname "{nick}" is already taken.',
    }


def create_profile_update_rejected(nick: str) -> dict:
    return {
        "type": MessageType.PROFILE_UPDATE_REJECTED.value,
        "nick": nick,
        "message": f'The nickname "{nick}" is already taken in this room.',
    }


def create_system_message(text: str) -> dict:
    return {"type": MessageType.SYSTEM_MESSAGE.value, "text": text}


def create_pong() -> dict:
    return {"type": MessageType.PONG.value}


# Client-side builders, used by players and tests


def create_player_info(nick: str, avatar_data: Any = None) -> dict:
    return {"type": MessageType.PLAYER_INFO.value, "nick": nick, "avatarData": avatar_data}


def create_roll_request(
    dice: list[dict],
    visibility: Visibility | str = Visibility.PUBLIC,
    targets: Optional[list[str]] = None,
) -> dict:
    return {
        "type": MessageType.ROLL_REQUEST.value,
        "dice": dice,
        "visibility": Visibility(visibility).value,
        "targets": targets or [],
    }


def create_update_profile(nick: str, avatar_data: Any = None) -> dict:
    return {"type": MessageType.UPDATE_PROFILE.value, "nick": nick, "avatarData": avatar_data}
