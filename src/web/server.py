"""FastAPI server hosting shared dice tables.

Players connect over ``/ws/{room_name}``. The host drives its room through
the ``/api/rooms`` endpoints, authenticated by the host key returned when
the room is opened.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..config import get_config
from ..database.repository import SnapshotRepository
from ..database.session import close_db, init_db
from ..game.dice import DicePool, count_criticals, format_dice_spec
from ..host.persistence import DebouncedSaver
from ..protocol.messages import MAX_DICE_GROUPS, DiceSpec, parse_dice_spec
from ..room.models import HOST_ID, Visibility
from .rooms import HostedRoom, RoomAlreadyHosted, RoomRegistry, generate_peer_id

logger = logging.getLogger(__name__)

# Global state
room_registry = RoomRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    config = get_config()
    logging.basicConfig(level=config.logging.level.upper())

    saver = None
    if config.persistence.enabled:
        init_db(config.paths.database)
        logger.info(f"Room snapshots stored in {config.paths.database}")
        saver = DebouncedSaver(SnapshotRepository(), debounce_ms=config.persistence.debounce_ms)
    room_registry.configure(saver, config.rooms)

    yield

    # Cleanup
    room_registry.save_all()
    if config.persistence.enabled:
        close_db()
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Dice Table",
    description="Shared tabletop dice rolling with a host-authoritative room",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models
class CreateRoomRequest(BaseModel):
    room_name: str = Field(min_length=1, max_length=64)
    host_nick: Optional[str] = None
    host_avatar: Any = None
    restore: bool = True


class HostRollRequest(BaseModel):
    dice: Optional[list[DiceSpec]] = Field(default=None, max_length=MAX_DICE_GROUPS)
    notation: Optional[str] = Field(default=None, max_length=200)  # e.g. "3d20 + 2d4"
    visibility: Visibility = Visibility.PUBLIC
    targets: list[str] = Field(default_factory=list)


class ClearTableRequest(BaseModel):
    player_id: Optional[str] = None  # None = every table, "dm" = host table


class ProfileUpdate(BaseModel):
    nick: str = Field(min_length=1)
    avatar_data: Any = None


class SettingsUpdate(BaseModel):
    crit_hit: Optional[int] = Field(default=None, ge=1)
    crit_fail: Optional[int] = Field(default=None, ge=1)
    autoclear_seconds: Optional[int] = Field(default=None, ge=0)
    force_autoclear: Optional[bool] = None
    notify_hidden: Optional[bool] = None


class AutoclearUpdate(BaseModel):
    enabled: bool
    player_id: Optional[str] = None  # None = the host's own table


class SystemMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=500)


def require_host(room_name: str, host_key: Optional[str]) -> HostedRoom:
    """Look up a room and check the caller is its host."""
    hosted = room_registry.get(room_name)
    if hosted is None:
        raise HTTPException(status_code=404, detail="Room not found")
    if host_key != hosted.host_key:
        raise HTTPException(status_code=403, detail="Invalid host key")
    return hosted


@app.get("/api/status")
async def get_status():
    """Get server status."""
    return {
        "status": "online",
        "active_rooms": len(room_registry.rooms),
        "connected_players": sum(len(r.store.connected_ids()) for r in room_registry.rooms.values()),
    }


@app.post("/api/rooms")
async def create_room(request: CreateRoomRequest):
    """Open a room, restoring its saved state by default."""
    try:
        hosted = room_registry.open_room(
            request.room_name,
            host_nick=request.host_nick,
            host_avatar=request.host_avatar,
            restore=request.restore,
        )
    except RoomAlreadyHosted:
        raise HTTPException(status_code=409, detail="Room is already hosted")
    return {
        "room_name": hosted.name,
        "host_key": hosted.host_key,
        "restored": hosted.restored,
        "players": len(hosted.store.room.participants),
    }


@app.get("/api/rooms")
async def list_rooms():
    """List open rooms."""
    return {"rooms": room_registry.list_rooms()}


@app.get("/api/saves")
async def list_saves():
    """List rooms with a saved snapshot."""
    if room_registry.saver is None:
        return {"saves": []}
    return {"saves": SnapshotRepository().list_rooms()}


@app.get("/api/rooms/{room_name}")
async def get_room(room_name: str):
    """Public room summary."""
    hosted = room_registry.get(room_name)
    if hosted is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return hosted.summary()


@app.get("/api/rooms/{room_name}/state")
async def get_room_state(room_name: str, x_host_key: Optional[str] = Header(default=None)):
    """Full, unfiltered room state for the host."""
    hosted = require_host(room_name, x_host_key)
    return {"state": hosted.dispatcher.state_for(HOST_ID), "host_autoclear": hosted.dispatcher.host_autoclear}


def resolve_dice(hosted: HostedRoom, request: HostRollRequest) -> list[DiceSpec]:
    """Turn a host roll request into dice specs, from notation or an explicit list."""
    if request.notation is not None:
        pools = hosted.dispatcher.roller.parse_dice_string(request.notation)
        dice = parse_dice_spec([{"sides": p.sides, "count": p.count} for p in pools]) if pools else None
        if dice is None:
            raise HTTPException(status_code=422, detail=f'Invalid dice notation: "{request.notation}"')
        return dice
    if not request.dice:
        raise HTTPException(status_code=422, detail="Either dice or notation is required")
    return request.dice


@app.post("/api/rooms/{room_name}/roll")
async def host_roll(room_name: str, request: HostRollRequest, x_host_key: Optional[str] = Header(default=None)):
    """Roll dice as the host."""
    hosted = require_host(room_name, x_host_key)
    dice = resolve_dice(hosted, request)
    record = hosted.dispatcher.dm_roll(dice, request.visibility, request.targets)
    settings = hosted.store.room.settings
    crit_hits, crit_fails = count_criticals(record.dice_groups, settings.crit_hit, settings.crit_fail)
    return {
        "total": record.total,
        "notation": format_dice_spec(DicePool(count=g.count, sides=g.sides) for g in record.dice_groups),
        "dice": [{"sides": g.sides, "count": g.count, "results": list(g.results)} for g in record.dice_groups],
        "crit_hits": crit_hits,
        "crit_fails": crit_fails,
        "visibility": record.visibility.value,
        "timestamp": record.timestamp,
    }


@app.post("/api/rooms/{room_name}/kick/{player_id}")
async def kick_player(room_name: str, player_id: str, x_host_key: Optional[str] = Header(default=None)):
    """Remove a player from the room."""
    hosted = require_host(room_name, x_host_key)
    if not hosted.dispatcher.kick_participant(player_id):
        raise HTTPException(status_code=404, detail="Player not found")
    return {"success": True}


@app.post("/api/rooms/{room_name}/clear")
async def clear_table(room_name: str, request: ClearTableRequest, x_host_key: Optional[str] = Header(default=None)):
    """Clear one player's table, the host table ("dm"), or every table (null)."""
    hosted = require_host(room_name, x_host_key)
    if request.player_id is None:
        hosted.dispatcher.clear_all_tables()
    elif request.player_id == HOST_ID:
        hosted.dispatcher.clear_host_table()
    elif not hosted.dispatcher.clear_participant_table(request.player_id):
        raise HTTPException(status_code=404, detail="Player not found")
    return {"success": True}


@app.post("/api/rooms/{room_name}/history/clear")
async def clear_history(room_name: str, x_host_key: Optional[str] = Header(default=None)):
    """Empty the roll history."""
    hosted = require_host(room_name, x_host_key)
    hosted.dispatcher.clear_history()
    return {"success": True}


@app.put("/api/rooms/{room_name}/profile")
async def update_host_profile(room_name: str, update: ProfileUpdate, x_host_key: Optional[str] = Header(default=None)):
    """Change the host's nick and avatar."""
    hosted = require_host(room_name, x_host_key)
    if not hosted.dispatcher.update_host_profile(update.nick, update.avatar_data):
        raise HTTPException(status_code=409, detail=f'The nickname "{update.nick}" is already taken by a player.')
    return {"success": True, "nick": update.nick}


@app.put("/api/rooms/{room_name}/settings")
async def update_settings(room_name: str, update: SettingsUpdate, x_host_key: Optional[str] = Header(default=None)):
    """Change room settings."""
    hosted = require_host(room_name, x_host_key)
    settings = hosted.dispatcher.update_settings(**update.model_dump(exclude_none=True))
    return {
        "crit_hit": settings.crit_hit,
        "crit_fail": settings.crit_fail,
        "autoclear_seconds": settings.autoclear_seconds,
        "force_autoclear": settings.force_autoclear,
        "notify_hidden": settings.notify_hidden,
    }


@app.put("/api/rooms/{room_name}/autoclear")
async def update_autoclear(room_name: str, update: AutoclearUpdate, x_host_key: Optional[str] = Header(default=None)):
    """Toggle autoclear for the host table or one player's table."""
    hosted = require_host(room_name, x_host_key)
    if update.player_id is None or update.player_id == HOST_ID:
        hosted.dispatcher.set_host_autoclear(update.enabled)
    elif not hosted.dispatcher.set_participant_autoclear(update.player_id, update.enabled):
        raise HTTPException(status_code=404, detail="Player not found")
    return {"success": True, "enabled": update.enabled}


@app.post("/api/rooms/{room_name}/message")
async def send_system_message(
    room_name: str, request: SystemMessageRequest, x_host_key: Optional[str] = Header(default=None)
):
    """Broadcast a system message to every player."""
    hosted = require_host(room_name, x_host_key)
    hosted.dispatcher.send_system_message(request.text)
    return {"success": True}


@app.delete("/api/rooms/{room_name}")
async def close_room(room_name: str, x_host_key: Optional[str] = Header(default=None)):
    """Stop hosting: disconnect everyone and forget the saved state."""
    require_host(room_name, x_host_key)
    room_registry.close_room(room_name, forget=True)
    return {"success": True}


@app.websocket("/ws/{room_name}")
async def websocket_endpoint(websocket: WebSocket, room_name: str):
    """WebSocket connection for one player."""
    hosted = room_registry.get(room_name)
    if hosted is None:
        await websocket.close(code=4004, reason="Room not found")
        return

    await websocket.accept()

    peer_id = generate_peer_id()
    hosted.transport.register(peer_id, websocket)
    pump = asyncio.create_task(hosted.transport.pump(peer_id))
    hosted.dispatcher.on_connected(peer_id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            hosted.dispatcher.handle_message(peer_id, message.get("text") or message.get("bytes"))
    except WebSocketDisconnect:
        logger.debug(f"[{room_name}] Socket closed: {peer_id}")
    except RuntimeError as e:
        # Receiving after the pump closed the socket (kick, slow client)
        logger.debug(f"[{room_name}] Socket for {peer_id} already closed: {e}")
    finally:
        pump.cancel()
        hosted.transport.unregister(peer_id)
        # A closed room has already let everyone go
        if room_registry.get(room_name) is hosted:
            hosted.dispatcher.on_disconnected(peer_id)


def run_server(host: str | None = None, port: int | None = None):
    """Run the FastAPI server."""
    import uvicorn

    config = get_config()
    uvicorn.run(app, host=host or config.server.host, port=port or config.server.port)


if __name__ == "__main__":
    run_server()
