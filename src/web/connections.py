"""WebSocket transport for one hosted room."""

import asyncio
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Queue marker asking the pump to close the socket after earlier messages
_CLOSE = object()

KICK_CLOSE_CODE = 4001
SLOW_CLOSE_CODE = 4008


class WebSocketTransport:
    """Fire-and-forget delivery to the players of one room.

    Each connection gets its own outbound queue drained by ``pump``, so
    ``send_to`` and ``broadcast`` never block the dispatcher and each
    player receives messages in the order they were sent.
    """

    def __init__(self, room_name: str, send_timeout_ms: int = 1000, max_slow_sends: int = 3):
        self.room_name = room_name
        self.send_timeout_ms = send_timeout_ms
        self.max_slow_sends = max_slow_sends
        self.sockets: dict[str, WebSocket] = {}
        self._queues: dict[str, asyncio.Queue] = {}
        # Backpressure tracking for slow clients (closed after repeated timeouts)
        self.slow_client_counts: dict[str, int] = {}

    def register(self, peer_id: str, websocket: WebSocket) -> None:
        self.sockets[peer_id] = websocket
        self._queues[peer_id] = asyncio.Queue()

    def unregister(self, peer_id: str) -> None:
        self.sockets.pop(peer_id, None)
        self._queues.pop(peer_id, None)
        self.slow_client_counts.pop(peer_id, None)

    def connected_ids(self) -> list[str]:
        return list(self.sockets)

    def send_to(self, peer_id: str, message: dict) -> None:
        queue = self._queues.get(peer_id)
        if queue is None:
            logger.debug(f"[{self.room_name}] Dropping message for unknown peer {peer_id}")
            return
        queue.put_nowait(message)

    def broadcast(self, message: dict) -> None:
        for queue in self._queues.values():
            queue.put_nowait(message)

    def close(self, peer_id: str) -> None:
        """Close a connection once everything already queued for it is sent."""
        queue = self._queues.get(peer_id)
        if queue is not None:
            queue.put_nowait(_CLOSE)

    def close_all(self) -> None:
        for peer_id in list(self._queues):
            self.close(peer_id)

    async def pump(self, peer_id: str) -> None:
        """Deliver queued messages to one socket until it closes."""
        websocket = self.sockets.get(peer_id)
        queue = self._queues.get(peer_id)
        if websocket is None or queue is None:
            return

        while True:
            message = await queue.get()
            if message is _CLOSE:
                await self._close_socket(peer_id, websocket, KICK_CLOSE_CODE, "Removed by host")
                return
            if not await self._send(peer_id, websocket, message):
                await self._close_socket(peer_id, websocket, SLOW_CLOSE_CODE, "Too slow")
                return

    async def _send(self, peer_id: str, websocket: WebSocket, message: dict) -> bool:
        """Send one message; False means the connection should be dropped."""
        try:
            async with asyncio.timeout(self.send_timeout_ms / 1000):
                await websocket.send_json(message)
        except asyncio.TimeoutError:
            count = self.slow_client_counts.get(peer_id, 0) + 1
            self.slow_client_counts[peer_id] = count
            logger.warning(f"[{self.room_name}] Send timeout to {peer_id} ({count}/{self.max_slow_sends})")
            return count < self.max_slow_sends
        except Exception as e:
            logger.warning(f"[{self.room_name}] Failed to send to {peer_id}: {e}")
            return False

        if peer_id in self.slow_client_counts:
            # Reset slow count on successful send
            self.slow_client_counts[peer_id] = max(0, self.slow_client_counts[peer_id] - 1)
        return True

    async def _close_socket(self, peer_id: str, websocket: WebSocket, code: int, reason: str) -> None:
        self.unregister(peer_id)
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"[{self.room_name}] Close of {peer_id} failed: {e}")
