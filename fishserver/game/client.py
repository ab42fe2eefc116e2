"""WebSocket client connections and the handler that accepts them."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .types import GameActionMessage, GameMessage, MessageType

logger = logging.getLogger(__name__)

WRITE_WAIT = 10.0
MAX_MESSAGE_SIZE = 512
SEND_QUEUE_SIZE = 256
_CLOSE_TOO_BIG = 1009


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    raise TypeError(f"{type(value).__name__} is not JSON serialisable")


class Client:
    """One connected player: an outgoing queue plus read and write loops."""

    def __init__(
        self,
        hub: Any,
        connection: Any = None,
        client_id: str = "",
        player_id: int = 0,
        room_id: str = "",
    ) -> None:
        self.hub = hub
        self.connection = connection
        self.id = client_id
        self.player_id = player_id
        self.room_id = room_id
        self.send_queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=SEND_QUEUE_SIZE)
        self.connected_at = _now()
        self.last_activity = self.connected_at
        self._send_closed = False
        self._connection_closed = False

    @property
    def closed(self) -> bool:
        """Whether the outgoing queue has been closed."""
        return self._send_closed

    def close_send(self) -> None:
        """Close the outgoing queue; the write loop stops after draining it."""
        if self._send_closed:
            return
        self._send_closed = True
        while True:
            try:
                self.send_queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self.send_queue.get_nowait()

    def enqueue(self, data: bytes) -> bool:
        """Queue raw bytes; a full queue closes the client and returns False."""
        if self._send_closed:
            return False
        try:
            self.send_queue.put_nowait(data)
        except asyncio.QueueFull:
            self.close_send()
            return False
        return True

    def send_json(self, data: Any) -> bool:
        try:
            payload = json.dumps(data, default=_json_default).encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.error("Failed to marshal JSON: %s", exc)
            return False
        return self.enqueue(payload)

    def send_message(self, message: GameMessage) -> bool:
        try:
            payload = message.to_bytes()
        except (TypeError, ValueError) as exc:
            logger.error("Failed to encode game message: %s", exc)
            return False
        return self.enqueue(payload)

    def send_error(self, message: str) -> bool:
        """Send an error as a JSON message."""
        return self.send_json({"type": "error", "message": message})

    def send_error_message(self, message: str) -> bool:
        """Send an error as a binary game message."""
        return self.send_message(
            GameMessage(
                MessageType.ERROR,
                {
                    "message": message,
                    "code": "GENERAL_ERROR",
                    "timestamp": int(_now().timestamp()),
                },
            )
        )

    async def handle_text_message(self, raw: str | bytes) -> None:
        """Handle a JSON text message from the client."""
        try:
            msg = json.loads(raw)
        except ValueError as exc:
            logger.error("Failed to parse JSON message: %s", exc)
            return
        if not isinstance(msg, dict) or not isinstance(msg.get("type"), str):
            logger.error("Message missing type field")
            return

        msg_type = msg["type"]
        if msg_type == "join_room":
            room_id = msg.get("room_id")
            if not isinstance(room_id, str):
                self.send_error("Invalid room_id")
                return
            self.room_id = room_id
            await self.hub.join_room(self, room_id)
        elif msg_type == "leave_room":
            if not self.room_id:
                self.send_error("Not in any room")
                return
            await self.hub.leave_room(self, self.room_id)
            self.room_id = ""
        elif msg_type == "heartbeat":
            self.send_json(
                {"type": "heartbeat_response", "timestamp": int(_now().timestamp())}
            )
        else:
            logger.warning("Unknown message type: %s", msg_type)

    async def handle_binary_message(self, raw: bytes) -> None:
        """Handle a binary game message from the client."""
        try:
            message = GameMessage.from_bytes(raw)
        except ValueError as exc:
            logger.error("Failed to parse game message: %s", exc)
            return

        actions = {
            MessageType.FIRE_BULLET: "fire_bullet",
            MessageType.SWITCH_CANNON: "switch_cannon",
        }
        if message.type in actions:
            if not self.room_id:
                self.send_error_message("Not in any room")
                return
            await self.hub.game_action(
                GameActionMessage(
                    client=self,
                    room_id=self.room_id,
                    action=actions[message.type],
                    data=message,
                )
            )
        elif message.type is MessageType.JOIN_ROOM:
            await self.hub.join_room(self, "default")
        elif message.type is MessageType.LEAVE_ROOM:
            if not self.room_id:
                self.send_error_message("Not in any room")
                return
            await self.hub.leave_room(self, self.room_id)
        else:
            logger.warning("Unknown game message type: %s", message.type)

    async def read_pump(self) -> None:
        """Read messages until the connection ends, then unregister."""
        try:
            while True:
                event = await self.connection.receive()
                kind = event.get("type")
                if kind == "websocket.disconnect":
                    break
                if kind != "websocket.receive":
                    continue
                text = event.get("text")
                data = event.get("bytes")
                size = len(text.encode("utf-8")) if text is not None else len(data or b"")
                if size > MAX_MESSAGE_SIZE:
                    logger.error("Message of %d bytes exceeds the read limit", size)
                    await self._close_connection(_CLOSE_TOO_BIG)
                    break
                self.last_activity = _now()
                if text is not None:
                    await self.handle_text_message(text)
                elif data is not None:
                    await self.handle_binary_message(data)
        except Exception as exc:  # the transport reports closures as errors
            logger.error("WebSocket error: %s", exc)
        finally:
            await self.hub.unregister(self)
            await self._close_connection()

    async def write_pump(self) -> None:
        """Write queued messages, batching those already waiting into one frame."""
        try:
            while True:
                message = await self.send_queue.get()
                if message is None:
                    return
                frame = [message]
                closing = False
                for _ in range(self.send_queue.qsize()):
                    extra = self.send_queue.get_nowait()
                    if extra is None:
                        closing = True
                        break
                    frame.append(extra)
                try:
                    await asyncio.wait_for(
                        self.connection.send_bytes(b"\n".join(frame)), WRITE_WAIT
                    )
                except Exception as exc:
                    logger.error("WebSocket write failed: %s", exc)
                    return
                if closing:
                    return
        finally:
            await self._close_connection()

    async def _close_connection(self, code: int = 1000) -> None:
        if self._connection_closed or self.connection is None:
            return
        self._connection_closed = True
        try:
            await self.connection.close(code)
        except Exception as exc:
            logger.debug("Closing connection failed: %s", exc)

    def connection_info(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "player_id": self.player_id,
            "room_id": self.room_id,
            "connected_at": self.connected_at,
            "last_activity": self.last_activity,
            "send_queue": self.send_queue.qsize(),
        }


class WebSocketHandler:
    """Accepts WebSocket connections and attaches them to the hub."""

    def __init__(self, hub: Any) -> None:
        self.hub = hub

    async def serve(self, websocket: Any) -> None:
        try:
            await websocket.accept()
        except Exception as exc:
            logger.error("WebSocket upgrade failed: %s", exc)
            return

        client = Client(self.hub, websocket)
        params = websocket.query_params
        player_id = params.get("player_id", "")
        if player_id:
            client.id = player_id
            client.room_id = params.get("room_id", "") or ""

        await self.hub.register(client)
        logger.info("New WebSocket connection: player=%s, room=%s", client.id, client.room_id)

        writer = asyncio.create_task(client.write_pump())
        await client.read_pump()
        client.close_send()
        await writer