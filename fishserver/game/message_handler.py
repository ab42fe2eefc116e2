"""Routes binary game messages from clients to the game logic and the hub."""

from __future__ import annotations

import inspect
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .types import GameMessage, MessageType

logger = logging.getLogger(__name__)

PLAYER_INFO_BALANCE = 10000
MIN_BULLET_POWER = 1
MAX_BULLET_POWER = 100
MIN_CANNON_VALUE = 1
MAX_CANNON_VALUE = 10


def _timestamp() -> int:
    return int(time.time())


def _text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class MessageHandler:
    """Handles every kind of binary game message a client may send."""

    def __init__(self, game_usecase: Any, hub: Any) -> None:
        self.game_usecase = game_usecase
        self.hub = hub
        self._routes = {
            MessageType.FIRE_BULLET: self._handle_fire_bullet,
            MessageType.SWITCH_CANNON: self._handle_switch_cannon,
            MessageType.JOIN_ROOM: self._handle_join_room,
            MessageType.LEAVE_ROOM: self._handle_leave_room,
            MessageType.HEARTBEAT: self._handle_heartbeat,
            MessageType.GET_ROOM_LIST: self._handle_get_room_list,
            MessageType.GET_PLAYER_INFO: self._handle_get_player_info,
        }

    async def handle_message(self, client: Any, message: GameMessage) -> None:
        """Dispatch one message according to its type."""
        logger.debug("Handling message type: %s from client: %s", message.type, client.id)
        client.last_activity = datetime.now(timezone.utc)
        handler = self._routes.get(message.type)
        if handler is None:
            logger.warning("Unknown message type: %s from client: %s", message.type, client.id)
            self._send_error(client, "Unknown message type")
            return
        await handler(client, message)

    async def _handle_fire_bullet(self, client: Any, message: GameMessage) -> None:
        if not client.room_id:
            self._send_error(client, "Not in any room")
            return
        fire_data = message.data
        if not fire_data:
            self._send_error(client, "Invalid fire bullet data")
            return

        direction = float(fire_data.get("direction", 0.0))
        power = int(fire_data.get("power", 0))
        if not MIN_BULLET_POWER <= power <= MAX_BULLET_POWER:
            self._send_error(client, "Invalid bullet power")
            return

        try:
            bullet = await _resolve(
                self.game_usecase.fire_bullet(client.room_id, client.player_id, direction, power)
            )
        except Exception as exc:
            logger.error("Failed to fire bullet: %s", exc)
            self._send_error(client, "Failed to fire bullet")
            return

        client.send_message(
            GameMessage(
                MessageType.FIRE_BULLET_RESPONSE,
                {
                    "success": True,
                    "bullet_id": bullet.id,
                    "cost": bullet.cost,
                    "timestamp": _timestamp(),
                },
            )
        )

        position = fire_data.get("position") or {}
        await self._broadcast_to_room(
            client.room_id,
            GameMessage(
                MessageType.BULLET_FIRED,
                {
                    "player_id": client.player_id,
                    "bullet_id": bullet.id,
                    "direction": direction,
                    "power": power,
                    "position": {
                        "x": float(position.get("x", 0.0)),
                        "y": float(position.get("y", 0.0)),
                    },
                    "timestamp": _timestamp(),
                },
            ),
            client,
        )
        logger.debug(
            "Player %s fired bullet %s in room %s", client.player_id, bullet.id, client.room_id
        )

    async def _handle_switch_cannon(self, client: Any, message: GameMessage) -> None:
        if not client.room_id:
            self._send_error(client, "Not in any room")
            return
        cannon_data = message.data
        if not cannon_data:
            self._send_error(client, "Invalid cannon data")
            return

        cannon_type = int(cannon_data.get("cannon_type", 0))
        level = int(cannon_data.get("level", 0))
        if not MIN_CANNON_VALUE <= cannon_type <= MAX_CANNON_VALUE:
            self._send_error(client, "Invalid cannon type")
            return
        if not MIN_CANNON_VALUE <= level <= MAX_CANNON_VALUE:
            self._send_error(client, "Invalid cannon level")
            return

        power = level * 10
        client.send_message(
            GameMessage(
                MessageType.SWITCH_CANNON_RESPONSE,
                {
                    "success": True,
                    "cannon_type": cannon_type,
                    "level": level,
                    "power": power,
                    "timestamp": _timestamp(),
                },
            )
        )
        await self._broadcast_to_room(
            client.room_id,
            GameMessage(
                MessageType.CANNON_SWITCHED,
                {
                    "player_id": client.player_id,
                    "cannon_type": cannon_type,
                    "level": level,
                    "power": power,
                    "timestamp": _timestamp(),
                },
            ),
            client,
        )
        logger.debug(
            "Player %s switched cannon to type %d level %d in room %s",
            client.player_id,
            cannon_type,
            level,
            client.room_id,
        )

    async def _handle_join_room(self, client: Any, message: GameMessage) -> None:
        join_data = message.data
        if not join_data:
            self._send_error(client, "Invalid join room data")
            return
        room_id = join_data.get("room_id") or ""
        if not room_id:
            self._send_error(client, "Room ID is required")
            return

        try:
            await _resolve(self.game_usecase.join_room(room_id, client.player_id))
        except Exception as exc:
            logger.error("Failed to join room: %s", exc)
            self._send_error(client, "Failed to join room")
            return

        client.room_id = room_id
        await self.hub.join_room(client, room_id)
        client.send_message(
            GameMessage(
                MessageType.JOIN_ROOM_RESPONSE,
                {"success": True, "room_id": room_id, "timestamp": _timestamp()},
            )
        )
        logger.info("Player %s joined room %s", client.player_id, room_id)

    async def _handle_leave_room(self, client: Any, message: GameMessage) -> None:
        if not client.room_id:
            self._send_error(client, "Not in any room")
            return
        room_id = client.room_id

        try:
            await _resolve(self.game_usecase.leave_room(room_id, client.player_id))
        except Exception as exc:
            logger.error("Failed to leave room: %s", exc)
            self._send_error(client, "Failed to leave room")
            return

        await self.hub.leave_room(client, room_id)
        client.room_id = ""
        client.send_message(
            GameMessage(
                MessageType.LEAVE_ROOM_RESPONSE,
                {"success": True, "room_id": room_id, "timestamp": _timestamp()},
            )
        )
        logger.info("Player %s left room %s", client.player_id, room_id)

    async def _handle_heartbeat(self, client: Any, message: GameMessage) -> None:
        now = _timestamp()
        client.send_message(
            GameMessage(
                MessageType.HEARTBEAT_RESPONSE,
                {"server_time": now, "timestamp": now},
            )
        )

    async def _handle_get_room_list(self, client: Any, message: GameMessage) -> None:
        try:
            rooms = await _resolve(self.game_usecase.get_room_list(""))
        except Exception as exc:
            logger.error("Failed to get room list: %s", exc)
            self._send_error(client, "Failed to get room list")
            return

        room_infos = [
            {
                "room_id": room.id,
                "name": room.name,
                "type": _text(room.type),
                "player_count": len(room.players),
                "max_players": room.max_players,
                "status": _text(room.status),
            }
            for room in rooms or ()
        ]
        client.send_message(
            GameMessage(
                MessageType.ROOM_LIST_RESPONSE,
                {"rooms": room_infos, "timestamp": _timestamp()},
            )
        )

    async def _handle_get_player_info(self, client: Any, message: GameMessage) -> None:
        client.send_message(
            GameMessage(
                MessageType.PLAYER_INFO_RESPONSE,
                {
                    "player_id": client.player_id,
                    "nickname": client.id,
                    "balance": PLAYER_INFO_BALANCE,
                    "level": 1,
                    "exp": 0,
                    "room_id": client.room_id,
                    "timestamp": _timestamp(),
                },
            )
        )

    def _send_error(self, client: Any, error: str) -> None:
        client.send_message(
            GameMessage(
                MessageType.ERROR,
                {"message": error, "code": "GENERAL_ERROR", "timestamp": _timestamp()},
            )
        )

    async def _broadcast_to_room(self, room_id: str, message: GameMessage, exclude: Any) -> None:
        try:
            data = message.to_bytes()
        except (TypeError, ValueError) as exc:
            logger.error("Failed to encode game message: %s", exc)
            return
        await self.hub.broadcast_to_room(room_id, data, exclude)

    async def _broadcast_global(self, message: GameMessage) -> None:
        try:
            data = message.to_bytes()
        except (TypeError, ValueError) as exc:
            logger.error("Failed to encode game message: %s", exc)
            return
        await self.hub.broadcast_global(data)