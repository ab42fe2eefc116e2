"""The hub: every connected client, the rooms they share and their managers."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .client import Client
from .room_manager import RoomManager
from .types import BroadcastMessage, GameActionMessage, JoinRoomMessage, LeaveRoomMessage

logger = logging.getLogger(__name__)

STATS_INTERVAL = 30.0


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HubStats:
    """Counters describing the hub's activity."""

    total_connections: int = 0
    active_connections: int = 0
    active_rooms: int = 0
    total_messages: int = 0
    last_activity: datetime | None = None
    start_time: datetime = field(default_factory=_now)


class _Command(Enum):
    REGISTER = "register"
    UNREGISTER = "unregister"
    JOIN = "join"
    LEAVE = "leave"
    ACTION = "action"
    BROADCAST = "broadcast"
    STOP = "stop"


class Hub:
    """Serialises all connection and room changes through one event loop task."""

    def __init__(self, game_usecase: Any) -> None:
        self.game_usecase = game_usecase
        self._clients: set[Client] = set()
        self._rooms: dict[str, set[Client]] = {}
        self._room_managers: dict[str, RoomManager] = {}
        self._room_tasks: set[asyncio.Task[None]] = set()
        self._commands: asyncio.Queue[tuple[_Command, Any]] = asyncio.Queue()
        self._stats = HubStats()
        self._stopped = False

    async def run(self) -> None:
        """Process hub commands until stopped, refreshing stats periodically."""
        logger.info("Hub started")
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + STATS_INTERVAL
        while True:
            timeout = next_tick - loop.time()
            if timeout <= 0:
                self._update_stats()
                next_tick = loop.time() + STATS_INTERVAL
                continue
            try:
                command, payload = await asyncio.wait_for(self._commands.get(), timeout)
            except asyncio.TimeoutError:
                continue
            if command is _Command.STOP:
                logger.info("Hub shutting down")
                return
            try:
                await self._dispatch(command, payload)
            except Exception:
                logger.exception("Hub failed to handle %s", command.value)

    async def _dispatch(self, command: _Command, payload: Any) -> None:
        if command is _Command.REGISTER:
            self._handle_register(payload)
        elif command is _Command.UNREGISTER:
            await self._handle_unregister(payload)
        elif command is _Command.JOIN:
            await self._handle_join_room(payload)
        elif command is _Command.LEAVE:
            await self._handle_leave_room(payload)
        elif command is _Command.ACTION:
            await self._handle_game_action(payload)
        elif command is _Command.BROADCAST:
            self._handle_broadcast(payload)

    async def register(self, client: Client) -> None:
        await self._commands.put((_Command.REGISTER, client))

    async def unregister(self, client: Client) -> None:
        await self._commands.put((_Command.UNREGISTER, client))

    async def join_room(self, client: Client, room_id: str) -> None:
        await self._commands.put((_Command.JOIN, JoinRoomMessage(client, room_id)))

    async def leave_room(self, client: Client, room_id: str) -> None:
        await self._commands.put((_Command.LEAVE, LeaveRoomMessage(client, room_id)))

    async def game_action(self, message: GameActionMessage) -> None:
        await self._commands.put((_Command.ACTION, message))

    async def broadcast_to_room(
        self, room_id: str, message: bytes, exclude: Client | None = None
    ) -> None:
        """Send raw bytes to every client of a room except ``exclude``."""
        await self._commands.put(
            (_Command.BROADCAST, BroadcastMessage(room_id, message, exclude))
        )

    async def broadcast_global(self, message: bytes) -> None:
        """Send raw bytes to every connected client."""
        await self._commands.put((_Command.BROADCAST, BroadcastMessage("", message)))

    def _handle_register(self, client: Client) -> None:
        self._clients.add(client)
        self._stats.total_connections += 1
        self._stats.active_connections = len(self._clients)
        self._stats.last_activity = _now()
        logger.info("Client registered: %s (total: %d)", client.id, len(self._clients))
        client.send_json(
            {
                "type": "welcome",
                "client_id": client.id,
                "server_time": int(_now().timestamp()),
            }
        )

    async def _handle_unregister(self, client: Client) -> None:
        if client not in self._clients:
            return
        self._clients.discard(client)
        client.close_send()
        if client.room_id:
            await self._remove_client_from_room(client, client.room_id)
        self._stats.active_connections = len(self._clients)
        self._stats.last_activity = _now()
        logger.info("Client unregistered: %s (total: %d)", client.id, len(self._clients))

    async def _handle_join_room(self, msg: JoinRoomMessage) -> None:
        client, room_id = msg.client, msg.room_id
        if client.room_id and client.room_id != room_id:
            await self._remove_client_from_room(client, client.room_id)

        self._rooms.setdefault(room_id, set()).add(client)
        client.room_id = room_id

        manager = self._room_managers.get(room_id)
        if manager is None:
            manager = RoomManager(room_id, self.game_usecase, self)
            self._room_managers[room_id] = manager
            task = asyncio.create_task(manager.run())
            self._room_tasks.add(task)
            task.add_done_callback(self._room_tasks.discard)

        self._stats.active_rooms = len(self._rooms)
        self._stats.last_activity = _now()
        logger.info("Client %s joined room %s", client.id, room_id)

        await manager.add_client(client)
        client.send_json(
            {"type": "room_joined", "room_id": room_id, "players": len(self._rooms[room_id])}
        )
        self._broadcast_json(
            room_id,
            {"type": "player_joined", "player_id": client.id, "room_id": room_id},
            client,
        )

    async def _handle_leave_room(self, msg: LeaveRoomMessage) -> None:
        await self._remove_client_from_room(msg.client, msg.room_id)
        logger.info("Client %s left room %s", msg.client.id, msg.room_id)
        msg.client.send_json({"type": "room_left", "room_id": msg.room_id})

    async def _remove_client_from_room(self, client: Client, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None and client in room:
            room.discard(client)
            manager = self._room_managers.get(room_id)
            if manager is not None:
                await manager.remove_client(client)
            if not room:
                del self._rooms[room_id]
                manager = self._room_managers.pop(room_id, None)
                if manager is not None:
                    manager.stop()
            else:
                self._broadcast_json(
                    room_id,
                    {"type": "player_left", "player_id": client.id, "room_id": room_id},
                    None,
                )
        client.room_id = ""
        self._stats.active_rooms = len(self._rooms)

    async def _handle_game_action(self, msg: GameActionMessage) -> None:
        self._stats.total_messages += 1
        self._stats.last_activity = _now()
        manager = self._room_managers.get(msg.room_id)
        if manager is None:
            logger.warning("Room manager not found for room: %s", msg.room_id)
            msg.client.send_error("Room not found")
            return
        await manager.handle_game_action(msg)

    def _handle_broadcast(self, msg: BroadcastMessage) -> None:
        if msg.room_id:
            self._send_to_room(msg.room_id, msg.message, msg.exclude)
            return
        for client in list(self._clients):
            if client is not msg.exclude and not client.enqueue(msg.message):
                client.close_send()
                self._clients.discard(client)

    def _broadcast_json(self, room_id: str, message: dict[str, Any], exclude: Client | None) -> None:
        try:
            data = json.dumps(message).encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.error("Failed to marshal broadcast message: %s", exc)
            return
        self._send_to_room(room_id, data, exclude)

    def _send_to_room(self, room_id: str, data: bytes, exclude: Client | None) -> None:
        room = self._rooms.get(room_id)
        if room is None:
            return
        for client in list(room):
            if client is not exclude and not client.enqueue(data):
                client.close_send()
                room.discard(client)

    def _update_stats(self) -> None:
        self._stats.active_connections = len(self._clients)
        self._stats.active_rooms = len(self._rooms)
        logger.debug(
            "Hub stats: connections=%d, rooms=%d, messages=%d",
            self._stats.active_connections,
            self._stats.active_rooms,
            self._stats.total_messages,
        )

    def get_stats(self) -> HubStats:
        """Return a snapshot of the hub's statistics."""
        return dataclasses.replace(
            self._stats,
            active_connections=len(self._clients),
            active_rooms=len(self._rooms),
        )

    def get_room_clients(self, room_id: str) -> list[Client]:
        return list(self._rooms.get(room_id, ()))

    def stop(self) -> None:
        """Stop every room manager, close every client and end the run loop."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping Hub")
        for manager in list(self._room_managers.values()):
            manager.stop()
        for client in list(self._clients):
            client.close_send()
        self._commands.put_nowait((_Command.STOP, None))