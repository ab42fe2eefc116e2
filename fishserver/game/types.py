"""Shared types for the game server: configuration, states, messages and errors."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import Client


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class GameConfig:
    """Tunable limits of the game server; durations are in seconds."""

    max_connections: int = 1000
    ping_interval: float = 54.0
    pong_timeout: float = 60.0
    write_timeout: float = 10.0
    read_timeout: float = 60.0
    max_message_size: int = 512
    max_rooms: int = 100
    max_players_per_room: int = 4
    room_idle_timeout: float = 300.0
    game_loop_fps: int = 10
    state_update_fps: int = 1
    message_queue_size: int = 256
    broadcast_buffer: int = 512


def default_game_config() -> GameConfig:
    """Return the default game configuration."""
    return GameConfig()


class ClientState(str, Enum):
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    IN_ROOM = "in_room"
    PLAYING = "playing"
    DISCONNECTED = "disconnected"


class RoomState(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    PAUSED = "paused"
    CLOSED = "closed"


class EventType(str, Enum):
    PLAYER_JOIN = "player_join"
    PLAYER_LEAVE = "player_leave"
    GAME_START = "game_start"
    GAME_END = "game_end"
    BULLET_FIRED = "bullet_fired"
    FISH_HIT = "fish_hit"
    FISH_SPAWNED = "fish_spawned"
    FISH_DIED = "fish_died"
    PLAYER_REWARD = "player_reward"
    CANNON_SWITCH = "cannon_switch"
    ROOM_UPDATE = "room_update"
    ERROR = "error"


class MessageType(IntEnum):
    """Kinds of binary game messages exchanged with clients."""

    UNSPECIFIED = 0
    FIRE_BULLET = 1
    SWITCH_CANNON = 2
    JOIN_ROOM = 3
    LEAVE_ROOM = 4
    HEARTBEAT = 5
    GET_ROOM_LIST = 6
    GET_PLAYER_INFO = 7
    FIRE_BULLET_RESPONSE = 8
    SWITCH_CANNON_RESPONSE = 9
    JOIN_ROOM_RESPONSE = 10
    LEAVE_ROOM_RESPONSE = 11
    HEARTBEAT_RESPONSE = 12
    ROOM_LIST_RESPONSE = 13
    PLAYER_INFO_RESPONSE = 14
    BULLET_FIRED = 15
    CANNON_SWITCHED = 16
    FISH_SPAWNED = 17
    FISH_DIED = 18
    PLAYER_REWARD = 19
    ERROR = 20


_MESSAGE_TYPE_NAMES: dict[MessageType, str] = {
    MessageType.FIRE_BULLET: "fire_bullet",
    MessageType.SWITCH_CANNON: "switch_cannon",
    MessageType.JOIN_ROOM: "join_room",
    MessageType.LEAVE_ROOM: "leave_room",
    MessageType.HEARTBEAT: "heartbeat",
    MessageType.GET_ROOM_LIST: "get_room_list",
    MessageType.GET_PLAYER_INFO: "get_player_info",
    MessageType.FIRE_BULLET_RESPONSE: "fire_bullet_response",
    MessageType.SWITCH_CANNON_RESPONSE: "switch_cannon_response",
    MessageType.JOIN_ROOM_RESPONSE: "join_room_response",
    MessageType.LEAVE_ROOM_RESPONSE: "leave_room_response",
    MessageType.HEARTBEAT_RESPONSE: "heartbeat_response",
    MessageType.ROOM_LIST_RESPONSE: "room_list_response",
    MessageType.PLAYER_INFO_RESPONSE: "player_info_response",
    MessageType.BULLET_FIRED: "bullet_fired",
    MessageType.CANNON_SWITCHED: "cannon_switched",
    MessageType.FISH_SPAWNED: "fish_spawned",
    MessageType.FISH_DIED: "fish_died",
    MessageType.PLAYER_REWARD: "player_reward",
    MessageType.ERROR: "error",
}


def get_message_type_name(msg_type: MessageType | int) -> str:
    """Return the snake-case name of a message type, or "unknown"."""
    try:
        return _MESSAGE_TYPE_NAMES.get(MessageType(msg_type), "unknown")
    except ValueError:
        return "unknown"


@dataclass
class GameMessage:
    """A typed game message; ``data`` holds the fields of its payload."""

    type: MessageType
    data: dict[str, Any] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        """Encode the message into its binary wire form."""
        return json.dumps(
            {"type": int(self.type), "data": self.data},
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> GameMessage:
        """Decode a message; raises ValueError on malformed input."""
        decoded = json.loads(raw)
        if not isinstance(decoded, dict):
            raise ValueError("game message must be an object")
        raw_type = decoded.get("type", 0)
        if not isinstance(raw_type, int) or isinstance(raw_type, bool):
            raise ValueError("game message type must be an integer")
        data = decoded.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("game message data must be an object")
        return cls(MessageType(raw_type), data)


@dataclass
class WebSocketMessage:
    type: str
    data: Any = None
    timestamp: int = 0
    message_id: str = ""


@dataclass
class ErrorResponse:
    code: str
    message: str
    details: str = ""


@dataclass
class AuthInfo:
    player_id: int
    token: str
    nickname: str
    level: int = 0
    balance: int = 0


@dataclass
class RoomInfoResponse:
    room_id: str
    name: str
    type: str
    status: RoomState
    player_count: int = 0
    max_players: int = 0
    players: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)


@dataclass
class GameStats:
    total_connections: int = 0
    active_connections: int = 0
    peak_connections: int = 0
    total_rooms: int = 0
    active_rooms: int = 0
    playing_rooms: int = 0
    total_messages: int = 0
    messages_per_sec: int = 0
    total_games: int = 0
    active_games: int = 0
    total_bullets_fired: int = 0
    total_fish_caught: int = 0
    avg_latency: timedelta = field(default_factory=timedelta)
    server_uptime: timedelta = field(default_factory=timedelta)
    last_update: datetime = field(default_factory=_now)


@dataclass
class ValidationError:
    field: str
    message: str
    value: Any = None


class GameError(Exception):
    """A game-level failure with a stable code and a category."""

    def __init__(self, code: str, message: str, error_type: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_type = error_type

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message, "type": self.error_type}


ERR_PLAYER_NOT_FOUND = GameError("PLAYER_NOT_FOUND", "Player not found", "CLIENT_ERROR")
ERR_ROOM_NOT_FOUND = GameError("ROOM_NOT_FOUND", "Room not found", "CLIENT_ERROR")
ERR_ROOM_FULL = GameError("ROOM_FULL", "Room is full", "CLIENT_ERROR")
ERR_INSUFFICIENT_FUNDS = GameError("INSUFFICIENT_FUNDS", "Insufficient balance", "CLIENT_ERROR")
ERR_INVALID_PARAMETERS = GameError("INVALID_PARAMETERS", "Invalid parameters", "CLIENT_ERROR")
ERR_NOT_IN_ROOM = GameError("NOT_IN_ROOM", "Player not in any room", "CLIENT_ERROR")
ERR_GAME_NOT_STARTED = GameError("GAME_NOT_STARTED", "Game has not started", "CLIENT_ERROR")
ERR_SERVER_ERROR = GameError("SERVER_ERROR", "Internal server error", "SERVER_ERROR")
ERR_CONNECTION_CLOSED = GameError("CONNECTION_CLOSED", "Connection closed", "CONNECTION_ERROR")
ERR_MESSAGE_TOO_LARGE = GameError("MESSAGE_TOO_LARGE", "Message too large", "PROTOCOL_ERROR")
ERR_INVALID_MESSAGE = GameError("INVALID_MESSAGE", "Invalid message format", "PROTOCOL_ERROR")


@dataclass
class JoinRoomMessage:
    client: Client
    room_id: str


@dataclass
class LeaveRoomMessage:
    client: Client
    room_id: str


@dataclass
class GameActionMessage:
    client: Client
    room_id: str
    action: str
    data: Any = None
    timestamp: datetime = field(default_factory=_now)


@dataclass
class BroadcastMessage:
    """A message for a room, or for everyone when ``room_id`` is empty."""

    room_id: str
    message: bytes
    exclude: Client | None = None