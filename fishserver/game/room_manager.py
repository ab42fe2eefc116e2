"""Per-room game loop: players, bullets, fish and collision handling."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from .types import GameActionMessage, GameMessage, MessageType

logger = logging.getLogger(__name__)

TICK_INTERVAL = 0.1
BULLET_LIFETIME = timedelta(seconds=5)
COLLISION_RADIUS_SQUARED = 50.0 * 50.0
FIELD_WIDTH = 1200.0
INITIAL_BALANCE = 10000
ROOM_TYPE_NOVICE = "novice"
ROOM_MAX_PLAYERS = 4


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return _now()
    return value if value.tzinfo is not None else value.astimezone()


def _text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _jsonable(value: Any) -> Any:
    """Convert dataclasses, datetimes and enums into plain JSON values."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


@dataclass
class GamePosition:
    x: float = 0.0
    y: float = 0.0


@dataclass
class CannonInfo:
    type: int = 1
    level: int = 1
    power: int = 10
    fire_rate: float = 1.0
    direction: float = 0.0


@dataclass
class PlayerInfo:
    id: str
    player_id: int = 0
    nickname: str = ""
    balance: int = INITIAL_BALANCE
    position: GamePosition = field(default_factory=GamePosition)
    cannon: CannonInfo = field(default_factory=CannonInfo)
    status: str = "playing"
    join_time: datetime = field(default_factory=_now)


@dataclass
class FishInfo:
    id: int
    type: int = 0
    position: GamePosition = field(default_factory=GamePosition)
    direction: float = 0.0
    speed: float = 0.0
    health: int = 0
    max_health: int = 0
    value: int = 0
    status: str = ""
    spawn_time: datetime = field(default_factory=_now)


@dataclass
class BulletInfo:
    id: int
    player_id: str = ""
    position: GamePosition = field(default_factory=GamePosition)
    direction: float = 0.0
    speed: float = 0.0
    power: int = 0
    created_at: datetime = field(default_factory=_now)


@dataclass
class GameState:
    """Everything a room shows its players."""

    room_id: str
    status: str = "waiting"
    players: dict[str, PlayerInfo] = field(default_factory=dict)
    fishes: dict[int, FishInfo] = field(default_factory=dict)
    bullets: dict[int, BulletInfo] = field(default_factory=dict)
    last_update: datetime = field(default_factory=_now)
    game_start_time: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        """Return the state as JSON-ready data."""
        return _jsonable(self)


class _Command(Enum):
    ADD = "add"
    REMOVE = "remove"
    ACTION = "action"
    STOP = "stop"


class RoomManager:
    """Runs the game loop of one room and applies its players' actions."""

    def __init__(self, room_id: str, game_usecase: Any, hub: Any) -> None:
        self.room_id = room_id
        self.game_usecase = game_usecase
        self.hub = hub
        self.clients: set[Any] = set()
        self.game_state = GameState(room_id)
        self._commands: asyncio.Queue[tuple[_Command, Any]] = asyncio.Queue()
        self._stopped = False

    async def run(self) -> None:
        """Process commands and tick the game loop until stopped."""
        logger.info("Room manager started for room: %s", self.room_id)
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + TICK_INTERVAL
        while True:
            timeout = next_tick - loop.time()
            if timeout <= 0:
                await self.game_loop()
                next_tick = loop.time() + TICK_INTERVAL
                continue
            try:
                command, payload = await asyncio.wait_for(self._commands.get(), timeout)
            except asyncio.TimeoutError:
                continue
            if command is _Command.STOP:
                logger.info("Room manager stopping for room: %s", self.room_id)
                return
            if command is _Command.ADD:
                await self._handle_add_client(payload)
            elif command is _Command.REMOVE:
                await self._handle_remove_client(payload)
            elif command is _Command.ACTION:
                await self._handle_game_action(payload)

    async def add_client(self, client: Any) -> None:
        await self._commands.put((_Command.ADD, client))

    async def remove_client(self, client: Any) -> None:
        await self._commands.put((_Command.REMOVE, client))

    async def handle_game_action(self, action: GameActionMessage) -> None:
        await self._commands.put((_Command.ACTION, action))

    def stop(self) -> None:
        """Ask the run loop to finish."""
        if self._stopped:
            return
        self._stopped = True
        self._commands.put_nowait((_Command.STOP, None))

    async def _handle_add_client(self, client: Any) -> None:
        self.clients.add(client)
        self.game_state.players[client.id] = PlayerInfo(
            id=client.id,
            player_id=client.player_id,
            nickname=client.id,
            balance=INITIAL_BALANCE,
            position=GamePosition(100.0, 700.0),
            cannon=CannonInfo(type=1, level=1, power=10, fire_rate=1.0, direction=0.0),
            status="playing",
        )
        if len(self.game_state.players) == 1 and self.game_state.status == "waiting":
            await self._start_game()

        client.send_json({"type": "game_state", "game_state": self.game_state.to_dict()})
        logger.info(
            "Client %s added to room %s, total players: %d",
            client.id,
            self.room_id,
            len(self.game_state.players),
        )

    async def _handle_remove_client(self, client: Any) -> None:
        if client not in self.clients:
            return
        self.clients.discard(client)
        self.game_state.players.pop(client.id, None)
        if not self.game_state.players:
            await self._pause_game()
        logger.info(
            "Client %s removed from room %s, remaining players: %d",
            client.id,
            self.room_id,
            len(self.game_state.players),
        )

    async def _handle_game_action(self, action: GameActionMessage) -> None:
        if action.action == "fire_bullet":
            await self._handle_fire_bullet(action)
        elif action.action == "switch_cannon":
            await self._handle_switch_cannon(action)
        else:
            logger.warning("Unknown game action: %s", action.action)

    async def _handle_fire_bullet(self, action: GameActionMessage) -> None:
        client = action.client
        player = self.game_state.players.get(client.id)
        if player is None:
            client.send_error("Player not in game")
            return
        message = action.data
        if not isinstance(message, GameMessage):
            client.send_error("Invalid message format")
            return

        direction = 0.0
        power = player.cannon.power
        if message.type is MessageType.FIRE_BULLET and message.data:
            direction = float(message.data.get("direction", 0.0))
            power = int(message.data.get("power", 0))

        try:
            bullet = await _resolve(
                self.game_usecase.fire_bullet(self.room_id, client.player_id, direction, power)
            )
        except Exception as exc:
            logger.error("Failed to fire bullet: %s", exc)
            client.send_error("Failed to fire bullet")
            return

        info = BulletInfo(
            id=bullet.id,
            player_id=client.id,
            position=GamePosition(player.position.x, player.position.y),
            direction=direction,
            speed=bullet.speed,
            power=bullet.power,
            created_at=_aware(getattr(bullet, "created_at", None)),
        )
        self.game_state.bullets[bullet.id] = info
        player.balance -= bullet.cost

        await self._broadcast(
            {
                "type": "bullet_fired",
                "player_id": client.id,
                "bullet": info,
                "timestamp": int(_now().timestamp()),
            }
        )
        logger.debug("Player %s fired bullet %s in room %s", client.id, bullet.id, self.room_id)

    async def _handle_switch_cannon(self, action: GameActionMessage) -> None:
        client = action.client
        player = self.game_state.players.get(client.id)
        if player is None:
            client.send_error("Player not in game")
            return

        new_type, new_level = 2, 1
        player.cannon.type = new_type
        player.cannon.level = new_level
        player.cannon.power = new_level * 10

        await self._broadcast(
            {
                "type": "cannon_switched",
                "player_id": client.id,
                "cannon": player.cannon,
                "timestamp": int(_now().timestamp()),
            }
        )
        logger.debug(
            "Player %s switched cannon to type %d level %d in room %s",
            client.id,
            new_type,
            new_level,
            self.room_id,
        )

    async def game_loop(self) -> None:
        """Advance the room by one tick while a game is playing."""
        if self.game_state.status != "playing":
            return
        now = _now()
        delta = (now - _aware(self.game_state.last_update)).total_seconds()

        self._update_bullets(delta)
        await self._update_fishes()
        await self._check_collisions()
        self._cleanup_expired_objects(now)

        self.game_state.last_update = now
        await self._broadcast(
            {"type": "game_state_update", "game_state": self.game_state.to_dict()}
        )

    def _update_bullets(self, delta: float) -> None:
        for bullet_id, bullet in list(self.game_state.bullets.items()):
            bullet.position.x += bullet.speed * delta * 0.866
            bullet.position.y -= bullet.speed * delta * 0.5
            pos = bullet.position
            if pos.y < 0 or pos.x < 0 or pos.x > FIELD_WIDTH:
                del self.game_state.bullets[bullet_id]

    async def _update_fishes(self) -> None:
        try:
            room_state = await _resolve(self.game_usecase.get_room_state(self.room_id))
        except Exception:
            return
        fishes = getattr(room_state, "fishes", None) or {}
        values = fishes.values() if isinstance(fishes, dict) else fishes
        for fish in values:
            fish_type = getattr(fish, "type", None)
            self.game_state.fishes[fish.id] = FishInfo(
                id=fish.id,
                type=getattr(fish_type, "id", fish_type) or 0,
                position=GamePosition(fish.position.x, fish.position.y),
                direction=fish.direction,
                speed=fish.speed,
                health=fish.health,
                max_health=fish.max_health,
                value=fish.value,
                status=_text(fish.status),
                spawn_time=_aware(getattr(fish, "spawn_time", None)),
            )

    async def _check_collisions(self) -> None:
        for bullet_id, bullet in list(self.game_state.bullets.items()):
            for fish_id, fish in list(self.game_state.fishes.items()):
                dx = bullet.position.x - fish.position.x
                dy = bullet.position.y - fish.position.y
                if dx * dx + dy * dy < COLLISION_RADIUS_SQUARED:
                    await self._handle_collision(bullet_id, fish_id)
                    break

    async def _handle_collision(self, bullet_id: int, fish_id: int) -> None:
        bullet = self.game_state.bullets.get(bullet_id)
        fish = self.game_state.fishes.get(fish_id)
        if bullet is None or fish is None:
            return
        try:
            result = await _resolve(
                self.game_usecase.hit_fish(self.room_id, bullet_id, fish_id)
            )
        except Exception as exc:
            logger.error("Failed to process hit: %s", exc)
            return

        self.game_state.bullets.pop(bullet_id, None)
        if not result.success:
            return

        if result.damage >= fish.health:
            self.game_state.fishes.pop(fish_id, None)
        else:
            fish.health -= result.damage

        player = self.game_state.players.get(bullet.player_id)
        if player is not None:
            player.balance += result.reward

        await self._broadcast(
            {
                "type": "fish_hit",
                "player_id": bullet.player_id,
                "fish_id": fish_id,
                "bullet_id": bullet_id,
                "damage": result.damage,
                "reward": result.reward,
                "is_critical": result.is_critical,
                "timestamp": int(_now().timestamp()),
            }
        )
        logger.debug(
            "Fish %s hit by player %s, damage: %s, reward: %s",
            fish_id,
            bullet.player_id,
            result.damage,
            result.reward,
        )

    def _cleanup_expired_objects(self, now: datetime) -> None:
        for bullet_id, bullet in list(self.game_state.bullets.items()):
            if now - _aware(bullet.created_at) > BULLET_LIFETIME:
                del self.game_state.bullets[bullet_id]

    async def _start_game(self) -> None:
        self.game_state.status = "playing"
        self.game_state.game_start_time = _now()
        try:
            await _resolve(self.game_usecase.create_room(ROOM_TYPE_NOVICE, ROOM_MAX_PLAYERS))
        except Exception as exc:
            logger.error("Failed to create game room: %s", exc)
            return
        await self._broadcast(
            {
                "type": "game_started",
                "room_id": self.room_id,
                "timestamp": int(_now().timestamp()),
            }
        )
        logger.info("Game started in room: %s", self.room_id)

    async def _pause_game(self) -> None:
        self.game_state.status = "waiting"
        await self._broadcast(
            {
                "type": "game_paused",
                "room_id": self.room_id,
                "timestamp": int(_now().timestamp()),
            }
        )
        logger.info("Game paused in room: %s", self.room_id)

    async def _broadcast(self, message: dict[str, Any], exclude: Any = None) -> None:
        try:
            data = json.dumps(_jsonable(message)).encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.error("Failed to marshal broadcast message: %s", exc)
            return
        await _resolve(self.hub.broadcast_to_room(self.room_id, data, exclude))