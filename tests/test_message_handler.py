import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from fishserver.game.client import Client
from fishserver.game.hub import Hub
from fishserver.game.message_handler import MessageHandler
from fishserver.game.types import GameMessage, MessageType


class FakeUsecase:
    def __init__(self, fail=False):
        self.fail = fail
        self.fired = []
        self.joined = []
        self.left = []
        self.rooms = []

    def fire_bullet(self, room_id, player_id, direction, power):
        if self.fail:
            raise RuntimeError("boom")
        self.fired.append((room_id, player_id, direction, power))
        return SimpleNamespace(
            id=42,
            cost=power,
            speed=100.0,
            power=power,
            created_at=datetime.now(timezone.utc),
        )

    def join_room(self, room_id, player_id):
        if self.fail:
            raise RuntimeError("boom")
        self.joined.append((room_id, player_id))

    def leave_room(self, room_id, player_id):
        if self.fail:
            raise RuntimeError("boom")
        self.left.append((room_id, player_id))

    def get_room_list(self, room_type):
        if self.fail:
            raise RuntimeError("boom")
        return self.rooms

    def create_room(self, room_type, max_players):
        return SimpleNamespace(id="created")

    def get_room_state(self, room_id):
        return SimpleNamespace(fishes={})

    def hit_fish(self, room_id, bullet_id, fish_id):
        return SimpleNamespace(success=False, damage=0, reward=0, is_critical=False)


class RecordingHub:
    def __init__(self):
        self.broadcasts = []
        self.joins = []
        self.leaves = []

    async def broadcast_to_room(self, room_id, message, exclude=None):
        self.broadcasts.append((room_id, message, exclude))

    async def broadcast_global(self, message):
        self.broadcasts.append(("", message, None))

    async def join_room(self, client, room_id):
        self.joins.append((client, room_id))

    async def leave_room(self, client, room_id):
        self.leaves.append((client, room_id))


def drain(client):
    items = []
    while not client.send_queue.empty():
        raw = client.send_queue.get_nowait()
        if raw is not None:
            items.append(raw)
    return items


def game_messages(client):
    out = []
    for raw in drain(client):
        try:
            out.append(GameMessage.from_bytes(raw))
        except ValueError:
            continue
    return out


def make(usecase=None, room_id=""):
    hub = RecordingHub()
    usecase = usecase or FakeUsecase()
    handler = MessageHandler(usecase, hub)
    client = Client(hub, client_id="test_player_1", player_id=1, room_id=room_id)
    return handler, hub, usecase, client


@pytest.mark.asyncio
async def test_heartbeat_response():
    handler, _, _, client = make()
    await handler.handle_message(client, GameMessage(MessageType.HEARTBEAT, {"timestamp": 1}))
    messages = game_messages(client)
    assert [m.type for m in messages] == [MessageType.HEARTBEAT_RESPONSE]
    assert messages[0].data["server_time"] == messages[0].data["timestamp"]


@pytest.mark.asyncio
async def test_last_activity_updated():
    handler, _, _, client = make()
    client.last_activity = datetime.now(timezone.utc) - timedelta(hours=1)
    before = client.last_activity
    await handler.handle_message(client, GameMessage(MessageType.HEARTBEAT))
    assert client.last_activity > before


@pytest.mark.asyncio
async def test_fire_bullet_not_in_room():
    handler, _, usecase, client = make()
    msg = GameMessage(MessageType.FIRE_BULLET, {"direction": 1.0, "power": 10})
    await handler.handle_message(client, msg)
    messages = game_messages(client)
    assert messages[0].type is MessageType.ERROR
    assert messages[0].data["message"] == "Not in any room"
    assert messages[0].data["code"] == "GENERAL_ERROR"
    assert usecase.fired == []


@pytest.mark.asyncio
async def test_fire_bullet_missing_data():
    handler, _, _, client = make(room_id="r1")
    await handler.handle_message(client, GameMessage(MessageType.FIRE_BULLET))
    assert game_messages(client)[0].data["message"] == "Invalid fire bullet data"


@pytest.mark.asyncio
@pytest.mark.parametrize("power", [0, 101])
async def test_fire_bullet_invalid_power(power):
    handler, _, usecase, client = make(room_id="r1")
    await handler.handle_message(
        client, GameMessage(MessageType.FIRE_BULLET, {"direction": 0.5, "power": power})
    )
    assert game_messages(client)[0].data["message"] == "Invalid bullet power"
    assert usecase.fired == []


@pytest.mark.asyncio
async def test_fire_bullet_success_responds_and_broadcasts():
    handler, hub, usecase, client = make(room_id="r1")
    msg = GameMessage(
        MessageType.FIRE_BULLET,
        {"direction": 0.5, "power": 20, "position": {"x": 3.0, "y": 4.0}},
    )
    await handler.handle_message(client, msg)
    assert usecase.fired == [("r1", 1, 0.5, 20)]
    response = game_messages(client)[0]
    assert response.type is MessageType.FIRE_BULLET_RESPONSE
    assert response.data["success"] is True
    assert response.data["bullet_id"] == 42
    assert response.data["cost"] == 20
    assert len(hub.broadcasts) == 1
    room_id, data, exclude = hub.broadcasts[0]
    assert room_id == "r1"
    assert exclude is client
    event = GameMessage.from_bytes(data)
    assert event.type is MessageType.BULLET_FIRED
    assert event.data["position"] == {"x": 3.0, "y": 4.0}
    assert event.data["player_id"] == 1


@pytest.mark.asyncio
async def test_fire_bullet_usecase_failure():
    handler, hub, _, client = make(FakeUsecase(fail=True), room_id="r1")
    await handler.handle_message(
        client, GameMessage(MessageType.FIRE_BULLET, {"direction": 0.0, "power": 5})
    )
    assert game_messages(client)[0].data["message"] == "Failed to fire bullet"
    assert hub.broadcasts == []


@pytest.mark.asyncio
async def test_switch_cannon_success():
    handler, hub, _, client = make(room_id="r1")
    await handler.handle_message(
        client, GameMessage(MessageType.SWITCH_CANNON, {"cannon_type": 2, "level": 3})
    )
    response = game_messages(client)[0]
    assert response.type is MessageType.SWITCH_CANNON_RESPONSE
    assert response.data["power"] == 30
    event = GameMessage.from_bytes(hub.broadcasts[0][1])
    assert event.type is MessageType.CANNON_SWITCHED
    assert event.data["level"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data, error",
    [
        ({"cannon_type": 0, "level": 1}, "Invalid cannon type"),
        ({"cannon_type": 11, "level": 1}, "Invalid cannon type"),
        ({"cannon_type": 1, "level": 0}, "Invalid cannon level"),
        ({"cannon_type": 1, "level": 11}, "Invalid cannon level"),
        ({}, "Invalid cannon data"),
    ],
)
async def test_switch_cannon_invalid(data, error):
    handler, hub, _, client = make(room_id="r1")
    await handler.handle_message(client, GameMessage(MessageType.SWITCH_CANNON, data))
    assert game_messages(client)[0].data["message"] == error
    assert hub.broadcasts == []


@pytest.mark.asyncio
async def test_join_room_requires_room_id():
    handler, hub, _, client = make()
    await handler.handle_message(client, GameMessage(MessageType.JOIN_ROOM, {"room_id": ""}))
    assert game_messages(client)[0].data["message"] == "Room ID is required"
    assert hub.joins == []


@pytest.mark.asyncio
async def test_join_room_failure():
    handler, hub, _, client = make(FakeUsecase(fail=True))
    await handler.handle_message(client, GameMessage(MessageType.JOIN_ROOM, {"room_id": "r9"}))
    assert game_messages(client)[0].data["message"] == "Failed to join room"
    assert client.room_id == ""


@pytest.mark.asyncio
async def test_join_and_leave_with_recording_hub():
    handler, hub, usecase, client = make()
    await handler.handle_message(client, GameMessage(MessageType.JOIN_ROOM, {"room_id": "r2"}))
    assert client.room_id == "r2"
    assert hub.joins == [(client, "r2")]
    assert usecase.joined == [("r2", 1)]
    await handler.handle_message(client, GameMessage(MessageType.LEAVE_ROOM, {}))
    assert client.room_id == ""
    assert hub.leaves == [(client, "r2")]
    types = [m.type for m in game_messages(client)]
    assert types == [MessageType.JOIN_ROOM_RESPONSE, MessageType.LEAVE_ROOM_RESPONSE]


@pytest.mark.asyncio
async def test_leave_room_not_in_room():
    handler, hub, _, client = make()
    await handler.handle_message(client, GameMessage(MessageType.LEAVE_ROOM))
    assert game_messages(client)[0].data["message"] == "Not in any room"
    assert hub.leaves == []


@pytest.mark.asyncio
async def test_room_list_conversion():
    usecase = FakeUsecase()
    usecase.rooms = [
        SimpleNamespace(
            id="room-a",
            name="Alpha",
            type="novice",
            players={1: object(), 2: object()},
            max_players=4,
            status="waiting",
        )
    ]
    handler, _, _, client = make(usecase)
    await handler.handle_message(client, GameMessage(MessageType.GET_ROOM_LIST))
    response = game_messages(client)[0]
    assert response.type is MessageType.ROOM_LIST_RESPONSE
    assert response.data["rooms"] == [
        {
            "room_id": "room-a",
            "name": "Alpha",
            "type": "novice",
            "player_count": 2,
            "max_players": 4,
            "status": "waiting",
        }
    ]


@pytest.mark.asyncio
async def test_room_list_failure():
    handler, _, _, client = make(FakeUsecase(fail=True))
    await handler.handle_message(client, GameMessage(MessageType.GET_ROOM_LIST))
    assert game_messages(client)[0].data["message"] == "Failed to get room list"


@pytest.mark.asyncio
async def test_player_info():
    handler, _, _, client = make(room_id="r5")
    await handler.handle_message(client, GameMessage(MessageType.GET_PLAYER_INFO))
    response = game_messages(client)[0]
    assert response.type is MessageType.PLAYER_INFO_RESPONSE
    assert response.data["player_id"] == 1
    assert response.data["nickname"] == "test_player_1"
    assert response.data["balance"] == 10000
    assert response.data["room_id"] == "r5"


@pytest.mark.asyncio
async def test_unknown_message_type():
    handler, _, _, client = make()
    await handler.handle_message(client, GameMessage(MessageType.FISH_DIED))
    assert game_messages(client)[0].data["message"] == "Unknown message type"


@pytest.fixture
async def running_hub():
    hub = Hub(FakeUsecase())
    task = asyncio.create_task(hub.run())
    yield hub
    hub.stop()
    await asyncio.wait_for(task, 1)
    await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_message_handler_with_hub_heartbeat(running_hub):
    handler = MessageHandler(running_hub.game_usecase, running_hub)
    client = Client(running_hub, client_id="test_player_1", player_id=1)
    await running_hub.register(client)
    await asyncio.sleep(0.05)
    await handler.handle_message(client, GameMessage(MessageType.HEARTBEAT, {"timestamp": 1}))
    raw = drain(client)
    welcome = json.loads(raw[0])
    assert welcome["type"] == "welcome"
    assert GameMessage.from_bytes(raw[-1]).type is MessageType.HEARTBEAT_RESPONSE


@pytest.mark.asyncio
async def test_room_operations_with_hub(running_hub):
    handler = MessageHandler(running_hub.game_usecase, running_hub)
    client = Client(running_hub, client_id="test_player_room", player_id=1)
    await running_hub.register(client)
    await asyncio.sleep(0.05)

    await handler.handle_message(
        client, GameMessage(MessageType.JOIN_ROOM, {"room_id": "test_room_001"})
    )
    await asyncio.sleep(0.1)
    assert client.room_id == "test_room_001"
    assert running_hub.get_room_clients("test_room_001") == [client]

    await handler.handle_message(client, GameMessage(MessageType.LEAVE_ROOM, {}))
    await asyncio.sleep(0.1)
    assert client.room_id == ""
    assert running_hub.get_room_clients("test_room_001") == []