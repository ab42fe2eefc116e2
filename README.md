# fishserver

A server for a multiplayer fish-shooting game, in two halves:

* **`fishserver.game`** — the real-time side, built on asyncio and Starlette.
  A WebSocket endpoint accepts players, a `Hub` tracks every connection and
  groups clients into rooms, and each room gets a `RoomManager` that runs its
  game loop every 0.1 s: moving bullets, syncing fish, detecting collisions
  and broadcasting the room's `GameState`.
* **`fishserver.admin`** — the operations side, built on Flask and served with
  Werkzeug. An HTTP API for health probes, runtime status and metrics, player
  and wallet management, and optional profiling endpoints.

The game rules and the money are not part of this package. You pass in
objects that provide them:

* a *game use case* with `fire_bullet(room_id, player_id, direction, power)`,
  `hit_fish(room_id, bullet_id, fish_id)`, `get_room_state(room_id)`,
  `create_room(room_type, max_players)`, `join_room(room_id, player_id)`,
  `leave_room(room_id, player_id)` and `get_room_list(room_type)`; each may be
  a plain or an async method;
* a *wallet use case* with `get_wallet(id)`, `get_transactions(id, limit, offset)`,
  `freeze_wallet(id)`, `unfreeze_wallet(id)`,
  `deposit(id, amount, type, reference_id, description, metadata)` and
  `withdraw(...)` with the same arguments. Failures are reported by raising.

## Game server

`GameApp.run()` and `GameApp.stop()` are coroutines:

```python
import asyncio
from fishserver.game.app import GameApp

async def main():
    app = GameApp(game_usecase, port=9090)   # port defaults to 9090
    await app.run()   # serves /ws, /health, /status and /rooms until stopped

asyncio.run(main())
```

`await app.stop()` stops the hub and asks the HTTP server to exit.
`app.get_stats()` returns the hub's counters: active and total connections,
active rooms, total messages, start time and last activity.

| Path      | Purpose                                                 |
|-----------|---------------------------------------------------------|
| `/ws`     | WebSocket; optional `player_id` and `room_id` query args |
| `/health` | Liveness of the game service                            |
| `/status` | Hub statistics                                          |
| `/rooms`  | Rooms returned by the game use case                     |

Every HTTP response carries CORS headers and `OPTIONS` requests are answered
with 204.

### Messages

Text frames carry JSON with a `type` field: `join_room` (with `room_id`),
`leave_room` or `heartbeat`. Binary frames carry a `GameMessage`
(`fishserver.game.types`), encoded with `to_bytes()` and decoded with
`from_bytes()` as compact JSON holding an integer `MessageType` and a `data`
object. Incoming messages larger than 512 bytes close the connection.
Messages queued for a client while it is busy are sent together in one frame,
separated by newlines.

`MessageHandler.handle_message(client, message)` answers every request type
— firing bullets, switching cannons, joining and leaving rooms, heartbeats,
room lists and player info — with its response type. Bullet power must be
between 1 and 100; cannon type and level must each be between 1 and 10, and a
cannon's power is ten times its level. Requests that break these rules get an
`ERROR` message. `get_message_type_name()` gives a message type's short name.

## Admin server

```python
from fishserver.admin.service import AdminService, AdminConfig
from fishserver.admin.server import Server, AdminApp

service = AdminService(player_usecase, wallet_usecase, AdminConfig(environment="dev"))
admin = AdminApp(Server(8081, service))
admin.run()   # blocks until SIGINT/SIGTERM, then shuts the server down
```

`Server.create_app()` returns the Flask application alone, e.g. for testing.
`AdminService` methods can also be called directly; each returns a
`(body, status)` pair.

| Method | Path |
|--------|------|
| GET    | `/`, `/ping` |
| GET    | `/admin/health`, `/admin/health/live`, `/admin/health/ready` |
| GET    | `/admin/status`, `/admin/metrics`, `/admin/env` |
| GET    | `/admin/players/<id>`, `/admin/players/<id>/wallets` |
| GET    | `/admin/wallets/<id>`, `/admin/wallets/<id>/transactions?limit=&offset=` |
| POST   | `/admin/wallets/<id>/freeze`, `/admin/wallets/<id>/unfreeze` |
| POST   | `/admin/wallets/<id>/deposit`, `/admin/wallets/<id>/withdraw` |

Identifiers must be unsigned 32-bit numbers, otherwise the answer is 400.
Transaction listing defaults to `limit=10, offset=0`; a limit outside 1–100
or a negative offset falls back to the default. Deposits and withdrawals need
a JSON body with a positive `amount`; `type` and `description` get defaults,
and the metadata is tagged `admin_operation: true`.

Every response carries CORS and security headers, and request bodies over
1 MB are refused with 413. `server_timeouts(environment)` gives the
connection limits: `dev`/`development` is the most lenient, `staging`/`stag`
is in between, anything else is treated as production.

With `DebugConfig(enable_pprof=True)`, profiling routes are mounted under
`/debug/pprof/` (thread stacks, sampled CPU profile, tracemalloc heap
reports, and more; `pprof_info()` lists them). With `pprof_auth=True` and a
`pprof_auth_key`, callers must send the key in the `Authorization` header or
the `auth` query parameter. When disabled, `/debug/pprof/disabled` explains
so with status 503.

```python
from fishserver.admin.handlers import format_bytes

format_bytes(1536)   # '1.5 KB'
```

## What this package does not do

* It has no command-line launcher and reads no configuration files; you build
  `AdminConfig` and the servers in your own code.
* It stores nothing: there is no database or cache layer. Game state lives in
  memory per room, and players and wallets come from the use-case objects you
  supply.
* `/admin/players/<id>` and `/admin/players/<id>/wallets` return fixed sample
  data built from the id, not real player records.
* WebSocket clients are not authenticated; `player_id` is taken as given.