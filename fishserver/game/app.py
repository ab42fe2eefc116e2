"""The game application: HTTP endpoints, the WebSocket endpoint and the hub."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.datastructures import MutableHeaders
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute

from .client import WebSocketHandler
from .hub import Hub
from .message_handler import MessageHandler

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9090
SHUTDOWN_TIMEOUT = 5.0

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Origin, Content-Type, Accept, Authorization, X-Requested-With",
    "Access-Control-Expose-Headers": "Content-Length, Access-Control-Allow-Origin, Access-Control-Allow-Headers",
    "Access-Control-Allow-Credentials": "true",
}

_ALL_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]


def _text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _unix(value: datetime | None) -> int | None:
    return int(value.timestamp()) if value is not None else None


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class _CorsMiddleware:
    """Adds CORS headers to every HTTP response and answers preflight requests."""

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        if scope["method"] == "OPTIONS":
            await Response(status_code=204, headers=CORS_HEADERS)(scope, receive, send)
            return

        async def send_with_cors(message: Any) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for key, value in CORS_HEADERS.items():
                    headers[key] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)


class GameApp:
    """Serves the game over HTTP and WebSocket around a single hub."""

    def __init__(self, game_usecase: Any, port: int | None = None) -> None:
        self.game_usecase = game_usecase
        self.hub = Hub(game_usecase)
        self.ws_handler = WebSocketHandler(self.hub)
        self.message_handler = MessageHandler(game_usecase, self.hub)
        self.port = DEFAULT_PORT if port is None else port
        self.addr = f":{self.port}"
        self.app = Starlette(
            routes=[
                WebSocketRoute("/ws", self.ws_handler.serve),
                Route("/health", self._handle_health, methods=_ALL_METHODS),
                Route("/status", self._handle_status, methods=_ALL_METHODS),
                Route("/rooms", self._handle_rooms, methods=_ALL_METHODS),
            ],
            middleware=[Middleware(_CorsMiddleware)],
        )
        self._server: uvicorn.Server | None = None
        self._hub_task: asyncio.Task[None] | None = None

    async def _handle_health(self, request: Request) -> Response:
        return JSONResponse(
            {"status": "healthy", "service": "game", "timestamp": int(time.time())}
        )

    async def _handle_status(self, request: Request) -> Response:
        stats = self.hub.get_stats()
        return JSONResponse(
            {
                "status": "running",
                "service": "game",
                "timestamp": int(time.time()),
                "active_connections": stats.active_connections,
                "active_rooms": stats.active_rooms,
                "total_connections": stats.total_connections,
                "total_messages": stats.total_messages,
                "start_time": _unix(stats.start_time),
                "last_activity": _unix(stats.last_activity),
            }
        )

    async def _handle_rooms(self, request: Request) -> Response:
        try:
            rooms = await _resolve(self.game_usecase.get_room_list(""))
        except Exception as exc:
            logger.error("Failed to get room list: %s", exc)
            return JSONResponse({"error": "Failed to get room list"}, status_code=500)
        return JSONResponse(
            {
                "rooms": [
                    {
                        "id": room.id,
                        "name": room.name,
                        "type": _text(room.type),
                        "players": len(room.players),
                    }
                    for room in rooms or ()
                ]
            }
        )

    def get_stats(self) -> dict[str, Any]:
        """Return the hub's statistics together with the service identity."""
        stats = self.hub.get_stats()
        return {
            "service": "game",
            "status": "running",
            "active_connections": stats.active_connections,
            "active_rooms": stats.active_rooms,
            "total_connections": stats.total_connections,
            "total_messages": stats.total_messages,
            "start_time": stats.start_time,
            "last_activity": stats.last_activity,
        }

    async def run(self) -> None:
        """Start the hub and serve HTTP until stopped; raises if serving fails."""
        logger.info("Starting Game App on %s", self.addr)
        self._hub_task = asyncio.create_task(self.hub.run())
        config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.port,
            log_config=None,
            timeout_graceful_shutdown=int(SHUTDOWN_TIMEOUT),
        )
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        except SystemExit as exc:
            logger.error("Failed to start game server on %s", self.addr)
            raise RuntimeError(f"failed to start game server on {self.addr}") from exc
        finally:
            self.hub.stop()

    async def stop(self) -> None:
        """Stop the hub and ask the HTTP server to shut down."""
        logger.info("Stopping Game App")
        self.hub.stop()
        if self._server is not None:
            self._server.should_exit = True
        if self._hub_task is not None:
            try:
                await asyncio.wait_for(self._hub_task, SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError as exc:
                logger.error("Failed to shutdown game server: %s", exc)
                raise