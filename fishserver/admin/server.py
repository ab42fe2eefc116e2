"""The admin HTTP server and the application that runs it until signalled."""

from __future__ import annotations

import logging
import signal
import threading
import time
from datetime import datetime
from typing import Any, Callable, NamedTuple

from flask import Flask, Response, g, jsonify, request
from werkzeug.serving import BaseWSGIServer, WSGIRequestHandler, make_server

from .handlers import VERSION, register_routes
from .service import AdminService

logger = logging.getLogger("fishserver.admin")

MAX_REQUEST_SIZE = 1 << 20
SHUTDOWN_TIMEOUT = 30.0

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Origin, Content-Type, Accept, Authorization, X-Requested-With",
    "Access-Control-Expose-Headers": "Content-Length, Access-Control-Allow-Origin, Access-Control-Allow-Headers",
    "Access-Control-Allow-Credentials": "true",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'",
}


class _ServerTimeouts(NamedTuple):
    read_timeout: float
    write_timeout: float
    idle_timeout: float
    max_header_bytes: int


def server_timeouts(environment: str) -> _ServerTimeouts:
    """Connection limits for the given deployment environment."""
    if environment in ("dev", "development"):
        return _ServerTimeouts(30.0, 30.0, 120.0, 2 << 20)
    if environment in ("staging", "stag"):
        return _ServerTimeouts(15.0, 15.0, 90.0, 1 << 20)
    return _ServerTimeouts(10.0, 10.0, 60.0, 1 << 20)


def _rfc3339_now() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


class Server:
    """The admin HTTP server."""

    def __init__(self, port: int, service: AdminService) -> None:
        self.port = port
        self.service = service
        self._app: Flask | None = None
        self._server: BaseWSGIServer | None = None
        self._lock = threading.Lock()

    def create_app(self) -> Flask:
        """Build the WSGI application with its middleware and routes."""
        app = Flask("fishserver.admin")
        debug = self.service.config.debug
        app.debug = bool(debug and debug.enable_web_debug)
        logger.info("Web framework running in %s mode", "debug" if app.debug else "release")

        @app.before_request
        def _before() -> Any:
            g.request_started = time.perf_counter()
            if request.method == "OPTIONS":
                return Response(status=204)
            length = request.content_length
            if length is not None and length > MAX_REQUEST_SIZE:
                return jsonify(
                    {"error": "Request entity too large", "max_size": f"{MAX_REQUEST_SIZE} bytes"}
                ), 413
            return None

        @app.after_request
        def _after(response: Response) -> Response:
            for key, value in CORS_HEADERS.items():
                response.headers[key] = value
            if request.method != "OPTIONS":
                for key, value in SECURITY_HEADERS.items():
                    response.headers[key] = value
            self._log_request(response.status_code)
            return response

        app.add_url_rule("/", "root", self._root)
        app.add_url_rule("/ping", "ping", self._ping, methods=["GET", "POST"])
        register_routes(app, self.service)
        self._app = app
        return app

    @staticmethod
    def _log_request(status: int) -> None:
        started = g.get("request_started")
        latency = f"{(time.perf_counter() - started) * 1000:.3f}ms" if started else "-"
        path = request.path
        if request.query_string:
            path = f"{path}?{request.query_string.decode('latin-1')}"
        args = (status, latency, request.remote_addr or "", request.method, path)
        fmt = "HTTP %d | %13s | %15s | %-7s %s"
        if 400 <= status < 500:
            logger.warning(fmt, *args)
        elif status >= 500:
            logger.error(fmt, *args)
        else:
            logger.info(fmt, *args)

    @staticmethod
    def _root() -> Any:
        return jsonify(
            {
                "service": "Fish Server Admin API",
                "version": VERSION,
                "status": "running",
                "time": _rfc3339_now(),
                "endpoints": {
                    "health": "/admin/health",
                    "status": "/admin/status",
                    "metrics": "/admin/metrics",
                    "players": "/admin/players",
                    "wallets": "/admin/wallets",
                    "debug": "/debug/pprof",
                },
            }
        )

    @staticmethod
    def _ping() -> Any:
        return jsonify({"message": "pong", "time": _rfc3339_now()})

    def start(self) -> None:
        """Bind and serve until stopped; raises OSError when the port cannot be bound."""
        app = self._app or self.create_app()
        environment = self.service.config.environment
        limits = server_timeouts(environment)

        class _Handler(WSGIRequestHandler):
            timeout = limits.read_timeout

        logger.info("Starting admin server on port %d in %s environment", self.port, environment)
        with self._lock:
            try:
                server = make_server(
                    "0.0.0.0", self.port, app, threaded=True, request_handler=_Handler
                )
            except OSError as exc:
                logger.error("Failed to start admin server: %s", exc)
                raise
            self._server = server
        try:
            server.serve_forever()
        finally:
            server.server_close()

    def stop(self) -> None:
        """Shut the server down; raises TimeoutError if it does not stop in time."""
        logger.info("Stopping admin server...")
        with self._lock:
            server = self._server
        if server is None:
            return
        stopper = threading.Thread(target=server.shutdown, name="admin-shutdown", daemon=True)
        stopper.start()
        stopper.join(SHUTDOWN_TIMEOUT)
        if stopper.is_alive():
            raise TimeoutError(f"admin server did not stop within {SHUTDOWN_TIMEOUT:g}s")

    def addr(self) -> str:
        with self._lock:
            server = self._server
        if server is not None:
            return f":{server.server_port}"
        return f":{self.port}"


class AdminApp:
    """Runs the admin server until it fails or the process is signalled."""

    def __init__(self, server: Server) -> None:
        self.server = server
        self._cleanup: Callable[[], None] | None = None

    def set_cleanup(self, cleanup: Callable[[], None] | None) -> None:
        self._cleanup = cleanup

    def run(self) -> None:
        """Serve until SIGINT/SIGTERM or until the server ends; re-raises server failures."""
        logger.info("Starting Fish Server Admin...")
        wake = threading.Event()
        failures: list[BaseException] = []
        received: list[int] = []

        def serve() -> None:
            try:
                self.server.start()
            except BaseException as exc:
                failures.append(exc)
            finally:
                wake.set()

        def on_signal(signum: int, frame: Any) -> None:
            received.append(signum)
            wake.set()

        previous: dict[int, Any] = {}
        if threading.current_thread() is threading.main_thread():
            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, on_signal)

        try:
            threading.Thread(target=serve, name="admin-server", daemon=True).start()
            logger.info("Admin server started on %s", self.server.addr())
            logger.info("Press Ctrl+C to gracefully shutdown the server...")
            while not wake.wait(0.2):
                pass
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        if failures:
            logger.error("Server failed to start: %s", failures[0])
            raise failures[0]
        if received:
            logger.info("Received signal: %s", signal.Signals(received[0]).name)
            logger.info("Shutting down server...")
            try:
                self.server.stop()
            except Exception as exc:
                logger.error("Server forced to shutdown: %s", exc)
                raise
            logger.info("Server exited gracefully")

    def stop(self) -> None:
        """Stop the server and run the cleanup hook."""
        logger.info("Stopping admin application...")
        try:
            self.server.stop()
        except Exception as exc:
            logger.error("Error stopping server: %s", exc)
            raise
        if self._cleanup is not None:
            self._cleanup()
            logger.info("Cleanup completed")
        logger.info("Admin application stopped")

    def server_addr(self) -> str:
        return self.server.addr()