"""System endpoints of the admin API and the wiring of every admin route."""

from __future__ import annotations

import gc
import logging
import os
import platform
import sys
import threading
import time
import tracemalloc
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from flask import Blueprint, Flask, jsonify, request

from .pprof import register_pprof_routes
from .service import AdminConfig, AdminService

try:
    import resource
except ImportError:  # not available on every platform
    resource = None  # type: ignore[assignment]

logger = logging.getLogger("fishserver.admin")

VERSION = "1.0.0"
_START_TIME = datetime.now(timezone.utc)
_START_MONOTONIC = time.monotonic()
_UNIT = 1024
_PREFIXES = ["K", "M", "G", "T", "P", "E", "Z", "Y"]

Reply = tuple[dict[str, Any], int]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_bytes(size: int) -> str:
    """Render a byte count with a binary prefix, e.g. ``1536`` -> ``"1.5 KB"``."""
    if size < _UNIT:
        return f"{size} B"
    div, exp = _UNIT, 0
    n = size // _UNIT
    while n >= _UNIT:
        div *= _UNIT
        exp += 1
        n //= _UNIT
    return f"{size / div:.1f} {_PREFIXES[exp]}B"


def _uptime_seconds() -> float:
    return time.monotonic() - _START_MONOTONIC


def _max_rss_bytes() -> int:
    if resource is None:
        return 0
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return rss if sys.platform == "darwin" else rss * 1024


def _traced_memory() -> tuple[int, int]:
    if tracemalloc.is_tracing():
        return tracemalloc.get_traced_memory()
    return 0, 0


def _gc_totals() -> tuple[int, int, int]:
    stats = gc.get_stats()
    return (
        sum(s.get("collections", 0) for s in stats),
        sum(s.get("collected", 0) for s in stats),
        sum(s.get("uncollectable", 0) for s in stats),
    )


def _usable_cpus() -> int:
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0))
    return os.cpu_count() or 1


def _system_info() -> dict[str, Any]:
    return {
        "num_cpu": os.cpu_count() or 1,
        "usable_cpus": _usable_cpus(),
        "python_version": platform.python_version(),
        "implementation": platform.python_implementation(),
        "architecture": platform.machine(),
        "os": sys.platform,
    }


def health_check() -> Reply:
    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": VERSION,
        "checks": {"service": "ok"},
    }, 200


def liveness_check() -> Reply:
    return {"status": "alive", "timestamp": _now()}, 200


def readiness_check() -> Reply:
    checks = {"database": "ok", "redis": "ok"}
    healthy = all(status == "ok" for status in checks.values())
    return {
        "status": "ready" if healthy else "not_ready",
        "timestamp": _now(),
        "checks": checks,
    }, 200 if healthy else 503


def server_status() -> Reply:
    current, peak = _traced_memory()
    collections, _, _ = _gc_totals()
    return {
        "status": "running",
        "timestamp": _now(),
        "uptime": str(timedelta(seconds=_uptime_seconds())),
        "memory": {
            "alloc": format_bytes(current),
            "total_alloc": format_bytes(peak),
            "sys": format_bytes(_max_rss_bytes()),
            "num_gc": collections,
        },
        "threads": threading.active_count(),
        "system": _system_info(),
        "service": {"start_time": _START_TIME.isoformat()},
    }, 200


def metrics() -> Reply:
    current, peak = _traced_memory()
    collections, collected, uncollectable = _gc_totals()
    return {
        "timestamp": _now(),
        "uptime_seconds": _uptime_seconds(),
        "memory": {
            "alloc_bytes": current,
            "peak_alloc_bytes": peak,
            "max_rss_bytes": _max_rss_bytes(),
            "gc_objects": len(gc.get_objects()),
            "gc_num": collections,
            "gc_collected": collected,
            "gc_uncollectable": uncollectable,
        },
        "threads": threading.active_count(),
        "system": _system_info(),
    }, 200


def environment_info(config: AdminConfig) -> Reply:
    debug, security = config.debug, config.security
    return {
        "environment": config.environment,
        "features": {
            "pprof_enabled": bool(debug and debug.enable_pprof),
            "pprof_auth": bool(debug and debug.pprof_auth),
            "web_debug": bool(debug and debug.enable_web_debug),
            "sql_debug": bool(debug and debug.enable_sql_debug),
            "rate_limit": bool(config.rate_limit and config.rate_limit.enable),
            "cors_enabled": bool(config.cors and config.cors.allow_origins),
        },
        "security": {
            "csrf_enabled": bool(security and security.enable_csrf),
            "secure_headers": bool(security and security.enable_secure_headers),
        },
        "timestamp": _now(),
    }, 200


def _reply(result: Reply) -> Any:
    body, status = result
    return jsonify(body), status


def _view(producer: Callable[..., Reply]) -> Callable[..., Any]:
    def view(**kwargs: Any) -> Any:
        return _reply(producer(**kwargs))

    return view


def register_routes(app: Flask, service: AdminService) -> None:
    """Mount the admin API under /admin and the profiling endpoints as configured."""
    admin = Blueprint("admin", __name__, url_prefix="/admin")
    admin.add_url_rule("/health", "health", _view(health_check))
    admin.add_url_rule("/health/live", "live", _view(liveness_check))
    admin.add_url_rule("/health/ready", "ready", _view(readiness_check))
    admin.add_url_rule("/status", "status", _view(server_status))
    admin.add_url_rule("/metrics", "metrics", _view(metrics))
    admin.add_url_rule("/env", "env", _view(lambda: environment_info(service.config)))

    admin.add_url_rule(
        "/players/<player_id>", "player", _view(lambda player_id: service.get_player(player_id))
    )
    admin.add_url_rule(
        "/players/<player_id>/wallets",
        "player_wallets",
        _view(lambda player_id: service.get_player_wallets(player_id)),
    )

    admin.add_url_rule(
        "/wallets/<wallet_id>", "wallet", _view(lambda wallet_id: service.get_wallet(wallet_id))
    )
    admin.add_url_rule(
        "/wallets/<wallet_id>/transactions",
        "wallet_transactions",
        _view(
            lambda wallet_id: service.get_wallet_transactions(
                wallet_id, request.args.get("limit"), request.args.get("offset")
            )
        ),
    )
    admin.add_url_rule(
        "/wallets/<wallet_id>/freeze",
        "freeze_wallet",
        _view(lambda wallet_id: service.freeze_wallet(wallet_id)),
        methods=["POST"],
    )
    admin.add_url_rule(
        "/wallets/<wallet_id>/unfreeze",
        "unfreeze_wallet",
        _view(lambda wallet_id: service.unfreeze_wallet(wallet_id)),
        methods=["POST"],
    )
    admin.add_url_rule(
        "/wallets/<wallet_id>/deposit",
        "deposit",
        _view(lambda wallet_id: service.deposit(wallet_id, request.get_data())),
        methods=["POST"],
    )
    admin.add_url_rule(
        "/wallets/<wallet_id>/withdraw",
        "withdraw",
        _view(lambda wallet_id: service.withdraw(wallet_id, request.get_data())),
        methods=["POST"],
    )
    app.register_blueprint(admin)

    _register_conditional_pprof(app, service.config)


def _register_conditional_pprof(app: Flask, config: AdminConfig) -> None:
    debug = config.debug
    if debug is None or not debug.enable_pprof:
        logger.info("Pprof is disabled in %s environment", config.environment)

        def pprof_disabled() -> Any:
            return jsonify(
                {
                    "message": "Pprof is disabled in this environment",
                    "environment": config.environment,
                    "reason": "Performance profiling is disabled for security and resource optimization",
                    "alternatives": {
                        "metrics": "/admin/metrics",
                        "status": "/admin/status",
                        "health": "/admin/health",
                    },
                }
            ), 503

        app.add_url_rule("/debug/pprof/disabled", "pprof_disabled", pprof_disabled)
        return

    logger.info("Pprof is enabled in %s environment", config.environment)
    if debug.pprof_auth and debug.pprof_auth_key:
        logger.info("Pprof endpoints require authentication")
        register_pprof_routes(app, debug.pprof_auth_key)
    else:
        logger.warning(
            "Pprof endpoints are enabled without authentication - "
            "this should only be used in development"
        )
        register_pprof_routes(app, None)