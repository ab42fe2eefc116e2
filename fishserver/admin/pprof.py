"""Runtime profiling endpoints under /debug/pprof for the admin server."""

from __future__ import annotations

import gc
import logging
import os
import sys
import threading
import time
import tracemalloc
import traceback
import types
from collections import Counter
from typing import Any

from flask import Blueprint, Flask, Response, g, jsonify, request

logger = logging.getLogger("fishserver.admin")

PREFIX = "/debug/pprof"
SAMPLE_INTERVAL = 0.01
DEFAULT_PROFILE_SECONDS = 30
DEFAULT_TRACE_SECONDS = 1.0
MEMORY_TOP = 50
TRACE_FRAMES = 25

_BLOCKING_MODULES = {"threading.py", "queue.py", "selectors.py", "socket.py", "socketserver.py"}
_LOCK_MODULES = {"threading.py"}

_ENDPOINTS = {
    "/debug/pprof/": "Overview of available profiles",
    "/debug/pprof/cmdline": "Command line that invoked the target",
    "/debug/pprof/profile": "CPU profile (add ?seconds=N for N-second sample)",
    "/debug/pprof/symbol": "Symbol table",
    "/debug/pprof/trace": "Execution trace (add ?seconds=N for N-second trace)",
    "/debug/pprof/allocs": "Memory allocation samples",
    "/debug/pprof/block": "Stack traces that led to blocking on synchronization primitives",
    "/debug/pprof/goroutine": "Stack traces of all current threads",
    "/debug/pprof/heap": "Memory allocation samples of live objects",
    "/debug/pprof/mutex": "Stack traces of threads waiting on locks",
    "/debug/pprof/threadcreate": "Threads that are currently alive",
}

_profile_lock = threading.Lock()
_trace_lock = threading.Lock()


def pprof_info() -> dict[str, Any]:
    """Describe the profiling endpoints and how to use them."""
    return {
        "message": "Pprof debugging endpoints",
        "endpoints": dict(_ENDPOINTS),
        "usage": {
            "web_ui": "http://localhost:6060/debug/pprof/",
            "curl_heap": "curl http://localhost:6060/debug/pprof/heap > heap.txt",
            "curl_cpu": "curl http://localhost:6060/debug/pprof/profile?seconds=30 > cpu.txt",
            "curl_threads": "curl http://localhost:6060/debug/pprof/goroutine",
        },
        "security_note": "These endpoints should be protected in production environments",
    }


def _text(body: str, status: int = 200) -> Response:
    return Response(body, status=status, mimetype="text/plain")


def _thread_names() -> dict[int, threading.Thread]:
    return {t.ident: t for t in threading.enumerate() if t.ident is not None}


def _frame_key(frame: types.FrameType) -> str:
    return ";".join(
        f"{fs.name} ({os.path.basename(fs.filename)}:{fs.lineno})"
        for fs in traceback.extract_stack(frame)
    )


def _describe(ident: int, threads: dict[int, threading.Thread]) -> str:
    thread = threads.get(ident)
    if thread is None:
        return f"thread {ident}"
    daemon = " daemon" if thread.daemon else ""
    return f"thread {ident} [{thread.name}]{daemon}"


def _dump_threads(select: set[str] | None = None) -> tuple[int, str]:
    threads = _thread_names()
    blocks = []
    for ident, frame in sys._current_frames().items():
        if select is not None and os.path.basename(frame.f_code.co_filename) not in select:
            continue
        blocks.append(f"{_describe(ident, threads)}:\n" + "".join(traceback.format_stack(frame)))
    return len(blocks), "\n".join(blocks)


def _parse_seconds(raw: str | None, default: float, integral: bool) -> float:
    try:
        value = float(int(raw)) if integral else float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _index() -> Response:
    lines = [f"{PREFIX}/", "", "Types of profiles available:"]
    lines += [f"{path}: {text}" for path, text in _ENDPOINTS.items() if path != f"{PREFIX}/"]
    return _text("\n".join(lines) + "\n")


def _cmdline() -> Response:
    return _text("\x00".join(sys.argv))


def _profile() -> Response:
    seconds = _parse_seconds(request.args.get("seconds"), DEFAULT_PROFILE_SECONDS, integral=True)
    if not _profile_lock.acquire(blocking=False):
        return _text("Could not enable CPU profiling: profiling already in use\n", 500)
    try:
        own = threading.get_ident()
        counts: Counter[str] = Counter()
        samples = 0
        deadline = time.monotonic() + seconds
        while True:
            for ident, frame in sys._current_frames().items():
                if ident != own:
                    counts[_frame_key(frame)] += 1
            samples += 1
            if time.monotonic() >= deadline:
                break
            time.sleep(SAMPLE_INTERVAL)
    finally:
        _profile_lock.release()
    lines = [f"cpu profile: {samples} samples over {seconds:g}s (interval {SAMPLE_INTERVAL * 1000:g}ms)"]
    lines += [f"{count} {stack}" for stack, count in counts.most_common()]
    return _text("\n".join(lines) + "\n")


def _trace() -> Response:
    seconds = _parse_seconds(request.args.get("seconds"), DEFAULT_TRACE_SECONDS, integral=False)
    if not _trace_lock.acquire(blocking=False):
        return _text("Could not enable tracing: tracing already in use\n", 500)
    try:
        own = threading.get_ident()
        events = []
        start = time.monotonic()
        while True:
            elapsed = time.monotonic() - start
            threads = _thread_names()
            for ident, frame in sys._current_frames().items():
                if ident == own:
                    continue
                code = frame.f_code
                events.append(
                    f"{elapsed:.3f}s {_describe(ident, threads)} "
                    f"{code.co_name} ({os.path.basename(code.co_filename)}:{frame.f_lineno})"
                )
            if elapsed >= seconds:
                break
            time.sleep(SAMPLE_INTERVAL)
    finally:
        _trace_lock.release()
    return _text(f"execution trace over {seconds:g}s: {len(events)} events\n" + "\n".join(events) + "\n")


def _symbol() -> Response:
    raw = request.get_data(as_text=True) if request.method == "POST" else request.query_string.decode()
    known = {
        id(obj): f"{obj.__module__}.{obj.__qualname__}"
        for obj in gc.get_objects()
        if isinstance(obj, types.FunctionType)
    }
    lines = ["num_symbols: 1"]
    for word in raw.split("+"):
        word = word.strip()
        if not word:
            continue
        try:
            address = int(word, 0)
        except ValueError:
            continue
        name = known.get(address)
        if name is not None:
            lines.append(f"{address:#x} {name}")
    return _text("\n".join(lines) + "\n")


def _memory_report(title: str, key_type: str) -> Response:
    if not tracemalloc.is_tracing():
        tracemalloc.start(TRACE_FRAMES)
    stats = tracemalloc.take_snapshot().statistics(key_type)
    total = sum(stat.size for stat in stats)
    blocks = sum(stat.count for stat in stats)
    lines = [f"{title} profile: {total} bytes in {blocks} blocks"]
    for stat in stats[:MEMORY_TOP]:
        lines.append(f"{stat.size} bytes in {stat.count} blocks")
        lines += [f"    {line}" for line in stat.traceback.format()]
    return _text("\n".join(lines) + "\n")


def _allocs() -> Response:
    return _memory_report("allocs", "traceback")


def _heap() -> Response:
    return _memory_report("heap", "lineno")


def _goroutine() -> Response:
    count, body = _dump_threads()
    return _text(f"thread profile: total {count}\n\n{body}")


def _block() -> Response:
    count, body = _dump_threads(_BLOCKING_MODULES)
    return _text(f"block profile: total {count}\n\n{body}")


def _mutex() -> Response:
    count, body = _dump_threads(_LOCK_MODULES)
    return _text(f"mutex profile: total {count}\n\n{body}")


def _threadcreate() -> Response:
    threads = threading.enumerate()
    lines = [f"threadcreate profile: total {len(threads)}"]
    lines += [f"{t.name} (ident={t.ident}, daemon={t.daemon})" for t in threads]
    return _text("\n".join(lines) + "\n")


def _info() -> Response:
    return jsonify(pprof_info())


_ROUTES = [
    ("/", "index", _index, ["GET"]),
    ("/cmdline", "cmdline", _cmdline, ["GET"]),
    ("/profile", "profile", _profile, ["GET"]),
    ("/symbol", "symbol", _symbol, ["GET", "POST"]),
    ("/trace", "trace", _trace, ["GET"]),
    ("/allocs", "allocs", _allocs, ["GET"]),
    ("/block", "block", _block, ["GET"]),
    ("/goroutine", "goroutine", _goroutine, ["GET"]),
    ("/heap", "heap", _heap, ["GET"]),
    ("/mutex", "mutex", _mutex, ["GET"]),
    ("/threadcreate", "threadcreate", _threadcreate, ["GET"]),
    ("/info", "info", _info, ["GET"]),
]


def register_pprof_routes(app: Flask, auth_key: str | None = None) -> None:
    """Mount the profiling endpoints; with ``auth_key`` every request must present it."""
    blueprint = Blueprint("pprof", __name__, url_prefix=PREFIX)
    for rule, name, view, methods in _ROUTES:
        blueprint.add_url_rule(rule, name, view, methods=methods)

    if auth_key:

        @blueprint.before_request
        def _authorize() -> Any:
            supplied = request.headers.get("Authorization", "") or request.args.get("auth", "")
            if supplied != auth_key:
                logger.warning("Unauthorized pprof access attempt from %s", request.remote_addr)
                return jsonify({"error": "Unauthorized access to debug endpoints"}), 401
            g.pprof_authorized = True
            logger.warning("Pprof endpoint accessed: %s from %s", request.path, request.remote_addr)
            return None

        @blueprint.after_request
        def _secure(response: Response) -> Response:
            if g.get("pprof_authorized"):
                response.headers["X-Content-Type-Options"] = "nosniff"
                response.headers["X-Frame-Options"] = "DENY"
                response.headers["X-XSS-Protection"] = "1; mode=block"
            return response

    @blueprint.before_request
    def _log_access() -> None:
        endpoint = (request.endpoint or "").rsplit(".", 1)[-1]
        logger.info("Pprof %s accessed", endpoint)

    app.register_blueprint(blueprint)