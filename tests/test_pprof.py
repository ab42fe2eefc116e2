import sys
import threading
import tracemalloc

import pytest
from flask import Flask

from fishserver.admin.pprof import pprof_info, register_pprof_routes


def marker_function():
    return 1


@pytest.fixture
def client():
    app = Flask("pprof_test")
    register_pprof_routes(app, None)
    return app.test_client()


@pytest.fixture
def auth_client():
    app = Flask("pprof_auth_test")
    register_pprof_routes(app, "token")
    return app.test_client()


@pytest.fixture
def waiting_thread():
    release = threading.Event()
    thread = threading.Thread(target=release.wait, name="waiter-thread", daemon=True)
    thread.start()
    yield thread
    release.set()
    thread.join()


def test_pprof_info_contents():
    info = pprof_info()
    assert info["message"] == "Pprof debugging endpoints"
    assert "/debug/pprof/heap" in info["endpoints"]
    assert len(info["usage"]) > 0


def test_info_endpoint(client):
    response = client.get("/debug/pprof/info")
    assert response.status_code == 200
    body = response.get_json()
    assert body["message"] == "Pprof debugging endpoints"
    assert body["endpoints"]
    assert body["usage"]
    assert "X-Frame-Options" not in response.headers


def test_auth_required(auth_client):
    response = auth_client.get("/debug/pprof/info")
    assert response.status_code == 401
    assert response.get_json() == {"error": "Unauthorized access to debug endpoints"}


def test_auth_wrong_key(auth_client):
    response = auth_client.get("/debug/pprof/info", headers={"Authorization": "secret"})
    assert response.status_code == 401


def test_auth_header_accepted(auth_client):
    response = auth_client.get("/debug/pprof/info", headers={"Authorization": "token"})
    assert response.status_code == 200
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_auth_query_accepted(auth_client):
    response = auth_client.get("/debug/pprof/cmdline?auth=token")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "\x00".join(sys.argv)


def test_index_lists_profiles(client):
    text = client.get("/debug/pprof/").get_data(as_text=True)
    assert "/debug/pprof/heap" in text
    assert "Types of profiles available:" in text


def test_goroutine_dump_contains_thread(client, waiting_thread):
    text = client.get("/debug/pprof/goroutine").get_data(as_text=True)
    assert text.startswith("thread profile: total ")
    assert "[waiter-thread]" in text


def test_block_shows_waiting_thread(client, waiting_thread):
    text = client.get("/debug/pprof/block").get_data(as_text=True)
    assert text.startswith("block profile: total ")
    assert "[waiter-thread]" in text


def test_threadcreate_counts_threads(client, waiting_thread):
    text = client.get("/debug/pprof/threadcreate").get_data(as_text=True)
    assert text.startswith(f"threadcreate profile: total ")
    assert "waiter-thread" in text


def test_heap_starts_tracing(client):
    was_tracing = tracemalloc.is_tracing()
    try:
        text = client.get("/debug/pprof/heap").get_data(as_text=True)
        assert text.startswith("heap profile: ")
        assert tracemalloc.is_tracing()
    finally:
        if not was_tracing:
            tracemalloc.stop()


def test_allocs_report(client):
    was_tracing = tracemalloc.is_tracing()
    try:
        response = client.get("/debug/pprof/allocs")
        assert response.status_code == 200
        assert response.get_data(as_text=True).startswith("allocs profile: ")
    finally:
        if not was_tracing:
            tracemalloc.stop()


def test_symbol_get(client):
    assert client.get("/debug/pprof/symbol").get_data(as_text=True) == "num_symbols: 1\n"


def test_symbol_post_resolves_function(client):
    address = hex(id(marker_function))
    text = client.post("/debug/pprof/symbol", data=f"{address}+0x1").get_data(as_text=True)
    lines = text.splitlines()
    assert lines[0] == "num_symbols: 1"
    assert lines[1] == f"{address} {marker_function.__module__}.marker_function"
    assert len(lines) == 2


def test_trace_short(client):
    text = client.get("/debug/pprof/trace?seconds=0.05").get_data(as_text=True)
    assert text.startswith("execution trace over 0.05s: ")


def test_profile_samples_busy_thread(client):
    stop = threading.Event()

    def busy_spin():
        while not stop.is_set():
            sum(range(100))

    thread = threading.Thread(target=busy_spin, daemon=True)
    thread.start()
    try:
        text = client.get("/debug/pprof/profile?seconds=1").get_data(as_text=True)
    finally:
        stop.set()
        thread.join()
    assert text.startswith("cpu profile: ")
    assert "busy_spin" in text