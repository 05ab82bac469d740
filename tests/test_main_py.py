import dataclasses
import time

import pytest
from fastapi.testclient import TestClient

import main
from dcr import db
from dcr.consul import RegistryError
from dcr.docker_ops import RuntimeClientError
from dcr.runtime import WatchStatus
from dcr.watcher import Watcher

from tests.fakes import FULL_ID, SHORT_ID, FakeRegistry, FakeRuntime, make_snapshot


@pytest.fixture
def app_client(monkeypatch):
    # Keep the background boot thread from touching docker or consul.
    monkeypatch.setattr(main, "boot", lambda: None)
    monkeypatch.setattr(main, "watcher", None)
    monkeypatch.setattr(main, "_boot_thread", None)
    monkeypatch.setattr(main, "watch_status", WatchStatus())
    with TestClient(main.app) as client:
        yield client


def test_health(app_client):
    r = app_client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_requests_rejected_without_watcher(app_client):
    assert app_client.post("/sweep").status_code == 503
    assert app_client.post(f"/containers/{FULL_ID}/evaluate").status_code == 503


def test_sweep_and_evaluate_are_queued_for_the_watcher(app_client, monkeypatch):
    runtime = FakeRuntime(make_snapshot(running=True))
    registry = FakeRegistry()
    w = Watcher(runtime, registry, status=main.watch_status)
    monkeypatch.setattr(main, "watcher", w)

    r = app_client.post("/sweep")
    assert r.status_code == 202
    assert r.json() == {"accepted": True, "action": "sweep", "container_id": None}

    r = app_client.post(f"/containers/{FULL_ID}/evaluate")
    assert r.status_code == 202
    assert r.json()["container_id"] == FULL_ID

    # Nothing is applied on the request thread.
    assert registry.calls == []

    w.sweep()
    r = app_client.get("/status")
    assert r.status_code == 200
    body = r.json()
    assert body["sweeps"] == 1
    assert body["decisions"] == {"register": 1}
    assert SHORT_ID in registry.services


def test_events_endpoint(app_client):
    db.log_event("INFO", "Registered in Consul on port 3000", service_name="web", container_id=SHORT_ID)
    db.log_event("WARN", "Could not connect to consul -- refused")

    r = app_client.get("/events", params={"limit": 10})
    assert r.status_code == 200
    rows = r.json()
    assert [e["level"] for e in rows] == ["WARN", "INFO"]

    r = app_client.get("/events", params={"container_id": SHORT_ID})
    assert [e["service_name"] for e in r.json()] == ["web"]


def test_events_limit_is_validated(app_client):
    assert app_client.get("/events", params={"limit": 0}).status_code == 422


class BootRegistry(FakeRegistry):
    """Registry whose leader() replays a scripted sequence of answers."""

    def __init__(self, *answers, on_leader=None):
        super().__init__()
        self._answers = list(answers)
        self._on_leader = on_leader
        self.leader_calls = 0
        self.closed = False

    def leader(self):
        self.leader_calls += 1
        if self._on_leader is not None:
            self._on_leader(self.leader_calls)
        answer = self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def close(self):
        self.closed = True


def _wait_for(cond, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def boot_env(monkeypatch):
    monkeypatch.setattr(
        main, "settings", dataclasses.replace(main.settings, connect_retry_s=0, autostart=True, http_timeout_s=2)
    )
    monkeypatch.setattr(main, "watcher", None)
    monkeypatch.setattr(main, "_boot_thread", None)
    monkeypatch.setattr(main, "watch_status", WatchStatus())
    main._shutdown.clear()
    yield monkeypatch
    main._shutdown.set()
    if main._boot_thread is not None:
        main._boot_thread.join(2)
    main._shutdown.clear()


def test_boot_retries_until_consul_and_docker_answer(boot_env):
    registry = BootRegistry(RegistryError("connection refused"), "", "10.0.0.2:8300")
    runtime = FakeRuntime()
    client = object()
    attempts = []

    def connect_docker():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeClientError("cannot connect to docker socket")
        return client

    boot_env.setattr(main, "ConsulRegistry", lambda: registry)
    boot_env.setattr(main, "connect_docker", connect_docker)
    boot_env.setattr(main, "DockerRuntime", lambda c: runtime if c is client else None)

    main.startup()

    assert _wait_for(lambda: runtime.subscriptions)
    assert registry.leader_calls == 3
    assert len(attempts) == 3
    assert main.watcher is not None
    assert main.watcher.runtime is runtime

    messages = [e["message"] for e in db.latest_events(100)]
    assert "Could not connect to consul -- connection refused" in messages
    assert "Could not connect to consul -- no leader elected yet" in messages
    assert messages.count("Could not connect to docker -- cannot connect to docker socket") == 2
    assert "Connected to consul, leader is 10.0.0.2:8300" in messages
    assert "Connected to docker" in messages

    main.shutdown()

    assert not main._boot_thread.is_alive()
    assert main.watcher.stopped
    assert runtime.subscriptions[0].closed
    assert registry.closed
    assert main.watch_status.snapshot()["state"] == "stopped"


def test_boot_returns_when_shutdown_while_waiting_for_consul(boot_env):
    def shut_down_on_third(calls):
        if calls == 3:
            main._shutdown.set()

    registry = BootRegistry("", on_leader=shut_down_on_third)
    connects = []
    boot_env.setattr(main, "ConsulRegistry", lambda: registry)
    boot_env.setattr(main, "connect_docker", lambda: connects.append(1))

    main.boot()

    assert registry.leader_calls == 3
    assert connects == []
    assert main.watcher is None
    assert registry.closed


def test_boot_returns_when_shutdown_while_waiting_for_docker(boot_env):
    registry = BootRegistry("10.0.0.2:8300")

    def connect_docker():
        main._shutdown.set()
        raise RuntimeClientError("cannot connect to docker socket")

    boot_env.setattr(main, "ConsulRegistry", lambda: registry)
    boot_env.setattr(main, "connect_docker", connect_docker)

    main.boot()

    assert main.watcher is None
    assert registry.closed
    assert db.latest_events(1)[0]["message"] == "Could not connect to docker -- cannot connect to docker socket"


def test_shutdown_waits_for_boot_thread(boot_env):
    registry = BootRegistry("")
    boot_env.setattr(main, "ConsulRegistry", lambda: registry)
    boot_env.setattr(main, "settings", dataclasses.replace(main.settings, connect_retry_s=30))

    main.startup()
    assert _wait_for(lambda: registry.leader_calls >= 1)

    main.shutdown()

    assert not main._boot_thread.is_alive()
    assert registry.closed
