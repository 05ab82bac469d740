from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


class WatchStatus:
    """In-memory counters describing the watch loop.

    Observability only: reconciliation never reads from here, Consul stays the
    single source of truth.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self.state = "idle"  # idle|connecting|subscribed|stopped
        self.started_at: str | None = None
        self.last_event_at: str | None = None
        self.last_sweep_at: str | None = None
        self.events_handled = 0
        self.sweeps = 0
        self.subscriptions = 0
        self.stream_errors = 0
        self.decisions: dict[str, int] = {}

    def set_state(self, state: str) -> None:
        with self.lock:
            self.state = state
            if state == "connecting" and self.started_at is None:
                self.started_at = utc_now()

    def mark_subscribed(self) -> None:
        with self.lock:
            self.state = "subscribed"
            self.subscriptions += 1

    def mark_stream_error(self) -> None:
        with self.lock:
            self.stream_errors += 1

    def mark_event(self) -> None:
        with self.lock:
            self.events_handled += 1
            self.last_event_at = utc_now()

    def mark_sweep(self) -> None:
        with self.lock:
            self.sweeps += 1
            self.last_sweep_at = utc_now()

    def record_decision(self, decision: str) -> None:
        with self.lock:
            self.decisions[decision] = self.decisions.get(decision, 0) + 1

    def snapshot(self) -> dict[str, Any]:
        with self.lock:
            return {
                "state": self.state,
                "started_at": self.started_at,
                "last_event_at": self.last_event_at,
                "last_sweep_at": self.last_sweep_at,
                "events_handled": self.events_handled,
                "sweeps": self.sweeps,
                "subscriptions": self.subscriptions,
                "stream_errors": self.stream_errors,
                "decisions": dict(self.decisions),
            }
