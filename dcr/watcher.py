from __future__ import annotations

import queue
from dataclasses import dataclass
from threading import Event, Lock, Thread
from typing import Any

from . import db
from .consul import ServiceRegistry
from .descriptor import short_id
from .docker_ops import ContainerEvent, ContainerRuntime, EventSubscription, RuntimeClientError
from .reconciler import Reconciler
from .runtime import WatchStatus
from .settings import settings


WATCHED_ACTIONS = frozenset({"create", "stop", "kill"})


@dataclass(frozen=True)
class _Message:
    kind: str  # event|error|sweep|evaluate|wake
    generation: int = 0
    payload: Any = None


class Watcher:
    """Drives reconciliation from docker events with a periodic full sweep.

    Exactly one message is handled per loop iteration and only this loop
    applies decisions. Other threads (the event pump, the HTTP API) talk to it
    through the inbox.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        registry: ServiceRegistry,
        status: WatchStatus | None = None,
        sweep_interval_s: float | None = None,
    ):
        self.runtime = runtime
        self.status = status or WatchStatus()
        self.sweep_interval_s = settings.sweep_interval_s if sweep_interval_s is None else sweep_interval_s
        self._stop = Event()
        self.reconciler = Reconciler(runtime, registry, status=self.status, cancel=self._stop)
        self._inbox: queue.Queue[_Message] = queue.Queue()
        self._sub_lock = Lock()
        self._subscription: EventSubscription | None = None
        self._generation = 0
        self._thr: Thread | None = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self.run, daemon=True)
        self._thr.start()

    def stop(self, wait_s: float | None = None) -> None:
        self._stop.set()
        self._close_subscription()
        self._inbox.put(_Message("wake"))
        if wait_s is not None and self._thr and self._thr.is_alive():
            self._thr.join(wait_s)

    def request_sweep(self) -> None:
        self._inbox.put(_Message("sweep"))

    def request_evaluate(self, container_id: str) -> None:
        self._inbox.put(_Message("evaluate", payload=container_id))

    def run(self) -> None:
        db.log_event("INFO", "Watcher started")
        self.status.set_state("connecting")
        while not self._stop.is_set():
            if not self._subscribe():
                # Opening the stream itself failed; wait before asking again.
                self._stop.wait(self.sweep_interval_s)
                continue
            self._watch()
        self._close_subscription()
        self.status.set_state("stopped")
        db.log_event("INFO", "Watcher stopped")

    def _subscribe(self) -> bool:
        try:
            sub = self.runtime.events()
        except RuntimeClientError as e:
            db.log_event("WARN", f"Failed to subscribe to docker events: {e}")
            return False
        with self._sub_lock:
            self._generation += 1
            generation = self._generation
            self._subscription = sub
        Thread(target=self._pump, args=(sub, generation), daemon=True).start()
        self.status.mark_subscribed()
        return True

    def _close_subscription(self) -> None:
        with self._sub_lock:
            sub, self._subscription = self._subscription, None
            # Anything the old pump still delivers is now stale.
            self._generation += 1
        if sub is not None:
            sub.close()

    def _pump(self, sub: EventSubscription, generation: int) -> None:
        # Every way out of the stream posts an error so the loop re-subscribes.
        # Messages from a subscription we closed ourselves are stale and dropped.
        try:
            for event in sub:
                self._inbox.put(_Message("event", generation, event))
        except RuntimeClientError as e:
            self._inbox.put(_Message("error", generation, e))
            return
        except Exception as e:
            err = RuntimeClientError(f"event stream failed: {type(e).__name__}: {e}")
            self._inbox.put(_Message("error", generation, err))
            return
        self._inbox.put(_Message("error", generation, RuntimeClientError("event stream ended")))

    def _watch(self) -> None:
        """Service the inbox until the subscription dies or we are cancelled."""
        while not self._stop.is_set():
            try:
                msg = self._inbox.get(timeout=self.sweep_interval_s)
            except queue.Empty:
                self._guarded(self.sweep)
                continue

            if self._stop.is_set():
                return
            if msg.kind in {"event", "error"} and msg.generation != self._generation:
                continue

            if msg.kind == "error":
                self.status.mark_stream_error()
                db.log_event("WARN", f"Received error from docker events: {msg.payload}")
                self._close_subscription()
                return
            if msg.kind == "event":
                self._guarded(self.handle_event, msg.payload)
            elif msg.kind == "sweep":
                self._guarded(self.sweep)
            elif msg.kind == "evaluate":
                self._guarded(self.reconciler.evaluate, msg.payload)

    def _guarded(self, fn: Any, *args: Any) -> None:
        try:
            fn(*args)
        except Exception as e:
            db.log_event("ERROR", f"Watcher iteration failed: {type(e).__name__}: {e}")

    def handle_event(self, event: ContainerEvent) -> None:
        if event.type != "container" or event.action not in WATCHED_ACTIONS:
            return
        if not event.container_id:
            return
        self.status.mark_event()
        db.log_event("DEBUG", f"Docker event '{event.action}'", container_id=short_id(event.container_id))
        self.reconciler.evaluate(event.container_id)

    def sweep(self) -> None:
        """Reconcile every container docker knows about, running or not."""
        try:
            snapshots = self.runtime.list()
        except RuntimeClientError as e:
            db.log_event("WARN", f"Failed to list containers: {e}")
            return
        for snapshot in snapshots:
            if self._stop.is_set():
                return
            self._guarded(self.reconciler.reconcile, snapshot)
        self.status.mark_sweep()
        db.prune_events(settings.event_retention)
