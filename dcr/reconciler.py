from __future__ import annotations

from enum import Enum
from threading import Event

from . import db
from .alerts import alert_unhealthy_stop
from .consul import RegistrationRecord, RegistryError, ServiceRegistry
from .descriptor import ContainerSnapshot, ServiceDescriptor, describe, short_id
from .docker_ops import ContainerNotFound, ContainerRuntime, RuntimeClientError
from .runtime import WatchStatus
from .settings import settings


class Decision(str, Enum):
    REGISTER = "register"
    DEREGISTER = "deregister"
    STOP_AND_DEREGISTER = "stop_and_deregister"
    NOOP = "noop"


def decide(running: bool, registered: bool, healthy: bool) -> Decision:
    """Map runtime and registry state to the one corrective action.

    First match wins:
      running, not registered     -> register
      not running, registered     -> deregister
      running, registered, failing -> stop and deregister
      anything else is consistent -> noop
    """
    if running and not registered:
        return Decision.REGISTER
    if not running and registered:
        return Decision.DEREGISTER
    if running and registered and not healthy:
        return Decision.STOP_AND_DEREGISTER
    return Decision.NOOP


def registration_record(snapshot: ContainerSnapshot, desc: ServiceDescriptor) -> RegistrationRecord:
    # Non-numeric ports (the unbound "80/tcp" case) register as port 0.
    port = int(desc.port) if desc.port.isdigit() else 0
    return RegistrationRecord(
        id=snapshot.short_id,
        name=desc.name,
        port=port,
        tags=list(desc.tags),
        checks=[desc.check] if desc.check else [],
    )


class Reconciler:
    """Brings one container's Consul registration in line with its docker state.

    Every pass re-reads Consul; nothing is cached between passes. Failures are
    logged and end the pass, the next event or sweep evaluates the container
    again.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        registry: ServiceRegistry,
        status: WatchStatus | None = None,
        cancel: Event | None = None,
    ):
        self.runtime = runtime
        self.registry = registry
        self.status = status or WatchStatus()
        self.cancel = cancel or Event()

    def evaluate(self, container_id: str) -> Decision | None:
        try:
            snapshot = self.runtime.inspect(container_id)
        except ContainerNotFound:
            return self._forget(container_id)
        except RuntimeClientError as e:
            db.log_event("WARN", f"Failed to inspect container: {e}", container_id=short_id(container_id))
            return None
        return self.reconcile(snapshot)

    def reconcile(self, snapshot: ContainerSnapshot) -> Decision | None:
        desc = describe(snapshot)
        if desc is None:
            return None

        sid = snapshot.short_id
        try:
            registered = self.registry.is_registered(sid)
            healthy = self.registry.is_healthy(sid)
        except RegistryError as e:
            db.log_event("WARN", f"Failed to query Consul state: {e}", service_name=desc.name, container_id=sid)
            return None

        decision = decide(snapshot.running, registered, healthy)
        self.apply(decision, snapshot, desc)
        return decision

    def apply(self, decision: Decision, snapshot: ContainerSnapshot, desc: ServiceDescriptor) -> None:
        if decision is Decision.NOOP or self.cancel.is_set():
            return
        self.status.record_decision(decision.value)

        if decision is Decision.REGISTER:
            self._register(snapshot, desc)
        elif decision is Decision.DEREGISTER:
            db.log_event("INFO", "Container is not running, removing from Consul", service_name=desc.name, container_id=snapshot.short_id)
            self._deregister(snapshot.short_id, desc.name)
        elif decision is Decision.STOP_AND_DEREGISTER:
            self._stop_and_deregister(snapshot, desc)

    def _register(self, snapshot: ContainerSnapshot, desc: ServiceDescriptor) -> bool:
        record = registration_record(snapshot, desc)
        try:
            self.registry.register(record)
        except RegistryError as e:
            db.log_event("ERROR", f"Failed to register: {e}", service_name=desc.name, container_id=record.id)
            return False
        db.log_event("INFO", f"Registered in Consul on port {desc.port or '-'}", service_name=desc.name, container_id=record.id)
        return True

    def _deregister(self, sid: str, name: str | None = None) -> bool:
        try:
            self.registry.deregister(sid)
        except RegistryError as e:
            db.log_event("ERROR", f"Failed to deregister: {e}", service_name=name, container_id=sid)
            return False
        db.log_event("INFO", "Deregistered from Consul", service_name=name, container_id=sid)
        return True

    def _stop_and_deregister(self, snapshot: ContainerSnapshot, desc: ServiceDescriptor) -> None:
        sid = snapshot.short_id
        db.log_event("WARN", "Container is failing its health check, stopping", service_name=desc.name, container_id=sid)
        stopped = True
        try:
            self.runtime.stop(snapshot.id)
        except RuntimeClientError as e:
            stopped = False
            db.log_event("ERROR", f"Failed to stop container: {e}", service_name=desc.name, container_id=sid)

        # The stop outcome does not gate removal from discovery.
        if self.cancel.is_set():
            return
        deregistered = self._deregister(sid, desc.name)
        self._maybe_email(desc.name, sid, stopped, deregistered)

    def _forget(self, container_id: str) -> Decision | None:
        """Withdraw a container that no longer exists in docker."""
        sid = short_id(container_id)
        try:
            registered = self.registry.is_registered(sid)
        except RegistryError as e:
            db.log_event("WARN", f"Failed to query Consul state: {e}", container_id=sid)
            return None

        decision = decide(False, registered, True)
        if decision is Decision.DEREGISTER and not self.cancel.is_set():
            self.status.record_decision(decision.value)
            db.log_event("INFO", "Container is gone, removing from Consul", container_id=sid)
            self._deregister(sid)
        return decision

    def _maybe_email(self, service: str, container_id: str, stopped: bool, deregistered: bool) -> None:
        if not settings.enable_email:
            return
        if not alert_unhealthy_stop(service, container_id, stopped, deregistered):
            db.log_event("WARN", "Failed to send alert email", service_name=service, container_id=container_id)
