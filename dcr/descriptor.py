from __future__ import annotations

from dataclasses import dataclass, field

from .checks import HealthCheckSpec, parse_health_check


# Label contract. Name keys are tried in order; the ECS family is what the
# ECS agent stamps on task containers.
SERVICE_NAME_KEYS = ("service.name", "com.amazonaws.ecs.task-definition-family")
SERVICE_PORT_KEY = "service.port"
SERVICE_TAGS_KEY = "service.tags"
HEALTH_CHECK_KEY = "service.health-check"

SHORT_ID_LEN = 12


def short_id(container_id: str) -> str:
    return container_id[:SHORT_ID_LEN]


@dataclass(frozen=True)
class ContainerSnapshot:
    """One container as seen by a single inspection."""

    id: str
    name: str
    running: bool
    labels: dict[str, str] = field(default_factory=dict)
    port_bindings: dict[str, str] = field(default_factory=dict)  # "80/tcp" -> "3000"

    @property
    def short_id(self) -> str:
        return short_id(self.id)


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    port: str
    tags: list[str]
    check: HealthCheckSpec | None = None


def service_name(snapshot: ContainerSnapshot) -> str:
    for key in SERVICE_NAME_KEYS:
        if key in snapshot.labels:
            return snapshot.labels[key]
    return snapshot.name


def service_port(snapshot: ContainerSnapshot) -> str:
    """Resolve the host port published for the labelled container port.

    Without a binding the raw label value (e.g. "80/tcp") is returned as is.
    """
    spec = snapshot.labels.get(SERVICE_PORT_KEY, "")
    host_port = snapshot.port_bindings.get(spec)
    if host_port:
        return host_port
    return spec


def service_tags(snapshot: ContainerSnapshot) -> list[str]:
    return snapshot.labels.get(SERVICE_TAGS_KEY, "").split(",")


def describe(snapshot: ContainerSnapshot) -> ServiceDescriptor | None:
    """Derive the service descriptor, or None when the container is not a service."""
    name = service_name(snapshot)
    if not name:
        return None
    port = service_port(snapshot)
    return ServiceDescriptor(
        name=name,
        port=port,
        tags=service_tags(snapshot),
        check=parse_health_check(snapshot.labels.get(HEALTH_CHECK_KEY, ""), port),
    )
