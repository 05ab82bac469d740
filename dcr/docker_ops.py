from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Protocol

import docker
import requests
import urllib3
from docker.errors import DockerException, NotFound

from .descriptor import ContainerSnapshot
from .settings import settings


class RuntimeClientError(Exception):
    """A container runtime call failed."""


class ContainerNotFound(RuntimeClientError):
    pass


@dataclass(frozen=True)
class ContainerEvent:
    type: str
    action: str
    container_id: str


class EventSubscription(Protocol):
    def __iter__(self) -> Iterator[ContainerEvent]: ...

    def close(self) -> None: ...


class ContainerRuntime(Protocol):
    def inspect(self, container_id: str) -> ContainerSnapshot: ...

    def list(self) -> list[ContainerSnapshot]: ...

    def stop(self, container_id: str) -> None: ...

    def events(self) -> EventSubscription: ...


def _first_host_port(bindings: Any) -> str:
    if not bindings:
        return ""
    return str(bindings[0].get("HostPort") or "")


def port_bindings(attrs: dict[str, Any]) -> dict[str, str]:
    """Map "80/tcp" -> host port from an inspect payload.

    HostConfig.PortBindings is what was asked for; NetworkSettings.Ports fills
    in ports docker picked itself (`-P` or an empty HostPort).
    """
    out: dict[str, str] = {}
    requested = (attrs.get("HostConfig") or {}).get("PortBindings") or {}
    for spec, bindings in requested.items():
        host_port = _first_host_port(bindings)
        if host_port:
            out[spec] = host_port

    published = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
    for spec, bindings in published.items():
        host_port = _first_host_port(bindings)
        if host_port and spec not in out:
            out[spec] = host_port
    return out


def snapshot_from_attrs(attrs: dict[str, Any]) -> ContainerSnapshot:
    config = attrs.get("Config") or {}
    state = attrs.get("State") or {}
    return ContainerSnapshot(
        id=attrs["Id"],
        name=(attrs.get("Name") or "").lstrip("/"),
        running=bool(state.get("Running", False)),
        labels=dict(config.get("Labels") or {}),
        port_bindings=port_bindings(attrs),
    )


def event_from_message(msg: dict[str, Any]) -> ContainerEvent:
    actor = msg.get("Actor") or {}
    return ContainerEvent(
        type=msg.get("Type") or "",
        action=msg.get("Action") or msg.get("status") or "",
        container_id=actor.get("ID") or msg.get("id") or "",
    )


class DockerEventStream:
    """Iterates decoded docker events as ContainerEvent, closable from another thread."""

    def __init__(self, stream: Any):
        self._stream = stream
        self._closed = False

    def __iter__(self) -> Iterator[ContainerEvent]:
        try:
            for msg in self._stream:
                yield event_from_message(msg)
        except (DockerException, requests.RequestException, urllib3.exceptions.HTTPError, OSError, ValueError) as e:
            if self._closed:
                return
            raise RuntimeClientError(f"event stream failed: {type(e).__name__}: {e}") from e

    def close(self) -> None:
        self._closed = True
        try:
            self._stream.close()
        except (DockerException, requests.RequestException, OSError):
            pass


class DockerRuntime:
    """ContainerRuntime backed by the docker SDK."""

    def __init__(self, client: docker.DockerClient, stop_timeout_s: int | None = None):
        self.client = client
        self.stop_timeout_s = settings.stop_timeout_s if stop_timeout_s is None else stop_timeout_s

    def inspect(self, container_id: str) -> ContainerSnapshot:
        try:
            cont = self.client.containers.get(container_id)
        except NotFound as e:
            raise ContainerNotFound(container_id) from e
        except (DockerException, requests.RequestException) as e:
            raise RuntimeClientError(f"inspect {container_id}: {e}") from e
        return snapshot_from_attrs(cont.attrs)

    def list(self) -> list[ContainerSnapshot]:
        try:
            containers: Iterable[Any] = self.client.containers.list(all=True, ignore_removed=True)
        except (DockerException, requests.RequestException) as e:
            raise RuntimeClientError(f"list containers: {e}") from e
        return [snapshot_from_attrs(c.attrs) for c in containers]

    def stop(self, container_id: str) -> None:
        try:
            cont = self.client.containers.get(container_id)
            cont.stop(timeout=self.stop_timeout_s)
        except NotFound as e:
            raise ContainerNotFound(container_id) from e
        except (DockerException, requests.RequestException) as e:
            raise RuntimeClientError(f"stop {container_id}: {e}") from e

    def events(self) -> DockerEventStream:
        try:
            stream = self.client.events(decode=True, filters={"type": "container"})
        except (DockerException, requests.RequestException) as e:
            raise RuntimeClientError(f"subscribe to events: {e}") from e
        return DockerEventStream(stream)


def connect_docker() -> docker.DockerClient:
    """Return a client for the local daemon, raising RuntimeClientError if it is unreachable."""
    try:
        c = docker.from_env()
        c.ping()
        return c
    except (DockerException, requests.RequestException) as e:
        raise RuntimeClientError(f"docker unavailable: {e}") from e
