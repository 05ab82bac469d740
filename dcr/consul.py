from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .checks import HealthCheckSpec
from .settings import settings


class RegistryError(Exception):
    """A service registry call failed."""


@dataclass(frozen=True)
class RegistrationRecord:
    id: str
    name: str
    port: int
    tags: list[str] = field(default_factory=list)
    checks: list[HealthCheckSpec] = field(default_factory=list)


class ServiceRegistry(Protocol):
    def register(self, record: RegistrationRecord) -> None: ...

    def deregister(self, service_id: str) -> None: ...

    def is_registered(self, service_id: str) -> bool: ...

    def is_healthy(self, service_id: str) -> bool: ...


def check_payload(check: HealthCheckSpec) -> dict[str, Any]:
    """Translate a HealthCheckSpec into a Consul agent check definition."""
    body: dict[str, Any] = {"Interval": check.interval, "Timeout": check.timeout}
    if check.kind == "script":
        body["Args"] = [check.target]
    elif check.kind == "shell":
        body["Shell"] = check.target
    elif check.kind == "http":
        body["HTTP"] = check.target
    elif check.kind == "tcp":
        body["TCP"] = check.target
    # Consul rejects empty durations; leave them to the agent defaults.
    return {k: v for k, v in body.items() if v != ""}


def registration_payload(record: RegistrationRecord) -> dict[str, Any]:
    return {
        "ID": record.id,
        "Name": record.name,
        "Port": record.port,
        "Tags": list(record.tags),
        "Checks": [check_payload(c) for c in record.checks],
    }


class ConsulRegistry:
    """ServiceRegistry backed by the local Consul agent HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        headers: dict[str, str] = {}
        token = settings.consul_token if token is None else token
        if token:
            headers["X-Consul-Token"] = token
        self.client = httpx.Client(
            base_url=(base_url or settings.consul_url).rstrip("/"),
            headers=headers,
            timeout=settings.http_timeout_s if timeout_s is None else timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RegistryError(f"{method} {path}: {type(e).__name__}: {e}") from e
        if resp.status_code != 200:
            raise RegistryError(f"{method} {path}: HTTP {resp.status_code}: {resp.text.strip()}")
        return resp

    def _json(self, path: str) -> Any:
        resp = self._request("GET", path)
        try:
            return resp.json()
        except ValueError as e:
            raise RegistryError(f"GET {path}: invalid JSON") from e

    def register(self, record: RegistrationRecord) -> None:
        self._request("PUT", "/v1/agent/service/register", json=registration_payload(record))

    def deregister(self, service_id: str) -> None:
        self._request("PUT", f"/v1/agent/service/deregister/{service_id}")

    def is_registered(self, service_id: str) -> bool:
        services = self._json("/v1/agent/services") or {}
        return any(svc.get("ID") == service_id for svc in services.values())

    def is_healthy(self, service_id: str) -> bool:
        # Services without checks have nothing critical and count as healthy.
        checks = self._json("/v1/agent/checks") or {}
        for check in checks.values():
            if check.get("ServiceID") == service_id and check.get("Status") == "critical":
                return False
        return True

    def leader(self) -> str:
        """Return the raft leader address; empty while the cluster has none."""
        return str(self._json("/v1/status/leader") or "")
