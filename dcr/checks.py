from __future__ import annotations

from dataclasses import dataclass


CHECK_KINDS = ("script", "shell", "http", "tcp")

# Both spellings are found in the wild on service.health-check labels.
PORT_PLACEHOLDERS = ("${service.port}", "${service-port}")


@dataclass(frozen=True)
class HealthCheckSpec:
    kind: str  # script|shell|http|tcp
    target: str
    interval: str
    timeout: str


def _field(fields: list[str], i: int) -> str:
    if len(fields) <= i:
        return ""
    return fields[i]


def substitute_port(arg: str, port: str) -> str:
    for token in PORT_PLACEHOLDERS:
        arg = arg.replace(token, port)
    return arg


def parse_health_check(descriptor: str, port: str = "") -> HealthCheckSpec | None:
    """Parse a `[KIND] [ARG] [INTERVAL] [TIMEOUT]` health-check label.

    Unknown or empty kinds yield None rather than an error: the container is
    still registrable, only without a check. For http and tcp checks the port
    placeholder in ARG is replaced by the resolved service port. The port is
    not validated, so an empty port leaves a target such as "127.0.0.1:".
    """
    fields = descriptor.split(" ")
    kind = _field(fields, 0).lower()
    if kind not in CHECK_KINDS:
        return None

    target = _field(fields, 1)
    if kind in {"http", "tcp"}:
        target = substitute_port(target, port)

    return HealthCheckSpec(
        kind=kind,
        target=target,
        interval=_field(fields, 2),
        timeout=_field(fields, 3),
    )
