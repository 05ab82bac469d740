from __future__ import annotations

import threading

import docker
from fastapi import FastAPI, HTTPException, Query, status

from dcr import db
from dcr.api_models import AcceptedResponse, EventOut, StatusResponse
from dcr.consul import ConsulRegistry, RegistryError
from dcr.docker_ops import DockerRuntime, RuntimeClientError, connect_docker
from dcr.runtime import WatchStatus
from dcr.settings import settings
from dcr.watcher import Watcher


app = FastAPI(title="Docker Consul Registrar")

watch_status = WatchStatus()
watcher: Watcher | None = None
_shutdown = threading.Event()
_boot_thread: threading.Thread | None = None


def wait_for_consul(registry: ConsulRegistry) -> bool:
    """Block until the agent reports a raft leader. False if shut down first."""
    while not _shutdown.is_set():
        try:
            leader = registry.leader()
            if leader:
                db.log_event("INFO", f"Connected to consul, leader is {leader}")
                return True
            reason = "no leader elected yet"
        except RegistryError as e:
            reason = str(e)
        db.log_event("WARN", f"Could not connect to consul -- {reason}")
        _shutdown.wait(settings.connect_retry_s)
    return False


def wait_for_docker() -> docker.DockerClient | None:
    while not _shutdown.is_set():
        try:
            client = connect_docker()
            db.log_event("INFO", "Connected to docker")
            return client
        except RuntimeClientError as e:
            db.log_event("WARN", f"Could not connect to docker -- {e}")
        _shutdown.wait(settings.connect_retry_s)
    return None


def boot() -> None:
    """Connect to both collaborators, then run the watch loop on this thread."""
    global watcher
    watch_status.set_state("connecting")
    registry = ConsulRegistry()
    try:
        if not wait_for_consul(registry):
            return
        client = wait_for_docker()
        if client is None:
            return

        watcher = Watcher(DockerRuntime(client), registry, status=watch_status)
        if _shutdown.is_set():
            return
        watcher.run()
    finally:
        registry.close()


def _active_watcher() -> Watcher:
    if watcher is None or watcher.stopped:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Watcher is not running.")
    return watcher


@app.on_event("startup")
def startup() -> None:
    global _boot_thread
    db.init_db()
    _shutdown.clear()
    if settings.autostart:
        _boot_thread = threading.Thread(target=boot, daemon=True)
        _boot_thread.start()


@app.on_event("shutdown")
def shutdown() -> None:
    _shutdown.set()
    if watcher is not None:
        watcher.stop()
    # The watch loop runs on the boot thread; joining it bounds the in-flight pass.
    if _boot_thread is not None and _boot_thread.is_alive():
        _boot_thread.join(settings.http_timeout_s)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/status", response_model=StatusResponse)
def get_status() -> StatusResponse:
    return StatusResponse(**watch_status.snapshot())


@app.get("/events", response_model=list[EventOut])
def get_events(
    limit: int = Query(100, ge=1, le=1000),
    container_id: str | None = Query(None, description="Short container id"),
) -> list[EventOut]:
    return [EventOut(**e) for e in db.latest_events(limit, container_id=container_id)]


@app.post("/sweep", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
def post_sweep() -> AcceptedResponse:
    _active_watcher().request_sweep()
    return AcceptedResponse(action="sweep")


@app.post(
    "/containers/{container_id}/evaluate",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def post_evaluate(container_id: str) -> AcceptedResponse:
    _active_watcher().request_evaluate(container_id)
    return AcceptedResponse(action="evaluate", container_id=container_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
