from __future__ import annotations

from pydantic import BaseModel, Field


class StatusResponse(BaseModel):
    state: str = Field(..., description="idle|connecting|subscribed|stopped")
    started_at: str | None = None
    last_event_at: str | None = None
    last_sweep_at: str | None = None
    events_handled: int = 0
    sweeps: int = 0
    subscriptions: int = 0
    stream_errors: int = 0
    decisions: dict[str, int] = Field(default_factory=dict, description="Applied decisions by kind")


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    service_name: str | None = None
    container_id: str | None = None
    message: str


class AcceptedResponse(BaseModel):
    accepted: bool = True
    action: str = Field(..., description="sweep|evaluate")
    container_id: str | None = None
