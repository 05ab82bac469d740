from __future__ import annotations

import os
import sqlite3
from datetime import datetime
from typing import Any

from .settings import settings


LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    Why this exists:
    - On many systems, if a bind-mounted *file* path does not exist,
      Docker creates a *directory* at that location. If we then try to
      open SQLite on that path, sqlite fails with "unable to open database file".
    - If the configured path is a directory, we place the DB file inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "dcr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the event journal if it does not exist.

    Only log lines live here. Registration state is owned by Consul and is
    never written to this database.
    """
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_name TEXT,
              container_id TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_container_id ON events(container_id);
            """
        )


def log_event(
    level: str,
    message: str,
    service_name: str | None = None,
    container_id: str | None = None,
) -> None:
    level = level.upper()
    if level not in LEVELS:
        level = "INFO"
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_name, container_id, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level, service_name, container_id, message),
        )


def latest_events(limit: int = 100, container_id: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if container_id:
            rows = conn.execute(
                "SELECT * FROM events WHERE container_id=? ORDER BY id DESC LIMIT ?",
                (container_id, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def prune_events(keep: int) -> int:
    """Drop all but the newest `keep` rows. Returns the number deleted."""
    if keep <= 0:
        return 0
    with connect() as conn:
        cur = conn.execute(
            "DELETE FROM events WHERE id <= (SELECT id FROM events ORDER BY id DESC LIMIT 1 OFFSET ?)",
            (keep,),
        )
        return cur.rowcount
