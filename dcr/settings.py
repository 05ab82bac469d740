from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("DCR_DB_PATH", "dcr.db")
    sweep_interval_s: int = _env_int("DCR_SWEEP_INTERVAL_S", 5)
    event_retention: int = _env_int("DCR_EVENT_RETENTION", 10000)
    autostart: bool = _env_bool("DCR_AUTOSTART", True)

    # Collaborators
    consul_url: str = os.getenv("DCR_CONSUL_URL", "http://127.0.0.1:8500")
    consul_token: str | None = os.getenv("DCR_CONSUL_TOKEN")
    http_timeout_s: int = _env_int("DCR_HTTP_TIMEOUT_S", 10)
    stop_timeout_s: int = _env_int("DCR_STOP_TIMEOUT_S", 10)
    connect_retry_s: int = _env_int("DCR_CONNECT_RETRY_S", 3)

    # Email alerting (optional)
    enable_email: bool = _env_bool("DCR_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("DCR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("DCR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("DCR_SMTP_USER")
    smtp_password: str | None = os.getenv("DCR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("DCR_EMAIL_FROM")
    email_to: str | None = os.getenv("DCR_EMAIL_TO")


settings = Settings()
