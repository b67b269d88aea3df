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


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("DVR_DB_PATH", "dvr.db")
    root_path: str = os.getenv("DVR_ROOT", ".")
    compose_file: str = os.getenv("DVR_COMPOSE_FILE", "docker-compose.yml")
    endpoints_file: str | None = os.getenv("DVR_ENDPOINTS_FILE")

    # Probing
    settle_delay_s: float = _env_float("DVR_SETTLE_DELAY_S", 30.0)
    run_budget_s: float = _env_float("DVR_RUN_BUDGET_S", 300.0)
    max_workers: int = _env_int("DVR_MAX_WORKERS", 1)
    connect_timeout_s: float = _env_float("DVR_CONNECT_TIMEOUT_S", 3.0)
    request_timeout_s: float = _env_float("DVR_REQUEST_TIMEOUT_S", 5.0)
    snippet_chars: int = _env_int("DVR_SNIPPET_CHARS", 200)

    # Stack endpoints
    app_name: str = os.getenv("DVR_APP_NAME", "demo-app")
    app_host: str = os.getenv("DVR_APP_HOST", "localhost")
    app_port: int = _env_int("DVR_APP_PORT", 8080)
    grafana_port: int = _env_int("DVR_GRAFANA_PORT", 3000)
    prometheus_port: int = _env_int("DVR_PROMETHEUS_PORT", 9090)
    node_exporter_port: int = _env_int("DVR_NODE_EXPORTER_PORT", 9100)
    db_port: int = _env_int("DVR_DB_PORT", 3306)

    # Container names removed before a redeploy (comma separated)
    stale_containers: str = os.getenv(
        "DVR_STALE_CONTAINERS", "demo-app,prometheus,grafana,node-exporter,mysql"
    )

    # API auth
    admin_user: str = os.getenv("DVR_ADMIN_USER", "admin")
    admin_password: str | None = os.getenv("DVR_ADMIN_PASSWORD")

    # Email alerting (optional)
    enable_email: bool = _env_bool("DVR_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("DVR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("DVR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("DVR_SMTP_USER")
    smtp_password: str | None = os.getenv("DVR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("DVR_EMAIL_FROM")
    email_to: str | None = os.getenv("DVR_EMAIL_TO")


settings = Settings()
