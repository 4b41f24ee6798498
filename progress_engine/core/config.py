from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_DEFAULT_CONTENT_DIR = Path(__file__).resolve().parents[1] / "content"


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {value})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    content_dir: Path = _DEFAULT_CONTENT_DIR

    # event validation window
    max_clock_skew_seconds: int = 300
    max_event_age_seconds: int = 7 * 24 * 3600

    # optimistic concurrency + worker pool
    cas_max_attempts: int = 5
    cas_backoff_seconds: float = 0.01
    worker_partitions: int = 4
    event_timeout_seconds: float = 5.0
    max_deliveries: int = 3
    retry_backoff_seconds: float = 0.05
    dead_letter_limit: int = 1000
    notify_timeout_seconds: float = 1.0

    # external collaborators
    search_provider_url: str | None = None
    search_timeout_seconds: float = 2.0
    search_max_attempts: int = 3
    notification_webhook_url: str | None = None
    jwt_public_key: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    content_dir = Path(_getenv("CONTENT_DIR", "") or _DEFAULT_CONTENT_DIR)

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        content_dir=content_dir,
        max_clock_skew_seconds=_getint("MAX_CLOCK_SKEW_SECONDS", 300),
        max_event_age_seconds=_getint("MAX_EVENT_AGE_SECONDS", 7 * 24 * 3600),
        cas_max_attempts=_getint("CAS_MAX_ATTEMPTS", 5, minimum=1),
        cas_backoff_seconds=_getfloat("CAS_BACKOFF_SECONDS", 0.01),
        worker_partitions=_getint("WORKER_PARTITIONS", 4, minimum=1),
        event_timeout_seconds=_getfloat("EVENT_TIMEOUT_SECONDS", 5.0),
        max_deliveries=_getint("MAX_DELIVERIES", 3, minimum=1),
        retry_backoff_seconds=_getfloat("RETRY_BACKOFF_SECONDS", 0.05),
        dead_letter_limit=_getint("DEAD_LETTER_LIMIT", 1000, minimum=1),
        notify_timeout_seconds=_getfloat("NOTIFY_TIMEOUT_SECONDS", 1.0),
        search_provider_url=_getenv("SEARCH_PROVIDER_URL", "") or None,
        search_timeout_seconds=_getfloat("SEARCH_TIMEOUT_SECONDS", 2.0),
        search_max_attempts=_getint("SEARCH_MAX_ATTEMPTS", 3, minimum=1),
        notification_webhook_url=_getenv("NOTIFICATION_WEBHOOK_URL", "") or None,
        jwt_public_key=_getenv("JWT_PUBLIC_KEY", "") or None,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
