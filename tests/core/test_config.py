from __future__ import annotations

from pathlib import Path

import pytest

from progress_engine.core.config import AppEnv, Settings, load_settings

# ---- valid values ----


def test_load_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("APP_ENV", "LOG_LEVEL", "WORKER_PARTITIONS", "CONTENT_DIR"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.worker_partitions == 4
    assert settings.max_deliveries == 3
    assert settings.retry_backoff_seconds == 0.05
    assert settings.dead_letter_limit == 1000
    assert (settings.content_dir / "catalog.json").is_file()


def test_load_settings_respects_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("LOG_LEVEL", "error")
    monkeypatch.setenv("WORKER_PARTITIONS", "16")
    monkeypatch.setenv("EVENT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("SEARCH_PROVIDER_URL", "http://search:9200")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "error"
    assert settings.worker_partitions == 16
    assert settings.event_timeout_seconds == 2.5
    assert settings.search_provider_url == "http://search:9200"


def test_load_settings_normalizes_case(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "PROD")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "debug"


def test_load_settings_strips_whitespace(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "  test  ")
    monkeypatch.setenv("LOG_LEVEL", "  warning  ")
    settings = load_settings()
    assert settings.app_env == "test"
    assert settings.log_level == "warning"


def test_blank_urls_mean_not_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REDIS_URL", "   ")
    monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "")
    settings = load_settings()
    assert settings.redis_url is None
    assert settings.notification_webhook_url is None


def test_content_dir_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CONTENT_DIR", str(tmp_path))
    assert load_settings().content_dir == tmp_path


# ---- invalid values ----


def test_load_settings_rejects_invalid_app_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("LOG_LEVEL", "info")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


def test_load_settings_rejects_invalid_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(ValueError, match="LOG_LEVEL must be debug|info|warning|error"):
        load_settings()


def test_load_settings_rejects_non_integer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_PARTITIONS", "many")
    with pytest.raises(ValueError, match="WORKER_PARTITIONS must be an integer"):
        load_settings()


def test_load_settings_rejects_zero_partitions(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_PARTITIONS", "0")
    with pytest.raises(ValueError, match="WORKER_PARTITIONS must be >= 1"):
        load_settings()


def test_load_settings_rejects_negative_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EVENT_TIMEOUT_SECONDS", "-1")
    with pytest.raises(ValueError, match="EVENT_TIMEOUT_SECONDS must be positive"):
        load_settings()


# ---- Settings properties ----


def _make_settings(app_env: AppEnv = "dev") -> Settings:
    return Settings(  # type: ignore[arg-type]
        app_env=app_env,
        log_level="info",
        log_json=False,
        port=8000,
        database_url=None,
        redis_url=None,
    )


def test_settings_env_flags() -> None:
    assert _make_settings("dev").is_dev is True
    assert _make_settings("test").is_test is True
    assert _make_settings("prod").is_prod is True
    assert _make_settings("prod").is_dev is False


def test_settings_is_frozen() -> None:
    s = _make_settings()
    with pytest.raises(AttributeError):
        s.worker_partitions = 8  # type: ignore[misc]
