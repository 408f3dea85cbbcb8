"""Tests for sync configuration loading and validation."""

import os

import pytest

from wrestling_sync.sync.config import SyncConfig
from wrestling_sync.sync.models import SyncDirection


SYNC_VARIABLES = [
    "SYNC_ENABLED", "SYNC_SCHEDULER_ENABLED", "SYNC_SCHEDULER_INTERVAL_SECONDS",
    "SYNC_SCHEDULER_INITIAL_DELAY_SECONDS", "SYNC_MAX_CONCURRENCY", "SYNC_DEFAULT_DIRECTION",
    "SYNC_API_TIMEOUT_SECONDS", "SYNC_MAX_FETCH_ATTEMPTS", "SYNC_BACKUP_ENABLED",
    "SYNC_BACKUP_DIRECTORY", "SYNC_BACKUP_MAX_FILES", "SYNC_DB_PATH",
    "SYNC_EXPORT_DIRECTORY", "SYNC_LOG_LEVEL", "SYNC_METRICS_WINDOW_SIZE",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in SYNC_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_are_valid():
    config = SyncConfig()
    assert config.validate() == []
    assert config.direction == SyncDirection.INBOUND
    assert config.max_concurrency == 4


def test_from_env(clean_env):
    clean_env.setenv("SYNC_SCHEDULER_ENABLED", "false")
    clean_env.setenv("SYNC_MAX_CONCURRENCY", "2")
    clean_env.setenv("SYNC_DEFAULT_DIRECTION", "Bidirectional")
    clean_env.setenv("SYNC_DB_PATH", "/data/promotion.duckdb")
    clean_env.setenv("SYNC_BACKUP_MAX_FILES", "3")

    config = SyncConfig.from_env()

    assert config.enabled is True
    assert config.scheduler_enabled is False
    assert config.max_concurrency == 2
    assert config.direction == SyncDirection.BIDIRECTIONAL
    assert config.db_path == "/data/promotion.duckdb"
    assert config.backup_max_files == 3


def test_from_env_rejects_malformed_numbers(clean_env):
    clean_env.setenv("SYNC_MAX_CONCURRENCY", "four")
    with pytest.raises(ValueError, match="Invalid environment variable format"):
        SyncConfig.from_env()


def test_from_env_validates(clean_env):
    clean_env.setenv("SYNC_MAX_CONCURRENCY", "0")
    with pytest.raises(ValueError, match="Max concurrency must be positive"):
        SyncConfig.from_env()


def test_from_file(clean_env, tmp_path):
    env_file = tmp_path / "sync.env"
    env_file.write_text("SYNC_EXPORT_DIRECTORY=/exports\nSYNC_LOG_LEVEL=DEBUG\n", encoding="utf-8")

    try:
        config = SyncConfig.from_file(str(env_file))
    finally:
        # load_dotenv writes to the process environment
        os.environ.pop("SYNC_EXPORT_DIRECTORY", None)
        os.environ.pop("SYNC_LOG_LEVEL", None)

    assert config.export_directory == "/exports"
    assert config.log_level == "DEBUG"


def test_from_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        SyncConfig.from_file(str(tmp_path / "missing.env"))


@pytest.mark.parametrize("overrides, message", [
    ({"scheduler_interval_seconds": 0}, "Scheduler interval must be positive"),
    ({"default_direction": "sideways"}, "Default direction must be one of"),
    ({"api_timeout_seconds": 0}, "API timeout must be positive"),
    ({"retry_base_delay_seconds": 5, "retry_max_delay_seconds": 1}, "Retry max delay"),
    ({"backup_max_files": 0}, "Backup max files must be positive"),
    ({"log_level": "LOUD"}, "Log level must be one of"),
])
def test_invalid_settings(overrides, message):
    with pytest.raises(ValueError, match=message):
        SyncConfig(**overrides).validate()


def test_warnings_for_suspicious_settings():
    warnings = SyncConfig(enabled=False, scheduler_interval_seconds=30).validate()
    assert "Sync is disabled" in warnings
    assert any("very short" in warning for warning in warnings)


def test_with_overrides():
    config = SyncConfig().with_overrides(max_concurrency=8, db_path=":memory:")

    assert config.max_concurrency == 8
    assert config.db_path == ":memory:"
    with pytest.raises(ValueError, match="Unknown configuration fields"):
        config.with_overrides(colour="blue")
    with pytest.raises(ValueError):
        config.with_overrides(max_concurrency=-1)


def test_to_dict_round_trips_through_constructor():
    config = SyncConfig(max_concurrency=2, backup_enabled=False)
    assert SyncConfig(**config.to_dict()) == config
