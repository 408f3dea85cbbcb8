"""Configuration for the entity synchronization engine."""

import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Any, List

from .models import SyncDirection


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("true", "1", "yes")


@dataclass
class SyncConfig:
    """Configuration settings for the synchronization engine."""

    # Master switches
    enabled: bool = True
    scheduler_enabled: bool = True

    # Scheduler settings
    scheduler_interval_seconds: int = 3600  # 1 hour
    scheduler_initial_delay_seconds: int = 300  # 5 minutes

    # Orchestrator settings
    max_concurrency: int = 4
    default_direction: str = SyncDirection.INBOUND.value

    # External call settings
    api_timeout_seconds: float = 30.0
    max_fetch_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout_seconds: float = 60.0

    # Monitoring settings
    metrics_window_size: int = 50
    progress_retention_seconds: float = 30.0

    # Backup settings
    backup_enabled: bool = True
    backup_directory: str = "backups"
    backup_max_files: int = 10

    # Storage settings
    db_path: str = "wrestling_sync.duckdb"
    export_directory: str = "notion_export"

    # Logging settings
    log_level: str = "INFO"

    @property
    def direction(self) -> SyncDirection:
        return SyncDirection.parse(self.default_direction)

    def validate(self) -> List[str]:
        """Validate configuration parameters.

        Returns:
            Warnings about settings that work but are probably unintended

        Raises:
            ValueError: If any setting is invalid
        """
        errors = []

        if self.scheduler_interval_seconds <= 0:
            errors.append(f"Scheduler interval must be positive, got {self.scheduler_interval_seconds}")

        if self.scheduler_initial_delay_seconds < 0:
            errors.append(f"Scheduler initial delay must be non-negative, got {self.scheduler_initial_delay_seconds}")

        if self.max_concurrency <= 0:
            errors.append(f"Max concurrency must be positive, got {self.max_concurrency}")

        try:
            SyncDirection.parse(self.default_direction)
        except ValueError:
            errors.append(f"Default direction must be one of {[d.value for d in SyncDirection]}, got {self.default_direction}")

        if self.api_timeout_seconds <= 0:
            errors.append(f"API timeout must be positive, got {self.api_timeout_seconds}")

        if self.max_fetch_attempts <= 0:
            errors.append(f"Max fetch attempts must be positive, got {self.max_fetch_attempts}")

        if self.retry_base_delay_seconds < 0:
            errors.append(f"Retry base delay must be non-negative, got {self.retry_base_delay_seconds}")

        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            errors.append(
                f"Retry max delay ({self.retry_max_delay_seconds}) must not be below "
                f"the base delay ({self.retry_base_delay_seconds})"
            )

        if self.circuit_failure_threshold <= 0:
            errors.append(f"Circuit failure threshold must be positive, got {self.circuit_failure_threshold}")

        if self.circuit_recovery_timeout_seconds <= 0:
            errors.append(f"Circuit recovery timeout must be positive, got {self.circuit_recovery_timeout_seconds}")

        if self.metrics_window_size <= 0:
            errors.append(f"Metrics window size must be positive, got {self.metrics_window_size}")

        if self.progress_retention_seconds < 0:
            errors.append(f"Progress retention must be non-negative, got {self.progress_retention_seconds}")

        if self.backup_max_files <= 0:
            errors.append(f"Backup max files must be positive, got {self.backup_max_files}")

        if self.backup_enabled and not self.backup_directory.strip():
            errors.append("Backup directory must be set when backups are enabled")

        if not self.db_path.strip():
            errors.append("Database path must not be empty")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Log level must be one of {valid_log_levels}, got {self.log_level}")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        warnings = []
        if not self.enabled:
            warnings.append("Sync is disabled")
        if self.scheduler_interval_seconds < 60:
            warnings.append(
                f"Scheduler interval of {self.scheduler_interval_seconds}s is very short; "
                f"consider at least 60s to avoid hitting API rate limits"
            )
        for warning in warnings:
            logger.warning(warning)
        return warnings

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Create configuration from ``SYNC_*`` environment variables with validation."""
        try:
            config = cls(
                enabled=_env_bool("SYNC_ENABLED", True),
                scheduler_enabled=_env_bool("SYNC_SCHEDULER_ENABLED", True),

                scheduler_interval_seconds=int(os.getenv("SYNC_SCHEDULER_INTERVAL_SECONDS", "3600")),
                scheduler_initial_delay_seconds=int(os.getenv("SYNC_SCHEDULER_INITIAL_DELAY_SECONDS", "300")),

                max_concurrency=int(os.getenv("SYNC_MAX_CONCURRENCY", "4")),
                default_direction=os.getenv("SYNC_DEFAULT_DIRECTION", SyncDirection.INBOUND.value),

                api_timeout_seconds=float(os.getenv("SYNC_API_TIMEOUT_SECONDS", "30")),
                max_fetch_attempts=int(os.getenv("SYNC_MAX_FETCH_ATTEMPTS", "3")),
                retry_base_delay_seconds=float(os.getenv("SYNC_RETRY_BASE_DELAY_SECONDS", "1.0")),
                retry_max_delay_seconds=float(os.getenv("SYNC_RETRY_MAX_DELAY_SECONDS", "30.0")),
                circuit_failure_threshold=int(os.getenv("SYNC_CIRCUIT_FAILURE_THRESHOLD", "5")),
                circuit_recovery_timeout_seconds=float(os.getenv("SYNC_CIRCUIT_RECOVERY_TIMEOUT_SECONDS", "60")),

                metrics_window_size=int(os.getenv("SYNC_METRICS_WINDOW_SIZE", "50")),
                progress_retention_seconds=float(os.getenv("SYNC_PROGRESS_RETENTION_SECONDS", "30")),

                backup_enabled=_env_bool("SYNC_BACKUP_ENABLED", True),
                backup_directory=os.getenv("SYNC_BACKUP_DIRECTORY", "backups"),
                backup_max_files=int(os.getenv("SYNC_BACKUP_MAX_FILES", "10")),

                db_path=os.getenv("SYNC_DB_PATH", "wrestling_sync.duckdb"),
                export_directory=os.getenv("SYNC_EXPORT_DIRECTORY", "notion_export"),

                log_level=os.getenv("SYNC_LOG_LEVEL", "INFO"),
            )
        except ValueError as e:
            raise ValueError(f"Invalid environment variable format: {e}") from e

        config.validate()
        return config

    @classmethod
    def from_file(cls, config_path: str) -> "SyncConfig":
        """Load configuration from a .env file."""
        from dotenv import load_dotenv

        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        load_dotenv(config_file)
        return cls.from_env()

    def with_overrides(self, **overrides: Any) -> "SyncConfig":
        """Copy of this configuration with some fields replaced, validated."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown configuration fields: {sorted(unknown)}")

        config_dict = self.to_dict()
        config_dict.update(overrides)
        new_config = SyncConfig(**config_dict)
        new_config.validate()
        return new_config
