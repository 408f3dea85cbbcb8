"""Builds, starts and stops the set of sync components."""

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from .backup import BackupManager
from .circuit_breaker import CircuitBreakerRegistry
from .config import SyncConfig
from .dependency_graph import DependencyGraph
from .entities import DEFAULT_ENTITIES, EntityDefinition
from .exceptions import ExternalServiceError
from .health import HealthMonitor
from .interfaces import LocalStore, RemoteSource
from .orchestrator import SyncOrchestrator
from .progress import ProgressTracker
from .registry import EntityRegistry
from .scheduler import SyncScheduler
from .worker import EntitySyncWorker, RetryPolicy
from ..database import SyncDatabase
from ..sources import SnapshotRemoteSource


logger = logging.getLogger(__name__)

# Failures that count against an entity's circuit breaker
REMOTE_FAILURES = (ExternalServiceError, asyncio.TimeoutError, OSError)


def build_registry(definitions: Iterable[EntityDefinition], remote: RemoteSource,
                   store: LocalStore, progress_tracker: ProgressTracker,
                   breakers: CircuitBreakerRegistry,
                   config: SyncConfig) -> EntityRegistry:
    """Register one worker per entity definition."""
    retry_policy = RetryPolicy(
        max_attempts=config.max_fetch_attempts,
        base_delay_seconds=config.retry_base_delay_seconds,
        max_delay_seconds=config.retry_max_delay_seconds,
    )
    registry = EntityRegistry()
    for definition in definitions:
        worker = EntitySyncWorker(
            definition, remote, store,
            progress_tracker=progress_tracker,
            breaker=breakers.for_entity(definition.name),
            retry_policy=retry_policy,
            api_timeout_seconds=config.api_timeout_seconds,
        )
        registry.register(definition.descriptor, worker)
    return registry


class SyncServiceContainer:
    """Owns every sync component of one process.

    Construction validates the entity configuration; a cyclic or dangling
    dependency raises ConfigurationError here, before anything runs.
    """

    def __init__(self, config: SyncConfig, store: LocalStore, remote: RemoteSource,
                 definitions: Iterable[EntityDefinition] = DEFAULT_ENTITIES):
        """Wire the components.

        Args:
            config: Validated sync configuration
            store: Local store; a SyncDatabase is opened and closed by the container
            remote: Source of remote records
            definitions: Entity types to sync
        """
        self.config = config
        self.store = store
        self.remote = remote
        self.definitions = tuple(definitions)

        self.progress_tracker = ProgressTracker(config.progress_retention_seconds)
        self.health_monitor = HealthMonitor(
            window_size=config.metrics_window_size,
            progress_tracker=self.progress_tracker,
        )
        self.breakers = CircuitBreakerRegistry(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_timeout_seconds,
            expected_exceptions=REMOTE_FAILURES,
        )
        self.registry = build_registry(
            self.definitions, remote, store, self.progress_tracker, self.breakers, config
        )
        self.graph: DependencyGraph = self.registry.build_graph()
        self.orchestrator = SyncOrchestrator(
            self.registry, self.graph, self.progress_tracker, self.health_monitor, config
        )
        self.scheduler = SyncScheduler(self.orchestrator, config)
        self._started = False

    @classmethod
    def from_config(cls, config: SyncConfig) -> "SyncServiceContainer":
        """Create the DuckDB store and the export-file source described by ``config``."""
        db_path = Path(config.db_path)
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)

        backup_manager = BackupManager(
            config.backup_directory,
            max_files=config.backup_max_files,
            enabled=config.backup_enabled,
        )
        remote = SnapshotRemoteSource(config.export_directory, backup_manager)
        return cls(config, SyncDatabase(db_path), remote)

    async def start(self) -> None:
        """Open the store and start the scheduler."""
        if self._started:
            return
        if isinstance(self.store, SyncDatabase):
            self.store.open()
        await self.scheduler.start()
        self._started = True
        logger.info(f"Sync service started with {len(self.registry)} entities: "
                    f"{', '.join(self.graph.automatic_sync_order())}")

    async def stop(self) -> None:
        if not self._started:
            return
        try:
            await self.scheduler.stop()
        except Exception as e:
            logger.error(f"Error stopping sync scheduler: {e}", exc_info=True)
        if isinstance(self.store, SyncDatabase):
            self.store.close()
        self._started = False
        logger.info("Sync service stopped")

    @property
    def started(self) -> bool:
        return self._started

    async def __aenter__(self) -> "SyncServiceContainer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
