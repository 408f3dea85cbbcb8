"""Orchestrates full and single-entity sync runs over the dependency levels."""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Dict, Any, List, Optional, Set, Tuple, Union

from .config import SyncConfig
from .dependency_graph import DependencyGraph
from .exceptions import ConcurrencyRejection, ConfigurationError, EntityError
from .health import HealthMonitor
from .logging_config import PerformanceTimer, log_entity_result, log_run_summary
from .models import (
    DependencyLevel, RunState, RunSummary, SyncContext, SyncDirection, SyncResult
)
from .progress import ProgressTracker, generate_operation_id
from .registry import EntityRegistry
from .worker import CANCELLED


logger = logging.getLogger(__name__)

Direction = Union[SyncDirection, str, None]


class SyncOrchestrator:
    """Runs entity syncs level by level with a concurrency cap.

    Only one full run may be active at a time, and an entity is never
    synced by two requests at once; overlapping requests are rejected
    rather than queued. The bookkeeping lock is never held across an await.
    """

    def __init__(self, registry: EntityRegistry, graph: DependencyGraph,
                 progress_tracker: ProgressTracker, health_monitor: HealthMonitor,
                 config: Optional[SyncConfig] = None):
        self.registry = registry
        self.graph = graph
        self.progress_tracker = progress_tracker
        self.health_monitor = health_monitor
        self.config = config or SyncConfig()

        self._state_lock = threading.Lock()
        self._run_all_operation: Optional[str] = None
        self._active_entities: Set[str] = set()
        self._last_sync_times: Dict[str, datetime] = {}
        self._last_run: Optional[RunSummary] = None

    async def run_all(self, ctx: Optional[SyncContext] = None,
                      operation_id: Optional[str] = None,
                      direction: Direction = None) -> RunSummary:
        """Sync every registered entity in dependency order.

        Returns:
            RunSummary with one result per attempted entity; rejected when
            another full run is active
        """
        operation_id = operation_id or generate_operation_id("sync-all")
        direction = self._resolve_direction(direction)
        started_at = datetime.now()

        with self._state_lock:
            if self._run_all_operation is not None:
                busy = self._run_all_operation
            else:
                busy = None
                self._run_all_operation = operation_id

        if busy is not None:
            rejection = ConcurrencyRejection("all entities")
            logger.warning(f"Rejected full sync {operation_id}: {rejection.message} ({busy})",
                           extra={'operation_id': operation_id})
            return RunSummary(
                operation_id=operation_id,
                state=RunState.ABORTED,
                started_at=started_at,
                finished_at=datetime.now(),
                rejected=True,
                error_message=rejection.reason,
            )

        try:
            summary = await self._execute_run_all(ctx or SyncContext(), operation_id,
                                                  direction, started_at)
        finally:
            with self._state_lock:
                self._run_all_operation = None

        self._last_run = summary
        return summary

    async def _execute_run_all(self, ctx: SyncContext, operation_id: str,
                               direction: SyncDirection, started_at: datetime) -> RunSummary:
        ctx.link(lambda: self.progress_tracker.is_cancel_requested(operation_id))

        # PLANNING
        try:
            levels = self._plan()
        except ConfigurationError as e:
            return self._abort(operation_id, started_at, e.message)

        total_steps = 1 + sum(len(level) for level in levels)
        self.progress_tracker.start(operation_id, total_steps, "Sync all entities")
        self.progress_tracker.advance(
            operation_id,
            f"Resolved sync order: {' -> '.join(', '.join(level) for level in levels)}"
        )
        logger.info(f"Starting full sync {operation_id} ({direction.value}) "
                    f"over {len(levels)} levels",
                    extra={'operation_id': operation_id, 'direction': direction.value})

        # RUNNING, one level at a time
        results: List[SyncResult] = []
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        for level in levels:
            self.progress_tracker.advance(
                operation_id, f"Syncing level {level.index}: {', '.join(level)}",
                completes_step=False
            )
            level_results = await asyncio.gather(*(
                self._run_in_level(name, ctx, direction, operation_id, semaphore)
                for name in level
            ))
            results.extend(level_results)

        summary = RunSummary(
            operation_id=operation_id,
            state=RunState.COMPLETED,
            started_at=started_at,
            finished_at=datetime.now(),
            results=tuple(results),
            error_message=(
                f"{sum(1 for r in results if not r.success)} of {len(results)} entities failed"
                if any(not r.success for r in results) else None
            ),
        )
        self.progress_tracker.complete(
            operation_id, summary.success,
            f"Synced {summary.total_synced} items across {len(results)} entities"
            + (f" ({summary.failed_entities} failed)" if summary.failed_entities else "")
        )
        log_run_summary(logger, summary)
        return summary

    def _plan(self) -> Tuple[DependencyLevel, ...]:
        if not self.config.enabled:
            raise ConfigurationError("Sync is disabled")
        self.registry.validate_against(self.graph)
        return self.graph.levels

    def _abort(self, operation_id: str, started_at: datetime, reason: str) -> RunSummary:
        logger.error(f"Full sync {operation_id} aborted: {reason}",
                     extra={'operation_id': operation_id})
        self.progress_tracker.start(operation_id, 1, "Sync all entities")
        self.progress_tracker.complete(operation_id, False, reason)
        return RunSummary(
            operation_id=operation_id,
            state=RunState.ABORTED,
            started_at=started_at,
            finished_at=datetime.now(),
            error_message=reason,
        )

    async def _run_in_level(self, name: str, ctx: SyncContext, direction: SyncDirection,
                            operation_id: str, semaphore: asyncio.Semaphore) -> SyncResult:
        async with semaphore:
            result = await self._sync_entity(name, ctx, direction, operation_id)
        if result.success:
            description = f"Synced {name} ({result.synced_count} items)"
        else:
            description = f"Failed {name}: {result.error_message}"
        self.progress_tracker.advance(operation_id, description,
                                      items_delta=result.synced_count)
        return result

    async def run_entity(self, name: str, ctx: Optional[SyncContext] = None,
                         operation_id: Optional[str] = None,
                         direction: Direction = None) -> SyncResult:
        """Sync a single entity type without syncing its dependencies first.

        Raises:
            ConfigurationError: If the entity is unknown
        """
        self.graph.level_of(name)
        direction = self._resolve_direction(direction)
        operation_id = operation_id or generate_operation_id(f"sync-{name}")

        if not self.config.enabled:
            logger.warning(f"Sync of {name} skipped: sync is disabled")
            return SyncResult.failure(name, "Sync is disabled", direction=direction)

        ctx = (ctx or SyncContext()).link(
            lambda: self.progress_tracker.is_cancel_requested(operation_id)
        )
        self.progress_tracker.start(operation_id, 1, f"Sync {name}")
        result = await self._sync_entity(name, ctx, direction, operation_id)
        self.progress_tracker.complete(
            operation_id, result.success,
            f"Synced {result.synced_count} {name}" if result.success
            else result.error_message or "failed"
        )
        return result

    async def _sync_entity(self, name: str, ctx: SyncContext, direction: SyncDirection,
                           operation_id: str) -> SyncResult:
        if ctx.is_cancelled():
            return SyncResult.failure(name, CANCELLED, direction=direction)

        with self._state_lock:
            held = name in self._active_entities
            if not held:
                self._active_entities.add(name)
        if held:
            result = SyncResult.rejection(name, ConcurrencyRejection(name).reason, direction)
            log_entity_result(logger, result, operation_id)
            return result

        started_at = datetime.now()
        try:
            worker = self.registry.worker_for(name)
            with PerformanceTimer(logger, f"sync {name}", entity_type=name,
                                  operation_id=operation_id):
                try:
                    result = await worker.sync(ctx, name, direction, operation_id)
                except Exception as e:
                    error = EntityError(name, str(e) or type(e).__name__)
                    logger.error(error.message, exc_info=True,
                                 extra={'entity_type': name, 'operation_id': operation_id})
                    result = SyncResult.failure(name, error.message, started_at, direction)
        finally:
            with self._state_lock:
                self._active_entities.discard(name)

        if not result.cancelled:
            self.health_monitor.record_result(result)
        if result.success:
            self._last_sync_times[name] = result.finished_at
        log_entity_result(logger, result, operation_id)
        return result

    def cancel(self, operation_id: str) -> bool:
        """Request cancellation of a running operation."""
        return self.progress_tracker.request_cancel(operation_id)

    def is_run_active(self) -> bool:
        with self._state_lock:
            return self._run_all_operation is not None

    def active_entities(self) -> List[str]:
        with self._state_lock:
            return sorted(self._active_entities)

    def sync_order(self) -> List[str]:
        return self.graph.automatic_sync_order()

    def levels(self) -> List[List[str]]:
        return [list(level.entities) for level in self.graph.levels]

    def last_sync_time(self, name: str) -> Optional[datetime]:
        self.graph.level_of(name)
        return self._last_sync_times.get(name)

    @property
    def last_run(self) -> Optional[RunSummary]:
        return self._last_run

    def status(self) -> Dict[str, Any]:
        """Configuration, sync order and run flags for status displays."""
        config = self.config
        with self._state_lock:
            current_run = self._run_all_operation
            active = sorted(self._active_entities)
        return {
            "enabled": config.enabled,
            "scheduler_enabled": config.scheduler_enabled,
            "interval_seconds": config.scheduler_interval_seconds,
            "default_direction": config.direction.value,
            "max_concurrency": config.max_concurrency,
            "entities": self.sync_order(),
            "levels": self.levels(),
            "backup_enabled": config.backup_enabled,
            "backup_directory": config.backup_directory,
            "backup_max_files": config.backup_max_files,
            "run_active": current_run is not None,
            "current_operation_id": current_run,
            "active_entities": active,
            "last_sync_times": {
                name: timestamp.isoformat()
                for name, timestamp in sorted(self._last_sync_times.items())
            },
            "last_run": self._last_run.to_dict() if self._last_run else None,
        }

    def _resolve_direction(self, direction: Direction) -> SyncDirection:
        if direction is None:
            return self.config.direction
        return SyncDirection.parse(direction)
