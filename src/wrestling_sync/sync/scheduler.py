"""Scheduled full syncs."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from .config import SyncConfig
from .models import RunSummary
from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs a full sync every ``scheduler_interval_seconds``."""

    def __init__(self, orchestrator: SyncOrchestrator, config: Optional[SyncConfig] = None):
        """Initialize sync scheduler.

        Args:
            orchestrator: Orchestrator whose ``run_all`` is invoked
            config: Sync configuration (uses the orchestrator's if None)
        """
        self.orchestrator = orchestrator
        self.config = config or orchestrator.config
        self._sync_task: Optional[asyncio.Task] = None
        self._running = False
        self._next_run_at: Optional[datetime] = None
        self._last_run_at: Optional[datetime] = None
        self._last_summary: Optional[RunSummary] = None

    async def start(self) -> None:
        """Start the periodic sync task."""
        if self._running:
            logger.warning("Sync scheduler is already running")
            return

        if not (self.config.enabled and self.config.scheduler_enabled):
            logger.info("Sync scheduler is disabled by configuration")
            return

        self._running = True
        self._sync_task = asyncio.create_task(self._periodic_sync())

        logger.info(
            f"Sync scheduler started: first run in {self.config.scheduler_initial_delay_seconds}s, "
            f"then every {self.config.scheduler_interval_seconds}s"
        )

    async def stop(self) -> None:
        """Stop the periodic sync task, cancelling a run in progress."""
        if not self._running:
            return

        self._running = False

        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None

        self._next_run_at = None
        logger.info("Sync scheduler stopped")

    async def _periodic_sync(self) -> None:
        delay = self.config.scheduler_initial_delay_seconds

        while self._running:
            try:
                self._next_run_at = datetime.now() + timedelta(seconds=delay)
                await asyncio.sleep(delay)

                if not self._running:
                    break

                await self.run_once()
                delay = self.config.scheduler_interval_seconds

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in scheduled sync: {e}", exc_info=True)
                delay = self.config.scheduler_interval_seconds

    async def run_once(self) -> RunSummary:
        """Run one scheduled full sync now."""
        logger.info("=== STARTING SCHEDULED SYNC ===")
        self._last_run_at = datetime.now()
        summary = await self.orchestrator.run_all()
        self._last_summary = summary

        if summary.rejected:
            logger.info("Scheduled sync skipped: a full sync is already in progress")
        elif summary.success:
            logger.info(f"Scheduled sync completed: {summary.total_synced} items synced")
        else:
            logger.warning(f"Scheduled sync finished with problems: {summary.error_message}")
        return summary

    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        return {
            "running": self._running,
            "interval_seconds": self.config.scheduler_interval_seconds,
            "initial_delay_seconds": self.config.scheduler_initial_delay_seconds,
            "next_run_at": self._next_run_at.isoformat() if self._next_run_at else None,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_run_success": self._last_summary.success if self._last_summary else None,
            "task_status": "running" if self._sync_task and not self._sync_task.done() else "stopped"
        }
