"""Progress tracking for sync operations with observer notifications."""

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from .interfaces import ProgressListener
from .models import SyncProgress


logger = logging.getLogger(__name__)


def generate_operation_id(prefix: str = "sync") -> str:
    """Create an operation ID such as ``sync-all-3f2a...``."""
    return f"{prefix}-{uuid.uuid4().hex}"


class ProgressTracker:
    """Tracks progress of running sync operations.

    One lock guards the operation map and each entry carries its own lock
    for its fields. Listeners are notified synchronously, after the entry
    lock is released, from whichever thread made the change.
    """

    def __init__(self, retention_seconds: float = 30.0):
        """Initialize progress tracker.

        Args:
            retention_seconds: How long terminal operations stay queryable
        """
        self.retention_seconds = retention_seconds
        self._operations: Dict[str, SyncProgress] = {}
        self._operations_lock = threading.Lock()
        self._listeners: List[ProgressListener] = []
        self._listeners_lock = threading.Lock()

    def subscribe(self, listener: ProgressListener) -> None:
        with self._listeners_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: ProgressListener) -> bool:
        """Remove a listener; returns False if it was not subscribed."""
        with self._listeners_lock:
            try:
                self._listeners.remove(listener)
                return True
            except ValueError:
                return False

    def start(self, operation_id: str, total_steps: int,
              operation_name: str = "") -> SyncProgress:
        """Begin tracking an operation.

        Raises:
            ValueError: If an operation with the same ID is still running
        """
        if total_steps < 0:
            raise ValueError(f"total_steps must be non-negative, got {total_steps}")

        self.evict_expired()
        progress = SyncProgress(
            operation_id=operation_id,
            total_steps=total_steps,
            operation_name=operation_name or operation_id,
        )
        with self._operations_lock:
            existing = self._operations.get(operation_id)
            if existing is not None and not existing.is_terminal:
                raise ValueError(f"Operation {operation_id} is already running")
            self._operations[operation_id] = progress

        logger.info(f"Started tracking operation: {progress.operation_name} ({operation_id})",
                    extra={'operation_id': operation_id})
        self._notify("on_operation_started", progress)
        return progress

    def advance(self, operation_id: str, step_description: str,
                items_delta: int = 0, completes_step: bool = True) -> Optional[SyncProgress]:
        """Record progress on an operation.

        Args:
            operation_id: Operation to update
            step_description: What the operation is doing now
            items_delta: Items processed since the last update
            completes_step: Whether this update finishes one of ``total_steps``

        Returns:
            The updated progress, or None if the operation is unknown
        """
        progress = self._lookup(operation_id)
        if progress is None:
            logger.debug(f"Ignoring progress for unknown operation {operation_id}")
            return None

        with progress.lock:
            if progress.is_terminal:
                return progress
            if completes_step:
                progress.current_step = min(progress.total_steps, progress.current_step + 1)
            progress.current_step_description = step_description
            progress.items_processed += max(0, items_delta)
            progress.last_updated = datetime.now()

        logger.debug(
            f"Progress {operation_id}: step {progress.current_step}/{progress.total_steps} "
            f"- {step_description}"
        )
        self._notify("on_progress_updated", progress)
        return progress

    def complete(self, operation_id: str, success: bool, message: str = "") -> bool:
        """Mark an operation terminal.

        Returns:
            True if this call completed the operation, False if it was
            unknown or already terminal
        """
        progress = self._lookup(operation_id)
        if progress is None:
            return False

        with progress.lock:
            if progress.is_terminal:
                return False
            now = datetime.now()
            progress.success = success
            progress.result_message = message
            progress.current_step = progress.total_steps
            progress.current_step_description = "Completed" if success else "Failed"
            progress.completed_at = now
            progress.last_updated = now
            progress.completed_monotonic = time.monotonic()

        log = logger.info if success else logger.warning
        log(f"Operation {operation_id} completed: {progress.status_string} - {message}",
            extra={'operation_id': operation_id})
        self._notify("on_operation_completed", progress)
        return True

    def request_cancel(self, operation_id: str) -> bool:
        """Flag a running operation for cancellation at the next record boundary."""
        progress = self._lookup(operation_id)
        if progress is None:
            return False
        with progress.lock:
            if progress.is_terminal:
                return False
            progress.cancel_requested = True
            progress.last_updated = datetime.now()
        logger.info(f"Cancellation requested for operation {operation_id}",
                    extra={'operation_id': operation_id})
        return True

    def is_cancel_requested(self, operation_id: str) -> bool:
        progress = self._lookup(operation_id)
        return progress is not None and progress.cancel_requested

    def get(self, operation_id: str) -> Optional[SyncProgress]:
        self.evict_expired()
        return self._lookup(operation_id)

    def active_operations(self) -> List[SyncProgress]:
        self.evict_expired()
        with self._operations_lock:
            return [p for p in self._operations.values() if not p.is_terminal]

    def operations(self) -> List[SyncProgress]:
        """All retained operations, running and recently completed."""
        self.evict_expired()
        with self._operations_lock:
            return list(self._operations.values())

    def has_active_operations(self) -> bool:
        return bool(self.active_operations())

    def evict_expired(self) -> int:
        """Drop terminal operations older than the retention period."""
        cutoff = time.monotonic() - self.retention_seconds
        with self._operations_lock:
            expired = [
                operation_id for operation_id, progress in self._operations.items()
                if progress.completed_monotonic is not None
                and progress.completed_monotonic <= cutoff
            ]
            for operation_id in expired:
                del self._operations[operation_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} completed operations")
        return len(expired)

    def _lookup(self, operation_id: str) -> Optional[SyncProgress]:
        with self._operations_lock:
            return self._operations.get(operation_id)

    def _notify(self, callback: str, progress: SyncProgress) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                getattr(listener, callback)(progress)
            except Exception as e:
                logger.warning(
                    f"Progress listener {type(listener).__name__} failed in {callback}: {e}",
                    extra={'operation_id': progress.operation_id}
                )
