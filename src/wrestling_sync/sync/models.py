"""Data models for entity synchronization."""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Tuple, FrozenSet, Callable, Iterable, List

from pydantic import BaseModel, Field


class SyncDirection(Enum):
    """Direction of a synchronization run."""
    INBOUND = "inbound"          # external system -> local store
    OUTBOUND = "outbound"        # local store -> external system
    BIDIRECTIONAL = "bidirectional"

    @classmethod
    def parse(cls, value: "str | SyncDirection") -> "SyncDirection":
        """Parse a direction from its name or value, case-insensitively."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for direction in cls:
            if normalized in (direction.value, direction.name.lower()):
                return direction
        raise ValueError(f"Unknown sync direction: {value}")


class RunState(Enum):
    """Lifecycle of one orchestrator run."""
    PLANNING = "planning"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class HealthStatus(Enum):
    """Coarse health derived from the metric window."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class EntityDescriptor:
    """Declares that ``name`` must be synced after everything in ``depends_on``."""
    name: str
    depends_on: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Entity name must not be empty")
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))


@dataclass(frozen=True)
class DependencyLevel:
    """A batch of entities that can be synced concurrently."""
    index: int
    entities: Tuple[str, ...]

    def __contains__(self, name: str) -> bool:
        return name in self.entities

    def __iter__(self):
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)


@dataclass(frozen=True)
class RemoteRecord:
    """A page fetched from the external system of record."""
    external_id: str
    fields: Dict[str, Any]


@dataclass
class LocalRecord:
    """A row of the local store holding one synced entity instance."""
    record_id: str
    entity_type: str
    external_id: Optional[str]
    fields: Dict[str, Any]
    updated_at: datetime
    last_synced_at: Optional[datetime] = None


@dataclass(frozen=True)
class SyncResult:
    """Outcome of syncing one entity type in one direction.

    ``success`` always equals ``error_count == 0``; whole-entity failures,
    cancellations and rejections therefore carry at least one error.
    """
    entity_type: str
    success: bool
    synced_count: int
    error_count: int
    started_at: datetime
    finished_at: datetime
    error_message: Optional[str] = None
    created_count: int = 0
    updated_count: int = 0
    direction: SyncDirection = SyncDirection.INBOUND
    rejected: bool = False
    messages: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.synced_count < 0 or self.error_count < 0:
            raise ValueError("Counts must be non-negative")
        if self.success != (self.error_count == 0):
            raise ValueError(
                f"Inconsistent result for {self.entity_type}: "
                f"success={self.success}, error_count={self.error_count}"
            )

    @classmethod
    def completed(cls, entity_type: str, started_at: datetime, created_count: int = 0,
                  updated_count: int = 0, error_count: int = 0,
                  direction: SyncDirection = SyncDirection.INBOUND,
                  error_message: Optional[str] = None,
                  messages: Iterable[str] = ()) -> "SyncResult":
        """Build a result from per-record counters."""
        if error_count and error_message is None:
            error_message = f"{error_count} record(s) failed"
        return cls(
            entity_type=entity_type,
            success=error_count == 0,
            synced_count=created_count + updated_count,
            error_count=error_count,
            started_at=started_at,
            finished_at=datetime.now(),
            error_message=error_message,
            created_count=created_count,
            updated_count=updated_count,
            direction=direction,
            messages=tuple(messages),
        )

    @classmethod
    def failure(cls, entity_type: str, error_message: str,
                started_at: Optional[datetime] = None,
                direction: SyncDirection = SyncDirection.INBOUND,
                created_count: int = 0, updated_count: int = 0,
                error_count: int = 1, messages: Iterable[str] = ()) -> "SyncResult":
        """Build a failed result; at least one error is always counted."""
        now = datetime.now()
        return cls(
            entity_type=entity_type,
            success=False,
            synced_count=created_count + updated_count,
            error_count=max(1, error_count),
            started_at=started_at or now,
            finished_at=now,
            error_message=error_message,
            created_count=created_count,
            updated_count=updated_count,
            direction=direction,
            messages=tuple(messages),
        )

    @classmethod
    def rejection(cls, entity_type: str, reason: str = "sync already in progress",
                  direction: SyncDirection = SyncDirection.INBOUND) -> "SyncResult":
        """Build the result returned for an overlapping request."""
        now = datetime.now()
        return cls(
            entity_type=entity_type,
            success=False,
            synced_count=0,
            error_count=1,
            started_at=now,
            finished_at=now,
            error_message=reason,
            direction=direction,
            rejected=True,
        )

    @property
    def cancelled(self) -> bool:
        return self.error_message == "cancelled"

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for serialization."""
        return {
            "entity_type": self.entity_type,
            "success": self.success,
            "synced_count": self.synced_count,
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "error_count": self.error_count,
            "error_message": self.error_message,
            "direction": self.direction.value,
            "rejected": self.rejected,
            "messages": list(self.messages),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass(frozen=True)
class RunSummary:
    """Aggregate outcome of one ``run_all`` invocation."""
    operation_id: str
    state: RunState
    started_at: datetime
    finished_at: datetime
    results: Tuple[SyncResult, ...] = ()
    rejected: bool = False
    error_message: Optional[str] = None

    @property
    def total_synced(self) -> int:
        return sum(result.synced_count for result in self.results)

    @property
    def successful_entities(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed_entities(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def success(self) -> bool:
        return (self.state == RunState.COMPLETED and not self.rejected
                and self.failed_entities == 0)

    def result_for(self, entity_type: str) -> Optional[SyncResult]:
        for result in self.results:
            if result.entity_type == entity_type:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert summary to dictionary for serialization."""
        return {
            "operation_id": self.operation_id,
            "state": self.state.value,
            "success": self.success,
            "rejected": self.rejected,
            "error_message": self.error_message,
            "total_entities": len(self.results),
            "successful_entities": self.successful_entities,
            "failed_entities": self.failed_entities,
            "total_synced": self.total_synced,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "results": [result.to_dict() for result in self.results],
        }


@dataclass
class SyncProgress:
    """Mutable progress of one tracked operation.

    Fields are only changed by the progress tracker while holding ``lock``.
    """
    operation_id: str
    total_steps: int
    operation_name: str = ""
    current_step: int = 0
    current_step_description: str = "Initializing..."
    items_processed: int = 0
    success: Optional[bool] = None
    result_message: str = ""
    cancel_requested: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    # monotonic timestamp of completion, used for eviction
    completed_monotonic: Optional[float] = field(default=None, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.success is not None

    @property
    def progress_fraction(self) -> float:
        if self.total_steps <= 0:
            return 1.0 if self.is_terminal else 0.0
        return min(1.0, self.current_step / self.total_steps)

    @property
    def estimated_seconds_remaining(self) -> int:
        """Linear estimate from the step rate so far, -1 when unknown."""
        if self.is_terminal or self.current_step == 0:
            return -1
        elapsed = (datetime.now() - self.started_at).total_seconds()
        if elapsed <= 0:
            return -1
        rate = self.current_step / elapsed
        remaining_steps = max(0, self.total_steps - self.current_step)
        return round(remaining_steps / rate)

    @property
    def status_string(self) -> str:
        if not self.is_terminal:
            return f"In Progress ({self.current_step}/{self.total_steps})"
        if self.success:
            return "Completed Successfully"
        return "Failed"

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the progress for serialization."""
        return {
            "operation_id": self.operation_id,
            "operation_name": self.operation_name,
            "total_steps": self.total_steps,
            "current_step": self.current_step,
            "current_step_description": self.current_step_description,
            "items_processed": self.items_processed,
            "success": self.success,
            "result_message": self.result_message,
            "cancel_requested": self.cancel_requested,
            "progress": round(self.progress_fraction, 3),
            "status": self.status_string,
            "estimated_seconds_remaining": self.estimated_seconds_remaining,
            "started_at": self.started_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class SyncMetric:
    """One completed entity sync attempt."""
    entity_type: str
    success: bool
    duration_ms: float
    item_count: int = 0
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncMetric":
        return cls(
            entity_type=result.entity_type,
            success=result.success,
            duration_ms=result.duration_ms,
            item_count=result.synced_count,
            error_message=result.error_message,
            timestamp=result.finished_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "entity_type": self.entity_type,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
            "item_count": self.item_count,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class HealthSummary:
    """Health figures derived from the metric window and running counters."""
    successful_syncs: int
    failed_syncs: int
    success_rate: float
    average_sync_time_ms: float
    consecutive_failures: int
    active_operations: int
    status: HealthStatus
    last_successful_sync: Optional[datetime] = None
    last_failed_sync: Optional[datetime] = None
    last_error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "successful_syncs": self.successful_syncs,
            "failed_syncs": self.failed_syncs,
            "success_rate": round(self.success_rate, 2),
            "average_sync_time_ms": round(self.average_sync_time_ms, 2),
            "consecutive_failures": self.consecutive_failures,
            "active_operations": self.active_operations,
            "last_successful_sync": (
                self.last_successful_sync.isoformat() if self.last_successful_sync else None
            ),
            "last_failed_sync": (
                self.last_failed_sync.isoformat() if self.last_failed_sync else None
            ),
            "last_error_message": self.last_error_message,
        }


class SyncContext:
    """Deadline and cancellation carried through one run.

    Workers poll :meth:`is_cancelled` between records.
    """

    def __init__(self, timeout_seconds: Optional[float] = None,
                 cancel_check: Optional[Callable[[], bool]] = None):
        self._deadline = (time.monotonic() + timeout_seconds
                          if timeout_seconds is not None else None)
        self._cancelled = threading.Event()
        self._cancel_checks: List[Callable[[], bool]] = []
        if cancel_check is not None:
            self._cancel_checks.append(cancel_check)

    def cancel(self) -> None:
        self._cancelled.set()

    def link(self, cancel_check: Callable[[], bool]) -> "SyncContext":
        """Also treat the context as cancelled when ``cancel_check`` returns True."""
        self._cancel_checks.append(cancel_check)
        return self

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def is_cancelled(self) -> bool:
        if self._cancelled.is_set() or self.deadline_exceeded:
            return True
        return any(check() for check in self._cancel_checks)


# Pydantic models for API requests and WebSocket messages

class TriggerRequest(BaseModel):
    """Optional body of a sync trigger request."""
    direction: Optional[str] = None
    operation_id: Optional[str] = None
    background: bool = False
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class ProgressMessage(BaseModel):
    """Progress event pushed to WebSocket subscribers."""
    type: str = "progress"
    event: str
    operation_id: str
    progress: Dict[str, Any]
    timestamp: datetime = Field(default_factory=datetime.now)
