"""Base interfaces for synchronization components."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import List, Optional, Dict, Any

from .models import (
    RemoteRecord, LocalRecord, SyncDirection, SyncResult, SyncProgress, SyncContext
)


class RemoteSource(ABC):
    """Interface for the external system of record."""

    @abstractmethod
    async def fetch(self, entity_type: str, direction: SyncDirection) -> List[RemoteRecord]:
        """Fetch all remote records of an entity type."""
        pass

    @abstractmethod
    async def push(self, entity_type: str, external_id: Optional[str],
                   fields: Dict[str, Any]) -> str:
        """Create or update one remote record and return its external ID."""
        pass

    async def begin_push(self, entity_type: str) -> None:
        """Called once before a batch of pushes for an entity type."""

    async def end_push(self, entity_type: str) -> None:
        """Called once after a batch of pushes, also when the batch failed."""


class EntitySession(ABC):
    """Store operations scoped to a single entity type.

    A session is owned by exactly one worker; every write is applied
    atomically on its own.
    """

    @abstractmethod
    def find_by_external_id(self, external_id: str) -> Optional[LocalRecord]:
        """Find the local row mirroring a remote record."""
        pass

    @abstractmethod
    def insert(self, external_id: Optional[str], fields: Dict[str, Any]) -> LocalRecord:
        """Insert a new local row."""
        pass

    @abstractmethod
    def update(self, record_id: str, fields: Dict[str, Any]) -> LocalRecord:
        """Replace the stored fields of an existing row."""
        pass

    @abstractmethod
    def list_records(self) -> List[LocalRecord]:
        """List every local row of the session's entity type."""
        pass

    @abstractmethod
    def set_external_id(self, record_id: str, external_id: str) -> None:
        """Attach a remote ID to a row created locally."""
        pass

    @abstractmethod
    def mark_synced(self, record_id: str) -> None:
        """Stamp a row as synchronized now."""
        pass


class LocalStore(ABC):
    """Interface for the local relational store."""

    @abstractmethod
    def session(self, entity_type: str) -> AbstractContextManager:
        """Open a session for one entity type (context manager yielding an EntitySession)."""
        pass

    @abstractmethod
    def get_last_sync_time(self, entity_type: str) -> Optional[datetime]:
        """Latest sync timestamp of any row of an entity type."""
        pass

    @abstractmethod
    def has_record(self, entity_type: str, external_id: str) -> bool:
        """Whether a row mirroring the given remote record exists."""
        pass


class SyncWorker(ABC):
    """Interface for syncing one entity type in one direction."""

    @abstractmethod
    async def sync(self, ctx: SyncContext, entity_type: str,
                   direction: SyncDirection, operation_id: str) -> SyncResult:
        """Sync one entity type and summarize it as a single result."""
        pass


class ProgressListener:
    """Observer of progress updates; override the callbacks you need."""

    def on_operation_started(self, progress: SyncProgress) -> None:
        pass

    def on_progress_updated(self, progress: SyncProgress) -> None:
        pass

    def on_operation_completed(self, progress: SyncProgress) -> None:
        pass
