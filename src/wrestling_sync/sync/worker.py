"""Worker that syncs one entity type between Notion and the local store."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from .circuit_breaker import CircuitBreaker
from .entities import EntityDefinition
from .exceptions import (
    CircuitBreakerError, ConfigurationError, ExternalServiceError, RecordError
)
from .interfaces import EntitySession, LocalStore, RemoteSource, SyncWorker
from .logging_config import log_record_error
from .models import RemoteRecord, SyncContext, SyncDirection, SyncResult
from .progress import ProgressTracker


logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient remote failures."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))


@dataclass
class _Counters:
    created: int = 0
    updated: int = 0
    errors: int = 0
    messages: List[str] = field(default_factory=list)

    def failed(self, message: str, limit: int) -> None:
        self.errors += 1
        if len(self.messages) < limit:
            self.messages.append(message)


class EntitySyncWorker(SyncWorker):
    """Syncs a single entity type described by an :class:`EntityDefinition`.

    Remote calls get a timeout, retries with backoff and a circuit breaker.
    Records are processed one at a time; a failing record is counted and
    skipped, while a failing fetch or store session fails the whole entity.
    """

    def __init__(self, definition: EntityDefinition, remote: RemoteSource,
                 store: LocalStore, progress_tracker: Optional[ProgressTracker] = None,
                 breaker: Optional[CircuitBreaker] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 api_timeout_seconds: float = 30.0,
                 max_messages: int = 20):
        self.definition = definition
        self.remote = remote
        self.store = store
        self.progress_tracker = progress_tracker
        self.breaker = breaker
        self.retry_policy = retry_policy or RetryPolicy()
        self.api_timeout_seconds = api_timeout_seconds
        self.max_messages = max_messages

    @property
    def entity_type(self) -> str:
        return self.definition.name

    async def sync(self, ctx: SyncContext, entity_type: str,
                   direction: SyncDirection, operation_id: str) -> SyncResult:
        if entity_type != self.entity_type:
            raise ConfigurationError(
                f"Worker for {self.entity_type} cannot sync {entity_type}",
                entities=[entity_type, self.entity_type]
            )

        if direction == SyncDirection.INBOUND:
            return await self._sync_inbound(ctx, operation_id)
        if direction == SyncDirection.OUTBOUND:
            return await self._sync_outbound(ctx, operation_id)

        inbound = await self._sync_inbound(ctx, operation_id)
        if inbound.cancelled:
            return inbound
        outbound = await self._sync_outbound(ctx, operation_id)
        return self._combine(inbound, outbound)

    async def _sync_inbound(self, ctx: SyncContext, operation_id: str) -> SyncResult:
        started_at = datetime.now()
        direction = SyncDirection.INBOUND
        name = self.entity_type

        if ctx.is_cancelled():
            return SyncResult.failure(name, CANCELLED, started_at, direction)

        self._report(operation_id, f"fetching {name}")
        try:
            records: List[RemoteRecord] = await self._call_remote(
                f"fetch {name}", self.remote.fetch, name, direction
            )
        except (ExternalServiceError, CircuitBreakerError) as e:
            logger.error(f"Could not fetch {name}: {e.message}",
                         extra={'entity_type': name, 'operation_id': operation_id})
            return SyncResult.failure(name, e.message, started_at, direction)

        logger.info(f"Fetched {len(records)} {name} records",
                    extra={'entity_type': name, 'operation_id': operation_id})
        self._report(operation_id, f"applying {len(records)} {name}")

        counters = _Counters()
        try:
            with self.store.session(name) as session:
                for record in records:
                    if ctx.is_cancelled():
                        logger.info(f"Sync of {name} cancelled after "
                                    f"{counters.created + counters.updated} changes",
                                    extra={'entity_type': name, 'operation_id': operation_id})
                        return self._cancelled(started_at, direction, counters)
                    try:
                        outcome = self._apply_record(session, record)
                    except Exception as e:
                        external_id = getattr(record, "external_id", None)
                        log_record_error(logger, name, external_id, operation_id, e)
                        counters.failed(str(e), self.max_messages)
                        continue
                    if outcome == "created":
                        counters.created += 1
                    elif outcome == "updated":
                        counters.updated += 1
        except Exception as e:
            logger.error(f"Store session for {name} failed: {e}", exc_info=True,
                         extra={'entity_type': name, 'operation_id': operation_id})
            return SyncResult.failure(
                name, f"store session failed: {e}", started_at, direction,
                counters.created, counters.updated, counters.errors + 1, counters.messages
            )

        self._report(operation_id, f"applied {name}",
                     items_delta=counters.created + counters.updated)
        return SyncResult.completed(
            name, started_at, counters.created, counters.updated, counters.errors,
            direction, messages=counters.messages
        )

    def _apply_record(self, session: EntitySession, record: RemoteRecord) -> str:
        """Insert or merge one remote record; returns created, updated or unchanged."""
        fields = self.definition.map_remote(record)

        for target, external_id in self.definition.reference_ids(fields):
            if not self.store.has_record(target, external_id):
                raise RecordError(
                    self.entity_type, record.external_id,
                    f"unresolved reference to {target} {external_id}"
                )

        existing = session.find_by_external_id(record.external_id)
        if existing is None:
            session.insert(record.external_id, self.definition.with_defaults(fields))
            return "created"

        merged = self.definition.merge(existing.fields, fields)
        if merged == existing.fields:
            session.mark_synced(existing.record_id)
            return "unchanged"
        session.update(existing.record_id, merged)
        return "updated"

    async def _sync_outbound(self, ctx: SyncContext, operation_id: str) -> SyncResult:
        started_at = datetime.now()
        direction = SyncDirection.OUTBOUND
        name = self.entity_type

        if ctx.is_cancelled():
            return SyncResult.failure(name, CANCELLED, started_at, direction)

        self._report(operation_id, f"pushing {name}")
        counters = _Counters()
        try:
            with self.store.session(name) as session:
                local_records = session.list_records()
                await self.remote.begin_push(name)
                try:
                    for local in local_records:
                        if ctx.is_cancelled():
                            return self._cancelled(started_at, direction, counters)
                        payload = self.definition.to_remote(local.fields)
                        try:
                            external_id = await self._call_remote(
                                f"push {name}", self.remote.push,
                                name, local.external_id, payload
                            )
                        except CircuitBreakerError as e:
                            logger.error(f"Aborting push of {name}: {e.message}",
                                         extra={'entity_type': name, 'operation_id': operation_id})
                            counters.failed(e.message, self.max_messages)
                            return SyncResult.failure(
                                name, e.message, started_at, direction,
                                counters.created, counters.updated, counters.errors,
                                counters.messages
                            )
                        except ExternalServiceError as e:
                            log_record_error(logger, name, local.external_id, operation_id, e)
                            counters.failed(e.message, self.max_messages)
                            continue

                        try:
                            if local.external_id is None:
                                session.set_external_id(local.record_id, external_id)
                                counters.created += 1
                            else:
                                counters.updated += 1
                            session.mark_synced(local.record_id)
                        except Exception as e:
                            log_record_error(logger, name, external_id, operation_id, e)
                            counters.failed(str(e), self.max_messages)
                finally:
                    await self.remote.end_push(name)
        except Exception as e:
            logger.error(f"Outbound sync of {name} failed: {e}", exc_info=True,
                         extra={'entity_type': name, 'operation_id': operation_id})
            return SyncResult.failure(
                name, f"outbound sync failed: {e}", started_at, direction,
                counters.created, counters.updated, counters.errors + 1, counters.messages
            )

        self._report(operation_id, f"pushed {name}",
                     items_delta=counters.created + counters.updated)
        return SyncResult.completed(
            name, started_at, counters.created, counters.updated, counters.errors,
            direction, messages=counters.messages
        )

    async def _call_remote(self, operation: str,
                           func: Callable[..., Awaitable[Any]], *args) -> Any:
        """Call the remote with a timeout, the circuit breaker and retries.

        Raises:
            ExternalServiceError: When retries are exhausted or the failure
                is not retryable
            CircuitBreakerError: When the breaker refuses the call
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if self.breaker is not None:
                    return await self.breaker.call(self._with_timeout, func, *args)
                return await self._with_timeout(func, *args)
            except CircuitBreakerError:
                raise
            except (ExternalServiceError, asyncio.TimeoutError, OSError) as e:
                retryable = getattr(e, "retryable", True)
                reason = (f"timed out after {self.api_timeout_seconds}s"
                          if isinstance(e, asyncio.TimeoutError) else str(e))
                if not retryable:
                    if isinstance(e, ExternalServiceError):
                        raise
                    raise ExternalServiceError(operation, reason, retryable=False) from e
                if attempt >= self.retry_policy.max_attempts:
                    raise ExternalServiceError(
                        operation, f"{reason} (gave up after {attempt} attempts)",
                        retryable=False
                    ) from e

                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    f"{operation} failed (attempt {attempt}/{self.retry_policy.max_attempts}): "
                    f"{reason}; retrying in {delay:.1f}s",
                    extra={'entity_type': self.entity_type}
                )
                await asyncio.sleep(delay)

    async def _with_timeout(self, func: Callable[..., Awaitable[Any]], *args) -> Any:
        return await asyncio.wait_for(func(*args), timeout=self.api_timeout_seconds)

    def _report(self, operation_id: str, description: str, items_delta: int = 0) -> None:
        if self.progress_tracker is not None:
            self.progress_tracker.advance(operation_id, description,
                                          items_delta=items_delta, completes_step=False)

    def _cancelled(self, started_at: datetime, direction: SyncDirection,
                   counters: _Counters) -> SyncResult:
        return SyncResult.failure(
            self.entity_type, CANCELLED, started_at, direction,
            counters.created, counters.updated, counters.errors, counters.messages
        )

    def _combine(self, inbound: SyncResult, outbound: SyncResult) -> SyncResult:
        errors = inbound.error_count + outbound.error_count
        error_message = "; ".join(
            f"{result.direction.value}: {result.error_message}"
            for result in (inbound, outbound) if result.error_message
        ) or None
        if outbound.cancelled:
            error_message = CANCELLED
        return SyncResult(
            entity_type=self.entity_type,
            success=errors == 0,
            synced_count=inbound.synced_count + outbound.synced_count,
            error_count=errors,
            started_at=inbound.started_at,
            finished_at=outbound.finished_at,
            error_message=error_message,
            created_count=inbound.created_count + outbound.created_count,
            updated_count=inbound.updated_count + outbound.updated_count,
            direction=SyncDirection.BIDIRECTIONAL,
            messages=(inbound.messages + outbound.messages)[:self.max_messages],
        )
