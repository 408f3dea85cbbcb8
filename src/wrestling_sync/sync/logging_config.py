"""Logging configuration for synchronization events."""

import logging
import sys
import time
from datetime import datetime
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncResult, RunSummary


SYNC_LOGGER_NAME = "wrestling_sync"


class SyncEventFormatter(logging.Formatter):
    """Formatter that appends sync context passed through ``extra``."""

    context_fields = ("entity_type", "operation_id", "external_id", "direction")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, 'timestamp'):
            record.timestamp = datetime.now().isoformat()

        sync_fields = []
        for name in self.context_fields:
            value = getattr(record, name, None)
            if value is not None:
                sync_fields.append(f"{name}={value}")

        base_msg = super().format(record)
        if sync_fields:
            return f"{base_msg} [{', '.join(sync_fields)}]"
        return base_msg


def setup_sync_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Set up logging for synchronization components.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file to log to instead of stdout

    Returns:
        The package root logger
    """
    logger = logging.getLogger(SYNC_LOGGER_NAME)
    level = getattr(logging, log_level.upper())
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(SyncEventFormatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(handler)

    return logger


def log_record_error(logger: logging.Logger, entity_type: str, external_id: Optional[str],
                     operation_id: str, error: BaseException) -> None:
    """Log a failed record with enough context to find it again."""
    logger.warning(
        f"Failed to sync {entity_type} record {external_id or '<no id>'}: {error}",
        extra={
            'entity_type': entity_type,
            'external_id': external_id,
            'operation_id': operation_id,
            'error_type': type(error).__name__,
        }
    )


def log_entity_result(logger: logging.Logger, result: "SyncResult",
                      operation_id: Optional[str] = None) -> None:
    """Log the outcome of one entity sync."""
    extra = {
        'entity_type': result.entity_type,
        'operation_id': operation_id,
        'direction': result.direction.value,
        'synced_count': result.synced_count,
        'error_count': result.error_count,
        'duration_ms': round(result.duration_ms, 2),
    }
    if result.rejected:
        logger.warning(f"Sync of {result.entity_type} rejected: {result.error_message}", extra=extra)
    elif result.success:
        logger.info(
            f"Synced {result.entity_type}: {result.created_count} created, "
            f"{result.updated_count} updated in {result.duration_ms:.0f}ms",
            extra=extra
        )
    else:
        logger.error(
            f"Sync of {result.entity_type} failed with {result.error_count} error(s): "
            f"{result.error_message}",
            extra=extra
        )


def log_run_summary(logger: logging.Logger, summary: "RunSummary") -> None:
    """Log the SYNC SUMMARY block of a full run."""
    total_items = summary.total_synced
    logger.info("=== SYNC SUMMARY ===", extra={'operation_id': summary.operation_id})
    logger.info(f"Total entities: {len(summary.results)}")
    logger.info(f"Successful: {summary.successful_entities}")
    logger.info(f"Failed: {summary.failed_entities}")
    logger.info(f"Total items synced: {total_items}")

    for result in summary.results:
        if not result.success:
            logger.warning(f"  {result.entity_type}: {result.error_message}")

    if summary.success:
        logger.info(f"All entities synced successfully ({total_items} items)")
    else:
        logger.warning(
            f"Sync completed with {summary.failed_entities} failure(s)"
            + (f": {summary.error_message}" if summary.error_message else "")
        )


def log_performance_metrics(logger: logging.Logger, operation: str,
                            latency_ms: float, **kwargs) -> None:
    """Log the duration of an operation; slow ones are logged as warnings."""
    extra = {
        'event_type': 'performance_metrics',
        'operation': operation,
        'latency_ms': round(latency_ms, 2),
        **kwargs
    }

    if latency_ms > 30000:
        logger.warning(f"Slow operation detected: {operation} took {latency_ms:.2f}ms", extra=extra)
    elif latency_ms > 5000:
        logger.info(f"Performance: {operation} took {latency_ms:.2f}ms", extra=extra)
    else:
        logger.debug(f"Performance: {operation} took {latency_ms:.2f}ms", extra=extra)


class PerformanceTimer:
    """Context manager for measuring operation performance."""

    def __init__(self, logger: logging.Logger, operation: str, **kwargs):
        self.logger = logger
        self.operation = operation
        self.kwargs = kwargs
        self.start_time: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.elapsed_ms = (time.monotonic() - self.start_time) * 1000

            if exc_type:
                self.kwargs['error'] = str(exc_val)
                self.kwargs['error_type'] = exc_type.__name__

            log_performance_metrics(
                self.logger, self.operation, self.elapsed_ms, **self.kwargs
            )

