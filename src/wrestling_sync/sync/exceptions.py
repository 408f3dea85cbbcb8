"""Custom exceptions for entity synchronization."""

from typing import Optional, Dict, Any, Iterable
from datetime import datetime


class SyncError(Exception):
    """Base exception for synchronization errors."""

    def __init__(self, message: str, error_code: str = "sync_error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


class ConfigurationError(SyncError):
    """Raised when the entity configuration is invalid (cycles, unknown names)."""

    def __init__(self, message: str, entities: Optional[Iterable[str]] = None,
                 details: Optional[Dict[str, Any]] = None):
        error_details = {
            "entities": sorted(entities) if entities else [],
            **(details or {})
        }
        super().__init__(message, "configuration_error", error_details)
        self.entities = error_details["entities"]


class RecordError(SyncError):
    """Raised when a single remote record cannot be mapped or persisted."""

    def __init__(self, entity_type: str, external_id: Optional[str], reason: str):
        message = f"Record {external_id or '<no id>'} of {entity_type} failed: {reason}"
        details = {
            "entity_type": entity_type,
            "external_id": external_id,
            "reason": reason
        }
        super().__init__(message, "record_error", details)
        self.entity_type = entity_type
        self.external_id = external_id
        self.reason = reason


class EntityError(SyncError):
    """Raised when a whole entity sync fails (fetch or session failure)."""

    def __init__(self, entity_type: str, reason: str):
        message = f"Sync of {entity_type} failed: {reason}"
        details = {
            "entity_type": entity_type,
            "reason": reason
        }
        super().__init__(message, "entity_error", details)
        self.entity_type = entity_type
        self.reason = reason


class ConcurrencyRejection(SyncError):
    """Raised when a sync request overlaps with one already in progress."""

    def __init__(self, target: str, reason: str = "sync already in progress"):
        message = f"{reason}: {target}"
        details = {
            "target": target,
            "reason": reason
        }
        super().__init__(message, "sync_in_progress", details)
        self.target = target
        self.reason = reason


class ExternalServiceError(SyncError):
    """Raised when a call to the external system of record fails."""

    def __init__(self, operation: str, reason: str, retryable: bool = True):
        message = f"External call {operation} failed: {reason}"
        details = {
            "operation": operation,
            "reason": reason,
            "retryable": retryable
        }
        super().__init__(message, "external_service_error", details)
        self.retryable = retryable


class SyncServiceUnavailableError(SyncError):
    """Raised when sync service is unavailable."""

    def __init__(self, service_name: str, reason: str):
        message = f"Sync service {service_name} is unavailable: {reason}"
        details = {
            "service_name": service_name,
            "reason": reason
        }
        super().__init__(message, "service_unavailable", details)


class CircuitBreakerError(SyncError):
    """Raised when circuit breaker is open."""

    def __init__(self, service_name: str, failure_count: int, threshold: int):
        message = f"Circuit breaker open for {service_name}: {failure_count} failures (threshold: {threshold})"
        details = {
            "service_name": service_name,
            "failure_count": failure_count,
            "threshold": threshold,
            "circuit_state": "open"
        }
        super().__init__(message, "circuit_breaker_open", details)
