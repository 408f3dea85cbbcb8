"""Circuit breakers guarding calls to the external system of record."""

import inspect
import logging
import time
from enum import Enum
from typing import Callable, Any, Optional, Dict, Tuple, Type, List

from .exceptions import CircuitBreakerError


class CircuitState(Enum):
    """States of the circuit breaker."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, blocking requests
    HALF_OPEN = "half_open"  # Testing if the remote recovered


class CircuitBreaker:
    """Stops calling a failing remote until a recovery timeout has passed.

    Only exceptions listed in ``expected_exceptions`` count as failures.
    State changes happen between awaits, so a breaker may be shared by
    tasks of one event loop without extra locking.
    """

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,)):
        """Initialize circuit breaker.

        Args:
            name: Name for logging and identification
            failure_threshold: Number of consecutive failures before opening
            recovery_timeout: Seconds to wait before trying half-open
            expected_exceptions: Exception types that count as failures
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._success_count = 0
        self._total_requests = 0

        self.logger = logging.getLogger(f"{__name__}.{name}")

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute ``func`` with circuit breaker protection.

        ``func`` may be a plain callable or return an awaitable; the result
        is awaited either way.

        Raises:
            CircuitBreakerError: When the circuit is open
            Exception: Original exception from ``func``
        """
        self._total_requests += 1

        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._state = CircuitState.HALF_OPEN
                self.logger.info(f"Circuit breaker {self.name} transitioning to half-open")
            else:
                raise CircuitBreakerError(
                    self.name, self._failure_count, self.failure_threshold
                )

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except self.expected_exceptions:
            self._on_failure()
            raise
        except Exception as e:
            # Not a remote failure; the breaker state is left alone
            self.logger.warning(f"Unexpected exception in {self.name}: {e}")
            raise

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self._last_failure_time is None:
            return True
        return time.monotonic() - self._last_failure_time >= self.recovery_timeout

    def _on_success(self) -> None:
        self._success_count += 1

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self.logger.info(f"Circuit breaker {self.name} closed after successful recovery")
        self._failure_count = 0

    def _on_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            self.logger.warning(
                f"Circuit breaker {self.name} reopened - recovery attempt failed"
            )
        elif (self._state == CircuitState.CLOSED
              and self._failure_count >= self.failure_threshold):
            self._state = CircuitState.OPEN
            self.logger.warning(
                f"Circuit breaker {self.name} opened after {self._failure_count} failures"
            )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def get_metrics(self) -> Dict[str, Any]:
        """Get circuit breaker metrics."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "total_requests": self._total_requests,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "seconds_since_last_failure": (
                round(time.monotonic() - self._last_failure_time, 3)
                if self._last_failure_time is not None else None
            )
        }

    def reset(self) -> None:
        """Manually close the circuit."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self.logger.info(f"Circuit breaker {self.name} manually reset")


class CircuitBreakerRegistry:
    """One breaker per remote target, created on first use with shared settings."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0,
                 expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,)):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self._breakers: Dict[str, CircuitBreaker] = {}
        self.logger = logging.getLogger(__name__)

    def get_breaker(self, name: str) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name=name,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
                expected_exceptions=self.expected_exceptions,
            )
            self.logger.debug(f"Created circuit breaker: {name}")
        return self._breakers[name]

    def for_entity(self, entity_type: str) -> CircuitBreaker:
        return self.get_breaker(f"notion:{entity_type}")

    def get_all_metrics(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: breaker.get_metrics()
            for name, breaker in self._breakers.items()
        }

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        self.logger.info("All circuit breakers reset")

    def open_circuits(self) -> List[str]:
        """Names of breakers currently refusing calls."""
        return [
            name for name, breaker in self._breakers.items()
            if breaker.state == CircuitState.OPEN
        ]
