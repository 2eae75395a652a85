"""Circuit breaker for remote sync endpoints.

A breaker never retries. It only decides whether a remote backend may be
attempted at all, so a backend that keeps failing is skipped until its recovery
timeout elapses and the next sync trigger tries it again.
"""

import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from config.remote import CircuitBreakerState, RemoteConfig
from api.error_handling import CircuitBreakerOpenException, is_retryable

R = TypeVar("R")


class CircuitBreaker:
    """Tracks consecutive failures of one remote endpoint (a bucket or a record database)."""

    def __init__(
        self,
        endpoint: str = "",
        failure_threshold: int = RemoteConfig.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout: float = RemoteConfig.CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.endpoint = endpoint
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.state = CircuitBreakerState.CLOSED
        self._logger = logging.getLogger(__name__)

    def _transition(self, new_state: CircuitBreakerState) -> None:
        old_state, self.state = self.state, new_state
        if old_state != new_state:
            self._logger.info(f"Breaker for {self.endpoint or 'endpoint'}: {old_state.value} -> {new_state.value}")

    def record_success(self):
        self.failure_count = 0
        self.opened_at = None
        self._transition(CircuitBreakerState.CLOSED)

    def record_failure(self):
        self.failure_count += 1
        # A failed trial call while half-open reopens immediately
        if self.state == CircuitBreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitBreakerState.OPEN:
                self._logger.warning(
                    f"{self.endpoint or 'Endpoint'} failed {self.failure_count} times, "
                    f"skipping it for {self.recovery_timeout}s"
                )
            self.opened_at = time.time()
            self._transition(CircuitBreakerState.OPEN)

    def can_attempt(self) -> bool:
        """Whether a call may go out now. Moves an expired open breaker to half-open."""
        if self.state != CircuitBreakerState.OPEN:
            return True
        if self.opened_at is not None and time.time() - self.opened_at >= self.recovery_timeout:
            self._transition(CircuitBreakerState.HALF_OPEN)
            return True
        return False

    def is_open(self) -> bool:
        return self.state == CircuitBreakerState.OPEN

    def guard(self) -> None:
        """Raise CircuitBreakerOpenException when no attempt is allowed."""
        if not self.can_attempt():
            raise CircuitBreakerOpenException(f"Circuit breaker is open for {self.endpoint or 'endpoint'}")

    async def execute(
        self,
        func: Callable[..., Awaitable[R]],
        *args: Any,
        trips_on: Callable[[BaseException], bool] = is_retryable,
        **kwargs: Any,
    ) -> R:
        """Await ``func`` once under the breaker.

        Exceptions always propagate. Only those accepted by ``trips_on`` count
        as endpoint failures; anything else (a conflict, a rejected record)
        says nothing about the endpoint's health.
        """
        self.guard()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if trips_on(e):
                self.record_failure()
            raise
        self.record_success()
        return result


class CircuitBreakerManager:
    """Manages circuit breakers for different endpoints."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_breaker(
        self,
        endpoint: str,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for an endpoint.

        Optional parameters are only used if a new CircuitBreaker instance is created.
        """
        with self._lock:
            if endpoint not in self._breakers:
                kwargs = {}
                if failure_threshold is not None:
                    kwargs["failure_threshold"] = failure_threshold
                if recovery_timeout is not None:
                    kwargs["recovery_timeout"] = recovery_timeout
                self._breakers[endpoint] = CircuitBreaker(endpoint, **kwargs)
            return self._breakers[endpoint]

    def can_attempt(self, endpoint: str) -> bool:
        return self.get_breaker(endpoint).can_attempt()

    def reset(self) -> None:
        """Forget all breakers."""
        with self._lock:
            self._breakers.clear()


# Global circuit breaker manager
circuit_breaker_manager = CircuitBreakerManager()
