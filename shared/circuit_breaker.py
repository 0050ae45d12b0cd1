"""
Circuit breaker for synchronous calls to external collaborators.

After ``failure_threshold`` consecutive failures the breaker opens and
rejects calls without attempting them. Once ``recovery_timeout`` seconds
have passed it lets a single probe through; the probe's outcome closes
the breaker again or re-opens it for another full timeout.
"""

import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, TypeVar

from shared.logging import get_logger

T = TypeVar("T")


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(Exception):
    """Raised instead of calling through an open breaker."""


class CircuitBreaker:
    """Thread-safe consecutive-failure circuit breaker."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")

        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        with self._lock:
            return self._state

    def is_open(self) -> bool:
        return self.state == CircuitBreakerState.OPEN

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` through the breaker, re-raising whatever it raises."""
        self._admit()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        except BaseException:
            # Interrupted, not failed: free the probe slot without counting
            self._release_probe()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._close()

    def _admit(self) -> None:
        with self._lock:
            if self._state == CircuitBreakerState.CLOSED:
                return
            if self._state == CircuitBreakerState.OPEN:
                if self._clock() - self._opened_at < self.recovery_timeout:
                    raise CircuitBreakerOpenException(f"Circuit breaker '{self.name}' is open")
                self._state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker half-open, probing", breaker=self.name)
            if self._probe_in_flight:
                raise CircuitBreakerOpenException(f"Circuit breaker '{self.name}' is probing")
            self._probe_in_flight = True

    def _on_success(self) -> None:
        with self._lock:
            if self._state == CircuitBreakerState.HALF_OPEN:
                self.logger.info("Circuit breaker closed after successful probe", breaker=self.name)
            self._close()

    def _on_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._probe_in_flight = False
            if (
                self._state == CircuitBreakerState.HALF_OPEN
                or self._consecutive_failures >= self.failure_threshold
            ):
                self._state = CircuitBreakerState.OPEN
                self._opened_at = self._clock()
                self.logger.warning(
                    "Circuit breaker opened",
                    breaker=self.name,
                    consecutive_failures=self._consecutive_failures,
                    threshold=self.failure_threshold
                )

    def _release_probe(self) -> None:
        with self._lock:
            self._probe_in_flight = False

    def _close(self) -> None:
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._probe_in_flight = False

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout
            }
