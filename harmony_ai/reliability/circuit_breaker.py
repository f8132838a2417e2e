import time
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Per-provider circuit breaker.

        Args:
            name: Provider name this breaker guards.
            failure_threshold: Consecutive failures before the circuit opens.
            recovery_timeout: Seconds the circuit stays open before one probe is let through.
            clock: Time source, injectable for tests.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0

    def allow_request(self) -> bool:
        """True when closed, or when open long enough that a half-open probe is due."""
        with self._lock:
            if self.state == CircuitState.OPEN:
                if self._clock() - self.last_failure_time >= self.recovery_timeout:
                    self.state = CircuitState.HALF_OPEN
                    logger.info(f"Circuit '{self.name}' probe engaged (HALF_OPEN).")
                    return True
                return False
            return True

    def is_open(self) -> bool:
        """Read-only view used by availability checks; never moves the state."""
        with self._lock:
            if self.state != CircuitState.OPEN:
                return False
            return self._clock() - self.last_failure_time < self.recovery_timeout

    def record_success(self):
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit '{self.name}' recovered (CLOSED).")
            self.state = CircuitState.CLOSED
            self.failure_count = 0

    def record_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self.state == CircuitState.HALF_OPEN:
                self.state = CircuitState.OPEN
                logger.warning(f"Circuit '{self.name}' probe failed. Re-opening.")
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
                self.state = CircuitState.OPEN
                logger.error(f"Circuit '{self.name}' threshold reached. OPENING.")

    def get_state_info(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "last_failure_time": self.last_failure_time,
            }


class CircuitBreakerRegistry:
    """Breakers by provider name, created on first use with shared settings."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0, **breaker_kwargs):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._breaker_kwargs = breaker_kwargs
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name,
                    failure_threshold=self.failure_threshold,
                    recovery_timeout=self.recovery_timeout,
                    **self._breaker_kwargs,
                )
            return self._breakers[name]

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.get_state_info() for b in breakers}
