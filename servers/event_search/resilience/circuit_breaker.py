"""Per-provider circuit breaker."""

import time
from enum import Enum
from typing import Any, Callable, Coroutine, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"  # requests allowed
    OPEN = "open"  # provider left out of fan-out
    HALF_OPEN = "half_open"  # probing for recovery


class CircuitBreakerOpenError(Exception):
    """Raised by CircuitBreaker.call when the circuit is open."""

    def __init__(self, circuit_name: str):
        super().__init__(f"Circuit breaker '{circuit_name}' is open")
        self.circuit_name = circuit_name


class CircuitBreaker:
    """Stops calling a provider after repeated failures.

    The aggregator uses the synchronous ``allow_request`` /
    ``record_success`` / ``record_failure`` trio because adapters report
    failures as values instead of raising. ``call`` wraps a coroutine for
    callers that do raise.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        name: str = "default",
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening
            recovery_timeout: Seconds to wait before probing again
            name: Provider name for logging
            success_threshold: Half-open successes needed to close
            clock: Monotonic clock in seconds
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.name = name
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.half_open_successes = 0
        self.last_failure_time: float | None = None
        self.last_error: str | None = None

    def allow_request(self) -> bool:
        """True if the provider may be called now. May move OPEN to HALF_OPEN."""
        if self.state != CircuitState.OPEN:
            return True
        if self._recovery_elapsed():
            self._transition_to_half_open()
            return True
        return False

    def _recovery_elapsed(self) -> bool:
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.recovery_timeout

    def _transition_to_half_open(self) -> None:
        self.state = CircuitState.HALF_OPEN
        self.half_open_successes = 0
        logger.info("circuit_half_open", circuit=self.name)

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.half_open_successes += 1
            if self.half_open_successes >= self.success_threshold:
                self._close_circuit()
        else:
            self.failure_count = 0

    def _close_circuit(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.half_open_successes = 0
        logger.info("circuit_closed", circuit=self.name)

    def record_failure(self, error: str) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        self.last_error = error
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._open_circuit()

    def _open_circuit(self) -> None:
        self.state = CircuitState.OPEN
        logger.warning(
            "circuit_opened",
            circuit=self.name,
            failure_count=self.failure_count,
            recovery_timeout=self.recovery_timeout,
            error=self.last_error,
        )

    async def call(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await ``coro`` under circuit protection.

        Raises:
            CircuitBreakerOpenError: If the circuit is open
        """
        if not self.allow_request():
            coro.close()
            raise CircuitBreakerOpenError(self.name)
        try:
            result = await coro
        except Exception as e:
            self.record_failure(str(e))
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.half_open_successes = 0
        self.last_failure_time = None
        self.last_error = None

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_error": self.last_error,
        }
