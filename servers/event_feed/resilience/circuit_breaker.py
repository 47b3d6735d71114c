"""Circuit breaker pattern for protecting provider API calls."""

import time
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from ..errors import EventFeedError

logger = structlog.get_logger()


class CircuitState(Enum):
    """States for the circuit breaker."""

    CLOSED = "closed"  # Normal operation, requests allowed
    OPEN = "open"  # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if recovered


class CircuitBreakerOpenError(EventFeedError):
    """Raised when circuit breaker is open and blocking requests."""

    def __init__(self, circuit_name: str, state: CircuitState = CircuitState.OPEN):
        super().__init__(f"Circuit breaker '{circuit_name}' is {state.value}")
        self.circuit_name = circuit_name
        self.state = state


class CircuitBreaker:
    """Circuit breaker for one event source.

    Prevents cascading failures by stopping requests to failing services.
    After a recovery timeout, admits a bounded number of probe requests
    (half-open state). Any probe success closes the circuit; any probe
    failure reopens it and restarts the cooldown.

    The breaker never awaits, so each method is atomic with respect to
    other asyncio tasks.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 300.0,
        half_open_max_probes: int = 1,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds to wait before admitting probes
            half_open_max_probes: Concurrent probes allowed while half-open
            name: Name for logging and identification
            clock: Monotonic time source, in seconds
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_probes = half_open_max_probes
        self.name = name
        self._clock = clock
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.last_failure_time: Optional[float] = None
        self.half_open_probes_used = 0

    def before_call(self) -> None:
        """Admit a call or raise.

        Moves an open circuit to half-open once the cooldown has elapsed and
        reserves a probe slot for calls made while half-open.

        Raises:
            CircuitBreakerOpenError: If the circuit is open or out of probes
        """
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                raise CircuitBreakerOpenError(self.name, self.state)

        if self.state == CircuitState.HALF_OPEN:
            if self.half_open_probes_used >= self.half_open_max_probes:
                raise CircuitBreakerOpenError(self.name, self.state)
            self.half_open_probes_used += 1

    def release_probe(self) -> None:
        """Return a probe slot for a call that ended without a verdict."""
        if self.state == CircuitState.HALF_OPEN and self.half_open_probes_used > 0:
            self.half_open_probes_used -= 1

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to try recovering."""
        if self.last_failure_time is None:
            return True
        elapsed = self._clock() - self.last_failure_time
        return elapsed >= self.recovery_timeout

    def _transition_to_half_open(self) -> None:
        """Move to half-open state to test recovery."""
        self.state = CircuitState.HALF_OPEN
        self.half_open_probes_used = 0
        logger.info(
            "circuit_half_open",
            circuit=self.name,
            message="Testing if service has recovered",
        )

    def record_success(self) -> None:
        """Handle successful request."""
        if self.state != CircuitState.CLOSED:
            self._close_circuit()
        else:
            self.failure_count = 0

    def _close_circuit(self) -> None:
        """Close circuit, return to normal operation."""
        self.failure_count = 0
        self.half_open_probes_used = 0
        self.state = CircuitState.CLOSED
        logger.info(
            "circuit_closed",
            circuit=self.name,
            message="Service recovered, resuming normal operation",
        )

    def record_failure(self, error: Exception) -> None:
        """Handle failed request."""
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            self._open_circuit(error)
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._open_circuit(error)

    def _open_circuit(self, error: Exception) -> None:
        """Open circuit, block future requests."""
        self.state = CircuitState.OPEN
        self.half_open_probes_used = 0
        logger.warning(
            "circuit_opened",
            circuit=self.name,
            failure_count=self.failure_count,
            recovery_timeout=self.recovery_timeout,
            error=str(error),
        )

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.last_failure_time = None
        self.half_open_probes_used = 0

    @property
    def is_open(self) -> bool:
        """Check if circuit is currently open."""
        return self.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if circuit is currently closed."""
        return self.state == CircuitState.CLOSED

    def get_status(self) -> dict[str, Any]:
        """Get current circuit breaker status."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "half_open_probes_used": self.half_open_probes_used,
            "seconds_since_failure": (
                round(self._clock() - self.last_failure_time, 1)
                if self.last_failure_time is not None
                else None
            ),
        }
