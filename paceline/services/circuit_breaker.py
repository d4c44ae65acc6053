"""
CircuitBreaker - Prevents cascading failures by stopping requests to a failing API.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: API is failing, requests are blocked
- HALF_OPEN: Testing if the API has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold is reached
- OPEN → HALF_OPEN: After reset_timeout has passed since the last failure
  (checked lazily by is_open())
- HALF_OPEN → CLOSED: After half_open_requests successful trial requests
- HALF_OPEN → OPEN: On any failed request
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half-open"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: timedelta = timedelta(seconds=30)  # Time before half-open
    half_open_requests: int = 3  # Successes needed to close from half-open


class CircuitBreaker:
    """
    Circuit breaker owned by a single API client.

    Usage:
        cb = CircuitBreaker()

        if cb.is_open():
            raise CircuitOpenError(...)

        try:
            result = await make_request()
            cb.record_success()
            return result
        except Exception:
            cb.record_failure()
            raise
    """

    def __init__(self, config: CircuitBreakerConfig | None = None, name: str = "api"):
        self.name = name
        self.config = config or CircuitBreakerConfig()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time: datetime | None = None
        self._half_open_attempts = 0

    @property
    def state(self) -> CircuitState:
        """Current state, without triggering the OPEN → HALF_OPEN check."""
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def is_open(self) -> bool:
        """
        Check if requests are blocked.

        May move an OPEN circuit to HALF_OPEN once the reset timeout has
        passed since the last failure.
        """
        if self._state == CircuitState.CLOSED:
            return False

        if self._state == CircuitState.OPEN:
            if self._reset_timeout_elapsed():
                self._state = CircuitState.HALF_OPEN
                self._half_open_attempts = 0
                logger.info(f"Circuit breaker '{self.name}' transitioned to HALF_OPEN")
                return False
            return True

        # HALF_OPEN: allow trial requests until the cap is reached
        return self._half_open_attempts >= self.config.half_open_requests

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_attempts += 1
            if self._half_open_attempts >= self.config.half_open_requests:
                self._close()
        else:
            self._failures = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        self._failures += 1
        self._last_failure_time = datetime.now()

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif self._failures >= self.config.failure_threshold:
            self._open()

    def _reset_timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return datetime.now() - self._last_failure_time >= self.config.reset_timeout

    def _open(self) -> None:
        """Transition to OPEN state."""
        if self._state != CircuitState.OPEN:
            logger.warning(
                f"Circuit breaker '{self.name}' OPENED after {self._failures} failures"
            )
        self._state = CircuitState.OPEN

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._half_open_attempts = 0
        logger.info(f"Circuit breaker '{self.name}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._half_open_attempts = 0
        self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until an OPEN circuit will allow a trial request."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return None

        reset_at = self._last_failure_time + self.config.reset_timeout
        remaining = (reset_at - datetime.now()).total_seconds()
        return max(0.0, remaining)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failures": self._failures,
            "half_open_attempts": self._half_open_attempts,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }
