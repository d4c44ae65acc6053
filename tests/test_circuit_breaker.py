"""Tests for paceline.services.circuit_breaker module."""

import time
from datetime import timedelta

from paceline.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


def make_breaker(reset_ms: int = 30_000, **kwargs) -> CircuitBreaker:
    return CircuitBreaker(
        CircuitBreakerConfig(reset_timeout=timedelta(milliseconds=reset_ms), **kwargs)
    )


def trip(cb: CircuitBreaker) -> None:
    for _ in range(cb.config.failure_threshold):
        cb.record_failure()


class TestCircuitBreakerConfig:
    """Tests for CircuitBreakerConfig dataclass."""

    def test_default_values(self):
        """Should match the documented defaults."""
        cfg = CircuitBreakerConfig()
        assert cfg.failure_threshold == 5
        assert cfg.reset_timeout == timedelta(seconds=30)
        assert cfg.half_open_requests == 3


class TestClosedState:
    """Tests for the CLOSED state."""

    def test_starts_closed(self):
        """A new breaker lets requests through."""
        cb = CircuitBreaker()
        assert cb.is_open() is False
        assert cb.state == CircuitState.CLOSED

    def test_opens_at_threshold(self):
        """Exactly failure_threshold failures open the circuit."""
        cb = CircuitBreaker()
        for _ in range(4):
            cb.record_failure()
        assert cb.is_open() is False

        cb.record_failure()
        assert cb.is_open() is True
        assert cb.state == CircuitState.OPEN

    def test_success_resets_failures(self):
        """A success while closed clears the failure count."""
        cb = CircuitBreaker()
        for _ in range(4):
            cb.record_failure()
        cb.record_success()
        assert cb.failures == 0

        cb.record_failure()
        assert cb.is_open() is False


class TestOpenState:
    """Tests for OPEN → HALF_OPEN."""

    def test_stays_open_before_timeout(self):
        """Requests are blocked until reset_timeout has passed."""
        cb = make_breaker(reset_ms=10_000)
        trip(cb)
        assert cb.is_open() is True
        assert cb.is_open() is True
        assert 0 < cb.get_time_until_reset() <= 10

    def test_half_open_after_timeout(self):
        """The next check after reset_timeout moves to HALF_OPEN."""
        cb = make_breaker(reset_ms=20)
        trip(cb)
        time.sleep(0.03)
        assert cb.state == CircuitState.OPEN
        assert cb.is_open() is False
        assert cb.state == CircuitState.HALF_OPEN
        assert cb.get_time_until_reset() is None


class TestHalfOpenState:
    """Tests for HALF_OPEN → CLOSED / OPEN."""

    def _half_open(self) -> CircuitBreaker:
        cb = make_breaker(reset_ms=20)
        trip(cb)
        time.sleep(0.03)
        assert cb.is_open() is False
        return cb

    def test_closes_after_trial_successes(self):
        """half_open_requests successes close the circuit."""
        cb = self._half_open()

        for _ in range(2):
            cb.record_success()
            assert cb.state == CircuitState.HALF_OPEN
            assert cb.is_open() is False

        cb.record_success()
        assert cb.state == CircuitState.CLOSED
        assert cb.failures == 0
        assert cb.is_open() is False

    def test_query_does_not_count_trials(self):
        """is_open() in HALF_OPEN does not consume trial slots."""
        cb = self._half_open()
        for _ in range(10):
            assert cb.is_open() is False
        assert cb.state == CircuitState.HALF_OPEN

    def test_failure_reopens(self):
        """Any failure while HALF_OPEN reopens the circuit."""
        cb = self._half_open()
        cb.record_success()
        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.is_open() is True

    def test_blocks_when_no_trials_allowed(self):
        """With zero trial slots a half-open breaker keeps blocking."""
        cb = make_breaker(reset_ms=20, half_open_requests=0)
        trip(cb)
        time.sleep(0.03)
        assert cb.is_open() is False
        assert cb.is_open() is True


class TestManagement:
    """Tests for reset and status."""

    def test_reset(self):
        """reset() closes the circuit and clears counters."""
        cb = CircuitBreaker()
        trip(cb)
        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert cb.failures == 0
        assert cb.is_open() is False

    def test_status(self):
        """get_status() reports state and counters."""
        cb = CircuitBreaker(name="gpx")
        cb.record_failure()
        status = cb.get_status()
        assert status["name"] == "gpx"
        assert status["state"] == "closed"
        assert status["failures"] == 1
        assert status["last_failure"] is not None
