"""
CircuitBreaker - Stops calling the terminology service while it is failing.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Service is failing, calls fail fast with CircuitOpenError
- HALF_OPEN: Cooldown elapsed, trial calls test whether the service recovered

Transitions:
- CLOSED → OPEN: After failure_threshold consecutive failures
- OPEN → HALF_OPEN: On the first call once reset_timeout has passed since the last failure
- HALF_OPEN → CLOSED: After half_open_requests consecutive successful trial calls
- HALF_OPEN → OPEN: On any failed trial
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from medsearch.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing fast
    HALF_OPEN = "HALF_OPEN"  # Probing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    reset_timeout: timedelta = timedelta(seconds=60)  # Cooldown before half-open
    half_open_requests: int = 3  # Trial successes needed to close


class CircuitBreaker:
    """
    Circuit breaker guarding a single upstream service.

    Usage:
        cb = CircuitBreaker("rxnorm")
        data = await cb.execute(lambda: fetch_display_names())

    ``execute`` takes a zero-argument callable returning an awaitable, so the
    breaker can refuse to even create the coroutine while open.
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: datetime | None = None
        self._half_open_trial_count = 0
        self._half_open_in_flight = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state, without triggering any transition."""
        return self._state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` under breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open (operation is not invoked)
        """
        is_trial = False
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self._half_open()
                else:
                    raise CircuitOpenError(
                        self.service_id, self.get_time_until_reset() or 0
                    )

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.half_open_requests:
                    raise CircuitOpenError(self.service_id, 0)
                self._half_open_in_flight += 1
                is_trial = True

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        else:
            self.record_success()
            return result
        finally:
            if is_trial:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)

    def record_success(self) -> None:
        """Record a successful call."""
        self._success_count += 1

        if self._state == CircuitState.HALF_OPEN:
            self._half_open_trial_count += 1
            if self._half_open_trial_count >= self.config.half_open_requests:
                self._close()
        elif self._state == CircuitState.CLOSED:
            # Only consecutive failures count toward the threshold
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed call."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            # Any failed trial reopens the circuit
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                self._open()

    def _should_attempt_reset(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() >= self._last_failure_time + self.config.reset_timeout

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after "
            f"{self._failure_count} failures "
            f"(threshold {self.config.failure_threshold})"
        )

    def _half_open(self) -> None:
        """Transition to HALF_OPEN state."""
        self._state = CircuitState.HALF_OPEN
        self._half_open_trial_count = 0
        logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_trial_count = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_trial_count = 0
        self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the next call would be let through as a trial."""
        if self._state != CircuitState.OPEN or not self._last_failure_time:
            return None

        reset_at = self._last_failure_time + self.config.reset_timeout
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0, remaining)

    @property
    def is_healthy(self) -> bool:
        return self._state == CircuitState.CLOSED

    def get_stats(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "half_open_trial_count": self._half_open_trial_count,
            "last_failure_time": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "time_until_reset": self.get_time_until_reset(),
            "is_healthy": self.is_healthy,
        }
