"""
Circuit Breaker for the forecast source.

A NOAA outage during a run would otherwise cost one full timeout per
(river, range) fetch. The breaker trips after repeated failures and
rejects further calls until a cool-down passes, so the rest of the run
moves on quickly with whatever the caches still hold.
"""

import time
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"       # Calls pass through
    OPEN = "open"           # Calls rejected
    HALF_OPEN = "half_open" # One probe call allowed


class CircuitOpenError(Exception):
    """Raised when the breaker rejects a call without attempting it."""


class CircuitBreaker:
    """
    Failure counter with a sliding window.

    CLOSED → OPEN after ``failure_threshold`` failures within
    ``window_seconds``. OPEN → HALF_OPEN once ``recovery_timeout`` has
    elapsed. A successful probe closes the breaker; a failed one reopens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures: list[float] = []
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info("circuit_half_open", breaker=self.name)
        return self._state

    async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        state = self.state

        if state == CircuitState.OPEN:
            raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")

        if state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitOpenError(f"Circuit breaker '{self.name}' is probing")
            self._probe_in_flight = True

        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def _record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("circuit_closed", breaker=self.name)
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._probe_in_flight = False

    def _record_failure(self) -> None:
        now = self._clock()
        self._probe_in_flight = False

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            self._opened_at = now
            logger.warning("circuit_reopened", breaker=self.name)
            return

        cutoff = now - self.window_seconds
        self._failures = [t for t in self._failures if t > cutoff]
        self._failures.append(now)

        if len(self._failures) >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = now
            logger.warning(
                "circuit_opened",
                breaker=self.name,
                failures=len(self._failures),
                threshold=self.failure_threshold,
            )

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._probe_in_flight = False
