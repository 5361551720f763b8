"""Circuit breaker guarding calls to an unreliable async dependency.

Classes:
    CircuitState: Closed, open and half-open states.
    CircuitOpenError: Raised instead of invoking the wrapped call while open.
    CircuitBreaker: Counts consecutive failures and short-circuits after a threshold.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitOpenError(Exception):
    """Error raised when the breaker refuses a call."""


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Three-state breaker for async callables.

    Closed calls pass through and consecutive failures are counted. Reaching
    ``failure_threshold`` opens the breaker; after ``recovery_timeout`` seconds a
    single trial call is let through. Its outcome closes or reopens the breaker.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        *,
        name: str = "embeddings",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self._clock = clock

        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` under breaker protection."""

        if self._state == CircuitState.OPEN:
            if not self._should_attempt_reset():
                raise CircuitOpenError(f"Circuit breaker is open for {self.name}")
            self._state = CircuitState.HALF_OPEN
            _LOGGER.info("Circuit breaker %s half-open; allowing trial call", self.name)

        trial = self._state == CircuitState.HALF_OPEN
        if trial:
            if self._trial_in_flight:
                raise CircuitOpenError(f"Circuit breaker trial already running for {self.name}")
            self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        else:
            self._on_success()
            return result
        finally:
            if trial:
                self._trial_in_flight = False

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False

    def _should_attempt_reset(self) -> bool:
        if self._opened_at is None:
            return True
        return self._clock() - self._opened_at >= self.recovery_timeout

    def _on_success(self) -> None:
        # Calls that started before the breaker opened leave it open.
        if self._state == CircuitState.HALF_OPEN:
            _LOGGER.info("Circuit breaker %s closed after successful trial", self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def _on_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                _LOGGER.warning(
                    "Circuit breaker %s opened after %d consecutive failures",
                    self.name,
                    self._failure_count,
                )
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
