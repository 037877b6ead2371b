"""Circuit breaker for text generation calls.

Fails fast while the generation backend is down so a burst of turns does not
pile up on a dead dependency; callers degrade to their local fallbacks.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from sophia.config import settings
from sophia.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Probing recovery


class CircuitBreakerError(Exception):
    """Raised when the circuit rejects a call."""


class CircuitBreaker:
    """Three-state circuit breaker.

    Transitions:
    - CLOSED -> OPEN after `failure_threshold` consecutive failures
    - OPEN -> HALF_OPEN once `recovery_timeout` seconds have elapsed
    - HALF_OPEN -> CLOSED on the first success
    - HALF_OPEN -> OPEN on any failure, or when probes exceed `half_open_max_calls`
    """

    def __init__(
        self,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
        half_open_max_calls: int = 3,
        name: str = "circuit_breaker",
    ):
        self.failure_threshold = failure_threshold or settings.circuit_breaker_failure_threshold
        self.recovery_timeout = recovery_timeout or settings.circuit_breaker_recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.name = name

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                logger.info("circuit_half_open", breaker=self.name)
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
        return self._state

    def _before_call(self) -> None:
        current = self.state
        if current == CircuitState.OPEN:
            logger.warning("circuit_rejected_call", breaker=self.name)
            raise CircuitBreakerError(f"Circuit breaker {self.name} is OPEN")
        if current == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.half_open_max_calls:
                self._trip()
                raise CircuitBreakerError(f"Circuit breaker {self.name} exceeded half-open limit")
            self._half_open_calls += 1

    async def call_async(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await a coroutine function under breaker protection."""
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._half_open_calls = 0

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("circuit_closed", breaker=self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at = None

    def _on_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            logger.warning("circuit_reopened", breaker=self.name)
            self._trip()
        elif self._failure_count >= self.failure_threshold:
            logger.warning(
                "circuit_opened", breaker=self.name, failure_threshold=self.failure_threshold
            )
            self._trip()

    def reset(self) -> None:
        """Manually reset the breaker to CLOSED."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_calls = 0


__all__ = ["CircuitBreaker", "CircuitBreakerError", "CircuitState"]
