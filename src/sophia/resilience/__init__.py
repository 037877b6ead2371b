"""Resilience patterns for external calls."""

from sophia.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerError, CircuitState

__all__ = ["CircuitBreaker", "CircuitBreakerError", "CircuitState"]
