"""Internal provider boundaries.

These interfaces keep the brain "Llama Stack-native" while making the boundary
between our orchestration logic and vendor SDKs explicit and testable.
"""

from __future__ import annotations

from functools import lru_cache

from sophia.backends.fake import DisabledTextGenerator, FakeTextGenerator
from sophia.backends.llama_stack import LlamaStackTextGenerator
from sophia.backends.protocols import (
    MemoryHit,
    MemorySearch,
    TextGenerationError,
    TextGenerationUnavailable,
    TextGenerator,
)
from sophia.config import get_settings
from sophia.config.provider_modes import effective_llama_stack_provider
from sophia.resilience.circuit_breaker import CircuitBreaker

__all__ = [
    "DisabledTextGenerator",
    "FakeTextGenerator",
    "LlamaStackTextGenerator",
    "MemoryHit",
    "MemorySearch",
    "TextGenerationError",
    "TextGenerationUnavailable",
    "TextGenerator",
    "get_text_generator",
]


@lru_cache(maxsize=1)
def get_text_generator() -> LlamaStackTextGenerator | FakeTextGenerator | DisabledTextGenerator:
    """Return the process-wide generator for the configured provider mode."""
    current = get_settings()
    mode = effective_llama_stack_provider(current)
    if mode == "fake":
        return FakeTextGenerator()
    if mode == "off":
        return DisabledTextGenerator()
    breaker = None
    if current.circuit_breaker_enabled:
        breaker = CircuitBreaker(
            name="llama_stack",
            failure_threshold=current.circuit_breaker_failure_threshold,
            recovery_timeout=current.circuit_breaker_recovery_timeout,
        )
    return LlamaStackTextGenerator(circuit_breaker=breaker)
