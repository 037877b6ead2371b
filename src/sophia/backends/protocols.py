"""Protocol interfaces for external AI dependencies.

These are intentionally small: the brain depends on them instead of vendor
types so every component can be exercised with an in-memory fake.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class TextGenerationError(RuntimeError):
    """Raised when the generation backend fails or returns unusable output."""


class TextGenerationUnavailable(TextGenerationError):
    """Raised when generation is disabled or its circuit is open."""


@dataclass(frozen=True)
class MemoryHit:
    content: str
    score: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class TextGenerator(Protocol):
    async def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        model_id: str | None = None,
    ) -> str: ...

    async def generate_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        model_id: str | None = None,
    ) -> dict[str, Any]: ...


class MemorySearch(Protocol):
    async def search_memories(
        self, *, user_id: str, query: str, max_results: int = 5
    ) -> list[MemoryHit]: ...
