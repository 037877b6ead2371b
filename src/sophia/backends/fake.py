"""Deterministic local providers used when LLAMA_STACK_PROVIDER is fake or off."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sophia.backends.protocols import MemoryHit, TextGenerationUnavailable


@dataclass(frozen=True)
class FakeTextGenerator:
    """Canned replies; every JSON call yields a bare `response` object.

    Signal extraction ignores the `response` key, so classification through
    this provider always lands on the default signal bundle.
    """

    reply: str = "Je t'écoute. Dis-m'en un peu plus ?"

    async def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        model_id: str | None = None,
    ) -> str:
        return self.reply

    async def generate_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        model_id: str | None = None,
    ) -> dict[str, Any]:
        return {"response": self.reply}

    async def search_memories(
        self, *, user_id: str, query: str, max_results: int = 5
    ) -> list[MemoryHit]:
        return []


@dataclass(frozen=True)
class DisabledTextGenerator:
    """Provider for LLAMA_STACK_PROVIDER=off; every call fails fast."""

    async def generate_text(self, **_: Any) -> str:
        raise TextGenerationUnavailable("Text generation is disabled (LLAMA_STACK_PROVIDER=off)")

    async def generate_json(self, **_: Any) -> dict[str, Any]:
        raise TextGenerationUnavailable("Text generation is disabled (LLAMA_STACK_PROVIDER=off)")

    async def search_memories(self, **_: Any) -> list[MemoryHit]:
        return []
