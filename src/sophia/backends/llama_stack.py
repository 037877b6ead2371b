"""Llama Stack backend adapter.

This keeps direct SDK usage in one place so brain logic can depend on small,
testable Protocols instead of vendor types.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from sophia.backends.protocols import MemoryHit, TextGenerationError, TextGenerationUnavailable
from sophia.config import settings
from sophia.llama_clients import get_async_client
from sophia.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerError


@dataclass(frozen=True)
class LlamaStackTextGenerator:
    """Text generation and memory search through Llama Stack."""

    async_client: object | None = None
    circuit_breaker: CircuitBreaker | None = None

    def _async(self) -> Any:
        return self.async_client or get_async_client()

    async def _complete(self, **kwargs: Any) -> Any:
        client = self._async()
        create = client.chat.completions.create
        if self.circuit_breaker is None:
            return await create(**kwargs)
        try:
            return await self.circuit_breaker.call_async(create, **kwargs)
        except CircuitBreakerError as exc:
            raise TextGenerationUnavailable(str(exc)) from exc

    async def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        model_id: str | None = None,
    ) -> str:
        response = await self._complete(
            model=model_id or settings.llama_stack_model,
            messages=_messages(system_prompt, user_prompt),
            temperature=temperature,
            stream=False,
        )
        content = _extract_content(response)
        if not content:
            raise TextGenerationError("LLM returned empty content")
        return content

    async def generate_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        model_id: str | None = None,
    ) -> dict[str, Any]:
        response = await self._complete(
            model=model_id or settings.llama_stack_model,
            messages=_messages(system_prompt, user_prompt),
            temperature=temperature,
            response_format={"type": "json_object"},
            stream=False,
        )
        choices = getattr(response, "choices", None)
        if choices is not None and not choices:
            raise TextGenerationError("LLM returned no choices")
        content = _extract_content(response)
        if not content:
            raise TextGenerationError("LLM returned empty content")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise TextGenerationError(f"LLM returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise TextGenerationError("LLM returned non-object JSON")
        return data

    async def search_memories(
        self, *, user_id: str, query: str, max_results: int = 5
    ) -> list[MemoryHit]:
        if not settings.memory_vector_store_id or max_results <= 0:
            return []
        client = self._async()
        response = await client.vector_stores.search(
            vector_store_id=settings.memory_vector_store_id,
            query=query,
            max_num_results=max_results,
            filters={"type": "eq", "key": "user_id", "value": user_id},
        )
        hits: list[MemoryHit] = []
        for result in list(getattr(response, "data", None) or []):
            content = _result_text(result)
            if not content:
                continue
            score = getattr(result, "score", None)
            metadata = getattr(result, "attributes", None) or getattr(result, "metadata", None)
            hits.append(
                MemoryHit(
                    content=content,
                    score=float(score) if score is not None else None,
                    metadata=dict(metadata) if isinstance(metadata, dict) else {},
                )
            )
        return hits


def _messages(system_prompt: str, user_prompt: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def _result_text(result: object) -> str:
    content = getattr(result, "content", None)
    if isinstance(content, list):
        parts = [str(getattr(part, "text", "") or "") for part in content]
        return "\n".join(p for p in parts if p).strip()
    if content:
        return str(content)
    text = getattr(result, "text", None)
    return str(text) if text else ""


def _extract_content(response: object) -> str:
    choices = getattr(response, "choices", None)
    if choices:
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None) if message else None
        if content:
            return str(content)
    content = getattr(response, "content", None)
    return str(content) if content else ""
