"""Llama Stack client helpers.

Single surface for obtaining the async Llama Stack client inside the brain.
The client is cached per process; tests clear it with `clear_client_cache`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from llama_stack_client import AsyncLlamaStackClient

from sophia.config import settings
from sophia.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "get_async_client",
    "clear_client_cache",
    "list_models_async",
    "LlamaStackConnectionError",
]


class LlamaStackConnectionError(Exception):
    """Raised when connection to Llama Stack fails."""

    def __init__(self, message: str, url: str, cause: Exception | None = None):
        self.url = url
        self.cause = cause
        super().__init__(f"{message} (url={url})")


@lru_cache(maxsize=1)
def get_async_client() -> AsyncLlamaStackClient:
    """Cached async client for the API and the turn engine."""
    logger.info("llama_stack_client_created", url=settings.llama_stack_url)
    try:
        return AsyncLlamaStackClient(
            base_url=settings.llama_stack_url,
            timeout=60.0,
        )
    except Exception as exc:  # pragma: no cover
        logger.error("llama_stack_client_failed", url=settings.llama_stack_url, error=str(exc))
        raise LlamaStackConnectionError(
            message="Failed to create async Llama Stack client",
            url=settings.llama_stack_url,
            cause=exc,
        ) from exc


def clear_client_cache() -> None:
    """Clear the async client cache (useful for tests)."""
    get_async_client.cache_clear()


async def list_models_async(client: Optional[AsyncLlamaStackClient] = None) -> list[str]:
    """List available model identifiers from Llama Stack."""
    client = client or get_async_client()
    try:
        models = await client.models.list()
        return [m.identifier for m in models]
    except Exception as exc:
        raise LlamaStackConnectionError(
            message="Failed to list models",
            url=settings.llama_stack_url,
            cause=exc,
        ) from exc
