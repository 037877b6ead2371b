"""Common FastAPI dependencies for the Sophia API."""

from __future__ import annotations

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from sophia.backends import get_text_generator
from sophia.brain.engine import TurnDeps
from sophia.config import settings
from sophia.storage.adapters import SqlContextSource, SqlStateStore

__all__ = ["api_key_header", "get_turn_deps", "verify_api_key"]


def get_turn_deps() -> TurnDeps:
    """Wire the brain to the SQL store and the configured text generator."""

    generator = get_text_generator()
    source = SqlContextSource()
    return TurnDeps(
        generator=generator,
        store=SqlStateStore(),
        context_source=source,
        memory=generator,
        tools=source,
        classifier_model=settings.classifier_model or None,
    )


# API key verification (shared)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """Verify API key authentication for all endpoints."""

    if api_key is None:
        raise HTTPException(status_code=401, detail="Missing API key")
    if api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key
