"""Health check endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from sophia.api.schemas import HealthResponse
from sophia.app_version import get_app_version
from sophia.backends import LlamaStackTextGenerator, get_text_generator
from sophia.config.provider_modes import effective_llama_stack_provider
from sophia.config.settings import settings
from sophia.observability.logging import get_logger
from sophia.storage.database import get_async_engine

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


def _circuit_state() -> str | None:
    generator = get_text_generator()
    if isinstance(generator, LlamaStackTextGenerator) and generator.circuit_breaker is not None:
        return generator.circuit_breaker.state.value
    return None


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request, deep: bool = Query(False, description="If true, also ping Llama Stack")
) -> dict[str, Any]:
    """Liveness probe; degraded provider modes are reported, not failed."""

    provider = effective_llama_stack_provider(settings)
    payload: dict[str, Any] = {
        "status": "healthy",
        "version": get_app_version(),
        "degraded_mode": provider != "real",
        "llama_stack_provider": provider,
        "database_ready": getattr(request.app.state, "database_ready", None),
        "llama_stack_circuit": _circuit_state(),
    }

    if deep:
        from sophia.llama_clients import get_async_client, list_models_async

        try:
            if provider != "real":
                raise RuntimeError(f"LLAMA_STACK_PROVIDER={provider}")
            models = await list_models_async(get_async_client())
            payload["llama_stack_reachable"] = True
            payload["llama_stack_models"] = models[:5]
        except Exception as exc:
            payload["llama_stack_reachable"] = False
            payload["llama_stack_error"] = str(exc)

    return payload


@router.get("/health/db")
async def db_health_check() -> JSONResponse:
    """Check database connectivity.

    Returns 200 if database is healthy, 503 otherwise.
    """
    checks: Dict[str, Any] = {"database": "unknown"}
    status_code = 200
    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "unhealthy"
        checks["database_error"] = str(exc)
        status_code = 503
    return JSONResponse(content=checks, status_code=status_code)


__all__ = ["router"]
