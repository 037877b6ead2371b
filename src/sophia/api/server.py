"""FastAPI application for the Sophia brain."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram

from sophia.api import routes
from sophia.api.dependencies import api_key_header, verify_api_key
from sophia.api.errors import to_http_exception
from sophia.app_version import get_app_version
from sophia.config import settings
from sophia.config.provider_modes import effective_llama_stack_provider
from sophia.errors import SophiaError
from sophia.observability.logging import logger, request_id_var
from sophia.storage.database import init_async_db, shutdown_async_db

REQUEST_COUNT = Counter(
    "sophia_http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
REQUEST_LATENCY = Histogram(
    "sophia_http_request_duration_seconds",
    "HTTP request duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
    labelnames=["path"],
)


def _metrics_path(request: Request) -> str:
    """Return a low-cardinality path label for metrics."""
    route = request.scope.get("route")
    if route is not None:
        path = getattr(route, "path", None)
        if path:
            return str(path)
    return "unmatched"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - observability and database setup."""
    from sophia.observability import init_observability

    init_observability()
    logger.info(
        "Starting Sophia API...",
        llama_stack_provider=effective_llama_stack_provider(settings),
    )

    try:
        await init_async_db()
        app.state.database_ready = True
    except Exception as exc:
        logger.error("database_init_failed", error=str(exc))
        app.state.database_ready = False
        if settings.fail_fast_on_startup:
            raise

    yield

    logger.info("Shutting down Sophia API...")
    await shutdown_async_db()


app = FastAPI(
    title="Sophia Brain API",
    description="Dialogue orchestration core for the Sophia coaching assistant",
    version=get_app_version(),
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Middleware to manage X-Request-ID header and contextvar propagation."""

    incoming_request_id = request.headers.get("X-Request-ID")
    request_id = incoming_request_id or str(uuid4())

    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)

    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def timing_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    try:
        path_label = _metrics_path(request)
        REQUEST_COUNT.labels(
            method=request.method,
            path=path_label,
            status=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(path=path_label).observe(duration_ms / 1000.0)
    except Exception as metrics_exc:  # pragma: no cover - metrics should not break requests
        logger.debug(
            "metrics_observe_failed",
            exc=str(metrics_exc),
            exc_type=type(metrics_exc).__name__,
        )
    logger.info(
        "request_complete",
        path=str(request.url.path),
        method=request.method,
        status=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Response-Time-ms"] = f"{duration_ms:.2f}"
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return consistent error envelope."""
    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error", "http_error")
    else:
        error_code = "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error_code,
            "detail": detail,
        },
        headers=exc.headers,
    )


@app.exception_handler(SophiaError)
async def domain_error_handler(request: Request, exc: SophiaError) -> JSONResponse:
    http_exc = to_http_exception(exc)
    return await http_exception_handler(request, http_exc)


# Include routers
auth_deps = [Depends(verify_api_key)]
app.include_router(routes.health.router)  # Health check is public (for Docker/K8s)
app.include_router(routes.brain.router, dependencies=auth_deps)
app.include_router(routes.metrics.router)


__all__ = ["app", "verify_api_key", "api_key_header"]
