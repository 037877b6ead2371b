from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, MutableMapping

import structlog

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def _add_request_id(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    request_id = request_id_var.get("")
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def resolve_level(level: str | int) -> int:
    """Map a level name ("debug", "WARNING") to its number; unknown names give INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: str | int | None = None, *, json_logs: bool | None = None) -> None:
    """Configure structlog for the brain.

    `level` and `json_logs` default to the LOG_LEVEL / LOG_JSON settings. JSON
    lines are meant for deployed services, the console renderer for local runs.
    """
    if level is None or json_logs is None:
        from sophia.config import settings

        level = settings.log_level if level is None else level
        json_logs = settings.log_json if json_logs is None else json_logs

    renderer: Any = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_request_id,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=resolve_level(level))


@contextmanager
def bind_turn_context(*, user_id: str, scope: str, channel: str) -> Iterator[None]:
    """Tag every log line emitted while a turn runs with its user, scope and channel."""
    with structlog.contextvars.bound_contextvars(user_id=user_id, scope=scope, channel=channel):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a configured structlog logger."""

    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def get_request_id() -> str:
    """Return the current request ID from contextvars."""

    return request_id_var.get("")


logger = get_logger("sophia")
