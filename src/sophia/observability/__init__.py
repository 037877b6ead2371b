"""Sophia observability module - structured logging and Prometheus metrics.

Usage:
    from sophia.observability import get_logger

    logger = get_logger(__name__)
    logger.info("turn_started", user_id=user_id)
"""

from __future__ import annotations

from sophia.observability.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "init_observability",
]

_OBSERVABILITY_INITIALIZED = False


def init_observability() -> None:
    """Initialize logging for the process (idempotent).

    Not executed on import so `sophia` can be used as a library without
    mutating global logging configuration.
    """
    global _OBSERVABILITY_INITIALIZED
    if _OBSERVABILITY_INITIALIZED:
        return
    from sophia.config import settings

    configure_logging(settings.log_level, json_logs=settings.log_json)
    _OBSERVABILITY_INITIALIZED = True
