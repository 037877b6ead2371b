"""Brain telemetry events.

Events are emitted through structlog so they can be forwarded to any
observability backend by the log pipeline. Emission is best-effort: a failure
to log must never fail a turn, so errors are swallowed here.

Usage:
    from sophia.telemetry.events import BrainEvent, log_brain_event

    log_brain_event(BrainEvent.TURN_ROUTED, user_id=user_id, mode="companion")
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sophia.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "BrainEvent",
    "log_brain_event",
]


class BrainEvent(str, Enum):
    """Orchestration lifecycle events."""

    TURN_ROUTED = "brain_turn_routed"
    TURN_COMPLETED = "brain_turn_completed"
    TURN_FAILED = "brain_turn_failed"
    CLASSIFIER_FALLBACK = "brain_classifier_fallback"
    HANDLER_FAILED = "brain_handler_failed"
    INVESTIGATION_FORCE_CLOSED = "brain_investigation_force_closed"
    INVESTIGATION_COMPLETED = "brain_investigation_completed"
    SESSION_STARTED = "brain_session_started"
    SESSION_CLOSED = "brain_session_closed"
    SESSION_PAUSED = "brain_session_paused"
    SESSION_RESUMED = "brain_session_resumed"
    TOPIC_DEFERRED = "brain_topic_deferred"
    TOPIC_EVICTED = "brain_topic_evicted"
    RELAUNCH_OFFERED = "brain_relaunch_offered"
    RELAUNCH_RESOLVED = "brain_relaunch_resolved"
    TOOL_EXECUTED = "brain_tool_executed"
    SHORT_TERM_REFRESHED = "brain_short_term_refreshed"
    MAGIC_RESET = "brain_magic_reset"


def _get_timestamp() -> str:
    """Get ISO timestamp."""
    return datetime.now(timezone.utc).isoformat()


def log_brain_event(
    event: BrainEvent,
    *,
    user_id: str | None = None,
    scope: str | None = None,
    error: str | None = None,
    duration_ms: int | None = None,
    **extra: Any,
) -> None:
    """Log an orchestration event.

    Args:
        event: Event type
        user_id: User the turn belongs to
        scope: Conversation scope (e.g. "web", "whatsapp")
        error: Error message, truncated to 500 chars
        duration_ms: Duration in milliseconds
        **extra: Additional attributes
    """
    try:
        log_data: Dict[str, Any] = {
            "event_type": "brain",
            "event_name": event.value,
            "timestamp": _get_timestamp(),
        }
        if user_id:
            log_data["user_id"] = user_id
        if scope:
            log_data["scope"] = scope
        if error:
            log_data["error"] = error[:500]
        if duration_ms is not None:
            log_data["duration_ms"] = duration_ms
        log_data.update(extra)

        logger.info("brain_event", **log_data)
    except Exception:  # noqa: BLE001 - telemetry must never fail a turn
        logger.debug("brain_event_emit_failed", event=getattr(event, "value", event), exc_info=True)
