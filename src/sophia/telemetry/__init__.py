"""Telemetry module - best-effort structured event logging.

Usage:
    from sophia.telemetry import BrainEvent, log_brain_event

    log_brain_event(BrainEvent.TURN_COMPLETED, user_id=user_id)
"""

from sophia.telemetry.events import BrainEvent, log_brain_event

__all__ = [
    "BrainEvent",
    "log_brain_event",
]
