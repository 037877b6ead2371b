"""Deferred-topic queue.

Signals that arrive while another flow owns the conversation are parked here
instead of interrupting. The queue is FIFO and bounded (oldest evicted first),
each topic keeps a small ring-buffer of summaries, and every topic expires a
fixed time after its last update.

All operations work on a `DeferredTopicsState` in place and take `now`
explicitly so expiry is deterministic under test.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

from sophia.brain.bounded import push_bounded
from sophia.brain.state import (
    DeferredTopic,
    DeferredTopicsState,
    MachineType,
    SignalSummary,
    utc_now,
)
from sophia.config import settings
from sophia.observability.logging import get_logger
from sophia.observability.metrics import DEFERRALS
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

__all__ = [
    "QueueLimits",
    "DeferralOutcome",
    "generate_topic_id",
    "targets_match",
    "find_matching",
    "defer_signal",
    "get_next_deferred_to_process",
    "prune_expired",
    "remove_topic",
    "pause_all",
    "is_paused",
    "clear_pause",
    "mark_processed",
    "has_pending",
    "count",
]


@dataclass(frozen=True)
class QueueLimits:
    max_topics: int = 5
    max_summaries: int = 3
    ttl: timedelta = timedelta(hours=48)
    pause: timedelta = timedelta(hours=2)
    summary_max_chars: int = 100
    target_max_chars: int = 80

    @classmethod
    def from_settings(cls) -> "QueueLimits":
        return cls(
            max_topics=settings.deferred_max_topics,
            max_summaries=settings.deferred_max_summaries,
            ttl=timedelta(hours=settings.deferred_ttl_hours),
            pause=timedelta(hours=settings.deferred_pause_hours),
            summary_max_chars=settings.deferred_summary_max_chars,
            target_max_chars=settings.deferred_target_max_chars,
        )


@dataclass(frozen=True)
class DeferralOutcome:
    action: Literal["created", "updated"]
    topic: DeferredTopic
    cancelled: list[DeferredTopic] = field(default_factory=list)


def generate_topic_id(now: datetime) -> str:
    stamp = now.strftime("%Y%m%dT%H%M%S%f")
    return f"def_{stamp}_{secrets.token_hex(3)}"


def _clip(text: str | None, limit: int) -> str | None:
    if text is None:
        return None
    cleaned = " ".join(text.split())
    return cleaned[:limit] if cleaned else None


def targets_match(a: str | None, b: str | None) -> bool:
    """Case-insensitive substring match in either direction; both must be present."""
    if not a or not b:
        return False
    left, right = a.strip().lower(), b.strip().lower()
    if not left or not right:
        return False
    return left in right or right in left


def find_matching(
    state: DeferredTopicsState, machine_type: MachineType, action_target: str | None = None
) -> DeferredTopic | None:
    """Return the queued topic a new signal should merge into, if any.

    Action-scoped kinds also need a fuzzy target match; other kinds match on
    type alone.
    """
    for topic in state.topics:
        if topic.machine_type is not machine_type:
            continue
        if machine_type.is_action_scoped:
            if targets_match(topic.action_target, action_target):
                return topic
            continue
        return topic
    return None


def prune_expired(state: DeferredTopicsState, *, now: datetime | None = None) -> list[DeferredTopic]:
    """Drop expired topics in place and return them."""
    now = now or utc_now()
    expired = [t for t in state.topics if t.is_expired(now)]
    if expired:
        state.topics = [t for t in state.topics if not t.is_expired(now)]
        logger.info("deferred_topics_pruned", count=len(expired))
    return expired


def defer_signal(
    state: DeferredTopicsState,
    machine_type: MachineType,
    action_target: str | None,
    summary: str,
    *,
    now: datetime | None = None,
    limits: QueueLimits | None = None,
) -> DeferralOutcome:
    """Record a signal: merge into a matching topic or enqueue a new one."""
    now = now or utc_now()
    limits = limits or QueueLimits.from_settings()
    prune_expired(state, now=now)

    target = _clip(action_target, limits.target_max_chars)
    note = SignalSummary(
        summary=_clip(summary, limits.summary_max_chars) or machine_type.value,
        timestamp=now,
    )

    existing = find_matching(state, machine_type, target)
    if existing is not None:
        existing.signal_summaries, _ = push_bounded(
            existing.signal_summaries, note, limits.max_summaries
        )
        existing.trigger_count += 1
        existing.last_updated_at = now
        existing.expires_at = now + limits.ttl
        DEFERRALS.labels(machine_type=machine_type.value, action="updated").inc()
        log_brain_event(
            BrainEvent.TOPIC_DEFERRED,
            action="updated",
            topic_id=existing.id,
            machine_type=machine_type.value,
            trigger_count=existing.trigger_count,
        )
        return DeferralOutcome(action="updated", topic=existing)

    topic = DeferredTopic(
        id=generate_topic_id(now),
        machine_type=machine_type,
        action_target=target,
        signal_summaries=[note],
        trigger_count=1,
        created_at=now,
        last_updated_at=now,
        expires_at=now + limits.ttl,
    )
    state.topics, evicted = push_bounded(state.topics, topic, limits.max_topics)
    DEFERRALS.labels(machine_type=machine_type.value, action="created").inc()
    log_brain_event(
        BrainEvent.TOPIC_DEFERRED,
        action="created",
        topic_id=topic.id,
        machine_type=machine_type.value,
    )
    for dropped in evicted:
        log_brain_event(
            BrainEvent.TOPIC_EVICTED, topic_id=dropped.id, machine_type=dropped.machine_type.value
        )
    return DeferralOutcome(action="created", topic=topic, cancelled=evicted)


def is_paused(state: DeferredTopicsState, *, now: datetime | None = None) -> bool:
    now = now or utc_now()
    return state.paused_until is not None and state.paused_until > now


def pause_all(
    state: DeferredTopicsState,
    *,
    now: datetime | None = None,
    duration: timedelta | None = None,
) -> datetime:
    """Block every relaunch until now + duration (2h by default)."""
    now = now or utc_now()
    duration = duration if duration is not None else QueueLimits.from_settings().pause
    state.paused_until = now + duration
    logger.info("deferred_topics_paused", paused_until=state.paused_until.isoformat())
    return state.paused_until


def clear_pause(state: DeferredTopicsState) -> None:
    state.paused_until = None


def get_next_deferred_to_process(
    state: DeferredTopicsState, *, now: datetime | None = None
) -> DeferredTopic | None:
    """Oldest non-expired topic, or None while relaunches are paused."""
    now = now or utc_now()
    if is_paused(state, now=now):
        return None
    for topic in state.topics:
        if not topic.is_expired(now):
            return topic
    return None


def remove_topic(state: DeferredTopicsState, topic_id: str) -> DeferredTopic | None:
    for index, topic in enumerate(state.topics):
        if topic.id == topic_id:
            return state.topics.pop(index)
    return None


def mark_processed(
    state: DeferredTopicsState, topic_id: str, *, now: datetime | None = None
) -> DeferredTopic | None:
    """Remove a topic that has been offered and stamp the queue."""
    removed = remove_topic(state, topic_id)
    state.last_processed_at = now or utc_now()
    return removed


def has_pending(state: DeferredTopicsState, *, now: datetime | None = None) -> bool:
    now = now or utc_now()
    return any(not t.is_expired(now) for t in state.topics)


def count(state: DeferredTopicsState) -> int:
    return len(state.topics)
