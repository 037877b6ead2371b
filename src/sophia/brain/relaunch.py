"""Consent-gated relaunch of deferred topics.

When a flow closes normally, the oldest deferred topic is offered back to the
user as a yes/no question. Nothing starts until the user accepts; an unclear
answer is re-asked once and then the topic is dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime

from sophia.brain import addons, deferred_topics, supervisor
from sophia.brain.signals import ConsentDecision, SignalBundle
from sophia.brain.state import (
    AgentMode,
    FlowPhase,
    PendingRelaunchConsent,
    SupervisorSession,
    SupervisorState,
    session_type_for_machine,
    utc_now,
)
from sophia.config import settings
from sophia.observability.logging import get_logger
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

__all__ = [
    "ConsentPhrases",
    "ConsentResolution",
    "apply_relaunch",
    "match_consent_phrase",
    "resolve_consent",
]


@dataclass(frozen=True)
class ConsentPhrases:
    accept_pattern: str
    accept_short_words: tuple[str, ...]
    accept_short_max_chars: int
    decline_pattern: str
    decline_short_words: tuple[str, ...]
    decline_short_max_chars: int
    later_words: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls) -> "ConsentPhrases":
        return cls(
            accept_pattern=settings.consent_accept_pattern,
            accept_short_words=tuple(settings.consent_accept_short_words),
            accept_short_max_chars=settings.consent_accept_short_max_chars,
            decline_pattern=settings.consent_decline_pattern,
            decline_short_words=tuple(settings.consent_decline_short_words),
            decline_short_max_chars=settings.consent_decline_short_max_chars,
            later_words=tuple(settings.consent_later_words),
        )


@dataclass(frozen=True)
class ConsentResolution:
    decision: ConsentDecision
    pending: PendingRelaunchConsent
    initialized_session: SupervisorSession | None = None
    next_mode: AgentMode | None = None
    message: str | None = None
    dropped_after_unclear: bool = False
    reask: bool = False
    paused_until: datetime | None = None


def apply_relaunch(
    state: SupervisorState, *, now: datetime | None = None
) -> PendingRelaunchConsent | None:
    """Offer the oldest deferred topic after a normal close.

    Consumes `flow_just_closed_normally`. An aborted close only clears its flag.
    """
    now = now or utc_now()
    if state.flow_just_closed_aborted:
        state.flow_just_closed_aborted = False
    if not state.flow_just_closed_normally:
        return None
    state.flow_just_closed_normally = False

    if state.active is not None or state.pending_relaunch is not None:
        return None

    deferred_topics.prune_expired(state.deferred, now=now)
    topic = deferred_topics.get_next_deferred_to_process(state.deferred, now=now)
    if topic is None:
        return None

    deferred_topics.mark_processed(state.deferred, topic.id, now=now)
    pending = PendingRelaunchConsent(
        machine_type=topic.machine_type,
        action_target=topic.action_target,
        summaries=[s.summary for s in topic.signal_summaries],
        created_at=now,
    )
    state.pending_relaunch = pending
    state.ask_relaunch_consent = True
    log_brain_event(
        BrainEvent.RELAUNCH_OFFERED,
        topic_id=topic.id,
        machine_type=topic.machine_type.value,
        trigger_count=topic.trigger_count,
    )
    return pending


def _normalize(message: str) -> str:
    return " ".join((message or "").strip().lower().split())


def match_consent_phrase(message: str, phrases: ConsentPhrases) -> ConsentDecision:
    """Deterministic fallback used when the classifier is not confident enough.

    Decline wins over accept so "non pas maintenant, ok ?" never starts a flow.
    """
    text = _normalize(message)
    if not text:
        return ConsentDecision.UNCLEAR

    if re.search(phrases.decline_pattern, text, flags=re.IGNORECASE):
        return ConsentDecision.DECLINE
    if len(text) < phrases.decline_short_max_chars and any(
        re.search(rf"\b{re.escape(word)}\b", text) for word in phrases.decline_short_words
    ):
        return ConsentDecision.DECLINE

    if re.search(phrases.accept_pattern, text, flags=re.IGNORECASE):
        return ConsentDecision.ACCEPT
    if len(text) < phrases.accept_short_max_chars and any(
        re.search(rf"\b{re.escape(word)}\b", text) for word in phrases.accept_short_words
    ):
        return ConsentDecision.ACCEPT

    return ConsentDecision.UNCLEAR


def _is_later(message: str, phrases: ConsentPhrases) -> bool:
    text = _normalize(message)
    return any(word in text for word in phrases.later_words)


def _decide(
    message: str, signals: SignalBundle, threshold: float, phrases: ConsentPhrases
) -> tuple[ConsentDecision, str]:
    resolution = signals.pending_resolution
    if (
        resolution is not None
        and resolution.status == "resolved"
        and resolution.confidence >= threshold
    ):
        return resolution.decision, "classifier"
    return match_consent_phrase(message, phrases), "phrases"


def resolve_consent(
    state: SupervisorState,
    message: str,
    signals: SignalBundle,
    *,
    now: datetime | None = None,
    threshold: float | None = None,
    phrases: ConsentPhrases | None = None,
) -> ConsentResolution | None:
    """Resolve the user's answer to a pending relaunch question, if one is pending."""
    pending = state.pending_relaunch
    if pending is None:
        return None
    now = now or utc_now()
    threshold = settings.consent_confidence_threshold if threshold is None else threshold
    phrases = phrases or ConsentPhrases.from_settings()

    decision, source = _decide(message, signals, threshold, phrases)
    logger.info(
        "relaunch_consent_decided",
        decision=decision.value,
        source=source,
        machine_type=pending.machine_type.value,
    )

    if decision is ConsentDecision.ACCEPT:
        state.pending_relaunch = None
        result = supervisor.upsert(
            state,
            session_type_for_machine(pending.machine_type),
            {"summaries": list(pending.summaries)},
            action_target=pending.action_target,
            phase=FlowPhase.EXPLORING,
            summary=pending.summaries[-1] if pending.summaries else None,
            now=now,
        )
        resolution = ConsentResolution(
            decision=decision,
            pending=pending,
            initialized_session=result.session,
            next_mode=AgentMode.COMPANION,
        )
    elif decision is ConsentDecision.DECLINE:
        state.pending_relaunch = None
        paused_until = None
        if _is_later(message, phrases):
            paused_until = deferred_topics.pause_all(state.deferred, now=now)
        resolution = ConsentResolution(
            decision=decision,
            pending=pending,
            message=addons.decline_message(pending),
            paused_until=paused_until,
        )
    elif pending.unclear_reask_count < 1:
        pending.unclear_reask_count += 1
        state.ask_relaunch_consent = True
        resolution = ConsentResolution(
            decision=decision,
            pending=pending,
            message=addons.consent_question(pending),
            reask=True,
        )
    else:
        state.pending_relaunch = None
        resolution = ConsentResolution(
            decision=decision,
            pending=pending,
            message=addons.unclear_drop_message(),
            dropped_after_unclear=True,
        )

    log_brain_event(
        BrainEvent.RELAUNCH_RESOLVED,
        decision=decision.value,
        machine_type=pending.machine_type.value,
        dropped_after_unclear=resolution.dropped_after_unclear,
        reask=resolution.reask,
    )
    return resolution
