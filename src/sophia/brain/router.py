"""Deterministic mode selection.

Priority, first match wins:
1. SENTRY safety signal
2. FIREFIGHTER safety signal, or strong NEED_SUPPORT with elevated risk
3. checkup in progress without an explicit stop
4. companion

`route` is pure; `apply_decision` performs the state transitions a decision
implies (investigation force-close, safety preemption of the active session).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sophia.brain import supervisor
from sophia.brain.signals import InterruptKind, SafetyLevel, SignalBundle, TopicDepth
from sophia.brain.state import AgentMode, ChatState, PauseReason, utc_now
from sophia.config import settings
from sophia.observability.logging import get_logger
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

__all__ = [
    "RoutingThresholds",
    "RoutingDecision",
    "is_explicit_stop",
    "route",
    "apply_decision",
    "force_close_investigation",
]


@dataclass(frozen=True)
class RoutingThresholds:
    sentry: float = 0.75
    firefighter: float = 0.75
    need_support: float = 0.6
    need_support_risk: float = 4
    explicit_stop: float = 0.6
    bored: float = 0.65

    @classmethod
    def from_settings(cls) -> "RoutingThresholds":
        return cls(
            sentry=settings.sentry_confidence_threshold,
            firefighter=settings.firefighter_confidence_threshold,
            need_support=settings.need_support_confidence_threshold,
            need_support_risk=settings.need_support_risk_threshold,
            explicit_stop=settings.explicit_stop_confidence_threshold,
            bored=settings.bored_confidence_threshold,
        )


@dataclass(frozen=True)
class RoutingDecision:
    mode: AgentMode
    reason: str
    force_close_investigation: bool = False
    stop_reply: str | None = None
    preempt: PauseReason | None = None
    forced: bool = False

    @property
    def short_circuit(self) -> bool:
        """True when the reply is fixed and no handler should run."""
        return self.stop_reply is not None


def is_explicit_stop(signals: SignalBundle, thresholds: RoutingThresholds) -> bool:
    interrupt = signals.interrupt
    if interrupt.kind is InterruptKind.EXPLICIT_STOP and interrupt.confidence >= thresholds.explicit_stop:
        return True
    return interrupt.kind is InterruptKind.BORED and interrupt.confidence >= thresholds.bored


def _safety_mode(signals: SignalBundle, t: RoutingThresholds) -> AgentMode | None:
    safety = signals.safety
    if safety.level is SafetyLevel.SENTRY and safety.confidence >= t.sentry:
        return AgentMode.SENTRY
    if safety.level is SafetyLevel.FIREFIGHTER and safety.confidence >= t.firefighter:
        return AgentMode.FIREFIGHTER
    depth = signals.topic_depth
    if (
        depth.value is TopicDepth.NEED_SUPPORT
        and depth.confidence >= t.need_support
        and signals.risk_score >= t.need_support_risk
    ):
        return AgentMode.FIREFIGHTER
    return None


def route(
    signals: SignalBundle,
    state: ChatState,
    *,
    force_mode: AgentMode | None = None,
    thresholds: RoutingThresholds | None = None,
) -> RoutingDecision:
    """Select the agent mode for this turn. Never mutates `state`."""
    t = thresholds or RoutingThresholds.from_settings()

    safety_mode = _safety_mode(signals, t)
    if safety_mode is not None:
        # Safety outcomes ignore force_mode.
        preempt = None
        if state.supervisor.active is not None and state.supervisor.paused is None:
            preempt = PauseReason(safety_mode.value)
        return RoutingDecision(mode=safety_mode, reason=f"safety_{safety_mode.value}", preempt=preempt)

    investigation = state.investigation_state
    in_progress = investigation is not None and investigation.is_in_progress
    explicit_stop = is_explicit_stop(signals, t)

    if in_progress and explicit_stop:
        return RoutingDecision(
            mode=AgentMode.COMPANION,
            reason="investigation_explicit_stop",
            force_close_investigation=True,
            stop_reply=settings.stop_acknowledgment,
        )

    if force_mode is not None and not force_mode.is_safety:
        return RoutingDecision(mode=force_mode, reason="forced", forced=True)

    if in_progress:
        return RoutingDecision(mode=AgentMode.INVESTIGATOR, reason="investigation_active")

    return RoutingDecision(mode=AgentMode.COMPANION, reason="default")


def force_close_investigation(state: ChatState, *, reason: str) -> None:
    investigation = state.investigation_state
    if investigation is None:
        return
    log_brain_event(
        BrainEvent.INVESTIGATION_FORCE_CLOSED,
        reason=reason,
        status=investigation.status,
        items_completed=len(investigation.completed_item_ids),
        items_total=len(investigation.pending_items),
    )
    state.investigation_state = None


def apply_decision(state: ChatState, decision: RoutingDecision, *, now: datetime | None = None) -> None:
    """Apply the state transitions implied by `decision`."""
    now = now or utc_now()
    if decision.force_close_investigation:
        force_close_investigation(state, reason=decision.reason)
    if decision.preempt is not None:
        paused = supervisor.pause(state.supervisor, decision.preempt, now=now)
        if paused is not None:
            logger.info(
                "session_preempted",
                session_type=paused.machine_type.value,
                reason=decision.preempt.value,
            )
