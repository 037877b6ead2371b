"""Single-active-flow supervisor.

At most one `SupervisorSession` is active. A request to start a different
flow while one is active (or while a preempted session is parked, or while a
relaunch question awaits an answer) never replaces anything: it is routed
into the deferred-topic queue instead.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping

from sophia.brain import deferred_topics
from sophia.brain.deferred_topics import DeferralOutcome, targets_match
from sophia.brain.state import (
    AgentMode,
    ChatState,
    FlowPhase,
    MachineType,
    PausedMachineState,
    PauseReason,
    ResumeNotice,
    SessionType,
    SupervisorSession,
    SupervisorState,
    machine_type_for_session,
    session_type_for_machine,
    utc_now,
)
from sophia.observability.logging import get_logger
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

__all__ = [
    "UpsertOutcome",
    "UpsertResult",
    "upsert",
    "request_session",
    "pause",
    "resume",
    "close",
    "close_if_turn_limit",
    "clear_one_shots",
    "is_magic_reset",
    "magic_reset",
]

_MAGIC_WORDS = frozenset({"abracadabra", "abrakadabra"})


class UpsertOutcome(str, Enum):
    STARTED = "started"
    UPDATED = "updated"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class UpsertResult:
    outcome: UpsertOutcome
    session: SupervisorSession | None
    deferral: DeferralOutcome | None = None


def _defer(
    state: SupervisorState,
    session_type: SessionType,
    action_target: str | None,
    summary: str | None,
    now: datetime,
) -> UpsertResult:
    machine_type = machine_type_for_session(session_type)
    deferral = deferred_topics.defer_signal(
        state.deferred,
        machine_type,
        action_target,
        summary or machine_type.value,
        now=now,
    )
    return UpsertResult(UpsertOutcome.DEFERRED, state.active, deferral)


def upsert(
    state: SupervisorState,
    session_type: SessionType,
    candidate: dict[str, Any] | None = None,
    *,
    action_target: str | None = None,
    phase: FlowPhase | None = None,
    summary: str | None = None,
    now: datetime | None = None,
) -> UpsertResult:
    """Create or replace the active session of `session_type`.

    A different active type is never overwritten; the request is deferred.
    """
    now = now or utc_now()
    active = state.active

    if active is not None and active.session_type is not session_type:
        return _defer(state, session_type, action_target, summary, now)

    if active is not None:
        if candidate is not None:
            active.candidate = dict(candidate)
        if phase is not None:
            active.phase = phase
        if action_target is not None:
            active.action_target = action_target
        active.last_active_at = now
        return UpsertResult(UpsertOutcome.UPDATED, active)

    session = SupervisorSession(
        session_type=session_type,
        phase=phase or FlowPhase.EXPLORING,
        candidate=dict(candidate or {}),
        action_target=action_target,
        started_at=now,
        last_active_at=now,
    )
    state.active = session
    state.flow_just_closed_normally = False
    state.flow_just_closed_aborted = False
    log_brain_event(
        BrainEvent.SESSION_STARTED,
        session_id=session.session_id,
        session_type=session_type.value,
    )
    return UpsertResult(UpsertOutcome.STARTED, session)


def request_session(
    state: SupervisorState,
    machine_type: MachineType,
    action_target: str | None,
    summary: str,
    *,
    now: datetime | None = None,
) -> UpsertResult:
    """Handle a machine signal detected on this turn.

    - same flow already active (same type, compatible target): refresh it
    - another flow active, a safety snapshot parked, or a consent question
      pending: defer
    - otherwise: start the flow
    """
    now = now or utc_now()
    session_type = session_type_for_machine(machine_type)
    active = state.active

    if active is not None:
        same_type = active.session_type is session_type
        same_target = (
            not machine_type.is_action_scoped
            or not action_target
            or not active.action_target
            or targets_match(active.action_target, action_target)
        )
        if same_type and same_target:
            active.last_active_at = now
            return UpsertResult(UpsertOutcome.UPDATED, active)
        return _defer(state, session_type, action_target, summary, now)

    if state.paused is not None or state.pending_relaunch is not None:
        return _defer(state, session_type, action_target, summary, now)

    return upsert(
        state,
        session_type,
        {"summary": summary},
        action_target=action_target,
        now=now,
    )


def pause(
    state: SupervisorState, reason: PauseReason, *, now: datetime | None = None
) -> PausedMachineState | None:
    """Snapshot the active session and clear the slot (safety preemption)."""
    active = state.active
    if active is None or state.paused is not None:
        return None
    now = now or utc_now()
    snapshot = PausedMachineState(
        machine_type=active.session_type,
        session_id=active.session_id,
        action_target=active.action_target,
        candidate_snapshot=dict(active.candidate),
        phase=active.phase,
        started_at=active.started_at,
        turn_count=active.turn_count,
        paused_at=now,
        reason=reason,
    )
    state.paused = snapshot
    state.active = None
    log_brain_event(
        BrainEvent.SESSION_PAUSED,
        session_id=snapshot.session_id,
        session_type=snapshot.machine_type.value,
        reason=reason.value,
    )
    return snapshot


def resume(state: SupervisorState) -> SupervisorSession | None:
    """Restore the parked snapshot verbatim once the safety flow is over."""
    snapshot = state.paused
    if snapshot is None or state.active is not None:
        return None
    session = SupervisorSession(
        session_id=snapshot.session_id,
        session_type=snapshot.machine_type,
        phase=snapshot.phase,
        candidate=dict(snapshot.candidate_snapshot),
        action_target=snapshot.action_target,
        started_at=snapshot.started_at,
        last_active_at=snapshot.paused_at,
        turn_count=snapshot.turn_count,
    )
    state.active = session
    state.paused = None
    state.resume_from_safety = ResumeNotice(
        session_type=session.session_type,
        action_target=session.action_target,
        reason=snapshot.reason,
    )
    log_brain_event(
        BrainEvent.SESSION_RESUMED,
        session_id=session.session_id,
        session_type=session.session_type.value,
    )
    return session


def close(state: SupervisorState, outcome: Literal["completed", "aborted"]) -> SupervisorSession | None:
    """Clear the active session and flag how it ended for next-turn relaunch logic."""
    closed = state.active
    if closed is None:
        return None
    state.active = None
    state.flow_just_closed_normally = outcome == "completed"
    state.flow_just_closed_aborted = outcome == "aborted"
    log_brain_event(
        BrainEvent.SESSION_CLOSED,
        session_id=closed.session_id,
        session_type=closed.session_type.value,
        outcome=outcome,
    )
    return closed


def close_if_turn_limit(
    state: SupervisorState, max_turns: Mapping[SessionType, int]
) -> SupervisorSession | None:
    """Close the active session as completed once it used up its turns.

    Session types absent from `max_turns` run until the agent ends them.
    """
    active = state.active
    if active is None:
        return None
    limit = max_turns.get(active.session_type)
    if limit is None or active.turn_count < limit:
        return None
    logger.info(
        "session_turn_limit_reached",
        session_id=active.session_id,
        session_type=active.session_type.value,
        turn_count=active.turn_count,
    )
    return close(state, "completed")


def clear_one_shots(state: SupervisorState) -> None:
    """Drop markers meant for exactly one agent call."""
    state.deferred_signal_addon = None
    state.resume_from_safety = None
    state.ask_relaunch_consent = False


def _normalize_alpha(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", re.sub(r"[^a-z\s]", " ", stripped)).strip()


def is_magic_reset(message: str) -> bool:
    return _normalize_alpha(message or "") in _MAGIC_WORDS


def magic_reset(state: ChatState) -> None:
    """Wipe every flow, queue and checkup and fall back to companion."""
    state.supervisor = SupervisorState()
    state.investigation_state = None
    state.current_mode = AgentMode.COMPANION
    logger.info("magic_reset_applied")
    log_brain_event(BrainEvent.MAGIC_RESET)
