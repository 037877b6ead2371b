"""Persisted conversation state.

`ChatState` is the single record owned by the brain per (user, scope). The
supervisor runtime that used to live in an untyped key/value bag is the typed
`SupervisorState` below: one optional field per concept (active session,
paused snapshot, deferred queue, pending consent, one-shot markers).

All models round-trip through ``model_dump(mode="json")`` / ``model_validate``
without losing enum values, list order or timestamp precision.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

__all__ = [
    "AgentMode",
    "MachineType",
    "SessionType",
    "FlowPhase",
    "PauseReason",
    "CheckupItem",
    "InvestigationState",
    "SupervisorSession",
    "PausedMachineState",
    "SignalSummary",
    "DeferredTopic",
    "DeferredTopicsState",
    "PendingRelaunchConsent",
    "DeferredSignalAddon",
    "ResumeNotice",
    "SupervisorState",
    "ChatState",
    "utc_now",
    "session_type_for_machine",
    "machine_type_for_session",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgentMode(str, Enum):
    """Closed set of conversational behaviors the router can select."""

    COMPANION = "companion"
    INVESTIGATOR = "investigator"
    FIREFIGHTER = "firefighter"
    SENTRY = "sentry"

    @property
    def is_safety(self) -> bool:
        return self in (AgentMode.FIREFIGHTER, AgentMode.SENTRY)


class MachineType(str, Enum):
    """Kinds of work that can be deferred while another flow owns the chat."""

    DEEP_REASONS = "deep_reasons"
    TOPIC_LIGHT = "topic_light"
    TOPIC_SERIOUS = "topic_serious"
    CREATE_ACTION = "create_action"
    UPDATE_ACTION = "update_action"
    BREAKDOWN_ACTION = "breakdown_action"

    @property
    def is_action_scoped(self) -> bool:
        """Tool machines are keyed by the action they target, not just their kind."""
        return self in (
            MachineType.CREATE_ACTION,
            MachineType.UPDATE_ACTION,
            MachineType.BREAKDOWN_ACTION,
        )


class SessionType(str, Enum):
    CREATE_ACTION_FLOW = "create_action_flow"
    UPDATE_ACTION_FLOW = "update_action_flow"
    BREAKDOWN_ACTION_FLOW = "breakdown_action_flow"
    DEEP_REASONS_EXPLORATION = "deep_reasons_exploration"
    TOPIC_LIGHT = "topic_light"
    TOPIC_SERIOUS = "topic_serious"

    @property
    def is_tool_flow(self) -> bool:
        return self in (
            SessionType.CREATE_ACTION_FLOW,
            SessionType.UPDATE_ACTION_FLOW,
            SessionType.BREAKDOWN_ACTION_FLOW,
        )


_SESSION_FOR_MACHINE: dict[MachineType, SessionType] = {
    MachineType.CREATE_ACTION: SessionType.CREATE_ACTION_FLOW,
    MachineType.UPDATE_ACTION: SessionType.UPDATE_ACTION_FLOW,
    MachineType.BREAKDOWN_ACTION: SessionType.BREAKDOWN_ACTION_FLOW,
    MachineType.DEEP_REASONS: SessionType.DEEP_REASONS_EXPLORATION,
    MachineType.TOPIC_LIGHT: SessionType.TOPIC_LIGHT,
    MachineType.TOPIC_SERIOUS: SessionType.TOPIC_SERIOUS,
}
_MACHINE_FOR_SESSION: dict[SessionType, MachineType] = {
    session: machine for machine, session in _SESSION_FOR_MACHINE.items()
}


def session_type_for_machine(machine_type: MachineType) -> SessionType:
    return _SESSION_FOR_MACHINE[machine_type]


def machine_type_for_session(session_type: SessionType) -> MachineType:
    return _MACHINE_FOR_SESSION[session_type]


class FlowPhase(str, Enum):
    EXPLORING = "exploring"
    AWAITING_CONFIRM = "awaiting_confirm"
    DONE = "done"


class PauseReason(str, Enum):
    SENTRY = "sentry"
    FIREFIGHTER = "firefighter"


class CheckupItem(BaseModel):
    id: str
    kind: Literal["action", "vital", "framework"] = "action"
    title: str
    tracking_type: Literal["boolean", "counter"] = "boolean"
    target: float | None = None
    current: float | None = None
    unit: str | None = None


class InvestigationState(BaseModel):
    """An in-progress checkup: pending items walked with a cursor."""

    status: Literal["init", "checking", "closing", "post_checkup", "post_checkup_done"] = "init"
    pending_items: list[CheckupItem] = Field(default_factory=list)
    current_item_index: int = 0
    completed_item_ids: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)

    @property
    def is_in_progress(self) -> bool:
        return self.status not in ("post_checkup", "post_checkup_done")

    @property
    def current_item(self) -> CheckupItem | None:
        if 0 <= self.current_item_index < len(self.pending_items):
            return self.pending_items[self.current_item_index]
        return None


class SupervisorSession(BaseModel):
    session_id: str = Field(default_factory=lambda: f"sess_{uuid4().hex[:12]}")
    session_type: SessionType
    phase: FlowPhase = FlowPhase.EXPLORING
    candidate: dict[str, Any] = Field(default_factory=dict)
    action_target: str | None = None
    started_at: datetime = Field(default_factory=utc_now)
    last_active_at: datetime = Field(default_factory=utc_now)
    turn_count: int = 0


class PausedMachineState(BaseModel):
    """Snapshot of the session a safety flow preempted."""

    machine_type: SessionType
    session_id: str
    action_target: str | None = None
    candidate_snapshot: dict[str, Any] = Field(default_factory=dict)
    phase: FlowPhase = FlowPhase.EXPLORING
    started_at: datetime
    turn_count: int = 0
    paused_at: datetime
    reason: PauseReason


class SignalSummary(BaseModel):
    summary: str
    timestamp: datetime


class DeferredTopic(BaseModel):
    id: str
    machine_type: MachineType
    action_target: str | None = None
    signal_summaries: list[SignalSummary] = Field(default_factory=list)
    trigger_count: int = 1
    created_at: datetime
    last_updated_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @property
    def latest_summary(self) -> str | None:
        return self.signal_summaries[-1].summary if self.signal_summaries else None


class DeferredTopicsState(BaseModel):
    topics: list[DeferredTopic] = Field(default_factory=list)
    paused_until: datetime | None = None
    last_processed_at: datetime | None = None


class PendingRelaunchConsent(BaseModel):
    machine_type: MachineType
    action_target: str | None = None
    summaries: list[str] = Field(default_factory=list)
    created_at: datetime
    unclear_reask_count: int = Field(default=0, ge=0, le=1)


class DeferredSignalAddon(BaseModel):
    """One-shot instruction telling the next agent call to acknowledge a deferral."""

    machine_type: MachineType
    action_target: str | None = None
    summary: str
    level: Literal["full", "subtle"]


class ResumeNotice(BaseModel):
    """One-shot marker set when a preempted session is restored."""

    session_type: SessionType
    action_target: str | None = None
    reason: PauseReason


class SupervisorState(BaseModel):
    active: SupervisorSession | None = None
    paused: PausedMachineState | None = None
    deferred: DeferredTopicsState = Field(default_factory=DeferredTopicsState)
    pending_relaunch: PendingRelaunchConsent | None = None
    flow_just_closed_normally: bool = False
    flow_just_closed_aborted: bool = False
    ask_relaunch_consent: bool = False
    deferred_signal_addon: DeferredSignalAddon | None = None
    resume_from_safety: ResumeNotice | None = None


class ChatState(BaseModel):
    """Per (user, scope) conversation state. Created lazily, cleared but never deleted."""

    current_mode: AgentMode = AgentMode.COMPANION
    risk_level: int = Field(default=0, ge=0, le=10)
    investigation_state: InvestigationState | None = None
    short_term_context: str = ""
    supervisor: SupervisorState = Field(default_factory=SupervisorState)
    unprocessed_msg_count: int = 0
    last_processed_at: datetime | None = None

    @classmethod
    def initial(cls) -> "ChatState":
        return cls()

    def clear(self) -> None:
        """Reset every field to its initial value in place."""
        fresh = ChatState.initial()
        for name in type(self).model_fields:
            setattr(self, name, getattr(fresh, name))
