"""Structured signals extracted from a user turn.

The classifier fills a `SignalBundle`; everything downstream (router, deferral,
consent resolution, context triggers) reads signals only through this module.
Validation is lenient: enum casing is normalized and confidences are clamped,
so a slightly sloppy model answer still yields usable signals.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from sophia.brain.state import MachineType

__all__ = [
    "SafetyLevel",
    "InterruptKind",
    "TopicDepth",
    "UserIntent",
    "ConsentDecision",
    "ContextTrigger",
    "SafetySignal",
    "InterruptSignal",
    "TopicDepthSignal",
    "CreateActionSignal",
    "UpdateActionSignal",
    "BreakdownActionSignal",
    "DeepReasonsSignal",
    "PendingResolutionSignal",
    "SignalBundle",
    "DetectedMachine",
    "default_signals",
    "detect_machine_type",
    "on_demand_triggers",
]


_CONFIDENCE_WORDS = {"high": 0.9, "medium": 0.7, "low": 0.5}


def _clamp_unit(value: Any) -> float:
    if isinstance(value, str) and value.strip().lower() in _CONFIDENCE_WORDS:
        return _CONFIDENCE_WORDS[value.strip().lower()]
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(1.0, max(0.0, number))


def _clamp_risk(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(10.0, max(0.0, number))


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


Confidence = Annotated[float, BeforeValidator(_clamp_unit)]


class SafetyLevel(str, Enum):
    NONE = "NONE"
    FIREFIGHTER = "FIREFIGHTER"
    SENTRY = "SENTRY"


class InterruptKind(str, Enum):
    NONE = "NONE"
    EXPLICIT_STOP = "EXPLICIT_STOP"
    BORED = "BORED"
    SWITCH_TOPIC = "SWITCH_TOPIC"
    DIGRESSION = "DIGRESSION"


class TopicDepth(str, Enum):
    NONE = "NONE"
    NEED_SUPPORT = "NEED_SUPPORT"
    SERIOUS = "SERIOUS"
    LIGHT = "LIGHT"


class UserIntent(str, Enum):
    CHECKUP = "CHECKUP"
    EMOTIONAL_SUPPORT = "EMOTIONAL_SUPPORT"
    SMALL_TALK = "SMALL_TALK"
    PREFERENCE = "PREFERENCE"
    UNKNOWN = "UNKNOWN"


class ConsentDecision(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    UNCLEAR = "unclear"


class ContextTrigger(str, Enum):
    """Classifier-derived reasons to load on-demand context elements."""

    CREATE_ACTION = "create_action_intent"
    UPDATE_ACTION = "update_action_intent"
    BREAKDOWN = "breakdown_recommended"
    PLAN_DISCUSSION = "plan_discussion_intent"


class _Signal(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SafetySignal(_Signal):
    level: Annotated[SafetyLevel, BeforeValidator(_upper)] = SafetyLevel.NONE
    confidence: Confidence = 0.9


class InterruptSignal(_Signal):
    kind: Annotated[InterruptKind, BeforeValidator(_upper)] = InterruptKind.NONE
    confidence: Confidence = 0.9
    deferred_topic_formalized: str | None = None


class TopicDepthSignal(_Signal):
    value: Annotated[TopicDepth, BeforeValidator(_upper)] = TopicDepth.NONE
    confidence: Confidence = 0.9


class CreateActionSignal(_Signal):
    intent_strength: Literal["explicit", "implicit", "none"] = "none"
    action_label_hint: str | None = None
    confidence: Confidence = 0.0

    @field_validator("intent_strength", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class UpdateActionSignal(_Signal):
    detected: bool = False
    target_hint: str | None = None
    change_type: str | None = None
    new_value_hint: str | None = None
    confidence: Confidence = 0.0


class BreakdownActionSignal(_Signal):
    detected: bool = False
    target_hint: str | None = None
    blocker_hint: str | None = None
    confidence: Confidence = 0.0


class DeepReasonsSignal(_Signal):
    opportunity: bool = False
    action_hint: str | None = None
    confidence: Confidence = 0.0


class PendingResolutionSignal(_Signal):
    status: Literal["resolved", "unresolved"] = "unresolved"
    pending_type: Literal["relaunch_consent"] = "relaunch_consent"
    decision: ConsentDecision = Field(default=ConsentDecision.UNCLEAR, alias="decision_code")
    confidence: Confidence = 0.0

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("decision", mode="before")
    @classmethod
    def _strip_namespace(cls, v: Any) -> Any:
        # Models sometimes answer "relaunch.accept" / "common.unclear".
        if isinstance(v, str):
            return v.strip().lower().rsplit(".", 1)[-1]
        return v


class SignalBundle(_Signal):
    safety: SafetySignal = Field(default_factory=SafetySignal)
    interrupt: InterruptSignal = Field(default_factory=InterruptSignal)
    topic_depth: TopicDepthSignal = Field(default_factory=TopicDepthSignal)
    risk_score: Annotated[float, BeforeValidator(_clamp_risk)] = 0.0
    user_intent_primary: Annotated[UserIntent, BeforeValidator(_upper)] = UserIntent.UNKNOWN
    user_intent_confidence: Confidence = 0.0
    create_action: CreateActionSignal = Field(default_factory=CreateActionSignal)
    update_action: UpdateActionSignal = Field(default_factory=UpdateActionSignal)
    breakdown_action: BreakdownActionSignal = Field(default_factory=BreakdownActionSignal)
    deep_reasons: DeepReasonsSignal = Field(default_factory=DeepReasonsSignal)
    plan_discussion_intent: bool = False
    pending_resolution: PendingResolutionSignal | None = None


def default_signals() -> SignalBundle:
    """Safe bundle used whenever extraction fails: no escalation, no interrupt."""
    return SignalBundle()


@dataclass(frozen=True)
class DetectedMachine:
    machine_type: MachineType
    action_target: str | None
    summary_hint: str


def detect_machine_type(signals: SignalBundle, threshold: float = 0.6) -> DetectedMachine | None:
    """Map signals to the flow they would start, tool flows first.

    Priority: breakdown > create > update > deep reasons > topic.
    """
    breakdown = signals.breakdown_action
    if breakdown.detected and breakdown.confidence >= threshold:
        label = breakdown.target_hint or "une action"
        hint = (
            f"Blocage sur {label}: {breakdown.blocker_hint}"
            if breakdown.blocker_hint
            else f"Veut débloquer {label}"
        )
        return DetectedMachine(MachineType.BREAKDOWN_ACTION, breakdown.target_hint, hint)

    create = signals.create_action
    if create.intent_strength in ("explicit", "implicit") and create.confidence >= threshold:
        hint = (
            f"Veut créer: {create.action_label_hint}"
            if create.action_label_hint
            else "Veut créer une nouvelle action"
        )
        return DetectedMachine(MachineType.CREATE_ACTION, create.action_label_hint, hint)

    update = signals.update_action
    if update.detected and update.confidence >= threshold:
        change = (
            f" ({update.change_type})"
            if update.change_type and update.change_type != "unknown"
            else ""
        )
        hint = (
            f"Veut modifier {update.target_hint}{change}"
            if update.target_hint
            else f"Veut modifier une action{change}"
        )
        return DetectedMachine(MachineType.UPDATE_ACTION, update.target_hint, hint)

    deep = signals.deep_reasons
    if deep.opportunity and deep.confidence >= threshold:
        hint = (
            f"Blocage motivationnel sur {deep.action_hint}"
            if deep.action_hint
            else "Blocage motivationnel à explorer"
        )
        return DetectedMachine(MachineType.DEEP_REASONS, deep.action_hint, hint)

    depth = signals.topic_depth
    if depth.value is not TopicDepth.NONE and depth.confidence >= threshold:
        topic = signals.interrupt.deferred_topic_formalized
        if depth.value in (TopicDepth.SERIOUS, TopicDepth.NEED_SUPPORT):
            hint = f"Sujet profond: {topic}" if topic else "Sujet profond à explorer"
            return DetectedMachine(MachineType.TOPIC_SERIOUS, topic, hint)
        if depth.value is TopicDepth.LIGHT:
            hint = f"Discussion: {topic}" if topic else "Sujet de conversation"
            return DetectedMachine(MachineType.TOPIC_LIGHT, topic, hint)

    return None


def on_demand_triggers(signals: SignalBundle, threshold: float = 0.6) -> frozenset[ContextTrigger]:
    triggers: set[ContextTrigger] = set()
    if signals.create_action.intent_strength != "none" and signals.create_action.confidence >= threshold:
        triggers.add(ContextTrigger.CREATE_ACTION)
    if signals.update_action.detected and signals.update_action.confidence >= threshold:
        triggers.add(ContextTrigger.UPDATE_ACTION)
    if signals.breakdown_action.detected and signals.breakdown_action.confidence >= threshold:
        triggers.add(ContextTrigger.BREAKDOWN)
    if signals.plan_discussion_intent:
        triggers.add(ContextTrigger.PLAN_DISCUSSION)
    return frozenset(triggers)
