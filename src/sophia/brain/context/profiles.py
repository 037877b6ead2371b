"""Context profiles: which elements each agent mode gets in its prompt."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal, Union

from sophia.brain.signals import ContextTrigger
from sophia.brain.state import AgentMode, SupervisorState

OnDemand = Union[bool, Literal["on_demand"]]
VectorsSetting = Union[bool, Literal["minimal"]]

__all__ = [
    "ContextProfile",
    "PROFILES",
    "DEFAULT_PROFILE",
    "profile_for",
    "resolve_profile",
    "vector_results_count",
]


@dataclass(frozen=True)
class ContextProfile:
    name: str
    temporal: bool = False
    plan_metadata: bool = False
    plan_json: OnDemand = False
    actions_summary: bool = False
    actions_details: OnDemand = False
    identity: bool = False
    vectors: VectorsSetting = False
    facts: bool = False
    candidates: bool = False
    short_term: bool = False
    history_depth: int = 0
    vitals: bool = False
    addons: bool = True

    @property
    def needs_plan(self) -> bool:
        return bool(
            self.plan_metadata or self.plan_json or self.actions_summary or self.actions_details
        )


PROFILES: dict[str, ContextProfile] = {
    "companion": ContextProfile(
        name="companion",
        temporal=True,
        plan_metadata=True,
        actions_summary=True,
        vectors=True,
        facts=True,
        candidates=True,
        short_term=True,
        history_depth=15,
        vitals=True,
    ),
    "architect": ContextProfile(
        name="architect",
        temporal=True,
        plan_metadata=True,
        plan_json="on_demand",
        actions_summary=True,
        actions_details="on_demand",
        identity=True,
        vectors=True,
        facts=True,
        candidates=True,
        short_term=True,
        history_depth=10,
    ),
    "investigator": ContextProfile(
        name="investigator",
        temporal=True,
        plan_metadata=True,
        actions_summary=True,
        history_depth=15,
        vitals=True,
    ),
    "firefighter": ContextProfile(
        name="firefighter",
        temporal=True,
        vectors="minimal",
        short_term=True,
        history_depth=5,
    ),
    "sentry": ContextProfile(name="sentry", addons=False),
}

DEFAULT_PROFILE = ContextProfile(name="default", temporal=True, history_depth=5)

_PLAN_JSON_TRIGGERS = frozenset(
    {
        ContextTrigger.CREATE_ACTION,
        ContextTrigger.UPDATE_ACTION,
        ContextTrigger.PLAN_DISCUSSION,
        ContextTrigger.BREAKDOWN,
    }
)
_ACTIONS_DETAILS_TRIGGERS = frozenset(
    {ContextTrigger.CREATE_ACTION, ContextTrigger.UPDATE_ACTION, ContextTrigger.BREAKDOWN}
)


def profile_for(mode: AgentMode, state: SupervisorState | None = None) -> ContextProfile:
    """Profile for `mode`; companion switches to architect while a tool flow runs."""
    if mode is AgentMode.COMPANION and state is not None:
        active = state.active
        if active is not None and active.session_type.is_tool_flow:
            return PROFILES["architect"]
    return PROFILES.get(mode.value, DEFAULT_PROFILE)


def resolve_profile(
    profile: ContextProfile, triggers: frozenset[ContextTrigger] | set[ContextTrigger]
) -> ContextProfile:
    """Turn "on_demand" elements into plain booleans for this turn."""
    plan_json = profile.plan_json
    if plan_json == "on_demand":
        plan_json = bool(_PLAN_JSON_TRIGGERS & set(triggers))
    actions_details = profile.actions_details
    if actions_details == "on_demand":
        actions_details = bool(_ACTIONS_DETAILS_TRIGGERS & set(triggers))
    return replace(profile, plan_json=plan_json, actions_details=actions_details)


def vector_results_count(profile: ContextProfile) -> int:
    if profile.vectors == "minimal":
        return 2
    return 5 if profile.vectors else 0
