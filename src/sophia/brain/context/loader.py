"""Profile-driven context loading for agent prompts.

Independent reads (plan, identity, facts, vectors, vitals) run concurrently in
one anyio task group; action summaries/details and the plan JSON wait on the
plan lookup because they need its id. A failing element is logged and left
out: context is best-effort and never fails a turn.
"""

from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, Sequence

import anyio

from sophia.backends.protocols import MemoryHit, MemorySearch
from sophia.brain.addons import render_addons
from sophia.brain.context.profiles import ContextProfile, vector_results_count
from sophia.brain.state import ChatState, utc_now
from sophia.config import settings
from sophia.observability.logging import get_logger
from sophia.observability.metrics import CONTEXT_LOAD_SECONDS

logger = get_logger(__name__)

__all__ = [
    "PlanSnapshot",
    "ActionSnapshot",
    "VitalSnapshot",
    "ContextSource",
    "LoadedContext",
    "ContextMetrics",
    "ContextLoadResult",
    "ContextLoader",
    "build_context_string",
]

_WEEKDAYS = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]


@dataclass(frozen=True)
class PlanSnapshot:
    plan_id: str
    title: str
    status: str = "active"
    deep_why: str | None = None
    content: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionSnapshot:
    action_id: str
    title: str
    status: str = "active"
    description: str | None = None
    tracking_type: str = "boolean"
    target: float | None = None
    current: float | None = None
    unit: str | None = None


@dataclass(frozen=True)
class VitalSnapshot:
    name: str
    current: float | None = None
    target: float | None = None
    unit: str | None = None


class ContextSource(Protocol):
    """Read-only domain lookups used to build prompt context."""

    async def get_active_plan(self, user_id: str) -> PlanSnapshot | None: ...

    async def get_plan_actions(self, plan_id: str) -> list[ActionSnapshot]: ...

    async def get_vital_signs(self, user_id: str) -> list[VitalSnapshot]: ...

    async def get_profile_facts(self, user_id: str) -> dict[str, str]: ...

    async def get_identity_pillars(self, user_id: str) -> list[str]: ...


@dataclass
class LoadedContext:
    temporal: str | None = None
    facts: str | None = None
    short_term: str | None = None
    recent_turns: str | None = None
    plan_metadata: str | None = None
    plan_json: str | None = None
    actions_summary: str | None = None
    actions_details: str | None = None
    vitals: str | None = None
    identity: str | None = None
    vectors: str | None = None
    candidates: str | None = None
    addons: str | None = None

    def loaded_elements(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name)]

    def total_chars(self) -> int:
        return sum(len(getattr(self, f.name) or "") for f in fields(self))


@dataclass(frozen=True)
class ContextMetrics:
    elements_loaded: list[str]
    load_ms: float
    estimated_tokens: int


@dataclass(frozen=True)
class ContextLoadResult:
    context: LoadedContext
    profile: ContextProfile
    metrics: ContextMetrics


def build_context_string(loaded: LoadedContext) -> str:
    """Flatten loaded elements into one prompt block in a fixed order."""
    parts: list[str] = []
    for value in (
        loaded.temporal,
        loaded.facts,
        loaded.short_term,
        loaded.recent_turns,
        loaded.plan_metadata,
        loaded.plan_json,
        loaded.actions_summary,
        loaded.actions_details,
        loaded.vitals,
        loaded.identity,
    ):
        if value:
            parts.append(value)
    if loaded.vectors:
        parts.append(f"=== SOUVENIRS / CONTEXTE (FORGE) ===\n{loaded.vectors}")
    if loaded.candidates:
        parts.append(loaded.candidates)
    if loaded.addons:
        parts.append(loaded.addons)
    return "\n\n".join(parts).strip()


def _format_number(value: float | None) -> str:
    if value is None:
        return "?"
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def format_temporal(now: datetime) -> str:
    return (
        "=== REPÈRES TEMPORELS ===\n"
        f"Nous sommes {_WEEKDAYS[now.weekday()]} {now:%d/%m/%Y}, il est {now:%H:%M} (UTC)."
    )


def format_recent_turns(history: Sequence[dict[str, Any]], depth: int, max_chars: int) -> str | None:
    if depth <= 0:
        return None
    turns = list(history)[-depth:]
    if not turns:
        return None
    lines = []
    for turn in turns:
        role = "Sophia" if turn.get("role") == "assistant" else "Utilisateur"
        content = " ".join(str(turn.get("content", "")).split())[:max_chars]
        lines.append(f"{role}: {content}")
    return f"=== HISTORIQUE RÉCENT ({len(turns)} DERNIERS MESSAGES) ===\n" + "\n".join(lines)


def format_plan_metadata(plan: PlanSnapshot) -> str:
    lines = ["=== PLAN ACTUEL ===", f"Titre: {plan.title}", f"Statut: {plan.status}"]
    if plan.deep_why:
        lines.append(f"Pourquoi profond: {plan.deep_why}")
    return "\n".join(lines)


def format_actions_summary(actions: Sequence[ActionSnapshot]) -> str | None:
    if not actions:
        return None
    lines = ["=== ACTIONS DU PLAN ==="]
    for action in actions:
        progress = ""
        if action.tracking_type == "counter":
            unit = f" {action.unit}" if action.unit else ""
            progress = f", {_format_number(action.current)}/{_format_number(action.target)}{unit}"
        lines.append(f"- {action.title} ({action.status}{progress})")
    return "\n".join(lines)


def format_actions_details(actions: Sequence[ActionSnapshot]) -> str | None:
    if not actions:
        return None
    lines = ["=== DÉTAILS DES ACTIONS ==="]
    for action in actions:
        lines.append(f"- [{action.action_id}] {action.title}: {action.description or '(pas de description)'}")
    return "\n".join(lines)


def format_vitals(vitals: Sequence[VitalSnapshot]) -> str | None:
    if not vitals:
        return None
    lines = ["=== SIGNES VITAUX ==="]
    for vital in vitals:
        unit = f" {vital.unit}" if vital.unit else ""
        lines.append(
            f"- {vital.name}: {_format_number(vital.current)}{unit} (cible {_format_number(vital.target)}{unit})"
        )
    return "\n".join(lines)


def format_facts(facts: dict[str, str]) -> str | None:
    if not facts:
        return None
    lines = ["=== FAITS UTILISATEUR ==="] + [f"- {key}: {value}" for key, value in facts.items()]
    return "\n".join(lines)


def format_identity(pillars: Sequence[str]) -> str | None:
    if not pillars:
        return None
    return "=== PILIERS DE L'IDENTITÉ (TEMPLE) ===\n" + "\n".join(f"- {p}" for p in pillars)


def format_memories(hits: Sequence[MemoryHit]) -> str | None:
    if not hits:
        return None
    return "\n".join(f"- {hit.content}" for hit in hits)


def format_candidates(state: ChatState) -> str | None:
    active = state.supervisor.active
    if active is None:
        return None
    lines = [
        "=== SESSION ACTIVE ===",
        f"- Type: {active.session_type.value}",
        f"- Phase: {active.phase.value}",
    ]
    if active.action_target:
        lines.append(f"- Cible: {active.action_target}")
    if active.candidate:
        lines.append(f"- Brouillon: {json.dumps(active.candidate, ensure_ascii=False, default=str)}")
    return "\n".join(lines)


class ContextLoader:
    """Loads the elements a `ContextProfile` asks for."""

    def __init__(self, source: ContextSource, memory: MemorySearch | None = None) -> None:
        self.source = source
        self.memory = memory

    async def _safe(self, name: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await loader()
        except Exception as exc:  # noqa: BLE001 - context is best-effort
            logger.warning("context_element_failed", element=name, error=str(exc)[:300])
            return None

    async def load(
        self,
        *,
        user_id: str,
        profile: ContextProfile,
        state: ChatState,
        message: str,
        history: Sequence[dict[str, Any]] = (),
        now: datetime | None = None,
    ) -> ContextLoadResult:
        """Load context for an already-resolved profile (no "on_demand" left)."""
        start = time.perf_counter()
        now = now or utc_now()
        context = LoadedContext()

        async def plan_branch() -> None:
            if not profile.needs_plan:
                return
            plan = await self._safe("plan_metadata", lambda: self.source.get_active_plan(user_id))
            if plan is None:
                return
            if profile.plan_metadata:
                context.plan_metadata = format_plan_metadata(plan)
            if profile.plan_json is True and plan.content:
                context.plan_json = "=== PLAN COMPLET (JSON) ===\n" + json.dumps(
                    plan.content, ensure_ascii=False, default=str
                )
            if profile.actions_summary or profile.actions_details is True:
                actions = await self._safe(
                    "actions", lambda: self.source.get_plan_actions(plan.plan_id)
                )
                if actions:
                    if profile.actions_summary:
                        context.actions_summary = format_actions_summary(actions)
                    if profile.actions_details is True:
                        context.actions_details = format_actions_details(actions)

        async def facts_branch() -> None:
            facts = await self._safe("facts", lambda: self.source.get_profile_facts(user_id))
            context.facts = format_facts(facts or {})

        async def identity_branch() -> None:
            pillars = await self._safe("identity", lambda: self.source.get_identity_pillars(user_id))
            context.identity = format_identity(pillars or [])

        async def vitals_branch() -> None:
            vitals = await self._safe("vitals", lambda: self.source.get_vital_signs(user_id))
            context.vitals = format_vitals(vitals or [])

        async def vectors_branch() -> None:
            count = vector_results_count(profile)
            if count == 0 or self.memory is None or not message.strip():
                return
            hits = await self._safe(
                "vectors",
                lambda: self.memory.search_memories(
                    user_id=user_id, query=message, max_results=count
                ),
            )
            context.vectors = format_memories(hits or [])

        async with anyio.create_task_group() as tg:
            tg.start_soon(plan_branch)
            if profile.facts:
                tg.start_soon(facts_branch)
            if profile.identity:
                tg.start_soon(identity_branch)
            if profile.vitals:
                tg.start_soon(vitals_branch)
            if profile.vectors:
                tg.start_soon(vectors_branch)

        _fill_local_elements(context, profile, state, history, now)

        elapsed = time.perf_counter() - start
        CONTEXT_LOAD_SECONDS.labels(profile=profile.name).observe(elapsed)
        metrics = _metrics(context, elapsed * 1000)
        logger.debug(
            "context_loaded",
            profile=profile.name,
            elements=metrics.elements_loaded,
            load_ms=metrics.load_ms,
            estimated_tokens=metrics.estimated_tokens,
        )
        return ContextLoadResult(context=context, profile=profile, metrics=metrics)

    def refresh(
        self,
        result: ContextLoadResult,
        *,
        state: ChatState,
        history: Sequence[dict[str, Any]] = (),
        now: datetime | None = None,
    ) -> ContextLoadResult:
        """Recompute the state-derived elements of an earlier load.

        Used after routing changed the state (session started, add-on set)
        while the profile stayed the same, so stored reads are not repeated.
        """
        context = replace(result.context)
        _fill_local_elements(context, result.profile, state, history, now or utc_now())
        metrics = _metrics(context, result.metrics.load_ms)
        return ContextLoadResult(context=context, profile=result.profile, metrics=metrics)


def _fill_local_elements(
    context: LoadedContext,
    profile: ContextProfile,
    state: ChatState,
    history: Sequence[dict[str, Any]],
    now: datetime,
) -> None:
    context.temporal = format_temporal(now) if profile.temporal else None
    context.short_term = None
    if profile.short_term and state.short_term_context.strip():
        context.short_term = (
            "=== FIL ROUGE (CONTEXTE COURT TERME) ===\n" + state.short_term_context.strip()
        )
    context.recent_turns = format_recent_turns(
        history, profile.history_depth, settings.history_turn_max_chars
    )
    context.candidates = format_candidates(state) if profile.candidates else None
    context.addons = None
    if profile.addons:
        rendered = render_addons(state.supervisor)
        context.addons = "\n\n".join(rendered) if rendered else None


def _metrics(context: LoadedContext, load_ms: float) -> ContextMetrics:
    return ContextMetrics(
        elements_loaded=context.loaded_elements(),
        load_ms=round(load_ms, 2),
        estimated_tokens=math.ceil(context.total_chars() / 4),
    )
