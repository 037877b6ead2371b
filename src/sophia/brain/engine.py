"""Per-turn orchestration: `process_turn` is the single entry point.

A turn works on a copy of the stored `ChatState` and writes it back once,
at the end. Any failure before that write leaves the stored state untouched;
a failure of the write itself is fatal for the turn.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

import anyio

from sophia.backends.protocols import MemorySearch, TextGenerator
from sophia.brain import addons, deferred_topics, relaunch, short_term, supervisor
from sophia.brain.agents import HANDLERS, start_investigation
from sophia.brain.agents.base import AgentHandler, AgentResult, AgentTurn, ProgressTracker
from sophia.brain.classifier import classify_turn
from sophia.brain.context import (
    ContextLoader,
    ContextLoadResult,
    ContextMetrics,
    ContextSource,
    build_context_string,
    profile_for,
    resolve_profile,
)
from sophia.brain.relaunch import ConsentResolution
from sophia.brain.router import RoutingDecision, apply_decision, route
from sophia.brain.signals import (
    ConsentDecision,
    SignalBundle,
    UserIntent,
    detect_machine_type,
    on_demand_triggers,
)
from sophia.brain.state import AgentMode, ChatState, SessionType, utc_now
from sophia.brain.supervisor import UpsertOutcome
from sophia.brain.tool_ack import (
    ToolAckContract,
    ToolExecutionStatus,
    apply_tool_ack,
    build_tool_ack_contract,
)
from sophia.config import settings
from sophia.errors import StatePersistenceError
from sophia.observability.logging import get_logger, get_request_id
from sophia.observability.metrics import HANDLER_FAILURES, TURN_LATENCY, TURNS_TOTAL
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

__all__ = ["StateStore", "TurnDeps", "TurnResult", "process_turn"]


class StateStore(Protocol):
    async def get_state(self, user_id: str, scope: str) -> ChatState | None: ...

    async def update_state(self, user_id: str, scope: str, state: ChatState) -> None: ...


@dataclass
class TurnDeps:
    generator: TextGenerator
    store: StateStore
    context_source: ContextSource
    memory: MemorySearch | None = None
    tools: ProgressTracker | None = None
    handlers: Mapping[AgentMode, AgentHandler] = field(default_factory=lambda: dict(HANDLERS))
    classifier_model: str | None = None


@dataclass(frozen=True)
class TurnResult:
    response_text: str
    next_mode: AgentMode
    tool_ack: ToolAckContract | None = None
    request_id: str | None = None
    routing: RoutingDecision | None = None
    consent: ConsentResolution | None = None
    context_metrics: ContextMetrics | None = None


def _join(*parts: str | None) -> str:
    return "\n\n".join(p.strip() for p in parts if p and p.strip())


async def _load_state(store: StateStore, user_id: str, scope: str) -> ChatState:
    try:
        stored = await store.get_state(user_id, scope)
    except Exception as exc:
        logger.error("state_load_failed", user_id=user_id, scope=scope, error=str(exc)[:300])
        raise StatePersistenceError(f"Could not load chat state for {user_id}/{scope}") from exc
    if stored is None:
        logger.info("chat_state_created", user_id=user_id, scope=scope)
        return ChatState.initial()
    return stored.model_copy(deep=True)


async def _save_state(
    store: StateStore, user_id: str, scope: str, state: ChatState, mode: AgentMode
) -> None:
    try:
        await store.update_state(user_id, scope, state)
    except Exception as exc:
        logger.error("state_persist_failed", user_id=user_id, scope=scope, error=str(exc)[:300])
        TURNS_TOTAL.labels(mode=mode.value, outcome="persist_failed").inc()
        log_brain_event(BrainEvent.TURN_FAILED, user_id=user_id, scope=scope, error=str(exc))
        raise StatePersistenceError(f"Could not persist chat state for {user_id}/{scope}") from exc


def _handle_machine_signal(state: ChatState, signals: SignalBundle, mode: AgentMode, now: datetime) -> None:
    """Start, refresh or defer the flow a machine signal asks for."""
    detected = detect_machine_type(signals, settings.machine_signal_threshold)
    if detected is None:
        return
    sup = state.supervisor
    in_checkup = mode is AgentMode.INVESTIGATOR
    if in_checkup:
        outcome = deferred_topics.defer_signal(
            sup.deferred, detected.machine_type, detected.action_target, detected.summary_hint, now=now
        )
    else:
        result = supervisor.request_session(
            sup, detected.machine_type, detected.action_target, detected.summary_hint, now=now
        )
        if result.outcome is not UpsertOutcome.DEFERRED or result.deferral is None:
            return
        outcome = result.deferral
    sup.deferred_signal_addon = addons.deferred_signal_addon(outcome)


async def _maybe_start_checkup(
    state: ChatState, signals: SignalBundle, decision: RoutingDecision, deps: TurnDeps, user_id: str
) -> RoutingDecision:
    if decision.mode is not AgentMode.COMPANION or decision.forced or decision.short_circuit:
        return decision
    if signals.user_intent_primary is not UserIntent.CHECKUP:
        return decision
    if signals.user_intent_confidence < settings.machine_signal_threshold:
        return decision
    investigation = state.investigation_state
    sup = state.supervisor
    if (investigation is not None and investigation.is_in_progress) or sup.active or sup.pending_relaunch:
        return decision
    try:
        started = await start_investigation(deps.context_source, user_id)
    except Exception as exc:  # noqa: BLE001 - no checkup is a valid outcome
        logger.warning("investigation_start_failed", user_id=user_id, error=str(exc)[:300])
        return decision
    if started is None:
        return decision
    state.investigation_state = started
    return RoutingDecision(mode=AgentMode.INVESTIGATOR, reason="checkup_started")


def _session_turn_limits() -> dict[SessionType, int]:
    return {
        SessionType.TOPIC_LIGHT: settings.topic_light_max_turns,
        SessionType.TOPIC_SERIOUS: settings.topic_serious_max_turns,
    }


def _apply_short_term(state: ChatState, summary: str | None, now: datetime) -> None:
    """Take the refreshed summary (if any) and restart the message count."""
    if summary is not None:
        state.short_term_context = summary
    state.unprocessed_msg_count = 0
    state.last_processed_at = now


def _apply_result(state: ChatState, result: AgentResult, mode: AgentMode) -> AgentMode:
    """Fold handler output into state and return the next mode."""
    sup = state.supervisor
    next_mode = mode

    if result.investigation_state is not None:
        state.investigation_state = result.investigation_state
    if result.investigation_complete:
        next_mode = AgentMode.COMPANION

    update = result.flow_update
    if update is not None and sup.active is not None:
        supervisor.upsert(
            sup,
            sup.active.session_type,
            update.candidate,
            phase=update.phase,
        )
        if update.status == "done":
            supervisor.close(sup, "completed")
        elif update.status == "abandoned":
            supervisor.close(sup, "aborted")

    if result.crisis_resolved:
        next_mode = AgentMode.COMPANION
        supervisor.resume(sup)
    return next_mode


async def process_turn(
    user_id: str,
    scope: str,
    channel: str,
    message: str,
    history: Sequence[dict[str, Any]] | None = None,
    *,
    deps: TurnDeps,
    force_mode: AgentMode | None = None,
    now: datetime | None = None,
) -> TurnResult:
    """Run one user turn end to end and persist the resulting state."""
    start = time.perf_counter()
    now = now or utc_now()
    request_id = get_request_id() or None
    history = list(history or [])
    log = logger.bind(user_id=user_id, scope=scope, channel=channel)

    state = await _load_state(deps.store, user_id, scope)
    sup = state.supervisor

    if supervisor.is_magic_reset(message):
        supervisor.magic_reset(state)
        await _save_state(deps.store, user_id, scope, state, AgentMode.COMPANION)
        TURNS_TOTAL.labels(mode=AgentMode.COMPANION.value, outcome="magic_reset").inc()
        return TurnResult(
            response_text=settings.magic_reset_message,
            next_mode=AgentMode.COMPANION,
            request_id=request_id,
        )

    loader = ContextLoader(deps.context_source, deps.memory)
    pending_question = addons.consent_question(sup.pending_relaunch) if sup.pending_relaunch else None
    prefetch_profile = resolve_profile(profile_for(state.current_mode, sup), frozenset())
    results: dict[str, Any] = {}

    async def _classify() -> None:
        results["signals"] = await classify_turn(
            deps.generator,
            message,
            history,
            state,
            pending_question=pending_question,
            model=deps.classifier_model or settings.classifier_model or None,
        )

    async def _prefetch() -> None:
        results["context"] = await loader.load(
            user_id=user_id,
            profile=prefetch_profile,
            state=state,
            message=message,
            history=history,
            now=now,
        )

    refresh_due = short_term.is_refresh_due(
        state.unprocessed_msg_count, settings.short_term_refresh_every
    )

    async def _summarize() -> None:
        results["short_term"] = await short_term.refresh_short_term(
            deps.generator,
            state.short_term_context,
            history,
            message,
            max_chars=settings.short_term_max_chars,
            timeout=settings.short_term_timeout_seconds,
            model=deps.classifier_model or settings.classifier_model or None,
        )

    async with anyio.create_task_group() as tg:
        tg.start_soon(_classify)
        tg.start_soon(_prefetch)
        if refresh_due:
            tg.start_soon(_summarize)
    signals: SignalBundle = results["signals"]
    if refresh_due:
        _apply_short_term(state, results.get("short_term"), now)
        log_brain_event(
            BrainEvent.SHORT_TERM_REFRESHED,
            user_id=user_id,
            scope=scope,
            updated=results.get("short_term") is not None,
        )
    state.risk_level = int(round(signals.risk_score))

    decision = route(signals, state, force_mode=force_mode)
    # A pending relaunch question is answered before anything else, except
    # during a safety turn where it stays pending.
    consent = None
    if not decision.mode.is_safety:
        consent = relaunch.resolve_consent(sup, message, signals, now=now)
    apply_decision(state, decision, now=now)
    if not decision.mode.is_safety and sup.paused is not None:
        supervisor.resume(sup)
    decision = await _maybe_start_checkup(state, signals, decision, deps, user_id)
    log.info("turn_routed", mode=decision.mode.value, reason=decision.reason)
    log_brain_event(
        BrainEvent.TURN_ROUTED, user_id=user_id, scope=scope, mode=decision.mode.value, reason=decision.reason
    )

    tool_ack: ToolAckContract | None = None
    context_result: ContextLoadResult | None = None
    outcome = "ok"

    if decision.short_circuit:
        text = decision.stop_reply or ""
        next_mode = AgentMode.COMPANION
        supervisor.clear_one_shots(sup)
    else:
        if not decision.mode.is_safety:
            _handle_machine_signal(state, signals, decision.mode, now)
            if sup.active is not None and decision.mode is AgentMode.COMPANION:
                sup.active.turn_count += 1

        profile = resolve_profile(
            profile_for(decision.mode, sup),
            on_demand_triggers(signals, settings.machine_signal_threshold),
        )
        prefetched: ContextLoadResult = results["context"]
        if profile == prefetched.profile:
            context_result = loader.refresh(prefetched, state=state, history=history, now=now)
        else:
            context_result = await loader.load(
                user_id=user_id, profile=profile, state=state, message=message, history=history, now=now
            )

        turn = AgentTurn(
            user_id=user_id,
            scope=scope,
            channel=channel,
            message=message,
            history=history,
            state=state,
            signals=signals,
            context=build_context_string(context_result.context),
            generator=deps.generator,
            tools=deps.tools,
        )
        handler = deps.handlers[decision.mode]
        try:
            result: AgentResult | None = await handler.run(turn)
        except Exception as exc:  # noqa: BLE001 - the user gets the outage template
            log.error("handler_failed", mode=decision.mode.value, error=str(exc)[:300])
            HANDLER_FAILURES.labels(mode=decision.mode.value).inc()
            log_brain_event(
                BrainEvent.HANDLER_FAILED, user_id=user_id, scope=scope, mode=decision.mode.value, error=str(exc)
            )
            result = None
            outcome = "handler_failed"

        # Add-ons were consumed by this call.
        supervisor.clear_one_shots(sup)
        if result is None:
            text = settings.outage_message
            next_mode = AgentMode.COMPANION
            tool_ack = build_tool_ack_contract(ToolExecutionStatus.NONE)
        else:
            next_mode = _apply_result(state, result, decision.mode)
            tool_ack = result.tool_ack or build_tool_ack_contract(ToolExecutionStatus.NONE)
            text = apply_tool_ack(result.text, tool_ack)
        supervisor.close_if_turn_limit(sup, _session_turn_limits())

    if consent is not None:
        if consent.reask:
            text = _join(text, consent.message)
        elif consent.decision is not ConsentDecision.ACCEPT:
            text = _join(consent.message, text)

    offered = relaunch.apply_relaunch(sup, now=now)
    if offered is not None:
        text = _join(text, addons.consent_question(offered))

    state.current_mode = next_mode
    if not refresh_due:
        state.unprocessed_msg_count += 1
        if state.last_processed_at is None:
            state.last_processed_at = now

    await _save_state(deps.store, user_id, scope, state, decision.mode)

    elapsed = time.perf_counter() - start
    TURN_LATENCY.observe(elapsed)
    TURNS_TOTAL.labels(mode=decision.mode.value, outcome=outcome).inc()
    log_brain_event(
        BrainEvent.TURN_COMPLETED,
        user_id=user_id,
        scope=scope,
        duration_ms=int(elapsed * 1000),
        mode=decision.mode.value,
        next_mode=next_mode.value,
        tool_status=tool_ack.status.value if tool_ack else None,
    )
    return TurnResult(
        response_text=text,
        next_mode=next_mode,
        tool_ack=tool_ack,
        request_id=request_id,
        routing=decision,
        consent=consent,
        context_metrics=context_result.metrics if context_result else None,
    )
