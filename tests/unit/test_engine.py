"""End-to-end turn processing against in-memory fakes."""

from datetime import datetime, timedelta, timezone

import pytest

from sophia.brain import deferred_topics, supervisor
from sophia.brain.engine import process_turn
from sophia.brain.signals import ConsentDecision
from sophia.brain.state import (
    AgentMode,
    ChatState,
    CheckupItem,
    InvestigationState,
    MachineType,
    PendingRelaunchConsent,
    SessionType,
)
from sophia.brain.tool_ack import ToolExecutionStatus
from sophia.config import settings
from sophia.errors import StatePersistenceError

pytestmark = pytest.mark.anyio

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)
KEY = ("u1", "web")

FIREFIGHTER = {"safety": {"level": "FIREFIGHTER", "confidence": 0.9}}
CREATE_YOGA = {"create_action": {"intent_strength": "explicit", "action_label_hint": "Yoga", "confidence": 0.9}}
LIGHT_TOPIC = {
    "topic_depth": {"value": "LIGHT", "confidence": 0.8},
    "interrupt": {"kind": "DIGRESSION", "confidence": 0.8, "deferred_topic_formalized": "vacances"},
}


async def _turn(deps, message, **kwargs):
    kwargs.setdefault("now", NOW)
    return await process_turn("u1", "web", "web", message, [], deps=deps, **kwargs)


def _seed(state_store, state: ChatState) -> None:
    state_store.states[KEY] = state


def _stored(state_store) -> ChatState:
    return state_store.states[KEY]


class TestBasics:
    async def test_plain_turn_persists_state(self, make_generator, make_deps, state_store):
        deps = make_deps(make_generator(replies=[{"response": "Je t'écoute."}]))
        result = await _turn(deps, "Salut")

        assert result.response_text == "Je t'écoute."
        assert result.next_mode is AgentMode.COMPANION
        assert result.routing.reason == "default"
        assert result.context_metrics is not None
        assert result.tool_ack.status is ToolExecutionStatus.NONE
        assert not result.tool_ack.attempted
        assert _stored(state_store).unprocessed_msg_count == 1
        assert _stored(state_store).last_processed_at == NOW

    async def test_magic_reset(self, make_generator, make_deps, state_store):
        state = ChatState(current_mode=AgentMode.FIREFIGHTER)
        supervisor.upsert(state.supervisor, SessionType.TOPIC_SERIOUS, {}, now=NOW)
        _seed(state_store, state)
        generator = make_generator()

        result = await _turn(make_deps(generator), "Abracadabra")

        assert result.response_text == settings.magic_reset_message
        assert result.routing is None
        assert generator.calls == []
        assert _stored(state_store).supervisor.active is None
        assert _stored(state_store).current_mode is AgentMode.COMPANION

    async def test_handler_failure_returns_outage_message(self, make_generator, make_deps, state_store):
        deps = make_deps(make_generator(replies=[RuntimeError("model down")]))
        result = await _turn(deps, "Salut")

        assert result.response_text == settings.outage_message
        assert result.next_mode is AgentMode.COMPANION
        assert result.tool_ack.status is ToolExecutionStatus.NONE
        assert state_store.writes == 1

    async def test_persist_failure_is_fatal_and_leaves_state(self, make_generator, make_deps, state_store):
        original = ChatState(risk_level=2)
        _seed(state_store, original)
        state_store.fail_writes = True

        with pytest.raises(StatePersistenceError):
            await _turn(make_deps(make_generator()), "Salut")

        assert _stored(state_store) == original

    async def test_load_failure_is_fatal(self, make_generator, make_deps, state_store):
        state_store.fail_reads = True
        generator = make_generator()

        with pytest.raises(StatePersistenceError):
            await _turn(make_deps(generator), "Salut")
        assert generator.calls == []

    async def test_safety_mode_cannot_be_forced(self, make_generator, make_deps):
        result = await _turn(make_deps(make_generator()), "Salut", force_mode=AgentMode.SENTRY)
        assert result.next_mode is AgentMode.COMPANION

    async def test_risk_level_follows_signals(self, make_generator, make_deps, state_store):
        deps = make_deps(make_generator(classifications=[{"risk_score": 2.6}]))
        await _turn(deps, "Bof")
        assert _stored(state_store).risk_level == 3


class TestTools:
    async def test_successful_tool_keeps_reply(self, make_generator, make_deps, context_source):
        reply = {
            "response": "Bravo pour la marche !",
            "tool": {"name": "track_progress", "args": {"target_name": "Marche", "value": 1, "operation": "add"}},
        }
        result = await _turn(make_deps(make_generator(replies=[reply])), "J'ai marché")

        assert result.tool_ack.allow_success_claim
        assert result.response_text == "Bravo pour la marche !"

    async def test_missing_target_appends_safe_message(self, make_generator, make_deps):
        reply = {
            "response": "C'est noté !",
            "tool": {"name": "track_progress", "args": {"target_name": "Natation", "value": 1}},
        }
        result = await _turn(make_deps(make_generator(replies=[reply])), "J'ai nagé")

        assert result.tool_ack.status is ToolExecutionStatus.BLOCKED
        assert result.response_text.startswith("C'est noté !")
        assert 'Je ne trouve pas "Natation"' in result.response_text


class TestFlows:
    async def test_signal_starts_then_second_signal_is_deferred(self, make_generator, make_deps, state_store):
        generator = make_generator(classifications=[CREATE_YOGA, LIGHT_TOPIC])
        deps = make_deps(generator)

        await _turn(deps, "Je veux faire du yoga")
        active = _stored(state_store).supervisor.active
        assert active.session_type is SessionType.CREATE_ACTION_FLOW
        assert active.action_target == "Yoga"

        await _turn(deps, "Au fait, mes vacances...")
        stored = _stored(state_store)
        assert stored.supervisor.active.session_id == active.session_id
        assert deferred_topics.count(stored.supervisor.deferred) == 1
        assert stored.supervisor.deferred.topics[0].machine_type is MachineType.TOPIC_LIGHT
        assert "DEFERRED TOPIC" in generator.agent_calls()[-1]["system"]
        # The add-on is consumed by the call that saw it.
        assert stored.supervisor.deferred_signal_addon is None

    async def test_completed_flow_offers_deferred_topic(self, make_generator, make_deps, state_store):
        state = ChatState()
        supervisor.upsert(state.supervisor, SessionType.TOPIC_LIGHT, {}, now=NOW)
        supervisor.request_session(state.supervisor, MachineType.CREATE_ACTION, "Yoga", "Veut créer: Yoga", now=NOW)
        _seed(state_store, state)
        reply = {"response": "Super discussion.", "flow": {"status": "done"}}

        result = await _turn(make_deps(make_generator(replies=[reply])), "Merci", now=NOW + timedelta(minutes=3))

        assert result.response_text == 'Super discussion.\n\nTu voulais créer "Yoga". On le fait maintenant ?'
        stored = _stored(state_store).supervisor
        assert stored.active is None
        assert stored.pending_relaunch.action_target == "Yoga"
        assert deferred_topics.count(stored.deferred) == 0

    async def test_aborted_flow_offers_nothing(self, make_generator, make_deps, state_store):
        state = ChatState()
        supervisor.upsert(state.supervisor, SessionType.TOPIC_LIGHT, {}, now=NOW)
        supervisor.request_session(state.supervisor, MachineType.CREATE_ACTION, "Yoga", "Veut créer: Yoga", now=NOW)
        _seed(state_store, state)
        reply = {"response": "Ok, on laisse.", "flow": {"status": "abandoned"}}

        result = await _turn(make_deps(make_generator(replies=[reply])), "Laisse tomber")

        assert result.response_text == "Ok, on laisse."
        assert _stored(state_store).supervisor.pending_relaunch is None


class TestConsent:
    @staticmethod
    def _pending_state() -> ChatState:
        state = ChatState()
        state.supervisor.pending_relaunch = PendingRelaunchConsent(
            machine_type=MachineType.CREATE_ACTION,
            action_target="Yoga",
            summaries=["Veut créer: Yoga"],
            created_at=NOW,
        )
        deferred_topics.defer_signal(state.supervisor.deferred, MachineType.TOPIC_LIGHT, None, "Discussion", now=NOW)
        return state

    async def test_accept_starts_flow(self, make_generator, make_deps, state_store):
        _seed(state_store, self._pending_state())
        generator = make_generator(replies=[{"response": "Allons-y, quel créneau ?"}])

        result = await _turn(make_deps(generator), "oui")

        assert result.consent.decision is ConsentDecision.ACCEPT
        assert result.response_text == "Allons-y, quel créneau ?"
        classify_call = next(c for c in generator.calls if c["kind"] == "classify")
        assert 'Tu voulais créer "Yoga"' in classify_call["system"]
        active = _stored(state_store).supervisor.active
        assert active.session_type is SessionType.CREATE_ACTION_FLOW
        assert _stored(state_store).supervisor.pending_relaunch is None

    async def test_decline_later_pauses_queue(self, make_generator, make_deps, state_store):
        _seed(state_store, self._pending_state())
        result = await _turn(make_deps(make_generator(replies=[{"response": "Comment va ta journée ?"}])), "plus tard")

        assert result.consent.decision is ConsentDecision.DECLINE
        assert result.response_text.startswith('Ok, pas de souci. Tu pourras me redemander pour "Yoga"')
        assert result.response_text.endswith("Comment va ta journée ?")
        stored = _stored(state_store).supervisor
        assert stored.active is None
        assert deferred_topics.is_paused(stored.deferred, now=NOW + timedelta(hours=1))

    async def test_unclear_is_reasked_then_dropped(self, make_generator, make_deps, state_store):
        _seed(state_store, self._pending_state())
        deps = make_deps(make_generator(replies=[{"response": "Je vois."}]))

        first = await _turn(deps, "hmm")
        assert first.consent.reask
        assert first.response_text == 'Je vois.\n\nTu voulais créer "Yoga". On le fait maintenant ?'

        second = await _turn(deps, "bof")
        assert second.consent.dropped_after_unclear
        assert _stored(state_store).supervisor.pending_relaunch is None
        assert _stored(state_store).supervisor.active is None

    async def test_consent_waits_during_safety_turn(self, make_generator, make_deps, state_store):
        _seed(state_store, self._pending_state())
        deps = make_deps(make_generator(classifications=[FIREFIGHTER], replies=[{"response": "Respire."}]))

        result = await _turn(deps, "oui mais j'angoisse")

        assert result.consent is None
        assert _stored(state_store).supervisor.pending_relaunch is not None


class TestSafety:
    @staticmethod
    def _active_state() -> ChatState:
        state = ChatState()
        supervisor.upsert(
            state.supervisor, SessionType.CREATE_ACTION_FLOW, {"title": "Yoga"}, action_target="Yoga", now=NOW
        )
        return state

    async def test_preempt_then_resume_on_next_turn(self, make_generator, make_deps, state_store):
        state = self._active_state()
        session_id = state.supervisor.active.session_id
        _seed(state_store, state)
        generator = make_generator(
            classifications=[FIREFIGHTER, {}],
            replies=[{"response": "Respire avec moi.", "resolved": False}, {"response": "On reprend."}],
        )
        deps = make_deps(generator)

        first = await _turn(deps, "Je panique")
        assert first.next_mode is AgentMode.FIREFIGHTER
        assert _stored(state_store).supervisor.active is None
        assert _stored(state_store).supervisor.paused.session_id == session_id

        second = await _turn(deps, "Ça va mieux")
        assert second.next_mode is AgentMode.COMPANION
        assert _stored(state_store).supervisor.active.session_id == session_id
        assert _stored(state_store).supervisor.active.candidate == {"title": "Yoga"}
        assert "RESUMED FLOW" in generator.agent_calls()[-1]["system"]

    async def test_resolved_crisis_resumes_immediately(self, make_generator, make_deps, state_store):
        _seed(state_store, self._active_state())
        deps = make_deps(
            make_generator(classifications=[FIREFIGHTER], replies=[{"response": "Tu respires mieux.", "resolved": True}])
        )

        result = await _turn(deps, "Ok je suis plus calme")

        assert result.next_mode is AgentMode.COMPANION
        stored = _stored(state_store).supervisor
        assert stored.active is not None
        assert stored.paused is None
        assert stored.resume_from_safety is not None

    async def test_sentry_reply_carries_numbers(self, make_generator, make_deps):
        deps = make_deps(
            make_generator(classifications=[{"safety": {"level": "SENTRY", "confidence": 0.95}}], text="Tu es seul ?")
        )
        result = await _turn(deps, "J'ai mal à la poitrine")

        assert result.next_mode is AgentMode.SENTRY
        for number in ("15", "112", "3114"):
            assert number in result.response_text


class TestCheckup:
    async def test_checkup_intent_starts_investigation(self, make_generator, make_deps, state_store):
        deps = make_deps(
            make_generator(
                classifications=[{"user_intent_primary": "CHECKUP", "user_intent_confidence": 0.9}],
                replies=[{"response": "On commence par la lecture ?"}],
            )
        )
        result = await _turn(deps, "On fait le bilan ?")

        assert result.routing.reason == "checkup_started"
        assert result.next_mode is AgentMode.INVESTIGATOR
        investigation = _stored(state_store).investigation_state
        assert investigation.status == "checking"
        assert len(investigation.pending_items) == 3

    async def test_explicit_stop_short_circuits(self, make_generator, make_deps, state_store):
        _seed(
            state_store,
            ChatState(
                current_mode=AgentMode.INVESTIGATOR,
                investigation_state=InvestigationState(
                    status="checking", pending_items=[CheckupItem(id="a1", title="Lecture du soir")]
                ),
            ),
        )
        generator = make_generator(classifications=[{"interrupt": {"kind": "EXPLICIT_STOP", "confidence": 0.7}}])

        result = await _turn(make_deps(generator), "Stop, on arrête")

        assert result.response_text == settings.stop_acknowledgment
        assert result.next_mode is AgentMode.COMPANION
        assert generator.agent_calls() == []
        assert _stored(state_store).investigation_state is None

    async def test_signal_during_checkup_is_deferred(self, make_generator, make_deps, state_store):
        _seed(
            state_store,
            ChatState(
                current_mode=AgentMode.INVESTIGATOR,
                investigation_state=InvestigationState(
                    status="checking", pending_items=[CheckupItem(id="a1", title="Lecture du soir")]
                ),
            ),
        )
        deps = make_deps(make_generator(classifications=[CREATE_YOGA], replies=[{"response": "Noté. Et la lecture ?"}]))

        await _turn(deps, "Je voudrais ajouter du yoga")

        stored = _stored(state_store)
        assert stored.supervisor.active is None
        assert stored.supervisor.deferred.topics[0].action_target == "Yoga"


class TestSessionTurnLimit:
    async def test_light_topic_closes_and_offers_deferred_topic(self, make_generator, make_deps, state_store):
        state = ChatState()
        supervisor.upsert(state.supervisor, SessionType.TOPIC_LIGHT, {}, now=NOW)
        supervisor.request_session(state.supervisor, MachineType.CREATE_ACTION, "Yoga", "Veut créer: Yoga", now=NOW)
        _seed(state_store, state)
        deps = make_deps(make_generator(replies=[{"response": "Ah oui ?"}]))

        for _ in range(settings.topic_light_max_turns - 1):
            result = await _turn(deps, "Et puis la plage...")
            assert result.response_text == "Ah oui ?"
            assert _stored(state_store).supervisor.active is not None

        result = await _turn(deps, "Bref.")

        assert result.response_text == 'Ah oui ?\n\nTu voulais créer "Yoga". On le fait maintenant ?'
        stored = _stored(state_store).supervisor
        assert stored.active is None
        assert stored.pending_relaunch.action_target == "Yoga"

    async def test_endless_light_topic_does_not_block_new_flows(self, make_generator, make_deps, state_store):
        generator = make_generator(classifications=[LIGHT_TOPIC] * 12 + [CREATE_YOGA])
        deps = make_deps(generator)

        for _ in range(12):
            await _turn(deps, "On parle de mes vacances ?")
        await _turn(deps, "Je veux faire du yoga")

        stored = _stored(state_store).supervisor
        assert stored.active.session_type is SessionType.CREATE_ACTION_FLOW
        assert deferred_topics.count(stored.deferred) == 0

    async def test_tool_flows_have_no_turn_limit(self, make_generator, make_deps, state_store):
        state = ChatState()
        supervisor.upsert(state.supervisor, SessionType.CREATE_ACTION_FLOW, {}, action_target="Yoga", now=NOW)
        state.supervisor.active.turn_count = 20
        _seed(state_store, state)

        await _turn(make_deps(make_generator()), "Le matin plutôt")

        assert _stored(state_store).supervisor.active.turn_count == 21


class TestShortTermContext:
    async def test_refresh_at_threshold_updates_summary_and_resets_count(
        self, make_generator, make_deps, state_store
    ):
        _seed(
            state_store,
            ChatState(
                short_term_context="Ancien fil rouge.",
                unprocessed_msg_count=settings.short_term_refresh_every - 1,
                last_processed_at=NOW - timedelta(days=1),
            ),
        )
        generator = make_generator(summaries=[{"short_term_context": "Il prépare un déménagement."}])

        await _turn(make_deps(generator), "Les cartons sont prêts")

        stored = _stored(state_store)
        assert stored.short_term_context == "Il prépare un déménagement."
        assert stored.unprocessed_msg_count == 0
        assert stored.last_processed_at == NOW
        summary_call = next(c for c in generator.calls if c["kind"] == "summary")
        assert "Ancien fil rouge." in summary_call["user"]
        assert "Les cartons sont prêts" in summary_call["user"]
        # The agent already sees the refreshed summary.
        assert "Il prépare un déménagement." in generator.agent_calls()[-1]["system"]

    async def test_no_refresh_below_threshold(self, make_generator, make_deps, state_store):
        _seed(state_store, ChatState(unprocessed_msg_count=settings.short_term_refresh_every - 2))
        generator = make_generator()

        await _turn(make_deps(generator), "Salut")

        assert all(c["kind"] != "summary" for c in generator.calls)
        assert _stored(state_store).unprocessed_msg_count == settings.short_term_refresh_every - 1

    async def test_failed_refresh_keeps_summary_and_answers(self, make_generator, make_deps, state_store):
        _seed(
            state_store,
            ChatState(
                short_term_context="Ancien fil rouge.",
                unprocessed_msg_count=settings.short_term_refresh_every - 1,
            ),
        )
        generator = make_generator(summaries=[RuntimeError("model down")])

        result = await _turn(make_deps(generator), "Salut")

        assert result.response_text == "Je t'écoute."
        stored = _stored(state_store)
        assert stored.short_term_context == "Ancien fil rouge."
        assert stored.unprocessed_msg_count == 0

    async def test_counter_cycles_over_a_long_conversation(self, make_generator, make_deps, state_store):
        deps = make_deps(make_generator(summaries=[{"short_term_context": "Résumé des échanges."}]))

        for _ in range(20):
            await _turn(deps, "Encore un message")

        stored = _stored(state_store)
        assert stored.short_term_context == "Résumé des échanges."
        assert stored.unprocessed_msg_count == 20 - settings.short_term_refresh_every
