"""Tests for the agent mode handlers."""

import pytest

from sophia.backends.protocols import TextGenerationError
from sophia.brain import supervisor
from sophia.brain.agents import (
    HANDLERS,
    AgentTurn,
    CompanionHandler,
    FirefighterHandler,
    InvestigatorHandler,
    SentryHandler,
    start_investigation,
)
from sophia.brain.agents.companion import parse_flow
from sophia.brain.agents.firefighter import FALLBACK_TEXT as FIREFIGHTER_FALLBACK
from sophia.brain.agents.sentry import FALLBACK_TEXT as SENTRY_FALLBACK
from sophia.brain.agents.sentry import ensure_numbers
from sophia.brain.signals import SignalBundle
from sophia.brain.state import AgentMode, ChatState, FlowPhase, SessionType
from sophia.brain.tool_ack import ToolExecutionStatus


def _turn(generator, state=None, tools=None, message="Salut"):
    return AgentTurn(
        user_id="u1",
        scope="web",
        channel="web",
        message=message,
        history=[],
        state=state or ChatState(),
        signals=SignalBundle(),
        context="CTX",
        generator=generator,
        tools=tools,
    )


def _track(target, value=3, operation="add"):
    return {
        "response": "Bravo !",
        "tool": {
            "name": "track_progress",
            "args": {"target_name": target, "value": value, "operation": operation},
        },
    }


def test_every_mode_has_a_handler():
    assert set(HANDLERS) == set(AgentMode)


@pytest.mark.anyio
class TestCompanion:
    async def test_plain_reply(self, make_generator):
        generator = make_generator(replies=[{"response": "  Coucou  "}])
        result = await CompanionHandler().run(_turn(generator))

        assert result.text == "Coucou"
        assert result.tool_ack is None
        assert result.flow_update is None
        assert "CTX" in generator.agent_calls()[0]["system"]

    async def test_missing_response_raises(self, make_generator):
        generator = make_generator(replies=[{"tool": None}])
        with pytest.raises(TextGenerationError):
            await CompanionHandler().run(_turn(generator))

    async def test_track_progress_success(self, make_generator, context_source):
        generator = make_generator(replies=[_track("lecture")])
        result = await CompanionHandler().run(_turn(generator, tools=context_source))

        assert result.tool_ack.status is ToolExecutionStatus.SUCCESS
        assert result.tool_ack.allow_success_claim
        assert context_source.progress_calls == [
            {"target_name": "lecture", "value": 3.0, "operation": "add"}
        ]

    async def test_unknown_target_is_blocked(self, make_generator, context_source):
        generator = make_generator(replies=[_track("Natation")])
        result = await CompanionHandler().run(_turn(generator, tools=context_source))

        assert result.tool_ack.status is ToolExecutionStatus.BLOCKED
        assert 'Je ne trouve pas "Natation"' in result.tool_ack.user_safe_message

    async def test_tool_failure_is_reported(self, make_generator, context_source):
        context_source.failing = {"track_progress"}
        generator = make_generator(replies=[_track("Marche")])
        result = await CompanionHandler().run(_turn(generator, tools=context_source))

        assert result.tool_ack.status is ToolExecutionStatus.FAILED
        assert not result.tool_ack.allow_success_claim

    async def test_invalid_args_are_uncertain(self, make_generator, context_source):
        generator = make_generator(replies=[_track("Marche", value="beaucoup")])
        result = await CompanionHandler().run(_turn(generator, tools=context_source))

        assert result.tool_ack.status is ToolExecutionStatus.UNCERTAIN
        assert context_source.progress_calls == []

    async def test_no_tools_available_is_blocked(self, make_generator):
        generator = make_generator(replies=[_track("Marche")])
        result = await CompanionHandler().run(_turn(generator, tools=None))
        assert result.tool_ack.status is ToolExecutionStatus.BLOCKED

    async def test_flow_update_only_with_active_session(self, make_generator):
        reply = {"response": "On note.", "flow": {"status": "done", "candidate": {"title": "Yoga"}}}
        state = ChatState()
        supervisor.upsert(state.supervisor, SessionType.CREATE_ACTION_FLOW, {}, now=None)

        with_session = await CompanionHandler().run(_turn(make_generator(replies=[reply]), state=state))
        without = await CompanionHandler().run(_turn(make_generator(replies=[reply])))

        assert with_session.flow_update.status == "done"
        assert with_session.flow_update.candidate == {"title": "Yoga"}
        assert without.flow_update is None


def test_parse_flow_is_lenient():
    update = parse_flow({"status": "weird", "phase": "nope", "candidate": "x"})
    assert update.status == "continue"
    assert update.phase is None
    assert update.candidate is None
    assert parse_flow({"phase": "awaiting_confirm"}).phase is FlowPhase.AWAITING_CONFIRM
    assert parse_flow(None) is None


@pytest.mark.anyio
class TestInvestigator:
    async def test_start_investigation_collects_actions_and_vitals(self, context_source):
        investigation = await start_investigation(context_source, "u1")

        assert [item.id for item in investigation.pending_items] == ["a1", "a2", "vital:Sommeil"]
        assert investigation.pending_items[0].tracking_type == "counter"
        assert investigation.status == "init"

    async def test_start_investigation_without_items(self, context_source):
        context_source.plan = None
        context_source.vitals = []
        assert await start_investigation(context_source, "u1") is None

    async def test_cursor_advances_and_completes(self, make_generator, context_source):
        state = ChatState(investigation_state=await start_investigation(context_source, "u1"))
        generator = make_generator(replies=[{"response": "Et la marche ?", "item_done": True}])

        first = await InvestigatorHandler().run(_turn(generator, state=state))
        assert first.investigation_state.status == "checking"
        assert first.investigation_state.current_item_index == 1
        assert first.investigation_state.completed_item_ids == ["a1"]
        assert not first.investigation_complete
        # The handler works on a copy.
        assert state.investigation_state.current_item_index == 0

        state.investigation_state = first.investigation_state
        second = await InvestigatorHandler().run(_turn(generator, state=state))
        state.investigation_state = second.investigation_state
        third = await InvestigatorHandler().run(_turn(generator, state=state))

        assert third.investigation_complete
        assert third.investigation_state.status == "post_checkup"
        assert third.investigation_state.completed_item_ids == ["a1", "a2", "vital:Sommeil"]

    async def test_explicit_complete(self, make_generator, context_source):
        state = ChatState(investigation_state=await start_investigation(context_source, "u1"))
        generator = make_generator(replies=[{"response": "Merci !", "complete": True}])
        result = await InvestigatorHandler().run(_turn(generator, state=state))
        assert result.investigation_complete

    async def test_requires_investigation(self, make_generator):
        with pytest.raises(ValueError):
            await InvestigatorHandler().run(_turn(make_generator()))


@pytest.mark.anyio
class TestSafetyHandlers:
    async def test_firefighter_resolved_flag(self, make_generator):
        generator = make_generator(replies=[{"response": "Ça va mieux ?", "resolved": True}])
        result = await FirefighterHandler().run(_turn(generator))
        assert result.crisis_resolved

    async def test_firefighter_falls_back(self, make_generator):
        generator = make_generator(replies=[RuntimeError("down")])
        result = await FirefighterHandler().run(_turn(generator))
        assert result.text == FIREFIGHTER_FALLBACK
        assert not result.crisis_resolved

    async def test_sentry_appends_missing_numbers(self, make_generator):
        generator = make_generator(text="Appelle le 15 tout de suite.")
        result = await SentryHandler().run(_turn(generator))
        assert "3114" in result.text
        assert "112" in result.text

    async def test_sentry_falls_back(self, make_generator):
        generator = make_generator(text=RuntimeError("down"))
        result = await SentryHandler().run(_turn(generator))
        assert result.text == SENTRY_FALLBACK

    async def test_sentry_blank_answer_falls_back(self, make_generator):
        result = await SentryHandler().run(_turn(make_generator(text="   ")))
        assert result.text == SENTRY_FALLBACK


def test_ensure_numbers_keeps_complete_text():
    text = "Appelle le 15, le 112 ou le 3114."
    assert ensure_numbers(text) == text
