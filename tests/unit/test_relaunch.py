"""Tests for consent-gated relaunch of deferred topics."""

from datetime import datetime, timedelta, timezone

import pytest

from sophia.brain import addons, deferred_topics, supervisor
from sophia.brain.relaunch import (
    ConsentPhrases,
    apply_relaunch,
    match_consent_phrase,
    resolve_consent,
)
from sophia.brain.signals import ConsentDecision, SignalBundle
from sophia.brain.state import (
    AgentMode,
    MachineType,
    PendingRelaunchConsent,
    SessionType,
    SupervisorState,
)

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)
PHRASES = ConsentPhrases.from_settings()


def _state_with_two_deferred() -> SupervisorState:
    state = SupervisorState()
    supervisor.upsert(state, SessionType.TOPIC_LIGHT, {}, now=NOW)
    supervisor.request_session(state, MachineType.CREATE_ACTION, "Yoga", "Veut créer: Yoga", now=NOW)
    supervisor.request_session(
        state, MachineType.DEEP_REASONS, "Marche", "Blocage motivationnel sur Marche", now=NOW + timedelta(minutes=1)
    )
    return state


def _pending_state(machine_type=MachineType.CREATE_ACTION, target="Yoga") -> SupervisorState:
    return SupervisorState(
        pending_relaunch=PendingRelaunchConsent(
            machine_type=machine_type,
            action_target=target,
            summaries=["Veut créer: Yoga"],
            created_at=NOW,
        )
    )


class TestApplyRelaunch:
    def test_normal_close_offers_oldest_topic(self):
        state = _state_with_two_deferred()
        supervisor.close(state, "completed")

        pending = apply_relaunch(state, now=NOW + timedelta(minutes=5))

        assert pending.machine_type is MachineType.CREATE_ACTION
        assert pending.action_target == "Yoga"
        assert state.ask_relaunch_consent
        assert not state.flow_just_closed_normally
        assert deferred_topics.count(state.deferred) == 1
        # Nothing starts before the user answers.
        assert state.active is None

    def test_aborted_close_offers_nothing(self):
        state = _state_with_two_deferred()
        supervisor.close(state, "aborted")

        assert apply_relaunch(state, now=NOW) is None
        assert not state.flow_just_closed_aborted
        assert state.pending_relaunch is None
        assert deferred_topics.count(state.deferred) == 2

    def test_paused_queue_offers_nothing(self):
        state = _state_with_two_deferred()
        deferred_topics.pause_all(state.deferred, now=NOW)
        supervisor.close(state, "completed")

        assert apply_relaunch(state, now=NOW + timedelta(minutes=5)) is None

    def test_flag_is_consumed_once(self):
        state = _state_with_two_deferred()
        supervisor.close(state, "completed")
        apply_relaunch(state, now=NOW)
        state.pending_relaunch = None

        assert apply_relaunch(state, now=NOW) is None


class TestMatchConsentPhrase:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Oui !", ConsentDecision.ACCEPT),
            ("vas-y on le fait", ConsentDecision.ACCEPT),
            ("ok", ConsentDecision.ACCEPT),
            ("non merci", ConsentDecision.DECLINE),
            ("oui mais plus tard", ConsentDecision.DECLINE),
            ("pas maintenant", ConsentDecision.DECLINE),
            ("je ne sais pas trop", ConsentDecision.UNCLEAR),
            ("nonchalant, je verrai", ConsentDecision.UNCLEAR),
            ("gobelet", ConsentDecision.UNCLEAR),
            ("allez, go", ConsentDecision.ACCEPT),
            ("", ConsentDecision.UNCLEAR),
        ],
    )
    def test_phrases(self, message, expected):
        assert match_consent_phrase(message, PHRASES) is expected


class TestResolveConsent:
    def test_nothing_pending(self):
        assert resolve_consent(SupervisorState(), "oui", SignalBundle(), now=NOW, phrases=PHRASES) is None

    def test_accept_starts_the_session(self):
        state = _pending_state()
        resolution = resolve_consent(state, "oui", SignalBundle(), now=NOW, threshold=0.55, phrases=PHRASES)

        assert resolution.decision is ConsentDecision.ACCEPT
        assert resolution.next_mode is AgentMode.COMPANION
        assert state.pending_relaunch is None
        assert state.active.session_type is SessionType.CREATE_ACTION_FLOW
        assert state.active.action_target == "Yoga"
        assert resolution.initialized_session.session_id == state.active.session_id

    def test_decline_with_later_pauses_queue(self):
        state = _pending_state()
        deferred_topics.defer_signal(state.deferred, MachineType.TOPIC_LIGHT, None, "Discussion", now=NOW)

        resolution = resolve_consent(
            state, "plus tard", SignalBundle(), now=NOW, threshold=0.55, phrases=PHRASES
        )

        assert resolution.decision is ConsentDecision.DECLINE
        assert resolution.message == addons.decline_message(resolution.pending)
        assert resolution.paused_until == NOW + timedelta(hours=2)
        assert deferred_topics.is_paused(state.deferred, now=NOW + timedelta(hours=1))
        assert state.pending_relaunch is None
        assert state.active is None

    def test_plain_decline_does_not_pause(self):
        state = _pending_state()
        resolution = resolve_consent(state, "non", SignalBundle(), now=NOW, threshold=0.55, phrases=PHRASES)

        assert resolution.decision is ConsentDecision.DECLINE
        assert resolution.paused_until is None

    def test_unclear_is_reasked_once_then_dropped(self):
        state = _pending_state()

        first = resolve_consent(state, "hmm", SignalBundle(), now=NOW, threshold=0.55, phrases=PHRASES)
        assert first.reask
        assert first.message == 'Tu voulais créer "Yoga". On le fait maintenant ?'
        assert state.pending_relaunch.unclear_reask_count == 1

        second = resolve_consent(state, "bof", SignalBundle(), now=NOW, threshold=0.55, phrases=PHRASES)
        assert second.dropped_after_unclear
        assert second.message == addons.unclear_drop_message()
        assert state.pending_relaunch is None
        assert state.active is None

    def test_confident_classifier_beats_phrases(self):
        state = _pending_state()
        signals = SignalBundle.model_validate(
            {"pending_resolution": {"status": "resolved", "decision_code": "relaunch.accept", "confidence": 0.8}}
        )
        resolution = resolve_consent(state, "hmm", signals, now=NOW, threshold=0.55, phrases=PHRASES)
        assert resolution.decision is ConsentDecision.ACCEPT

    def test_weak_classifier_falls_back_to_phrases(self):
        state = _pending_state()
        signals = SignalBundle.model_validate(
            {"pending_resolution": {"status": "resolved", "decision_code": "relaunch.accept", "confidence": 0.3}}
        )
        resolution = resolve_consent(state, "non", signals, now=NOW, threshold=0.55, phrases=PHRASES)
        assert resolution.decision is ConsentDecision.DECLINE
