"""Signal extraction for one user turn.

The classifier never mutates state. Any failure (generator error, bad JSON,
validation error) degrades to `default_signals()`: routing to the default
conversational mode is the safest way to be wrong.
"""

from __future__ import annotations

from typing import Any, Sequence

from sophia.backends.protocols import TextGenerator
from sophia.brain.signals import SignalBundle, default_signals
from sophia.brain.state import ChatState
from sophia.observability.logging import get_logger
from sophia.observability.metrics import CLASSIFIER_FALLBACKS
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

__all__ = ["CLASSIFIER_PROMPT", "build_classifier_prompt", "classify_turn"]

HISTORY_TURNS = 6
HISTORY_TURN_CHARS = 300

CLASSIFIER_PROMPT = """You extract routing signals from the latest message of a coaching conversation.
Answer with ONE JSON object and nothing else:
{
  "safety": {"level": "NONE|FIREFIGHTER|SENTRY", "confidence": 0-1},
  "interrupt": {"kind": "NONE|EXPLICIT_STOP|BORED|SWITCH_TOPIC|DIGRESSION", "confidence": 0-1,
                "deferred_topic_formalized": "short label or null"},
  "topic_depth": {"value": "NONE|NEED_SUPPORT|SERIOUS|LIGHT", "confidence": 0-1},
  "risk_score": 0-10,
  "user_intent_primary": "CHECKUP|EMOTIONAL_SUPPORT|SMALL_TALK|PREFERENCE|UNKNOWN",
  "user_intent_confidence": 0-1,
  "create_action": {"intent_strength": "explicit|implicit|none", "action_label_hint": null, "confidence": 0-1},
  "update_action": {"detected": false, "target_hint": null, "change_type": null, "new_value_hint": null, "confidence": 0-1},
  "breakdown_action": {"detected": false, "target_hint": null, "blocker_hint": null, "confidence": 0-1},
  "deep_reasons": {"opportunity": false, "action_hint": null, "confidence": 0-1},
  "plan_discussion_intent": false
}
SENTRY = immediate danger to life (self-harm, medical emergency).
FIREFIGHTER = acute emotional crisis without vital danger (panic, craving, overwhelm).
EXPLICIT_STOP = the user asks to stop the current exercise. BORED = visible disengagement.
"""

PENDING_CONSENT_PROMPT = """
The previous assistant turn asked a yes/no question: "{question}"
Also include:
  "pending_resolution": {{"status": "resolved|unresolved", "pending_type": "relaunch_consent",
                          "decision_code": "relaunch.accept|relaunch.decline|common.unclear",
                          "confidence": 0-1}}
"""


def _format_history(history: Sequence[dict[str, Any]]) -> str:
    lines = []
    for turn in list(history)[-HISTORY_TURNS:]:
        role = str(turn.get("role", "user"))
        content = str(turn.get("content", ""))[:HISTORY_TURN_CHARS]
        lines.append(f"{role}: {content}")
    return "\n".join(lines)


def build_classifier_prompt(
    message: str,
    history: Sequence[dict[str, Any]],
    state: ChatState,
    *,
    pending_question: str | None = None,
) -> tuple[str, str]:
    """Return the (system, user) prompt pair for signal extraction."""
    system = CLASSIFIER_PROMPT
    if pending_question:
        system += PENDING_CONSENT_PROMPT.format(question=pending_question)

    investigation = state.investigation_state
    active = state.supervisor.active
    user_prompt = (
        f"Current mode: {state.current_mode.value}\n"
        f"Risk level: {state.risk_level}/10\n"
        f"Checkup in progress: {bool(investigation and investigation.is_in_progress)}\n"
        f"Active flow: {active.session_type.value if active else 'none'}\n\n"
        f"History:\n{_format_history(history)}\n\n"
        f"Latest user message: {message}"
    )
    return system, user_prompt


async def classify_turn(
    generator: TextGenerator,
    message: str,
    history: Sequence[dict[str, Any]],
    state: ChatState,
    *,
    pending_question: str | None = None,
    model: str | None = None,
) -> SignalBundle:
    """Extract the signal bundle for `message`, falling back to defaults on any failure."""
    system_prompt, user_prompt = build_classifier_prompt(
        message, history, state, pending_question=pending_question
    )
    try:
        data = await generator.generate_json(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=0.0,
            model_id=model or None,
        )
        if not isinstance(data, dict):
            raise TypeError(f"classifier returned {type(data).__name__}, expected object")
        signals = SignalBundle.model_validate(data)
    except Exception as exc:  # noqa: BLE001 - any extraction failure falls back
        logger.warning("classifier_failed", error=str(exc)[:300])
        CLASSIFIER_FALLBACKS.inc()
        log_brain_event(BrainEvent.CLASSIFIER_FALLBACK, error=str(exc))
        return default_signals()

    if pending_question is None:
        signals.pending_resolution = None
    return signals
