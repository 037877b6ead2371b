"""Acute-distress mode: short grounding replies and a crisis-resolved flag."""

from __future__ import annotations

from sophia.brain.agents.base import AgentResult, AgentTurn, format_history, response_text
from sophia.observability.logging import get_logger

logger = get_logger(__name__)

FALLBACK_TEXT = "Je suis là. Respire avec moi. Inspire... Expire..."

SYSTEM_PROMPT = """You are Sophia in grounding mode. The user is in acute distress
(stress, anxiety, craving). Answer in French with short, slow, sensory sentences:
physical instructions, no advice, no greetings.

Reply with ONE JSON object: {{"response": "your message", "resolved": true|false}}
"resolved" is true only when the user says they feel calmer.

=== CONTEXT ===
{context}
"""


class FirefighterHandler:
    mode_name = "firefighter"

    async def run(self, turn: AgentTurn) -> AgentResult:
        system_prompt = SYSTEM_PROMPT.format(context=turn.context or "(aucun)")
        user_prompt = f"History:\n{format_history(turn.history, limit=3)}\n\nUser: {turn.message}"
        try:
            data = await turn.generator.generate_json(
                system_prompt=system_prompt, user_prompt=user_prompt, temperature=0.3
            )
            text = response_text(data)
        except Exception as exc:  # noqa: BLE001 - safety modes always answer
            logger.warning("firefighter_fallback", error=str(exc)[:300])
            return AgentResult(text=FALLBACK_TEXT, crisis_resolved=False)
        return AgentResult(text=text, crisis_resolved=data.get("resolved") is True)
