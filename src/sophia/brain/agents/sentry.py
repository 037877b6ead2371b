"""Vital-danger mode. Every reply carries the emergency numbers."""

from __future__ import annotations

from sophia.brain.agents.base import AgentResult, AgentTurn, format_history
from sophia.observability.logging import get_logger

logger = get_logger(__name__)

EMERGENCY_NUMBERS = ("15", "112", "3114")

FALLBACK_TEXT = (
    "Là, je veux pas prendre de risque.\n\n"
    "Si tu as du mal à respirer, une douleur dans la poitrine, un malaise, ou si tu te sens "
    "en danger: appelle le 15 (SAMU) ou le 112 maintenant.\n\n"
    "Si tu te sens en danger de te faire du mal: appelle le 3114 (Prévention Suicide) ou le 112.\n\n"
    "Tu es seul là tout de suite ?"
)

NUMBERS_REMINDER = (
    "Urgence: 15 (SAMU) ou 112. Idées suicidaires ou envie de te faire du mal: 3114."
)

SYSTEM_PROMPT = """You are Sophia. The situation may be an emergency (safety, health, crisis).
Answer in French, very short and actionable. Check whether the user is alone and safe.
For breathing trouble, chest pain or fainting: tell them to call 15 or 112 now.
For suicidal intent or self-harm: tell them to call 3114 or 112 now.
Plain text only.
"""


def ensure_numbers(text: str) -> str:
    """Append the emergency numbers when the reply omits any of them."""
    if all(number in text for number in EMERGENCY_NUMBERS):
        return text
    return f"{text.rstrip()}\n\n{NUMBERS_REMINDER}"


class SentryHandler:
    mode_name = "sentry"

    async def run(self, turn: AgentTurn) -> AgentResult:
        user_prompt = f"History:\n{format_history(turn.history, limit=3)}\n\nUser: {turn.message}"
        try:
            text = await turn.generator.generate_text(
                system_prompt=SYSTEM_PROMPT, user_prompt=user_prompt, temperature=0.2
            )
        except Exception as exc:  # noqa: BLE001 - safety modes always answer
            logger.warning("sentry_fallback", error=str(exc)[:300])
            return AgentResult(text=FALLBACK_TEXT)
        if not text or not text.strip():
            return AgentResult(text=FALLBACK_TEXT)
        return AgentResult(text=ensure_numbers(text.strip()))
