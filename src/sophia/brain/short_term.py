"""Rolling short-term context ("fil rouge").

Every `short_term_refresh_every` unprocessed messages the previous summary is
merged with the recent turns into a new compact summary. The refresh is
best-effort: a failure or a timeout keeps the previous summary.
"""

from __future__ import annotations

from typing import Any, Sequence

import anyio

from sophia.backends.protocols import TextGenerator
from sophia.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = ["SUMMARY_PROMPT", "is_refresh_due", "build_summary_prompt", "refresh_short_term"]

RECENT_TURNS = 16
TURN_CHARS = 400

SUMMARY_PROMPT = """You maintain the short-term context of a coaching conversation.
Merge the previous context with the new messages into ONE compact summary, in French.
Keep open loops, decisions, immediate constraints and the user's emotional state.
Drop what is settled or obsolete. Do not paraphrase the last messages word for word.
{max_chars} characters maximum.
Answer with ONE JSON object and nothing else:
{{"short_term_context": "..."}}
"""


def is_refresh_due(unprocessed_msg_count: int, every: int) -> bool:
    """`unprocessed_msg_count` excludes the message being processed."""
    return every > 0 and unprocessed_msg_count + 1 >= every


def build_summary_prompt(
    previous: str,
    history: Sequence[dict[str, Any]],
    message: str,
    *,
    max_chars: int,
) -> tuple[str, str]:
    lines = [
        f"{str(turn.get('role', 'user')).upper()}: {str(turn.get('content', ''))[:TURN_CHARS]}"
        for turn in list(history)[-RECENT_TURNS:]
    ]
    lines.append(f"USER: {message[:TURN_CHARS]}")
    user_prompt = (
        f"PREVIOUS CONTEXT:\n{previous.strip() or '(vide)'}\n\n"
        "NEW MESSAGES:\n" + "\n".join(lines)
    )
    return SUMMARY_PROMPT.format(max_chars=max_chars), user_prompt


async def refresh_short_term(
    generator: TextGenerator,
    previous: str,
    history: Sequence[dict[str, Any]],
    message: str,
    *,
    max_chars: int = 900,
    timeout: float = 20.0,
    model: str | None = None,
) -> str | None:
    """Return the merged summary, or None when the previous one should be kept."""
    system_prompt, user_prompt = build_summary_prompt(
        previous, history, message, max_chars=max_chars
    )
    try:
        with anyio.fail_after(timeout):
            data = await generator.generate_json(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                temperature=0.15,
                model_id=model or None,
            )
    except Exception as exc:  # noqa: BLE001 - the previous summary stays valid
        logger.warning("short_term_refresh_failed", error=str(exc)[:300])
        return None

    candidate = data.get("short_term_context") if isinstance(data, dict) else None
    if not isinstance(candidate, str) or not candidate.strip():
        logger.warning("short_term_refresh_empty")
        return None
    return candidate.strip()[:max_chars]
