"""Shared types for agent mode handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol, Sequence

from sophia.backends.protocols import TextGenerationError, TextGenerator
from sophia.brain.signals import SignalBundle
from sophia.brain.state import ChatState, FlowPhase, InvestigationState
from sophia.brain.tool_ack import ToolAckContract

__all__ = [
    "AgentTurn",
    "AgentResult",
    "AgentHandler",
    "FlowUpdate",
    "ProgressResult",
    "ProgressTracker",
    "format_history",
    "response_text",
]


@dataclass(frozen=True)
class ProgressResult:
    found: bool
    target_kind: Literal["action", "vital"] | None = None
    target_name: str | None = None
    new_value: float | None = None


class ProgressTracker(Protocol):
    """Write side used by the companion's track_progress tool."""

    async def track_progress(
        self,
        user_id: str,
        *,
        target_name: str,
        value: float,
        operation: Literal["add", "set"],
    ) -> ProgressResult: ...


@dataclass
class AgentTurn:
    user_id: str
    scope: str
    channel: str
    message: str
    history: Sequence[dict[str, Any]]
    state: ChatState
    signals: SignalBundle
    context: str
    generator: TextGenerator
    tools: ProgressTracker | None = None


@dataclass(frozen=True)
class FlowUpdate:
    status: Literal["continue", "done", "abandoned"] = "continue"
    candidate: dict[str, Any] | None = None
    phase: FlowPhase | None = None


@dataclass(frozen=True)
class AgentResult:
    text: str
    tool_ack: ToolAckContract | None = None
    investigation_state: InvestigationState | None = None
    investigation_complete: bool = False
    crisis_resolved: bool = False
    flow_update: FlowUpdate | None = None


class AgentHandler(Protocol):
    mode_name: str

    async def run(self, turn: AgentTurn) -> AgentResult: ...


def format_history(history: Sequence[dict[str, Any]], limit: int = 6, max_chars: int = 420) -> str:
    lines = []
    for turn in list(history)[-limit:]:
        content = " ".join(str(turn.get("content", "")).split())[:max_chars]
        lines.append(f"{turn.get('role', 'user')}: {content}")
    return "\n".join(lines)


def response_text(data: Any) -> str:
    """Extract the `response` field of a JSON agent answer or raise."""
    if not isinstance(data, dict):
        raise TextGenerationError(f"agent answer is {type(data).__name__}, expected object")
    text = data.get("response")
    if not isinstance(text, str) or not text.strip():
        raise TextGenerationError("agent answer has no response text")
    return text.strip()
