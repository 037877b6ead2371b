"""Tool-execution acknowledgment contract.

A reply may only claim that a change happened when a tool actually ran and
reported success. Every other outcome carries a short user-safe message that
replaces any claim of success.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

__all__ = [
    "ToolExecutionStatus",
    "ToolAckContract",
    "MAX_EXECUTED_TOOLS",
    "DEFAULT_SAFE_MESSAGES",
    "build_tool_ack_contract",
    "apply_tool_ack",
]

MAX_EXECUTED_TOOLS = 10


class ToolExecutionStatus(str, Enum):
    NONE = "none"
    BLOCKED = "blocked"
    SUCCESS = "success"
    FAILED = "failed"
    UNCERTAIN = "uncertain"


DEFAULT_SAFE_MESSAGES: dict[ToolExecutionStatus, str] = {
    ToolExecutionStatus.BLOCKED: "Je n'ai pas encore pu valider techniquement ce changement.",
    ToolExecutionStatus.FAILED: "Il y a eu un souci technique pendant l'execution du changement.",
    ToolExecutionStatus.UNCERTAIN: "Je prefere verifier l'etat reel avant de confirmer le changement.",
}


@dataclass(frozen=True)
class ToolAckContract:
    status: ToolExecutionStatus = ToolExecutionStatus.NONE
    attempted: bool = False
    success_confirmed: bool = False
    allow_success_claim: bool = False
    executed_tools: tuple[str, ...] = field(default_factory=tuple)
    tool_name: str | None = None
    user_safe_message: str | None = None
    version: int = 1

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "status": self.status.value,
            "attempted": self.attempted,
            "success_confirmed": self.success_confirmed,
            "allow_success_claim": self.allow_success_claim,
            "executed_tools": list(self.executed_tools),
            "tool_name": self.tool_name,
            "user_safe_message": self.user_safe_message,
        }


def build_tool_ack_contract(
    status: ToolExecutionStatus | str,
    executed_tools: Iterable[str] | None = None,
    user_safe_message: str | None = None,
) -> ToolAckContract:
    """Build the contract for one turn's tool outcome."""
    status = ToolExecutionStatus(status)
    tools = tuple(
        name.strip() for name in (executed_tools or ()) if name and name.strip()
    )[:MAX_EXECUTED_TOOLS]
    attempted = len(tools) > 0
    success_confirmed = status is ToolExecutionStatus.SUCCESS and attempted

    message = (user_safe_message or "").strip() or None
    if message is None:
        message = DEFAULT_SAFE_MESSAGES.get(status)

    return ToolAckContract(
        status=status,
        attempted=attempted,
        success_confirmed=success_confirmed,
        allow_success_claim=success_confirmed,
        executed_tools=tools,
        tool_name=tools[0] if tools else None,
        user_safe_message=message,
    )


def apply_tool_ack(text: str, contract: ToolAckContract | None) -> str:
    """Append the safe message when the reply is not allowed to claim success."""
    if contract is None or contract.allow_success_claim or not contract.user_safe_message:
        return text
    if contract.user_safe_message in text:
        return text
    body = text.rstrip()
    return f"{body}\n\n{contract.user_safe_message}" if body else contract.user_safe_message
