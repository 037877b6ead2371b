"""Default conversational mode.

The companion answers with a JSON object:

    {"response": "...",
     "tool": {"name": "track_progress", "args": {...}} | null,
     "flow": {"status": "continue|done|abandoned", "phase": "...", "candidate": {...}} | null}

`tool` is executed here and summarized as a `ToolAckContract`; `flow` drives
the active supervisor session and is applied by the engine.
"""

from __future__ import annotations

from typing import Any

from sophia.brain.agents.base import (
    AgentResult,
    AgentTurn,
    FlowUpdate,
    format_history,
    response_text,
)
from sophia.brain.state import FlowPhase
from sophia.brain.tool_ack import ToolAckContract, ToolExecutionStatus, build_tool_ack_contract
from sophia.observability.logging import get_logger
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

TRACK_PROGRESS = "track_progress"

SYSTEM_PROMPT = """You are Sophia, a warm and concise coaching companion. Answer in French.
Use the context below when it is relevant; never invent plan content.

Reply with ONE JSON object:
{{"response": "your message to the user",
  "tool": null or {{"name": "track_progress",
                   "args": {{"target_name": "action or vital sign", "value": number, "operation": "add|set"}}}},
  "flow": null or {{"status": "continue|done|abandoned", "phase": "exploring|awaiting_confirm|done",
                   "candidate": {{...draft fields...}}}}}}
Only call track_progress when the user reports concrete progress. Never claim a change
was saved: the system confirms tool results itself.
{flow_hint}
=== CONTEXT ===
{context}
"""

_FLOW_HINT = (
    "An active flow is running ({session_type}). Keep the conversation on it, update "
    'its "candidate" as details emerge and set "status" to "done" once it is settled.'
)


def _not_found_message(target: str) -> str:
    return f"Je ne trouve pas \"{target}\" dans ton plan, donc je n'ai rien noté pour l'instant."


def _parse_track_args(args: Any) -> tuple[str, float, str] | None:
    if not isinstance(args, dict):
        return None
    target = args.get("target_name")
    operation = args.get("operation", "add")
    try:
        value = float(args.get("value"))
    except (TypeError, ValueError):
        return None
    if not isinstance(target, str) or not target.strip() or operation not in ("add", "set"):
        return None
    return target.strip(), value, operation


async def run_tool(turn: AgentTurn, tool: Any) -> ToolAckContract:
    """Execute the requested tool call and describe its outcome."""
    name = tool.get("name") if isinstance(tool, dict) else None
    if name != TRACK_PROGRESS:
        logger.warning("companion_unknown_tool", tool=str(name)[:80])
        return build_tool_ack_contract(
            ToolExecutionStatus.UNCERTAIN, [name] if isinstance(name, str) else []
        )

    parsed = _parse_track_args(tool.get("args"))
    if parsed is None:
        logger.warning("companion_tool_args_invalid", tool=name)
        return build_tool_ack_contract(ToolExecutionStatus.UNCERTAIN, [name])
    target, value, operation = parsed

    if turn.tools is None:
        return build_tool_ack_contract(ToolExecutionStatus.BLOCKED, [name])

    try:
        result = await turn.tools.track_progress(
            turn.user_id, target_name=target, value=value, operation=operation
        )
    except Exception as exc:  # noqa: BLE001 - reported through the ack contract
        logger.warning("companion_tool_failed", tool=name, error=str(exc)[:300])
        log_brain_event(BrainEvent.TOOL_EXECUTED, user_id=turn.user_id, tool=name, status="failed")
        return build_tool_ack_contract(ToolExecutionStatus.FAILED, [name])

    if not result.found:
        log_brain_event(BrainEvent.TOOL_EXECUTED, user_id=turn.user_id, tool=name, status="blocked")
        return build_tool_ack_contract(
            ToolExecutionStatus.BLOCKED, [name], _not_found_message(target)
        )

    log_brain_event(
        BrainEvent.TOOL_EXECUTED,
        user_id=turn.user_id,
        tool=name,
        status="success",
        target_kind=result.target_kind,
        new_value=result.new_value,
    )
    return build_tool_ack_contract(ToolExecutionStatus.SUCCESS, [name])


def parse_flow(raw: Any) -> FlowUpdate | None:
    if not isinstance(raw, dict):
        return None
    status = raw.get("status", "continue")
    if status not in ("continue", "done", "abandoned"):
        status = "continue"
    try:
        phase = FlowPhase(raw["phase"]) if raw.get("phase") else None
    except ValueError:
        phase = None
    candidate = raw.get("candidate")
    return FlowUpdate(
        status=status,
        candidate=candidate if isinstance(candidate, dict) else None,
        phase=phase,
    )


class CompanionHandler:
    mode_name = "companion"

    async def run(self, turn: AgentTurn) -> AgentResult:
        active = turn.state.supervisor.active
        flow_hint = _FLOW_HINT.format(session_type=active.session_type.value) if active else ""
        system_prompt = SYSTEM_PROMPT.format(context=turn.context or "(aucun)", flow_hint=flow_hint)
        user_prompt = f"History:\n{format_history(turn.history)}\n\nUser: {turn.message}"

        data = await turn.generator.generate_json(
            system_prompt=system_prompt, user_prompt=user_prompt, temperature=0.7
        )
        text = response_text(data)

        tool_ack = None
        if data.get("tool"):
            tool_ack = await run_tool(turn, data["tool"])

        flow_update = parse_flow(data.get("flow")) if active is not None else None
        return AgentResult(text=text, tool_ack=tool_ack, flow_update=flow_update)
