"""Checkup (investigation) mode: walks the pending items with a cursor."""

from __future__ import annotations

from sophia.brain.agents.base import AgentResult, AgentTurn, format_history, response_text
from sophia.brain.context.loader import ContextSource
from sophia.brain.state import CheckupItem, InvestigationState
from sophia.observability.logging import get_logger
from sophia.telemetry.events import BrainEvent, log_brain_event

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are Sophia running the user's daily checkup. Answer in French.
Ask about ONE item at a time, briefly and without judgment.

Current item: {item}
Items left after this one: {remaining}

Reply with ONE JSON object:
{{"response": "your message", "item_done": true|false, "complete": true|false}}
"item_done" is true once the user has answered about the current item.
"complete" is true only when every item has been covered or the user wants to wrap up.

=== CONTEXT ===
{context}
"""


def _describe(item: CheckupItem | None) -> str:
    if item is None:
        return "(none, wrap up the checkup)"
    if item.tracking_type == "counter" and item.target is not None:
        unit = f" {item.unit}" if item.unit else ""
        return f"{item.title} (objectif {item.target:g}{unit})"
    return item.title


async def start_investigation(source: ContextSource, user_id: str) -> InvestigationState | None:
    """Build a checkup from the active plan's actions and the user's vital signs."""
    items: list[CheckupItem] = []
    plan = await source.get_active_plan(user_id)
    if plan is not None:
        for action in await source.get_plan_actions(plan.plan_id):
            if action.status != "active":
                continue
            items.append(
                CheckupItem(
                    id=action.action_id,
                    kind="action",
                    title=action.title,
                    tracking_type="counter" if action.tracking_type == "counter" else "boolean",
                    target=action.target,
                    current=action.current,
                    unit=action.unit,
                )
            )
    for vital in await source.get_vital_signs(user_id):
        items.append(
            CheckupItem(
                id=f"vital:{vital.name}",
                kind="vital",
                title=vital.name,
                tracking_type="counter",
                target=vital.target,
                current=vital.current,
                unit=vital.unit,
            )
        )
    if not items:
        return None
    logger.info("investigation_started", user_id=user_id, items=len(items))
    return InvestigationState(status="init", pending_items=items)


class InvestigatorHandler:
    mode_name = "investigator"

    async def run(self, turn: AgentTurn) -> AgentResult:
        current = turn.state.investigation_state
        if current is None:
            raise ValueError("investigator dispatched without an investigation in progress")
        investigation = current.model_copy(deep=True)
        if investigation.status == "init":
            investigation.status = "checking"

        item = investigation.current_item
        remaining = max(0, len(investigation.pending_items) - investigation.current_item_index - 1)
        system_prompt = SYSTEM_PROMPT.format(
            item=_describe(item), remaining=remaining, context=turn.context or "(aucun)"
        )
        user_prompt = f"History:\n{format_history(turn.history)}\n\nUser: {turn.message}"
        data = await turn.generator.generate_json(
            system_prompt=system_prompt, user_prompt=user_prompt, temperature=0.4
        )
        text = response_text(data)

        if item is not None and data.get("item_done") is True:
            if item.id not in investigation.completed_item_ids:
                investigation.completed_item_ids.append(item.id)
            investigation.current_item_index += 1

        complete = data.get("complete") is True or investigation.current_item is None
        if complete:
            investigation.status = "post_checkup"
            log_brain_event(
                BrainEvent.INVESTIGATION_COMPLETED,
                user_id=turn.user_id,
                items_completed=len(investigation.completed_item_ids),
                items_total=len(investigation.pending_items),
            )
        return AgentResult(
            text=text,
            investigation_state=investigation,
            investigation_complete=complete,
        )
