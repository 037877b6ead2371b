"""SQL-backed implementations of the brain's storage protocols.

Every call opens its own session so the context loader can run reads
concurrently without sharing an `AsyncSession` across tasks.
"""

from __future__ import annotations

from typing import Literal

from sophia.brain.agents.base import ProgressResult
from sophia.brain.context.loader import ActionSnapshot, PlanSnapshot, VitalSnapshot
from sophia.brain.deferred_topics import targets_match
from sophia.brain.state import ChatState
from sophia.observability.logging import get_logger
from sophia.storage.database import get_async_session
from sophia.storage.models import PlanAction
from sophia.storage.repositories import (
    ChatStateRepository,
    IdentityPillarRepository,
    PlanRepository,
    ProfileFactRepository,
    VitalSignRepository,
)

logger = get_logger(__name__)

__all__ = ["SqlStateStore", "SqlContextSource"]


def _action_snapshot(action: PlanAction) -> ActionSnapshot:
    return ActionSnapshot(
        action_id=str(action.id),
        title=action.title,
        status=action.status,
        description=action.description,
        tracking_type=action.tracking_type,
        target=action.target_value,
        current=action.current_value,
        unit=action.unit,
    )


class SqlStateStore:
    async def get_state(self, user_id: str, scope: str) -> ChatState | None:
        async with get_async_session() as session:
            return await ChatStateRepository(session).load_async(user_id, scope)

    async def update_state(self, user_id: str, scope: str, state: ChatState) -> None:
        async with get_async_session() as session:
            await ChatStateRepository(session).save_async(user_id, scope, state)


class SqlContextSource:
    """Domain reads for context loading plus the track_progress write."""

    async def get_active_plan(self, user_id: str) -> PlanSnapshot | None:
        async with get_async_session() as session:
            plan = await PlanRepository(session).get_active_async(user_id)
            if plan is None:
                return None
            return PlanSnapshot(
                plan_id=str(plan.id),
                title=plan.title,
                status=plan.status,
                deep_why=plan.deep_why,
                content=dict(plan.content or {}),
            )

    async def get_plan_actions(self, plan_id: str) -> list[ActionSnapshot]:
        async with get_async_session() as session:
            actions = await PlanRepository(session).list_actions_async(plan_id)
            return [_action_snapshot(a) for a in actions]

    async def get_vital_signs(self, user_id: str) -> list[VitalSnapshot]:
        async with get_async_session() as session:
            vitals = await VitalSignRepository(session).list_async(user_id)
            return [
                VitalSnapshot(
                    name=v.name, current=v.current_value, target=v.target_value, unit=v.unit
                )
                for v in vitals
            ]

    async def get_profile_facts(self, user_id: str) -> dict[str, str]:
        async with get_async_session() as session:
            return await ProfileFactRepository(session).as_dict_async(user_id)

    async def get_identity_pillars(self, user_id: str) -> list[str]:
        async with get_async_session() as session:
            return await IdentityPillarRepository(session).list_async(user_id)

    async def track_progress(
        self,
        user_id: str,
        *,
        target_name: str,
        value: float,
        operation: Literal["add", "set"],
    ) -> ProgressResult:
        """Apply progress to the first active-plan action, then vital sign, whose name matches."""
        async with get_async_session() as session:
            plan = await PlanRepository(session).get_active_async(user_id)
            if plan is not None:
                for action in await PlanRepository(session).list_actions_async(plan.id):
                    if targets_match(action.title, target_name):
                        base = action.current_value or 0.0
                        action.current_value = base + value if operation == "add" else value
                        await session.flush()
                        logger.info(
                            "progress_tracked",
                            user_id=user_id,
                            target_kind="action",
                            operation=operation,
                        )
                        return ProgressResult(
                            found=True,
                            target_kind="action",
                            target_name=action.title,
                            new_value=action.current_value,
                        )
            for vital in await VitalSignRepository(session).list_async(user_id):
                if targets_match(vital.name, target_name):
                    base = vital.current_value or 0.0
                    vital.current_value = base + value if operation == "add" else value
                    await session.flush()
                    logger.info(
                        "progress_tracked", user_id=user_id, target_kind="vital", operation=operation
                    )
                    return ProgressResult(
                        found=True,
                        target_kind="vital",
                        target_name=vital.name,
                        new_value=vital.current_value,
                    )
        return ProgressResult(found=False, target_name=target_name)
