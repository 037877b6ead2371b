"""Data access repositories."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from sophia.brain.state import ChatState
from sophia.observability.logging import get_logger
from sophia.storage.models import (
    ChatMessage,
    ChatStateRecord,
    IdentityPillar,
    Plan,
    PlanAction,
    ProfileFact,
    VitalSign,
)

logger = get_logger(__name__)

__all__ = [
    "ChatStateRepository",
    "ChatMessageRepository",
    "PlanRepository",
    "VitalSignRepository",
    "ProfileFactRepository",
    "IdentityPillarRepository",
]


def _dump(state: ChatState) -> Dict[str, Any]:
    return state.model_dump(mode="json")


class ChatStateRepository:
    """Repository for per (user, scope) chat state documents."""

    def __init__(self, session: Session | AsyncSession):
        self.session = session

    def get(self, user_id: str, scope: str) -> Optional[ChatStateRecord]:
        return (
            self.session.query(ChatStateRecord)
            .filter(ChatStateRecord.user_id == user_id, ChatStateRecord.scope == scope)
            .first()
        )

    async def get_async(self, user_id: str, scope: str) -> Optional[ChatStateRecord]:
        result = await self.session.execute(
            select(ChatStateRecord).where(
                ChatStateRecord.user_id == user_id, ChatStateRecord.scope == scope
            )
        )
        return result.scalar_one_or_none()

    def load(self, user_id: str, scope: str) -> Optional[ChatState]:
        record = self.get(user_id, scope)
        return ChatState.model_validate(record.state) if record else None

    async def load_async(self, user_id: str, scope: str) -> Optional[ChatState]:
        record = await self.get_async(user_id, scope)
        return ChatState.model_validate(record.state) if record else None

    def save(self, user_id: str, scope: str, state: ChatState) -> ChatStateRecord:
        if isinstance(self.session, AsyncSession):
            raise TypeError("Use save_async() with AsyncSession")
        record = self.get(user_id, scope)
        if record is None:
            record = ChatStateRecord(user_id=user_id, scope=scope)
            self.session.add(record)
        record.state = _dump(state)
        record.current_mode = state.current_mode.value
        self.session.flush()
        return record

    async def save_async(self, user_id: str, scope: str, state: ChatState) -> ChatStateRecord:
        if not isinstance(self.session, AsyncSession):
            raise TypeError("Use save() with Session")
        record = await self.get_async(user_id, scope)
        if record is None:
            record = ChatStateRecord(user_id=user_id, scope=scope)
            self.session.add(record)
        # Assign a fresh dict so the JSON column is always flagged dirty.
        record.state = _dump(state)
        record.current_mode = state.current_mode.value
        await self.session.flush()
        return record

    def clear(self, user_id: str, scope: str) -> bool:
        """Reset the stored state to its initial value. Records are never deleted."""
        record = self.get(user_id, scope)
        if record is None:
            return False
        state = ChatState.initial()
        record.state = _dump(state)
        record.current_mode = state.current_mode.value
        self.session.flush()
        logger.info("chat_state_cleared", user_id=user_id, scope=scope)
        return True

    def list_states(self, user_id: Optional[str] = None, limit: int = 100) -> List[ChatStateRecord]:
        query = self.session.query(ChatStateRecord)
        if user_id:
            query = query.filter(ChatStateRecord.user_id == user_id)
        return query.order_by(ChatStateRecord.updated_at.desc()).limit(limit).all()


class ChatMessageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_async(
        self,
        user_id: str,
        scope: str,
        role: str,
        content: str,
        agent_mode: Optional[str] = None,
    ) -> ChatMessage:
        message = ChatMessage(
            user_id=user_id, scope=scope, role=role, content=content, agent_mode=agent_mode
        )
        self.session.add(message)
        await self.session.flush()
        return message

    async def recent_async(self, user_id: str, scope: str, limit: int = 20) -> List[ChatMessage]:
        """Last `limit` messages, oldest first."""
        result = await self.session.execute(
            select(ChatMessage)
            .where(ChatMessage.user_id == user_id, ChatMessage.scope == scope)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))


class PlanRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_async(self, user_id: str) -> Optional[Plan]:
        result = await self.session.execute(
            select(Plan)
            .where(Plan.user_id == user_id, Plan.status == "active")
            .order_by(Plan.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_actions_async(self, plan_id: UUID | str) -> List[PlanAction]:
        if isinstance(plan_id, str):
            plan_id = UUID(plan_id)
        result = await self.session.execute(
            select(PlanAction).where(PlanAction.plan_id == plan_id).order_by(PlanAction.position)
        )
        return list(result.scalars().all())


class VitalSignRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_async(self, user_id: str) -> List[VitalSign]:
        result = await self.session.execute(
            select(VitalSign).where(VitalSign.user_id == user_id).order_by(VitalSign.name)
        )
        return list(result.scalars().all())


class ProfileFactRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def as_dict_async(self, user_id: str) -> Dict[str, str]:
        result = await self.session.execute(
            select(ProfileFact).where(ProfileFact.user_id == user_id).order_by(ProfileFact.key)
        )
        return {fact.key: fact.value for fact in result.scalars().all()}


class IdentityPillarRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_async(self, user_id: str, limit: int = 2) -> List[str]:
        result = await self.session.execute(
            select(IdentityPillar)
            .where(IdentityPillar.user_id == user_id)
            .order_by(IdentityPillar.position)
            .limit(limit)
        )
        return [pillar.content for pillar in result.scalars().all()]
