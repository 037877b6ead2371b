"""SQLAlchemy database models for the brain."""

from __future__ import annotations

from datetime import datetime, timezone
import uuid
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import declarative_base, relationship


def _utc_now() -> datetime:
    """Return a tz-naive UTC timestamp for TIMESTAMP WITHOUT TIME ZONE columns.

    Naive values are treated as UTC by convention. Chat state timestamps live
    inside the JSON document and keep their offset.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GUID(TypeDecorator[UUID]):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(value)
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value: Any, dialect: Any) -> UUID | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


Base = declarative_base()

__all__ = [
    "Base",
    "GUID",
    "ChatStateRecord",
    "ChatMessage",
    "Plan",
    "PlanAction",
    "VitalSign",
    "ProfileFact",
    "IdentityPillar",
]


class ChatStateRecord(Base):
    """Serialized `ChatState` per (user, scope). Never deleted, only cleared."""

    __tablename__ = "chat_states"
    __table_args__ = (UniqueConstraint("user_id", "scope", name="uq_chat_states_user_scope"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False, index=True)
    scope = Column(String(32), nullable=False, default="web")
    current_mode = Column(String(32), nullable=False, default="companion")
    state = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<ChatStateRecord user={self.user_id} scope={self.scope} mode={self.current_mode}>"


class ChatMessage(Base):
    """One user or assistant message, in arrival order."""

    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_user_scope_created", "user_id", "scope", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False)
    scope = Column(String(32), nullable=False, default="web")
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    agent_mode = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}

    def __repr__(self) -> str:
        return f"<ChatMessage id={self.id} user={self.user_id} role={self.role}>"


class Plan(Base):
    __tablename__ = "plans"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    status = Column(String(32), nullable=False, default="active")
    deep_why = Column(Text, nullable=True)
    content = Column(JSON, default=dict)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    actions = relationship("PlanAction", back_populates="plan", order_by="PlanAction.position")

    def __repr__(self) -> str:
        return f"<Plan id={self.id} user={self.user_id} status={self.status}>"


class PlanAction(Base):
    __tablename__ = "plan_actions"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    plan_id = Column(GUID(), ForeignKey("plans.id"), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="active")
    tracking_type = Column(String(16), nullable=False, default="boolean")
    target_value = Column(Float, nullable=True)
    current_value = Column(Float, nullable=True, default=0.0)
    unit = Column(String(32), nullable=True)
    position = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    plan = relationship("Plan", back_populates="actions")

    def __repr__(self) -> str:
        return f"<PlanAction id={self.id} title={self.title!r}>"


class VitalSign(Base):
    __tablename__ = "vital_signs"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    current_value = Column(Float, nullable=True)
    target_value = Column(Float, nullable=True)
    unit = Column(String(32), nullable=True)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)


class ProfileFact(Base):
    __tablename__ = "profile_facts"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_profile_facts_user_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    key = Column(String(128), nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)


class IdentityPillar(Base):
    __tablename__ = "identity_pillars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    content = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utc_now)
