"""Sophia storage module - Database models, repositories and brain adapters."""

from sophia.storage.adapters import SqlContextSource, SqlStateStore
from sophia.storage.database import (
    get_async_session,
    get_session,
    get_session_factory,
    init_async_db,
    init_db,
)
from sophia.storage.models import (
    Base,
    ChatMessage,
    ChatStateRecord,
    IdentityPillar,
    Plan,
    PlanAction,
    ProfileFact,
    VitalSign,
)
from sophia.storage.repositories import ChatMessageRepository, ChatStateRepository

__all__ = [
    "Base",
    "ChatMessage",
    "ChatMessageRepository",
    "ChatStateRecord",
    "ChatStateRepository",
    "IdentityPillar",
    "Plan",
    "PlanAction",
    "ProfileFact",
    "SqlContextSource",
    "SqlStateStore",
    "VitalSign",
    "get_async_session",
    "get_session",
    "get_session_factory",
    "init_async_db",
    "init_db",
]
