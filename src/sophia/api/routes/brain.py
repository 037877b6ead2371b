"""Dialogue turn endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from sophia.api.dependencies import get_turn_deps
from sophia.api.schemas import ErrorResponse, ToolAckModel, TurnRequest, TurnResponse
from sophia.brain.engine import TurnDeps, process_turn
from sophia.config import settings
from sophia.observability.logging import bind_turn_context, get_logger
from sophia.storage.database import get_async_session
from sophia.storage.repositories import ChatMessageRepository

router = APIRouter(prefix="/v1/brain", tags=["brain"])
logger = get_logger(__name__)


async def _load_history(user_id: str, scope: str) -> list[dict[str, Any]]:
    async with get_async_session() as session:
        messages = await ChatMessageRepository(session).recent_async(
            user_id, scope, limit=settings.history_load_limit
        )
        return [m.to_dict() for m in messages]


async def _record_exchange(
    user_id: str, scope: str, message: str, reply: str, mode: str
) -> None:
    """Append both sides of the turn to the message log.

    The chat state is already persisted at this point, so a failure here only
    costs history for later turns.
    """
    try:
        async with get_async_session() as session:
            repo = ChatMessageRepository(session)
            await repo.add_async(user_id, scope, "user", message)
            await repo.add_async(user_id, scope, "assistant", reply, agent_mode=mode)
    except Exception as exc:
        logger.warning("message_log_failed", user_id=user_id, scope=scope, error=str(exc)[:300])


@router.post(
    "/turn",
    response_model=TurnResponse,
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def brain_turn(body: TurnRequest, deps: TurnDeps = Depends(get_turn_deps)) -> TurnResponse:
    """Run one dialogue turn for a user and return the reply."""

    with bind_turn_context(user_id=body.user_id, scope=body.scope, channel=body.channel):
        if body.history is None:
            history = await _load_history(body.user_id, body.scope)
        else:
            history = [m.model_dump() for m in body.history]

        result = await process_turn(
            body.user_id,
            body.scope,
            body.channel,
            body.message,
            history,
            deps=deps,
            force_mode=body.force_mode,
        )
        await _record_exchange(
            body.user_id, body.scope, body.message, result.response_text, result.next_mode.value
        )

    return TurnResponse(
        response=result.response_text,
        next_mode=result.next_mode,
        request_id=result.request_id,
        routing_reason=result.routing.reason if result.routing else None,
        tool_ack=ToolAckModel(**result.tool_ack.to_dict()) if result.tool_ack else None,
    )


__all__ = ["router"]
