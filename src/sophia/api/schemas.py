"""Shared Pydantic request/response models for OpenAPI."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from sophia.brain.state import AgentMode


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Machine-readable error code")
    detail: Optional[str | Dict[str, Any]] = Field(
        None, description="Human-readable or structured error detail"
    )


class HealthResponse(BaseModel):
    status: str
    version: str
    degraded_mode: bool = False
    llama_stack_provider: str
    database_ready: Optional[bool] = None
    llama_stack_circuit: Optional[str] = Field(
        None, description="Circuit breaker state: closed, open, or half_open"
    )
    llama_stack_reachable: Optional[bool] = None
    llama_stack_models: Optional[List[str]] = None
    llama_stack_error: Optional[str] = None


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class TurnRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    message: str = Field(..., min_length=1)
    scope: str = Field("web", min_length=1, max_length=32)
    channel: str = "web"
    history: Optional[List[HistoryMessage]] = Field(
        None, description="Recent turns, oldest first. Loaded from storage when omitted."
    )
    force_mode: Optional[AgentMode] = Field(
        None, description="Debug hook; never overrides sentry or firefighter"
    )


class ToolAckModel(BaseModel):
    version: int = 1
    status: str
    attempted: bool
    success_confirmed: bool
    allow_success_claim: bool
    executed_tools: List[str] = []
    tool_name: Optional[str] = None
    user_safe_message: Optional[str] = None


class TurnResponse(BaseModel):
    response: str
    next_mode: AgentMode
    request_id: Optional[str] = None
    routing_reason: Optional[str] = None
    tool_ack: Optional[ToolAckModel] = None
