"""Schemas and DTOs for the agent core."""

from .domain import (
    HITL_STATES,
    RESUMABLE_STATES,
    AgentContext,
    AgentState,
    AgentStatus,
    FunctionCall,
    FunctionCallResult,
    HumanInLoop,
    LlmMessage,
    new_execution_id,
)

__all__ = [
    "AgentContext",
    "AgentState",
    "AgentStatus",
    "FunctionCall",
    "FunctionCallResult",
    "HumanInLoop",
    "LlmMessage",
    "HITL_STATES",
    "RESUMABLE_STATES",
    "new_execution_id",
]
