from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema, FrozenSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_execution_id() -> str:
    return str(uuid4())


class AgentState(str, Enum):
    running = "running"
    completed = "completed"
    error = "error"
    hitl_threshold = "hitl_threshold"
    hitl_tool = "hitl_tool"
    hitl_feedback = "hitl_feedback"


# States a run can be resumed from. Every one of them is also a state the
# completion handlers are notified about.
RESUMABLE_STATES = frozenset(
    {
        AgentState.completed,
        AgentState.error,
        AgentState.hitl_threshold,
        AgentState.hitl_tool,
        AgentState.hitl_feedback,
    }
)

HITL_STATES = frozenset({AgentState.hitl_threshold, AgentState.hitl_tool, AgentState.hitl_feedback})


class LlmMessage(BaseSchema):
    role: Literal["system", "user", "assistant"]
    content: str


class FunctionCall(FrozenSchema):
    """A tool invocation requested by the model, as produced by the response parser."""

    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @property
    def capability(self) -> str:
        return self.name.split(".", 1)[0]

    @property
    def method(self) -> str:
        parts = self.name.split(".", 1)
        return parts[1] if len(parts) == 2 else ""


class FunctionCallResult(FrozenSchema):
    """Immutable audit entry for one dispatched tool call.

    Exactly one of ``stdout``/``stderr`` is set. The ``*_summary`` fields are
    only present when the raw value exceeded the summary threshold; prompts
    use the summary in place of the raw value.
    """

    iteration: int
    function_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    stdout: Optional[str] = None
    stdout_summary: Optional[str] = None
    stderr: Optional[str] = None
    stderr_summary: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def ok(self) -> bool:
        return self.stderr is None

    def prompt_output(self) -> str:
        """Return the text that represents this call in subsequent prompts."""
        if self.stderr is not None:
            return self.stderr_summary or self.stderr
        return self.stdout_summary or self.stdout or ""


class HumanInLoop(BaseSchema):
    """Thresholds that pause a run for human review once crossed."""

    count: int = Field(ge=1, description="Pause once iterations reach this value")
    budget: float = Field(gt=0.0, description="Pause once cumulative cost reaches this value")


class AgentContext(BaseSchema):
    """The persisted, resumable state of one agent run."""

    agent_id: str = Field(default_factory=lambda: str(uuid4()))
    execution_id: str = Field(default_factory=new_execution_id)
    name: str = "agent"
    user_id: Optional[str] = None

    state: AgentState = AgentState.running
    iterations: int = 0
    cost: float = 0.0

    system_prompt: Optional[str] = None
    messages: List[LlmMessage] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    llms: List[str] = Field(default_factory=list, description="Provider ids in priority order; empty = default")

    function_call_history: List[FunctionCallResult] = Field(default_factory=list)
    pending_messages: List[str] = Field(default_factory=list)
    pending_calls: List[FunctionCall] = Field(default_factory=list)

    memory: Dict[str, str] = Field(default_factory=dict)
    tool_state: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    human_in_loop: HumanInLoop
    completed_handler_id: Optional[str] = "console"

    feedback_request: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None

    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    def record_call(self, result: FunctionCallResult) -> None:
        """Append a call result. History is append-only."""
        self.function_call_history.append(result)

    def add_cost(self, amount: float) -> None:
        if amount < 0:
            raise ValueError(f"cost increments must be non-negative, got {amount}")
        self.cost += amount

    def take_pending_messages(self) -> List[str]:
        """Remove and return queued external messages in arrival order."""
        taken = list(self.pending_messages)
        del self.pending_messages[: len(taken)]
        return taken

    def calls_for_iteration(self, iteration: int) -> List[FunctionCallResult]:
        return [r for r in self.function_call_history if r.iteration == iteration]

    def count_reached(self) -> bool:
        return self.iterations >= self.human_in_loop.count

    def budget_reached(self) -> bool:
        return self.cost >= self.human_in_loop.budget

    def touch(self) -> None:
        self.updated_at = _utc_now()


class AgentStatus(BaseSchema):
    """Read-only projection of an ``AgentContext`` for status displays."""

    agent_id: str
    execution_id: str
    name: str
    state: AgentState
    iterations: int
    cost: float
    human_in_loop: HumanInLoop
    capabilities: List[str]
    pending_message_count: int
    pending_calls: List[str]
    call_count: int
    last_call: Optional[str] = None
    feedback_request: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime

    @classmethod
    def from_context(cls, ctx: AgentContext) -> "AgentStatus":
        last = ctx.function_call_history[-1] if ctx.function_call_history else None
        return cls(
            agent_id=ctx.agent_id,
            execution_id=ctx.execution_id,
            name=ctx.name,
            state=ctx.state,
            iterations=ctx.iterations,
            cost=ctx.cost,
            human_in_loop=ctx.human_in_loop.model_copy(),
            capabilities=list(ctx.capabilities),
            pending_message_count=len(ctx.pending_messages),
            pending_calls=[c.name for c in ctx.pending_calls],
            call_count=len(ctx.function_call_history),
            last_call=last.function_name if last is not None else None,
            feedback_request=ctx.feedback_request,
            output=ctx.output,
            error=ctx.error,
            updated_at=ctx.updated_at,
        )
