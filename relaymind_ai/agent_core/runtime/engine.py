from __future__ import annotations

"""LangGraph runtime engine.

``AgentEngine`` runs the agent control loop for one ``AgentExecution``.

Execution model
---------------

The loop is a LangGraph state machine::

    start -> prepare -> generate -> dispatch -> checkpoint -> prepare ...
                                       |             |
                                       +-> settle <--+

- ``prepare``: cancellation checkpoint, then queued external messages are
  merged into the conversation.
- ``generate``: builds the prompt, calls the generation provider (with the
  generation timeout) and parses the response into calls.
- ``dispatch``: dispatches every call in the requested order. A call whose
  method requires approval pauses the run in ``hitl_tool`` with that call and
  the remaining ones kept as ``pending_calls``. After each dispatch there is
  another cancellation checkpoint.
- ``checkpoint``: looks for control signals among this iteration's results,
  increments ``iterations``, checks the human-in-the-loop thresholds and
  persists the context.
- ``settle``: persists the paused/terminal state, then notifies the
  completion handler.

Signals
-------

``Agent.completed`` and ``Agent.request_feedback`` are acted on only after
every call of the iteration was dispatched. When both appear, the feedback
request wins and the run pauses in ``hitl_feedback``. ``iterations`` counts
every pass through ``checkpoint``; the thresholds are only checked when the
run would otherwise continue. An operator pause request (``request_hil``)
is honoured at the same point and also ends in ``hitl_threshold``.

Failures
--------

Tool failures are recorded by the dispatcher and never leave a node. Any
other exception (generation exhausted, persistence failure, cancellation)
escapes the graph and ``run`` turns it into the ``error`` state, persists it
and notifies.
"""

import asyncio
import logging
from typing import List, Optional

from langgraph.graph import END, StateGraph

from relaymind_ai.core.config import EngineSettings

from ..capabilities.base import CapabilityContext
from ..capabilities.builtin import COMPLETED_CALL, REQUEST_FEEDBACK_CALL
from ..capabilities.dispatcher import ToolDispatcher, clean_error
from ..errors import AgentCancelled, ProviderNotConfigured
from ..providers.base import GenerationProvider
from ..providers.multi import MultiProvider
from ..schemas.domain import AgentContext, AgentState, FunctionCall, FunctionCallResult, LlmMessage
from .executions import AgentExecution
from .models import EngineDeps, _GraphState, _RunScope
from .parser import ResponseParseError

logger = logging.getLogger(__name__)

# Graph steps per loop iteration: prepare, generate, dispatch, checkpoint.
_STEPS_PER_ITERATION = 4
_RECURSION_HEADROOM = 10


def _last_ok(results: List[FunctionCallResult], name: str) -> Optional[FunctionCallResult]:
    for r in reversed(results):
        if r.function_name == name and r.ok:
            return r
    return None


class AgentEngine:
    """Run the agent control loop with persistence and notification.

    The engine is orchestration only: generation goes through the injected
    provider, tool calls through ``ToolDispatcher``, persistence through
    ``AgentContextStore`` and notification through the completion handler
    registry.
    """

    def __init__(self, *, deps: EngineDeps, settings: Optional[EngineSettings] = None) -> None:
        """
        Initialize the AgentEngine.

        Args:
            deps: The runtime dependencies (store, providers, registries).
            settings: Engine settings; defaults to ``EngineSettings()``.
        """
        self._deps = deps
        self._settings = settings or EngineSettings()
        self._graph = self._build_graph()

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("prepare", self._node_prepare)
        g.add_node("generate", self._node_generate)
        g.add_node("dispatch", self._node_dispatch)
        g.add_node("checkpoint", self._node_checkpoint)
        g.add_node("settle", self._node_settle)

        g.set_entry_point("start")
        g.add_conditional_edges(
            "start",
            self._route_after_start,
            {"dispatch": "dispatch", "prepare": "prepare"},
        )
        g.add_edge("prepare", "generate")
        g.add_edge("generate", "dispatch")
        g.add_conditional_edges(
            "dispatch",
            self._route_after_dispatch,
            {"pause": "settle", "checkpoint": "checkpoint"},
        )
        g.add_conditional_edges(
            "checkpoint",
            self._route_after_checkpoint,
            {"continue": "prepare", "stop": "settle"},
        )
        g.add_edge("settle", END)
        return g.compile()

    def provider_for(self, ctx: AgentContext) -> GenerationProvider:
        """Return the provider facade for ``ctx``.

        Agents naming providers in ``llms`` get a ``MultiProvider`` over those,
        in that order; the others use the default provider.
        """
        if not ctx.llms:
            return self._deps.provider
        chosen = []
        for provider_id in ctx.llms:
            provider = self._deps.providers.get(provider_id)
            if provider is None:
                logger.warning(f"Agent {ctx.agent_id} requests unknown provider '{provider_id}'")
                continue
            chosen.append(provider)
        if not chosen:
            raise ProviderNotConfigured(f"None of the providers {ctx.llms} is registered")
        return MultiProvider(
            chosen,
            quota_retries=self._settings.quota_retries,
            quota_initial_backoff=self._settings.quota_initial_backoff_seconds,
            quota_max_backoff=self._settings.quota_max_backoff_seconds,
        )

    def recursion_limit(self, ctx: AgentContext) -> int:
        remaining = max(ctx.human_in_loop.count - ctx.iterations, 1)
        return remaining * _STEPS_PER_ITERATION + _RECURSION_HEADROOM

    async def run(self, execution: AgentExecution, *, approve_pending: bool = False) -> AgentContext:
        """Run the loop until the context leaves ``running``.

        Args:
            execution: The claimed execution whose live context is driven.
            approve_pending: Dispatch ``context.pending_calls`` first, the
                first of them without re-asking for approval (``hitl_tool``
                resumption).

        Returns:
            The live context in its final state. Errors are not raised; they
            are recorded in ``context.error`` with ``state == error``.
        """
        ctx = execution.context
        logger.info(f"Agent {ctx.agent_id} execution {ctx.execution_id} entering loop at iteration {ctx.iterations}")
        try:
            provider = self.provider_for(ctx)
            capability_ctx = CapabilityContext(
                agent=ctx, settings=self._settings, cache=self._deps.cache, provider=provider
            )
            dispatcher = ToolDispatcher(
                execution.registry, settings=self._settings, summarizer=self._deps.summarizer
            )
            scope = _RunScope(
                execution=execution, dispatcher=dispatcher, capability_ctx=capability_ctx, provider=provider
            )
            calls = list(ctx.pending_calls) if approve_pending else []
            state: _GraphState = {"scope": scope, "calls": calls}
            if approve_pending:
                state["_resume_skip_approval"] = True
            await self._graph.ainvoke(state, config={"recursion_limit": self.recursion_limit(ctx)})
        except Exception as e:
            await self._fail(ctx, e)
        return ctx

    async def _fail(self, ctx: AgentContext, err: Exception) -> None:
        """Drive the context to ``error``: persist first, then notify."""
        ctx.error = clean_error(err)
        self._transition(ctx, AgentState.error)
        try:
            await self._deps.store.save(ctx)
        except Exception as save_err:
            logger.error(f"Could not persist error state of agent {ctx.agent_id}: {save_err}")
        await self._deps.handlers.notify(ctx)

    def _transition(self, ctx: AgentContext, new_state: AgentState) -> None:
        if ctx.state != new_state:
            logger.info(f"Agent {ctx.agent_id} state {ctx.state.value} -> {new_state.value}")
        ctx.state = new_state

    def _check_cancel(self, execution: AgentExecution) -> None:
        if execution.cancel_requested:
            raise AgentCancelled(f"Cancelled by operator: {execution.cancel_reason}")

    def _route_after_start(self, state: _GraphState) -> str:
        return "dispatch" if state["calls"] else "prepare"

    def _route_after_dispatch(self, state: _GraphState) -> str:
        return "pause" if state.get("_stop") else "checkpoint"

    def _route_after_checkpoint(self, state: _GraphState) -> str:
        return "stop" if state.get("_stop") else "continue"

    async def _node_start(self, state: _GraphState) -> _GraphState:
        """Graph entry node. Clears pending calls that are about to be dispatched."""
        ctx = state["scope"].execution.context
        ctx.pending_calls = []
        return state

    async def _node_prepare(self, state: _GraphState) -> _GraphState:
        """Cancellation checkpoint before generation; merge queued messages."""
        execution = state["scope"].execution
        self._check_cancel(execution)
        ctx = execution.context
        for text in ctx.take_pending_messages():
            ctx.messages.append(LlmMessage(role="user", content=text))
            logger.debug(f"Agent {ctx.agent_id} merged a pending message")
        return state

    async def _node_generate(self, state: _GraphState) -> _GraphState:
        """Generate the next response and parse it into calls."""
        scope = state["scope"]
        ctx = scope.execution.context
        messages = self._deps.prompt_builder.build(ctx, scope.execution.registry.schemas())
        timeout = self._settings.generation_timeout_seconds
        try:
            result = await asyncio.wait_for(scope.provider.generate_text(messages), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Generation did not complete within {timeout}s") from None

        ctx.add_cost(result.cost)
        ctx.messages.append(LlmMessage(role="assistant", content=result.text))
        try:
            calls = self._deps.parser.parse(result.text)
        except ResponseParseError as e:
            logger.warning(f"Agent {ctx.agent_id} response could not be parsed: {e}")
            ctx.messages.append(LlmMessage(role="user", content=f"Your last response could not be parsed: {e}"))
            calls = []
        logger.debug(
            f"Agent {ctx.agent_id} iteration {ctx.iterations + 1}: {len(calls)} calls via {result.provider_id} "
            f"(cost {result.cost:.6f})"
        )
        state["calls"] = calls
        return state

    async def _node_dispatch(self, state: _GraphState) -> _GraphState:
        """Dispatch the iteration's calls in order, pausing on approval-gated calls."""
        scope = state["scope"]
        execution = scope.execution
        ctx = execution.context
        calls = state["calls"]
        skip_approval = bool(state.get("_resume_skip_approval"))
        state["_resume_skip_approval"] = False

        while calls:
            call = calls[0]
            if scope.dispatcher.requires_approval(call) and not skip_approval:
                ctx.pending_calls = list(calls)
                self._transition(ctx, AgentState.hitl_tool)
                state["calls"] = []
                state["_stop"] = True
                return state
            skip_approval = False
            calls.pop(0)
            await scope.dispatcher.dispatch(scope.capability_ctx, call)
            self._check_cancel(execution)

        state["calls"] = []
        return state

    async def _node_checkpoint(self, state: _GraphState) -> _GraphState:
        """Act on signals, count the iteration, check thresholds and persist."""
        execution = state["scope"].execution
        ctx = execution.context
        results = ctx.calls_for_iteration(ctx.iterations + 1)
        feedback = _last_ok(results, REQUEST_FEEDBACK_CALL)
        finish = _last_ok(results, COMPLETED_CALL)
        ctx.iterations += 1

        if feedback is not None:
            ctx.feedback_request = feedback.stdout
            self._transition(ctx, AgentState.hitl_feedback)
            state["_stop"] = True
        elif finish is not None:
            ctx.output = finish.stdout
            self._transition(ctx, AgentState.completed)
            state["_stop"] = True
        elif execution.hil_requested:
            logger.info(f"Agent {ctx.agent_id} pausing for operator review: {execution.hil_reason}")
            self._transition(ctx, AgentState.hitl_threshold)
            state["_stop"] = True
        elif ctx.count_reached() or ctx.budget_reached():
            self._transition(ctx, AgentState.hitl_threshold)
            state["_stop"] = True
        else:
            await self._deps.store.save(ctx)
        return state

    async def _node_settle(self, state: _GraphState) -> _GraphState:
        """Persist the paused/terminal state, then notify."""
        ctx = state["scope"].execution.context
        await self._deps.store.save(ctx)
        await self._deps.handlers.notify(ctx)
        return state
