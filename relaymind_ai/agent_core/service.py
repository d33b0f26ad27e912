from __future__ import annotations

"""High-level service for agent executions.

``AgentService`` is the surface the HTTP/CLI/chat layers talk to. It owns
the bookkeeping around the engine:

- ``start``: create and persist a new ``AgentContext``, then launch it.
- ``resume_*``: one entry point per resumable state. Each checks the
  requested ``execution_id`` against the stored one, applies the operator's
  input, assigns a new ``execution_id`` and relaunches the loop.
- ``recover``: re-enter the loop of an agent left ``running`` by a crashed
  process.
- ``request_hil``: ask a running agent to pause in ``hitl_threshold``.
- ``cancel``: cooperative for a running agent (honoured at the next safe
  checkpoint), immediate for an idle one.
- ``submit_message``: queue a message for a busy agent, reopen a
  ``completed`` one, or just queue it for the next resumption.
- ``update_capabilities``, ``get_status``, ``list_agents``, ``delete``.

Mutual exclusion
----------------

Every operation that touches an agent holds ``ActiveExecutions.lock(agent_id)``
while it loads, checks and claims. The lock is released before the loop
runs, so generation and tool calls never happen under it. Two concurrent
resumptions of one paused agent therefore produce exactly one accepted
execution; the other request fails with ``StaleResumption``.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import Field

from relaymind_ai.core.config import EngineSettings

from .completion.handlers import CONSOLE_HANDLER_ID
from .errors import StaleResumption
from .runtime import AgentEngine, AgentExecution, EngineDeps
from .schemas.base import BaseSchema
from .schemas.domain import (
    AgentContext,
    AgentState,
    AgentStatus,
    HumanInLoop,
    LlmMessage,
    new_execution_id,
)

logger = logging.getLogger(__name__)


class AgentConfig(BaseSchema):
    """Everything needed to start an agent."""

    prompt: str = Field(description="Initial user request")
    name: str = "agent"
    agent_id: Optional[str] = None
    user_id: Optional[str] = None
    system_prompt: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)
    llms: List[str] = Field(default_factory=list, description="Provider ids in priority order; empty = default")
    human_in_loop: Optional[HumanInLoop] = None
    completed_handler_id: Optional[str] = CONSOLE_HANDLER_ID
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AgentService:
    """Start, resume, cancel and inspect agent executions."""

    def __init__(
        self,
        *,
        deps: EngineDeps,
        settings: Optional[EngineSettings] = None,
        engine: Optional[AgentEngine] = None,
    ) -> None:
        self._deps = deps
        self._settings = settings or EngineSettings()
        self._engine = engine or AgentEngine(deps=deps, settings=self._settings)

    @property
    def deps(self) -> EngineDeps:
        return self._deps

    # ------------------------------------------------------------------
    # Launching
    # ------------------------------------------------------------------

    def _launch_locked(self, ctx: AgentContext, *, approve_pending: bool = False) -> AgentExecution:
        """Claim the agent and start its loop. Caller holds the agent lock."""
        registry = self._deps.catalog.build_registry(ctx.capabilities)
        execution = AgentExecution(ctx, registry)
        self._deps.executions.claim(execution)
        execution.task = asyncio.create_task(
            self._drive(execution, approve_pending), name=f"agent-{ctx.agent_id}-{ctx.execution_id}"
        )
        return execution

    async def _drive(self, execution: AgentExecution, approve_pending: bool) -> AgentContext:
        agent_id = execution.agent_id
        try:
            ctx = await self._engine.run(execution, approve_pending=approve_pending)
        finally:
            async with self._deps.executions.lock(agent_id):
                self._deps.executions.release(execution)
        if ctx.state == AgentState.completed and ctx.pending_messages:
            # Messages that arrived during the last iteration reopen the agent.
            async with self._deps.executions.lock(agent_id):
                if not self._deps.executions.is_active(agent_id):
                    stored = await self._deps.store.require(agent_id)
                    if stored.state == AgentState.completed and stored.pending_messages:
                        await self._reopen_locked(stored)
        return ctx

    async def _reopen_locked(self, ctx: AgentContext) -> AgentExecution:
        ctx.output = None
        ctx.execution_id = new_execution_id()
        ctx.state = AgentState.running
        await self._deps.store.save(ctx)
        logger.info(f"Agent {ctx.agent_id} reopened as execution {ctx.execution_id}")
        return self._launch_locked(ctx)

    async def start(self, config: AgentConfig) -> AgentExecution:
        """
        Create, persist and launch a new agent.

        Returns:
            The ``AgentExecution`` handle (``agent_id``, ``execution_id``,
            ``wait()``).
        """
        hil = config.human_in_loop or HumanInLoop(count=self._settings.hil_count, budget=self._settings.hil_budget)
        ctx = AgentContext(
            name=config.name,
            user_id=config.user_id,
            system_prompt=config.system_prompt,
            messages=[LlmMessage(role="user", content=config.prompt)],
            capabilities=self._deps.catalog.resolve_names(config.capabilities),
            llms=list(config.llms),
            human_in_loop=hil,
            completed_handler_id=config.completed_handler_id,
            metadata=dict(config.metadata),
        )
        if config.agent_id:
            ctx.agent_id = config.agent_id

        async with self._deps.executions.lock(ctx.agent_id):
            if self._deps.executions.is_active(ctx.agent_id) or await self._deps.store.load(ctx.agent_id):
                raise ValueError(f"Agent {ctx.agent_id} already exists")
            await self._deps.store.save(ctx)
            logger.info(f"Agent {ctx.agent_id} ({ctx.name}) started as execution {ctx.execution_id}")
            return self._launch_locked(ctx)

    # ------------------------------------------------------------------
    # Resumption
    # ------------------------------------------------------------------

    async def _resume(
        self,
        agent_id: str,
        execution_id: str,
        allowed: Iterable[AgentState],
        apply: Callable[[AgentContext], None],
    ) -> AgentExecution:
        allowed_states = frozenset(allowed)
        async with self._deps.executions.lock(agent_id):
            current = self._deps.executions.get(agent_id)
            if current is not None:
                raise StaleResumption(
                    agent_id, execution_id, current.execution_id, reason="the agent is already running"
                )
            ctx = await self._deps.store.require(agent_id)
            if ctx.execution_id != execution_id:
                raise StaleResumption(agent_id, execution_id, ctx.execution_id)
            if ctx.state not in allowed_states:
                raise StaleResumption(
                    agent_id,
                    execution_id,
                    ctx.execution_id,
                    reason=f"agent is in state {ctx.state.value}, expected one of "
                    f"{sorted(s.value for s in allowed_states)}",
                )

            approve_pending = ctx.state == AgentState.hitl_tool and bool(ctx.pending_calls)
            previous = ctx.state
            apply(ctx)
            ctx.execution_id = new_execution_id()
            ctx.state = AgentState.running
            await self._deps.store.save(ctx)
            logger.info(f"Agent {agent_id} resumed from {previous.value} as execution {ctx.execution_id}")
            return self._launch_locked(ctx, approve_pending=approve_pending)

    async def resume_error(self, agent_id: str, execution_id: str, prompt: Optional[str] = None) -> AgentExecution:
        """Re-enter the loop of a failed agent with an optional corrective prompt."""

        def apply(ctx: AgentContext) -> None:
            ctx.error = None
            if prompt:
                ctx.messages.append(LlmMessage(role="user", content=prompt))

        return await self._resume(agent_id, execution_id, [AgentState.error], apply)

    async def resume_hil(
        self,
        agent_id: str,
        execution_id: str,
        note: Optional[str] = None,
        count: Optional[int] = None,
        budget: Optional[float] = None,
    ) -> AgentExecution:
        """
        Resume an agent paused in ``hitl_threshold`` or ``hitl_tool``.

        ``count``/``budget`` are the new absolute thresholds. A threshold that
        is reached and not raised explicitly is extended by the configured
        default window (``hil_count``/``hil_budget``). For ``hitl_tool`` the
        pending calls run first, without asking for approval again.
        """

        def apply(ctx: AgentContext) -> None:
            new_count = count if count is not None else ctx.human_in_loop.count
            new_budget = budget if budget is not None else ctx.human_in_loop.budget
            if count is None and ctx.iterations >= new_count:
                new_count = ctx.iterations + self._settings.hil_count
            if budget is None and ctx.cost >= new_budget:
                new_budget = ctx.cost + self._settings.hil_budget
            ctx.human_in_loop = HumanInLoop(count=new_count, budget=new_budget)
            if note:
                ctx.messages.append(LlmMessage(role="user", content=note))

        return await self._resume(
            agent_id, execution_id, [AgentState.hitl_threshold, AgentState.hitl_tool], apply
        )

    async def provide_feedback(self, agent_id: str, execution_id: str, feedback: str) -> AgentExecution:
        """Answer the question of an agent paused in ``hitl_feedback``."""

        def apply(ctx: AgentContext) -> None:
            ctx.feedback_request = None
            ctx.messages.append(LlmMessage(role="user", content=feedback))

        return await self._resume(agent_id, execution_id, [AgentState.hitl_feedback], apply)

    async def resume_completed(self, agent_id: str, execution_id: str, prompt: str) -> AgentExecution:
        """Reopen a completed agent with a follow-up request, keeping its history."""

        def apply(ctx: AgentContext) -> None:
            ctx.output = None
            ctx.messages.append(LlmMessage(role="user", content=prompt))

        return await self._resume(agent_id, execution_id, [AgentState.completed], apply)

    async def recover(self, agent_id: str, execution_id: str) -> AgentExecution:
        """
        Re-enter the loop of an agent stored as ``running`` without a live execution.

        This is the case after the process died between iterations: the last
        saved context is reloaded and its loop continues under a new
        ``execution_id``. An agent whose execution is alive in this process is
        rejected with ``StaleResumption``.
        """
        return await self._resume(agent_id, execution_id, [AgentState.running], lambda ctx: None)

    async def recover_interrupted(self, limit: int = 100) -> List[AgentExecution]:
        """Recover every stored ``running`` agent that has no live execution in this process."""
        recovered = []
        for ctx in await self._deps.store.list(states=[AgentState.running], limit=limit):
            if self._deps.executions.is_active(ctx.agent_id):
                continue
            try:
                recovered.append(await self.recover(ctx.agent_id, ctx.execution_id))
            except StaleResumption as e:
                logger.warning(f"Agent {ctx.agent_id} was not recovered: {e}")
        return recovered

    async def resume(
        self, agent_id: str, from_state: AgentState, execution_id: str, input: Optional[str] = None
    ) -> AgentExecution:
        """Dispatch to the resume entry point of ``from_state``."""
        from_state = AgentState(from_state)
        if from_state == AgentState.error:
            return await self.resume_error(agent_id, execution_id, input)
        if from_state in (AgentState.hitl_threshold, AgentState.hitl_tool):
            return await self.resume_hil(agent_id, execution_id, note=input)
        if from_state == AgentState.hitl_feedback:
            return await self.provide_feedback(agent_id, execution_id, input or "")
        if from_state == AgentState.completed:
            return await self.resume_completed(agent_id, execution_id, input or "")
        if from_state == AgentState.running:
            return await self.recover(agent_id, execution_id)
        raise ValueError(f"Agents cannot be resumed from state {from_state.value}")

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def cancel(self, agent_id: str, reason: str = "cancelled") -> None:
        """
        Cancel an agent.

        A running agent stops at its next safe checkpoint (before a generation
        call or right after a dispatch) and ends in ``error``. An idle agent
        moves to ``error`` immediately.
        """
        async with self._deps.executions.lock(agent_id):
            execution = self._deps.executions.get(agent_id)
            if execution is not None:
                execution.request_cancel(reason)
                logger.info(f"Cancellation requested for agent {agent_id}: {reason}")
                return
            ctx = await self._deps.store.require(agent_id)
            if ctx.state == AgentState.error:
                return
            logger.info(f"Agent {agent_id} state {ctx.state.value} -> error (cancelled: {reason})")
            ctx.error = f"AgentCancelled: Cancelled by operator: {reason}"
            ctx.pending_calls = []
            ctx.state = AgentState.error
            await self._deps.store.save(ctx)
        await self._deps.handlers.notify(ctx)

    async def request_hil(self, agent_id: str, reason: str = "operator review") -> bool:
        """
        Ask a running agent to pause for human review.

        The run finishes its current iteration and pauses in ``hitl_threshold``
        unless that iteration finishes or asks for feedback.

        Returns:
            True when the request reached a running execution, False when the
            agent is idle (it is already paused or terminal).
        """
        async with self._deps.executions.lock(agent_id):
            execution = self._deps.executions.get(agent_id)
            if execution is None:
                ctx = await self._deps.store.require(agent_id)
                logger.info(f"Agent {agent_id} is not running (state {ctx.state.value}); nothing to pause")
                return False
            execution.request_hil(reason)
            logger.info(f"Human review requested for agent {agent_id}: {reason}")
            return True

    async def submit_message(self, agent_id: str, text: str) -> Optional[AgentExecution]:
        """
        Deliver an external message to an agent.

        Returns:
            The execution that will read the message when one is running or was
            started for it (a reopened ``completed`` agent), else None.
        """
        async with self._deps.executions.lock(agent_id):
            execution = self._deps.executions.get(agent_id)
            if execution is not None:
                execution.context.pending_messages.append(text)
                await self._deps.store.save(execution.context)
                logger.debug(f"Queued message for busy agent {agent_id}")
                return execution
            ctx = await self._deps.store.require(agent_id)
            ctx.pending_messages.append(text)
            if ctx.state == AgentState.completed:
                return await self._reopen_locked(ctx)
            await self._deps.store.save(ctx)
            logger.debug(f"Queued message for idle agent {agent_id} in state {ctx.state.value}")
            return None

    async def update_capabilities(
        self, agent_id: str, add: Iterable[str] = (), remove: Iterable[str] = ()
    ) -> List[str]:
        """
        Add or remove capabilities of an agent.

        A running agent's live registry is updated in place; a dispatch that
        references a removed capability fails with ``UnknownCapability``.

        Returns:
            The agent's capability names after the update.
        """
        removed = set(remove)
        async with self._deps.executions.lock(agent_id):
            execution = self._deps.executions.get(agent_id)
            ctx = execution.context if execution is not None else await self._deps.store.require(agent_id)
            names = self._deps.catalog.resolve_names([n for n in ctx.capabilities if n not in removed] + list(add))
            ctx.capabilities = names
            if execution is not None:
                registry = execution.registry
                for name in registry.names():
                    if name not in names:
                        registry.remove(name)
                for name in names:
                    if not registry.has(name):
                        cap = self._deps.catalog.create(name)
                        if cap is not None:
                            registry.register(cap)
            await self._deps.store.save(ctx)
        logger.info(f"Agent {agent_id} capabilities: {', '.join(names)}")
        return names

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_execution(self, agent_id: str) -> Optional[AgentExecution]:
        return self._deps.executions.get(agent_id)

    async def get_status(self, agent_id: str) -> AgentStatus:
        execution = self._deps.executions.get(agent_id)
        ctx = execution.context if execution is not None else await self._deps.store.require(agent_id)
        return AgentStatus.from_context(ctx)

    async def list_agents(
        self, states: Optional[Iterable[AgentState]] = None, limit: int = 100, offset: int = 0
    ) -> List[AgentStatus]:
        """List agents, most recently updated first; running agents report their live state."""
        statuses = []
        for ctx in await self._deps.store.list(states=states, limit=limit, offset=offset):
            execution = self._deps.executions.get(ctx.agent_id)
            statuses.append(AgentStatus.from_context(execution.context if execution is not None else ctx))
        return statuses

    async def delete(self, agent_ids: Iterable[str]) -> int:
        """
        Delete idle agents and their agent-scoped cache entries.

        Running agents are skipped; cancel them first.

        Returns:
            The number of agents deleted.
        """
        count = 0
        for agent_id in agent_ids:
            async with self._deps.executions.lock(agent_id):
                if self._deps.executions.is_active(agent_id):
                    logger.warning(f"Not deleting agent {agent_id}: it is running")
                    continue
                deleted = await self._deps.store.delete([agent_id])
            if self._deps.cache is not None:
                await self._deps.cache.clear_agent_cache(agent_id)
            count += deleted
        return count
