from __future__ import annotations

"""Active execution registry.

At most one task may execute the loop for a given ``agent_id``.
``ActiveExecutions`` is the process-scoped registry enforcing that:

- ``lock(agent_id)`` returns the per-agent lock callers hold while they load
  a context, compare execution ids and claim the agent. Because the three
  steps happen under one lock, two concurrent resume requests for the same
  agent yield exactly one claim.
- ``claim`` registers an ``AgentExecution``; a second claim for a busy agent
  raises ``StaleResumption``.
- ``release`` removes the execution once its task has settled.

The lock is never held across a generation or tool call; it only guards the
short bookkeeping sections around them.
"""

import asyncio
from typing import Dict, List, Optional

from ..capabilities.registry import CapabilityRegistry
from ..errors import StaleResumption
from ..schemas.domain import AgentContext


class AgentExecution:
    """Handle of one running execution.

    Holds the live ``AgentContext`` and capability registry of the run. Other
    tasks (message submission, capability updates, cancellation) act on the
    live objects while the execution is registered.
    """

    def __init__(self, context: AgentContext, registry: CapabilityRegistry) -> None:
        self.context = context
        self.registry = registry
        self.execution_id = context.execution_id
        self.cancel_reason: Optional[str] = None
        self.hil_reason: Optional[str] = None
        self.task: Optional["asyncio.Task[AgentContext]"] = None

    @property
    def agent_id(self) -> str:
        return self.context.agent_id

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_reason is not None

    def request_cancel(self, reason: str) -> None:
        if self.cancel_reason is None:
            self.cancel_reason = reason

    @property
    def hil_requested(self) -> bool:
        return self.hil_reason is not None

    def request_hil(self, reason: str) -> None:
        """Ask the run to pause in ``hitl_threshold`` at the end of the current iteration."""
        if self.hil_reason is None:
            self.hil_reason = reason

    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait(self) -> AgentContext:
        """Wait for the execution to settle and return the final context."""
        if self.task is None:
            raise RuntimeError(f"Execution {self.execution_id} was never started")
        return await self.task


class ActiveExecutions:
    """Registry of agent ids currently executing the loop."""

    def __init__(self) -> None:
        self._running: Dict[str, AgentExecution] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    def get(self, agent_id: str) -> Optional[AgentExecution]:
        return self._running.get(agent_id)

    def is_active(self, agent_id: str) -> bool:
        return agent_id in self._running

    def claim(self, execution: AgentExecution) -> None:
        """
        Register ``execution`` as the one active execution of its agent.

        Raises:
            StaleResumption: Another execution of the agent is active.
        """
        current = self._running.get(execution.agent_id)
        if current is not None:
            raise StaleResumption(
                execution.agent_id,
                execution.execution_id,
                current.execution_id,
                reason=f"execution {current.execution_id} is still active",
            )
        self._running[execution.agent_id] = execution

    def release(self, execution: AgentExecution) -> None:
        if self._running.get(execution.agent_id) is execution:
            del self._running[execution.agent_id]

    def active_ids(self) -> List[str]:
        return list(self._running)
