from __future__ import annotations

"""Agent context store.

``AgentContextStore`` is what the engine and service talk to. It wraps an
``AgentContextRepository`` and adds the guarantees the engine relies on:

- Writes for one agent id are strictly sequential (one ``asyncio.Lock`` per
  agent). Writes for different agents run concurrently.
- Within one ``execution_id`` a save may never decrease ``iterations`` or
  ``cost`` compared to the last save this store performed.
- Any repository error is raised as ``PersistenceFailure``.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import AgentNotFound, PersistenceFailure
from ..schemas.domain import AgentContext, AgentState
from .interfaces import AgentContextRepository

logger = logging.getLogger(__name__)


class AgentContextStore:
    """Sequential, failure-mapping facade over an ``AgentContextRepository``."""

    def __init__(self, repository: AgentContextRepository) -> None:
        self._repo = repository
        self._locks: Dict[str, asyncio.Lock] = {}
        # agent_id -> (execution_id, iterations, cost) of the last save
        self._watermarks: Dict[str, Tuple[str, int, float]] = {}

    @property
    def repository(self) -> AgentContextRepository:
        return self._repo

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    def _check_monotonic(self, ctx: AgentContext) -> None:
        mark = self._watermarks.get(ctx.agent_id)
        if mark is None or mark[0] != ctx.execution_id:
            return
        _, iterations, cost = mark
        if ctx.iterations < iterations or ctx.cost < cost:
            raise PersistenceFailure(
                f"Refusing to save agent {ctx.agent_id}: execution {ctx.execution_id} would go back from "
                f"iterations={iterations}, cost={cost} to iterations={ctx.iterations}, cost={ctx.cost}"
            )

    async def save(self, ctx: AgentContext) -> None:
        """
        Persist ``ctx``.

        Raises:
            PersistenceFailure: The repository failed or the save would
                decrease ``iterations``/``cost`` within the same execution.
        """
        async with self._lock_for(ctx.agent_id):
            self._check_monotonic(ctx)
            ctx.touch()
            try:
                await self._repo.save(ctx)
            except Exception as e:
                logger.error(f"Saving agent {ctx.agent_id} failed: {type(e).__name__}: {e}")
                raise PersistenceFailure(f"Saving agent {ctx.agent_id} failed: {e}") from e
            self._watermarks[ctx.agent_id] = (ctx.execution_id, ctx.iterations, ctx.cost)
            logger.debug(f"Saved agent {ctx.agent_id} state={ctx.state.value} iterations={ctx.iterations}")

    async def load(self, agent_id: str) -> Optional[AgentContext]:
        try:
            return await self._repo.load(agent_id)
        except Exception as e:
            raise PersistenceFailure(f"Loading agent {agent_id} failed: {e}") from e

    async def require(self, agent_id: str) -> AgentContext:
        """Load a context, raising ``AgentNotFound`` if it does not exist."""
        ctx = await self.load(agent_id)
        if ctx is None:
            raise AgentNotFound(agent_id)
        return ctx

    async def delete(self, agent_ids: Iterable[str]) -> int:
        ids = list(agent_ids)
        try:
            count = await self._repo.delete(ids)
        except Exception as e:
            raise PersistenceFailure(f"Deleting agents {ids} failed: {e}") from e
        for agent_id in ids:
            self._watermarks.pop(agent_id, None)
        return count

    async def list(
        self, states: Optional[Iterable[AgentState]] = None, limit: int = 100, offset: int = 0
    ) -> List[AgentContext]:
        try:
            return await self._repo.list(states=states, limit=limit, offset=offset)
        except Exception as e:
            raise PersistenceFailure(f"Listing agents failed: {e}") from e
