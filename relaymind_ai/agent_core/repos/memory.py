from __future__ import annotations

"""In-memory repository.

Useful for tests and single-process deployments. Contexts are deep-copied on
the way in and out so callers never share mutable state with the store.
"""

from typing import Dict, Iterable, List, Optional

from ..schemas.domain import AgentContext, AgentState
from .interfaces import AgentContextRepository


class InMemoryAgentContextRepository(AgentContextRepository):
    """Dictionary-backed implementation of ``AgentContextRepository``."""

    def __init__(self) -> None:
        self._items: Dict[str, AgentContext] = {}

    async def save(self, ctx: AgentContext) -> None:
        self._items[ctx.agent_id] = ctx.model_copy(deep=True)

    async def load(self, agent_id: str) -> Optional[AgentContext]:
        ctx = self._items.get(agent_id)
        return ctx.model_copy(deep=True) if ctx is not None else None

    async def delete(self, agent_ids: Iterable[str]) -> int:
        count = 0
        for agent_id in agent_ids:
            if self._items.pop(agent_id, None) is not None:
                count += 1
        return count

    async def list(
        self, states: Optional[Iterable[AgentState]] = None, limit: int = 100, offset: int = 0
    ) -> List[AgentContext]:
        wanted = set(states) if states is not None else None
        items = [c for c in self._items.values() if wanted is None or c.state in wanted]
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return [c.model_copy(deep=True) for c in items[offset : offset + limit]]
