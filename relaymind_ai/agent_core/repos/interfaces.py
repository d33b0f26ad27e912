from __future__ import annotations

"""Repository interface contracts.

The engine and service depend on this Protocol instead of a concrete
persistence backend.

Contract guidelines
-------------------

- All methods are async.
- Each call is atomic: a ``save`` either stores the whole context or nothing.
- ``load`` returns a context that is independent of any object the caller
  saved earlier (no shared mutable state between caller and store).
- Implementations raise whatever their backend raises; ``AgentContextStore``
  maps those errors to ``PersistenceFailure``.
"""

from typing import Iterable, List, Optional, Protocol

from ..schemas.domain import AgentContext, AgentState


class AgentContextRepository(Protocol):
    """Persist and query ``AgentContext`` records, one per agent id."""

    async def save(self, ctx: AgentContext) -> None:
        """
        Insert or replace the context stored under ``ctx.agent_id``.

        Args:
            ctx: The context to persist.
        """
        ...

    async def load(self, agent_id: str) -> Optional[AgentContext]:
        """
        Retrieve a context by agent id.

        Returns:
            The stored context, or None if no agent has that id.
        """
        ...

    async def delete(self, agent_ids: Iterable[str]) -> int:
        """
        Delete contexts.

        Returns:
            The number of contexts actually deleted.
        """
        ...

    async def list(
        self, states: Optional[Iterable[AgentState]] = None, limit: int = 100, offset: int = 0
    ) -> List[AgentContext]:
        """
        List contexts, most recently updated first.

        Args:
            states: Optional state filter.
            limit: Max number of records to return.
            offset: Pagination offset.
        """
        ...
