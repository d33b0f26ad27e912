from __future__ import annotations

"""SQLAlchemy async repository implementation.

This module provides a SQL-backed implementation of
``relaymind_ai.agent_core.repos.interfaces.AgentContextRepository``. It runs
on Postgres (asyncpg) in production and on SQLite (aiosqlite) in tests and
local development.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev).
- Create a session factory with ``create_sessionmaker``.
- Build the repository with ``SqlAgentContextRepository(session_factory)``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. A saved context is durable when ``save`` returns.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..schemas.domain import AgentContext, AgentState
from .interfaces import AgentContextRepository
from .models import AgentContextRow, Base


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Postgres URLs are normalized to the asyncpg driver, e.g. ``postgresql://``
    becomes ``postgresql+asyncpg://``. Other URLs are used as given.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _row_values(ctx: AgentContext) -> dict:
    return {
        "execution_id": ctx.execution_id,
        "name": ctx.name,
        "user_id": ctx.user_id,
        "state": ctx.state.value,
        "iterations": ctx.iterations,
        "cost": ctx.cost,
        "body": ctx.model_dump(mode="json"),
        "created_at": ctx.created_at,
        "updated_at": ctx.updated_at,
    }


@dataclass(frozen=True)
class SqlAgentContextRepository(AgentContextRepository):
    """SQL implementation of ``AgentContextRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def save(self, ctx: AgentContext) -> None:
        """
        Insert or replace the row of ``ctx.agent_id``.

        Args:
            ctx: The context to persist.
        """
        values = _row_values(ctx)
        async with self.session_factory() as s:
            row = await s.get(AgentContextRow, ctx.agent_id)
            if row is None:
                s.add(AgentContextRow(id=ctx.agent_id, **values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await s.commit()

    async def load(self, agent_id: str) -> Optional[AgentContext]:
        """
        Retrieve a context by agent id.

        Returns:
            The stored context, or None if not found.
        """
        async with self.session_factory() as s:
            row = await s.get(AgentContextRow, agent_id)
            if row is None:
                return None
            return AgentContext.model_validate(row.body)

    async def delete(self, agent_ids: Iterable[str]) -> int:
        ids = list(agent_ids)
        if not ids:
            return 0
        async with self.session_factory() as s:
            res = await s.execute(delete(AgentContextRow).where(AgentContextRow.id.in_(ids)))
            await s.commit()
            return int(res.rowcount or 0)

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
        stmt = select(AgentContextRow).order_by(AgentContextRow.updated_at.desc())
        if states is not None:
            stmt = stmt.where(AgentContextRow.state.in_([AgentState(s).value for s in states]))
        stmt = stmt.limit(limit).offset(offset)
        async with self.session_factory() as s:
            rows = (await s.execute(stmt)).scalars().all()
            return [AgentContext.model_validate(r.body) for r in rows]
