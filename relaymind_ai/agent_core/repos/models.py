from __future__ import annotations

"""SQLAlchemy ORM models for agent context persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``relaymind_ai.agent_core.repos.sql``.

Design
------

One row per agent. The full ``AgentContext`` is stored as a JSON document in
``body``; the columns next to it duplicate the fields used for filtering and
ordering (state, user, update time) so listing does not parse documents.

Table names are prefixed with ``rm_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Float, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class AgentContextRow(Base):
    """Row model for ``rm_agent_contexts``.

    Key fields:

    - ``execution_id``: current run attempt, used to reject stale resumptions.
    - ``state``: engine state (running/completed/error/hitl_*).
    - ``body``: the serialized ``AgentContext`` (JSONB on Postgres).
    """

    __tablename__ = "rm_agent_contexts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    execution_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(256))
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    state: Mapped[str] = mapped_column(String(32), index=True)
    iterations: Mapped[int] = mapped_column(Integer)
    cost: Mapped[float] = mapped_column(Float)

    body: Mapped[Dict[str, Any]] = mapped_column(JSON().with_variant(JSONB, "postgresql"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
