"""Persistence for agent contexts.

- ``interfaces``: the ``AgentContextRepository`` Protocol.
- ``memory``: dictionary-backed repository for tests and single-process use.
- ``sql``/``models``: SQLAlchemy async repository.
- ``store``: ``AgentContextStore``, the sequential wrapper the engine uses.
"""

from .interfaces import AgentContextRepository
from .memory import InMemoryAgentContextRepository
from .sql import SqlAgentContextRepository, create_all, create_engine, create_sessionmaker
from .store import AgentContextStore

__all__ = [
    "AgentContextRepository",
    "AgentContextStore",
    "InMemoryAgentContextRepository",
    "SqlAgentContextRepository",
    "create_all",
    "create_engine",
    "create_sessionmaker",
]
