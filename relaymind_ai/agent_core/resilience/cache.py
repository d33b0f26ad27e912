"""Scoped function result cache.

The cache memoizes idempotent external calls made by capabilities. A key is
``(scope, scope_id, capability, method, serialized arguments)`` where the
scope decides the invalidation boundary:

- ``global``: shared by every agent, cleared explicitly.
- ``user``: cleared with ``clear_user_cache(user_id)``.
- ``agent``: cleared with ``clear_agent_cache(agent_id)``, e.g. when the agent
  is deleted.

The cache store is process-wide and shared between concurrent agents; the
scope id in the key keeps their entries apart.

``cache_retry`` wraps a capability method. On a hit the stored value is
returned without invoking the method; on a miss the method is invoked
(retried up to ``retries`` extra times on failure) and only a successful
result is stored.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Protocol, Sequence, Tuple

if TYPE_CHECKING:
    from ..capabilities.base import CapabilityContext

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"


class CacheScope(str, Enum):
    global_ = "global"
    user = "user"
    agent = "agent"


@dataclass(frozen=True)
class CacheKey:
    scope: CacheScope
    scope_id: str
    capability: str
    method: str
    arguments: str

    @classmethod
    def build(
        cls,
        scope: CacheScope,
        scope_id: str,
        capability: str,
        method: str,
        args: Sequence[Any],
    ) -> "CacheKey":
        serialized = json.dumps(list(args), sort_keys=True, default=str)
        return cls(scope=scope, scope_id=scope_id, capability=capability, method=method, arguments=serialized)


class FunctionCacheService(Protocol):
    """Storage contract for cached function results."""

    async def get_value(self, key: CacheKey) -> Tuple[bool, Any]:
        """
        Look up a cached value.

        Returns:
            ``(True, value)`` on a hit, ``(False, None)`` on a miss.
        """
        ...

    async def set_value(self, key: CacheKey, value: Any) -> None:
        """Store a value under ``key``."""
        ...

    async def delete_value(self, key: CacheKey) -> bool:
        """Drop a single entry; return True if it existed."""
        ...

    async def clear_agent_cache(self, agent_id: str) -> int:
        """Drop every agent-scoped entry of ``agent_id``; return how many were dropped."""
        ...

    async def clear_user_cache(self, user_id: str) -> int:
        """Drop every user-scoped entry of ``user_id``; return how many were dropped."""
        ...

    async def clear_global_cache(self) -> int:
        """Drop every global entry; return how many were dropped."""
        ...


class InMemoryFunctionCacheService:
    """In-process implementation of ``FunctionCacheService``.

    Attributes:
        max_size: Maximum number of entries (0 = unlimited). The oldest entry is
            evicted first once the cache is full.
        ttl: Time-to-live in seconds (None = no expiry)
    """

    def __init__(self, max_size: int = 0, ttl: Optional[float] = None) -> None:
        self._entries: Dict[CacheKey, Tuple[float, Any]] = {}
        self._max_size = max_size
        self._ttl = ttl
        self._lock = asyncio.Lock()

    async def get_value(self, key: CacheKey) -> Tuple[bool, Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            stored_at, value = entry
            if self._ttl is not None and time.monotonic() - stored_at > self._ttl:
                del self._entries[key]
                return False, None
            return True, value

    async def set_value(self, key: CacheKey, value: Any) -> None:
        async with self._lock:
            if key not in self._entries and self._max_size > 0 and len(self._entries) >= self._max_size:
                oldest_key = next(iter(self._entries))
                del self._entries[oldest_key]
            self._entries[key] = (time.monotonic(), value)

    async def delete_value(self, key: CacheKey) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def _clear(self, scope: CacheScope, scope_id: Optional[str]) -> int:
        async with self._lock:
            doomed = [k for k in self._entries if k.scope == scope and (scope_id is None or k.scope_id == scope_id)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    async def clear_agent_cache(self, agent_id: str) -> int:
        return await self._clear(CacheScope.agent, agent_id)

    async def clear_user_cache(self, user_id: str) -> int:
        return await self._clear(CacheScope.user, user_id)

    async def clear_global_cache(self) -> int:
        return await self._clear(CacheScope.global_, None)

    def size(self) -> int:
        """Get the current number of cached entries."""
        return len(self._entries)


def scope_id_for(scope: CacheScope, ctx: "CapabilityContext") -> str:
    if scope == CacheScope.agent:
        return ctx.agent.agent_id
    if scope == CacheScope.user:
        return ctx.agent.user_id or ANONYMOUS_USER
    return ""


async def cached_call(
    cache: FunctionCacheService,
    key: CacheKey,
    fn: Callable[[], Awaitable[Any]],
    *,
    retries: int = 0,
    backoff: float = 0.0,
) -> Any:
    """Return the cached value for ``key`` or compute, store and return it.

    A failing ``fn`` is retried ``retries`` extra times; the last error is
    propagated and nothing is cached.
    """
    hit, value = await cache.get_value(key)
    if hit:
        logger.debug(f"Cache hit for {key.capability}.{key.method} ({key.scope.value})")
        return value

    attempt = 0
    while True:
        try:
            value = await fn()
            break
        except Exception as e:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(f"Cached call {key.capability}.{key.method} failed, retry {attempt}/{retries}: {e}")
            if backoff > 0:
                await asyncio.sleep(backoff * attempt)

    await cache.set_value(key, value)
    return value


def cache_retry(
    scope: CacheScope = CacheScope.agent,
    retries: Optional[int] = None,
    backoff: float = 0.0,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Any]]]:
    """Cache a capability method ``(self, ctx, *args)``.

    The capability name comes from ``self.name`` and the method name from the
    wrapped function. When ``retries`` is None the configured
    ``EngineSettings.cache_retries`` applies.

    Usage:
        @cache_retry(scope=CacheScope.agent)
        async def read(self, ctx: CapabilityContext, path: str) -> str:
            ...
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @wraps(func)
        async def wrapper(self: Any, ctx: "CapabilityContext", *args: Any) -> Any:
            if ctx.cache is None:
                return await func(self, ctx, *args)
            key = CacheKey.build(scope, scope_id_for(scope, ctx), self.name, func.__name__, args)
            n = ctx.settings.cache_retries if retries is None else retries
            return await cached_call(ctx.cache, key, lambda: func(self, ctx, *args), retries=n, backoff=backoff)

        return wrapper

    return decorator
