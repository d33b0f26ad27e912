from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from relaymind_ai.agent_core.capabilities.base import CapabilityContext
from relaymind_ai.agent_core.resilience.cache import (
    CacheKey,
    CacheScope,
    InMemoryFunctionCacheService,
    cache_retry,
    cached_call,
)
from relaymind_ai.agent_core.schemas.domain import AgentContext, HumanInLoop
from relaymind_ai.core.config import EngineSettings


def _key(scope: CacheScope = CacheScope.agent, scope_id: str = "a1", *args: Any) -> CacheKey:
    return CacheKey.build(scope, scope_id, "Search", "query", list(args) or ["x"])


class _Search:
    name = "Search"

    def __init__(self, failures: int = 0) -> None:
        self.calls: List[str] = []
        self._failures = failures

    @cache_retry(scope=CacheScope.user, retries=2)
    async def query(self, ctx: CapabilityContext, text: str) -> Dict[str, Any]:
        self.calls.append(text)
        if self._failures > 0:
            self._failures -= 1
            raise ConnectionError("flaky upstream")
        return {"hits": [text]}

    @cache_retry(scope=CacheScope.agent)
    async def configured(self, ctx: CapabilityContext, text: str) -> str:
        self.calls.append(text)
        raise ConnectionError("down")


def _ctx(cache=None, user_id: str = "u1", agent_id: str = "a1", cache_retries: int = 0) -> CapabilityContext:
    agent = AgentContext(agent_id=agent_id, user_id=user_id, human_in_loop=HumanInLoop(count=5, budget=1.0))
    return CapabilityContext(agent=agent, settings=EngineSettings(cache_retries=cache_retries), cache=cache)


def test_cache_key_is_stable_for_equal_arguments() -> None:
    a = CacheKey.build(CacheScope.agent, "a1", "C", "m", [{"b": 1, "a": 2}])
    b = CacheKey.build(CacheScope.agent, "a1", "C", "m", [{"a": 2, "b": 1}])
    assert a == b
    assert a != CacheKey.build(CacheScope.agent, "a2", "C", "m", [{"a": 2, "b": 1}])


@pytest.mark.asyncio
async def test_get_set_delete() -> None:
    cache = InMemoryFunctionCacheService()
    key = _key()

    assert await cache.get_value(key) == (False, None)
    await cache.set_value(key, None)
    assert await cache.get_value(key) == (True, None)
    assert await cache.delete_value(key) is True
    assert await cache.delete_value(key) is False


@pytest.mark.asyncio
async def test_clear_by_scope() -> None:
    cache = InMemoryFunctionCacheService()
    await cache.set_value(_key(CacheScope.agent, "a1"), 1)
    await cache.set_value(_key(CacheScope.agent, "a2"), 2)
    await cache.set_value(_key(CacheScope.user, "u1"), 3)
    await cache.set_value(_key(CacheScope.global_, ""), 4)

    assert await cache.clear_agent_cache("a1") == 1
    assert await cache.clear_user_cache("u1") == 1
    assert cache.size() == 2
    assert await cache.clear_global_cache() == 1
    assert await cache.get_value(_key(CacheScope.agent, "a2")) == (True, 2)


@pytest.mark.asyncio
async def test_max_size_evicts_oldest_entry() -> None:
    cache = InMemoryFunctionCacheService(max_size=2)
    k1, k2, k3 = (_key(CacheScope.agent, "a1", n) for n in (1, 2, 3))
    await cache.set_value(k1, 1)
    await cache.set_value(k2, 2)
    await cache.set_value(k3, 3)

    assert cache.size() == 2
    assert (await cache.get_value(k1))[0] is False
    assert (await cache.get_value(k3))[0] is True


@pytest.mark.asyncio
async def test_ttl_expires_entries() -> None:
    cache = InMemoryFunctionCacheService(ttl=0.01)
    key = _key()
    await cache.set_value(key, "v")
    await asyncio.sleep(0.05)

    assert await cache.get_value(key) == (False, None)
    assert cache.size() == 0


@pytest.mark.asyncio
async def test_cached_call_invokes_once() -> None:
    cache = InMemoryFunctionCacheService()
    calls: List[int] = []

    async def fn() -> int:
        calls.append(1)
        return 42

    assert await cached_call(cache, _key(), fn) == 42
    assert await cached_call(cache, _key(), fn) == 42
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_cached_call_does_not_store_failures() -> None:
    cache = InMemoryFunctionCacheService()

    async def fn() -> int:
        raise ValueError("nope")

    with pytest.raises(ValueError):
        await cached_call(cache, _key(), fn, retries=1)
    assert cache.size() == 0


@pytest.mark.asyncio
async def test_decorator_retries_then_caches_per_user() -> None:
    cache = InMemoryFunctionCacheService()
    search = _Search(failures=2)

    first = await search.query(_ctx(cache, user_id="u1"), "cats")
    again = await search.query(_ctx(cache, user_id="u1", agent_id="a2"), "cats")
    other_user = await search.query(_ctx(cache, user_id="u2"), "cats")

    assert first == again == other_user == {"hits": ["cats"]}
    # Two failures and one success for u1, then one call for u2.
    assert search.calls == ["cats", "cats", "cats", "cats"]


@pytest.mark.asyncio
async def test_decorator_uses_configured_retries() -> None:
    search = _Search()

    with pytest.raises(ConnectionError):
        await search.configured(_ctx(InMemoryFunctionCacheService(), cache_retries=2), "q")
    assert search.calls == ["q", "q", "q"]


@pytest.mark.asyncio
async def test_decorator_without_cache_calls_through() -> None:
    search = _Search()

    await search.query(_ctx(None), "dogs")
    await search.query(_ctx(None), "dogs")

    assert search.calls == ["dogs", "dogs"]
