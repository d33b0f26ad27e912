"""Resilience wrappers for external calls.

- ``cache``: scoped memoization of idempotent capability calls with bounded
  retry on a miss (``cache_retry``/``cached_call``).
- ``quota_retry``: exponential backoff on provider rate-limit/quota errors
  (``quota_retry``/``call_with_quota_retry``).
"""

from .cache import (
    CacheKey,
    CacheScope,
    FunctionCacheService,
    InMemoryFunctionCacheService,
    cache_retry,
    cached_call,
)
from .quota_retry import call_with_quota_retry, is_quota_error, quota_retry

__all__ = [
    "CacheKey",
    "CacheScope",
    "FunctionCacheService",
    "InMemoryFunctionCacheService",
    "cache_retry",
    "cached_call",
    "call_with_quota_retry",
    "is_quota_error",
    "quota_retry",
]
