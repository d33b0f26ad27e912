"""Quota-aware retry for generation calls.

Providers signal rate limiting in different shapes: our own
``ProviderQuotaExceeded``, pydantic-ai's ``ModelHTTPError`` with status 429,
or a provider SDK error whose message mentions the quota. ``is_quota_error``
recognizes all of them; ``quota_retry`` retries only those, with a delay that
doubles from ``initial_backoff`` up to ``max_backoff``. Any other error, or a
quota error after the retry budget is spent, propagates unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import re
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic_ai.exceptions import ModelHTTPError

from ..errors import ProviderQuotaExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")

_QUOTA_MESSAGE = re.compile(
    r"rate.?limit|quota|resource.?exhausted|too many requests|\b429\b",
    re.IGNORECASE,
)


def is_quota_error(err: BaseException) -> bool:
    if isinstance(err, ProviderQuotaExceeded):
        return True
    if isinstance(err, ModelHTTPError):
        return err.status_code == 429
    status = getattr(err, "status_code", None) or getattr(err, "status", None)
    if status == 429:
        return True
    return bool(_QUOTA_MESSAGE.search(str(err)))


async def call_with_quota_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 5,
    initial_backoff: float = 2.0,
    max_backoff: float = 60.0,
    label: Optional[str] = None,
) -> T:
    """Invoke ``fn`` and retry it while it fails with a quota error.

    ``retries`` is the number of additional attempts, so ``fn`` runs at most
    ``retries + 1`` times.
    """
    delay = initial_backoff
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not is_quota_error(e) or attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                f"Quota exceeded{f' for {label}' if label else ''}, retry {attempt}/{retries} in {delay:.1f}s: {e}"
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_backoff) if delay > 0 else 0.0


def quota_retry(
    retries: int = 5,
    initial_backoff: float = 2.0,
    max_backoff: float = 60.0,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of ``call_with_quota_retry``.

    Usage:
        @quota_retry(retries=3, initial_backoff=1.0)
        async def generate(...):
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await call_with_quota_retry(
                lambda: func(*args, **kwargs),
                retries=retries,
                initial_backoff=initial_backoff,
                max_backoff=max_backoff,
                label=func.__qualname__,
            )

        return wrapper

    return decorator
