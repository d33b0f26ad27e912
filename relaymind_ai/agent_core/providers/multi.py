from __future__ import annotations

"""Multi-provider generation facade.

``MultiProvider`` holds an ordered list of providers and is itself a
``GenerationProvider``. For each call it walks the list in priority order:

1. Providers reporting ``is_configured() == False`` are skipped.
2. The call to a configured provider is wrapped in quota retry, so a
   rate-limited provider is retried with backoff before it counts as failed.
3. A failing provider is logged and the next one is tried.

When no provider is configured ``ProviderNotConfigured`` is raised; when every
configured provider failed, ``ProviderFailure`` carries each provider's error.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..errors import ProviderFailure, ProviderNotConfigured
from ..resilience.quota_retry import call_with_quota_retry
from ..schemas.domain import LlmMessage
from .base import GenerationOptions, GenerationProvider, GenerationResult

logger = logging.getLogger(__name__)


class MultiProvider(GenerationProvider):
    """Ordered fall-through over several generation providers."""

    def __init__(
        self,
        providers: Sequence[GenerationProvider],
        *,
        quota_retries: int = 5,
        quota_initial_backoff: float = 2.0,
        quota_max_backoff: float = 60.0,
        provider_id: str = "multi",
    ) -> None:
        self._providers: List[GenerationProvider] = list(providers)
        self._quota_retries = quota_retries
        self._quota_initial_backoff = quota_initial_backoff
        self._quota_max_backoff = quota_max_backoff
        self._provider_id = provider_id

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def providers(self) -> List[GenerationProvider]:
        return list(self._providers)

    def is_configured(self) -> bool:
        return any(p.is_configured() for p in self._providers)

    async def generate_text(
        self, messages: List[LlmMessage], options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        errors: List[Tuple[str, BaseException]] = []
        attempted = 0
        for provider in self._providers:
            if not provider.is_configured():
                logger.debug(f"Skipping unconfigured provider {provider.provider_id}")
                continue
            attempted += 1
            try:
                return await call_with_quota_retry(
                    lambda p=provider: p.generate_text(messages, options),
                    retries=self._quota_retries,
                    initial_backoff=self._quota_initial_backoff,
                    max_backoff=self._quota_max_backoff,
                    label=provider.provider_id,
                )
            except Exception as e:
                logger.error(f"Provider {provider.provider_id} failed: {type(e).__name__}: {e}")
                errors.append((provider.provider_id, e))

        if attempted == 0:
            raise ProviderNotConfigured(
                f"None of the providers is configured: {', '.join(p.provider_id for p in self._providers) or '(none)'}"
            )
        raise ProviderFailure(f"All {attempted} configured providers failed", errors)
