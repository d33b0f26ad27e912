from __future__ import annotations

"""Convenience factories for wiring the agent core.

This module contains small helpers to build the default capability catalogue,
the default provider facade and the dependency bundle, and to instantiate an
``AgentService`` from ``Settings``.

The intent is to keep application wiring and tests concise, while still
allowing deployments to provide their own catalogue, providers, repository
and handlers.
"""

from typing import List, Optional, Sequence

from relaymind_ai.core.config import EngineSettings, Settings, get_settings
from relaymind_ai.core.logging_config import setup_logging

from .capabilities.builtin import (
    AGENT,
    FILES,
    LIVE_FILES,
    AgentCapability,
    FilesCapability,
    LiveFilesCapability,
)
from .capabilities.registry import CapabilityCatalog
from .completion.handlers import CompletionHandlerRegistry
from .providers.base import GenerationProvider
from .providers.multi import MultiProvider
from .providers.pydantic_ai import PydanticAIProvider
from .repos.interfaces import AgentContextRepository
from .repos.memory import InMemoryAgentContextRepository
from .repos.sql import SqlAgentContextRepository, create_all, create_engine, create_sessionmaker
from .repos.store import AgentContextStore
from .resilience.cache import FunctionCacheService, InMemoryFunctionCacheService
from .runtime import DefaultPromptBuilder, EngineDeps
from .service import AgentService


def build_default_catalog() -> CapabilityCatalog:
    """Build the default ``CapabilityCatalog``.

    ``Agent`` is part of every registry built from it; ``LiveFiles`` and
    ``Files`` are available on request.
    """
    catalog = CapabilityCatalog(always=[AGENT])
    catalog.register(AGENT, AgentCapability)
    catalog.register(LIVE_FILES, LiveFilesCapability)
    catalog.register(FILES, FilesCapability)
    return catalog


def build_default_providers(settings: Settings) -> List[GenerationProvider]:
    """Build one pydantic-ai provider per supported vendor, in priority order.

    Each provider counts as configured when its API key is set in ``Settings``
    or in its environment variable. Prices come from the vendor configuration,
    so generation cost counts towards the agent's budget.
    """
    vendors = [
        ("openai", settings.openai, "OPENAI_API_KEY"),
        ("anthropic", settings.anthropic, "ANTHROPIC_API_KEY"),
        ("google-gla", settings.google, "GOOGLE_API_KEY"),
    ]
    return [
        PydanticAIProvider(
            f"{prefix}:{config.model}",
            api_key_env=env_var,
            api_key=config.api_key,
            input_price_per_million=config.input_price_per_million,
            output_price_per_million=config.output_price_per_million,
        )
        for prefix, config, env_var in vendors
    ]


def build_provider(providers: Sequence[GenerationProvider], engine_settings: EngineSettings) -> MultiProvider:
    """Wrap ``providers`` in a ``MultiProvider`` using the configured quota retry."""
    return MultiProvider(
        providers,
        quota_retries=engine_settings.quota_retries,
        quota_initial_backoff=engine_settings.quota_initial_backoff_seconds,
        quota_max_backoff=engine_settings.quota_max_backoff_seconds,
    )


async def build_sql_repository(database_url: str) -> SqlAgentContextRepository:
    """Create the SQL repository, creating its table if missing."""
    engine = create_engine(database_url)
    await create_all(engine)
    return SqlAgentContextRepository(create_sessionmaker(engine))


def build_engine_deps(
    *,
    providers: Sequence[GenerationProvider],
    engine_settings: Optional[EngineSettings] = None,
    repository: Optional[AgentContextRepository] = None,
    catalog: Optional[CapabilityCatalog] = None,
    handlers: Optional[CompletionHandlerRegistry] = None,
    cache: Optional[FunctionCacheService] = None,
) -> EngineDeps:
    """Construct ``EngineDeps`` with in-memory defaults for anything not given."""
    engine_settings = engine_settings or EngineSettings()
    return EngineDeps(
        store=AgentContextStore(repository or InMemoryAgentContextRepository()),
        provider=build_provider(providers, engine_settings),
        providers={p.provider_id: p for p in providers},
        catalog=catalog or build_default_catalog(),
        handlers=handlers or CompletionHandlerRegistry(),
        cache=cache if cache is not None else InMemoryFunctionCacheService(),
        prompt_builder=DefaultPromptBuilder(engine_settings),
    )


async def build_agent_service(
    settings: Optional[Settings] = None,
    *,
    providers: Optional[Sequence[GenerationProvider]] = None,
    repository: Optional[AgentContextRepository] = None,
    configure_logging: bool = True,
) -> AgentService:
    """Build an ``AgentService`` from ``Settings``.

    Uses the SQL repository at ``settings.database_url`` unless a repository
    is given, and the default vendor providers unless providers are given.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging()
    engine_settings = settings.engine
    if repository is None:
        repository = await build_sql_repository(settings.database_url)
    deps = build_engine_deps(
        providers=providers if providers is not None else build_default_providers(settings),
        engine_settings=engine_settings,
        repository=repository,
    )
    return AgentService(deps=deps, settings=engine_settings)
