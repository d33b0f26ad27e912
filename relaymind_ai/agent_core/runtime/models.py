from __future__ import annotations

"""Runtime dependency bundle and LangGraph state types.

The runtime engine is designed to be dependency-injected.

- ``EngineDeps`` collects the store, providers and registries the engine needs.
- ``_RunScope`` bundles the live objects of one execution.
- ``_GraphState`` is the mutable state passed between LangGraph nodes.
"""

from dataclasses import dataclass, field
from typing import Dict, List, NotRequired, Optional, Required, TypedDict

from ..capabilities.base import CapabilityContext
from ..capabilities.dispatcher import Summarizer, ToolDispatcher, summarize_with_provider
from ..capabilities.registry import CapabilityCatalog
from ..completion.handlers import CompletionHandlerRegistry
from ..providers.base import GenerationProvider
from ..repos.store import AgentContextStore
from ..resilience.cache import FunctionCacheService
from ..schemas.domain import FunctionCall
from .executions import ActiveExecutions, AgentExecution
from .parser import JsonFunctionCallParser, ResponseParser
from .prompt import DefaultPromptBuilder, PromptBuilder


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``AgentEngine`` and ``AgentService``.

    This object is typically constructed by application wiring code (see
    ``relaymind_ai.agent_core.factory``). It holds:

    - the context store (persistence),
    - the default generation provider (usually a ``MultiProvider``) and the
      providers an agent may name in ``AgentContext.llms``,
    - the capability catalogue used to build per-execution registries,
    - the completion handler registry,
    - the shared function cache,
    - the prompt builder and response parser,
    - the active execution registry.
    """

    store: AgentContextStore
    provider: GenerationProvider
    catalog: CapabilityCatalog
    handlers: CompletionHandlerRegistry = field(default_factory=CompletionHandlerRegistry)
    cache: Optional[FunctionCacheService] = None
    providers: Dict[str, GenerationProvider] = field(default_factory=dict)
    prompt_builder: PromptBuilder = field(default_factory=DefaultPromptBuilder)
    parser: ResponseParser = field(default_factory=JsonFunctionCallParser)
    executions: ActiveExecutions = field(default_factory=ActiveExecutions)
    summarizer: Optional[Summarizer] = summarize_with_provider


@dataclass(frozen=True)
class _RunScope:
    """Live objects of one execution, shared by every graph node."""

    execution: AgentExecution
    dispatcher: ToolDispatcher
    capability_ctx: CapabilityContext
    provider: GenerationProvider


class _GraphState(TypedDict):
    """Mutable LangGraph state for a single engine execution.

    Required keys:

    - ``scope``: the live objects of the execution.
    - ``calls``: calls of the current iteration not dispatched yet.

    Optional keys:

    - ``_stop``: set when the run leaves ``running``; routes to ``settle``.
    - ``_resume_skip_approval``: internal one-shot flag that lets the first
      pending call of a ``hitl_tool`` resumption run without re-pausing.
    """

    scope: Required[_RunScope]
    calls: Required[List[FunctionCall]]
    _stop: NotRequired[bool]
    _resume_skip_approval: NotRequired[bool]
