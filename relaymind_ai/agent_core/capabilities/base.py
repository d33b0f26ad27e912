from __future__ import annotations

"""Capability interface and schema structs.

A capability is a named object exposing one or more callable methods usable
as agent tools. Model output refers to a method by its qualified name
``"<Capability>.<method>"``; the ``ToolDispatcher`` resolves the name through
the ``CapabilityRegistry`` and binds arguments using the method schema.

Schemas are hand-authored ``CapabilitySchema`` values, loaded once into the
registry. Parameter descriptors carry an explicit ``index`` so named
arguments can be placed positionally without introspecting signatures.

Every capability method receives a ``CapabilityContext`` as its first
argument. The context is the only way a capability reaches the agent state
(memory, tool state, cost) and the shared services (cache, provider).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from pydantic import Field

from relaymind_ai.core.config import EngineSettings

from ..errors import UnknownMethod
from ..providers.base import GenerationProvider
from ..resilience.cache import FunctionCacheService
from ..schemas.base import FrozenSchema
from ..schemas.domain import AgentContext


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Placeholder for a parameter the caller left out in the middle of the index range.
UNSET: Any = _Unset()


class ParameterSchema(FrozenSchema):
    name: str
    index: int = Field(ge=0)
    type: str = "string"
    description: str = ""


class MethodSchema(FrozenSchema):
    """Schema of one capability method.

    ``requires_approval`` marks side-effecting methods that pause the run in
    ``hitl_tool`` until an operator resumes it.
    """

    name: str
    description: str = ""
    parameters: List[ParameterSchema] = Field(default_factory=list)
    requires_approval: bool = False

    def parameter_names(self) -> List[str]:
        return [p.name for p in sorted(self.parameters, key=lambda p: p.index)]

    def index_of(self, parameter: str) -> Optional[int]:
        for p in self.parameters:
            if p.name == parameter:
                return p.index
        return None

    def name_at(self, index: int) -> Optional[str]:
        for p in self.parameters:
            if p.index == index:
                return p.name
        return None


class CapabilitySchema(FrozenSchema):
    name: str
    description: str = ""
    methods: Dict[str, MethodSchema] = Field(default_factory=dict)

    def method(self, name: str) -> Optional[MethodSchema]:
        return self.methods.get(name)

    def describe(self) -> List[Dict[str, Any]]:
        """Render the methods as tool descriptions for a prompt."""
        return [
            {
                "name": f"{self.name}.{m.name}",
                "description": m.description,
                "parameters": [
                    {"name": p.name, "type": p.type, "description": p.description}
                    for p in sorted(m.parameters, key=lambda p: p.index)
                ],
            }
            for m in self.methods.values()
        ]


@dataclass(frozen=True)
class CapabilityContext:
    """Execution context passed to capability methods.

    Attributes
    ----------
    agent:
        The live ``AgentContext`` of the run. Capabilities may read and write
        ``memory`` and ``tool_state``.
    settings:
        Engine settings in effect for the run.
    cache:
        Process-wide function cache used by ``cache_retry``.
    provider:
        Generation provider for capabilities that call a model themselves.
    """

    agent: AgentContext
    settings: EngineSettings
    cache: Optional[FunctionCacheService] = None
    provider: Optional[GenerationProvider] = None

    def add_cost(self, amount: float) -> None:
        self.agent.add_cost(amount)


class Capability(Protocol):
    """Protocol for capability implementations."""

    name: str

    def schema(self) -> CapabilitySchema: ...

    async def invoke(self, ctx: CapabilityContext, method: str, args: Sequence[Any]) -> Any: ...


CapabilityMethod = Callable[..., Awaitable[Any]]


class BaseCapability(ABC):
    """Capability base with an explicit method table.

    Subclasses list their callable methods in ``methods()`` and return their
    hand-written schema from ``schema()``. ``invoke`` looks the method up in
    the table; nothing is resolved by attribute name.
    """

    name: str = ""

    @abstractmethod
    def schema(self) -> CapabilitySchema:
        """Return the schema describing every method in ``methods()``."""

    @abstractmethod
    def methods(self) -> Dict[str, CapabilityMethod]:
        """Return the method table: method name -> bound coroutine ``(ctx, *args)``."""

    async def invoke(self, ctx: CapabilityContext, method: str, args: Sequence[Any]) -> Any:
        """Call ``method`` with ``args``.

        Arguments after the first ``UNSET`` entry are passed by keyword so the
        skipped parameters keep their Python defaults.
        """
        table = self.methods()
        fn = table.get(method)
        if fn is None:
            raise UnknownMethod(self.name, method, table.keys())
        if not any(a is UNSET for a in args):
            return await fn(ctx, *args)

        first_gap = next(i for i, a in enumerate(args) if a is UNSET)
        method_schema = self.schema().method(method)
        keywords: Dict[str, Any] = {}
        for index in range(first_gap + 1, len(args)):
            if args[index] is UNSET:
                continue
            name = method_schema.name_at(index) if method_schema is not None else None
            if name is None:
                raise TypeError(f"{self.name}.{method} has no parameter at index {index}")
            keywords[name] = args[index]
        return await fn(ctx, *args[:first_gap], **keywords)
