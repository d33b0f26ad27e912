"""Agent core: capabilities, resilience, providers, persistence and runtime.

Use ``relaymind_ai.agent_core.factory`` for default wiring and
``AgentService`` as the application-facing API.
"""

from .errors import (
    AgentCancelled,
    AgentNotFound,
    CapabilitySchemaError,
    DispatchError,
    InvalidParameter,
    PersistenceFailure,
    ProviderFailure,
    ProviderNotConfigured,
    ProviderQuotaExceeded,
    RelayMindError,
    StaleResumption,
    UnknownCapability,
    UnknownMethod,
)
from .runtime import AgentEngine, AgentExecution, EngineDeps
from .schemas import AgentContext, AgentState, AgentStatus, FunctionCall, FunctionCallResult, HumanInLoop
from .service import AgentConfig, AgentService

__all__ = [
    "AgentCancelled",
    "AgentConfig",
    "AgentContext",
    "AgentEngine",
    "AgentExecution",
    "AgentNotFound",
    "AgentService",
    "AgentState",
    "AgentStatus",
    "CapabilitySchemaError",
    "DispatchError",
    "EngineDeps",
    "FunctionCall",
    "FunctionCallResult",
    "HumanInLoop",
    "InvalidParameter",
    "PersistenceFailure",
    "ProviderFailure",
    "ProviderNotConfigured",
    "ProviderQuotaExceeded",
    "RelayMindError",
    "StaleResumption",
    "UnknownCapability",
    "UnknownMethod",
]
