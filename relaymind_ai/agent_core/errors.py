"""Error taxonomy of the agent core.

Errors fall into three groups with different propagation rules:

- Dispatch errors (``UnknownCapability``, ``UnknownMethod``,
  ``InvalidParameter``, ``CapabilitySchemaError``) are raised while resolving
  or binding a tool call. The dispatcher records them as ``stderr`` on the
  call result; they never abort a run.
- Provider errors (``ProviderQuotaExceeded``, ``ProviderFailure``,
  ``ProviderNotConfigured``) are retried or fall through the provider list and
  only end a run once every option is exhausted.
- Run control errors (``PersistenceFailure``, ``StaleResumption``,
  ``AgentNotFound``, ``AgentCancelled``) either abort the current iteration or
  reject a request without touching persisted state.
"""

from __future__ import annotations

from typing import Iterable, Sequence


class RelayMindError(Exception):
    """Base class for every error raised by the agent core."""


class DispatchError(RelayMindError):
    """A tool call could not be resolved, bound or configured."""


class UnknownCapability(DispatchError):
    def __init__(self, capability: str, available: Iterable[str] = ()) -> None:
        self.capability = capability
        self.available = sorted(available)
        super().__init__(
            f"Capability '{capability}' is not registered. Available capabilities: {', '.join(self.available) or '(none)'}"
        )


class UnknownMethod(DispatchError):
    def __init__(self, capability: str, method: str, available: Iterable[str] = ()) -> None:
        self.capability = capability
        self.method = method
        self.available = sorted(available)
        super().__init__(
            f"Method '{capability}.{method}' does not exist. Valid methods are: {', '.join(self.available) or '(none)'}"
        )


class InvalidParameter(DispatchError):
    def __init__(self, function_name: str, parameter: str, valid: Sequence[str]) -> None:
        self.function_name = function_name
        self.parameter = parameter
        self.valid = list(valid)
        super().__init__(
            f"Invalid parameter name: {parameter} for function {function_name}. "
            f"Valid parameters are: {', '.join(self.valid)}"
        )


class CapabilitySchemaError(DispatchError):
    """A capability schema cannot bind the supplied arguments (configuration bug)."""


class ProviderQuotaExceeded(RelayMindError):
    """A generation provider reported a rate limit or exhausted quota."""


class ProviderNotConfigured(RelayMindError):
    """No configured generation provider is available."""


class ProviderFailure(RelayMindError):
    """Every configured generation provider failed.

    ``errors`` keeps ``(provider_id, exception)`` pairs in the order the
    providers were tried.
    """

    def __init__(self, message: str, errors: Sequence[tuple[str, BaseException]] = ()) -> None:
        self.errors = list(errors)
        detail = "; ".join(f"{pid}: {err}" for pid, err in self.errors)
        super().__init__(f"{message} ({detail})" if detail else message)


class PersistenceFailure(RelayMindError):
    """Saving or loading an agent context failed. Always fatal for the iteration."""


class StaleResumption(RelayMindError):
    """A resume request referenced an execution id that is no longer current."""

    def __init__(self, agent_id: str, expected: str | None, actual: str | None, reason: str | None = None) -> None:
        self.agent_id = agent_id
        self.expected = expected
        self.actual = actual
        msg = reason or f"execution id mismatch: requested {expected}, current {actual}"
        super().__init__(f"Stale resumption for agent {agent_id}: {msg}")


class AgentNotFound(RelayMindError):
    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"No agent exists with id {agent_id}")


class AgentCancelled(RelayMindError):
    """Raised at a safe checkpoint after an operator cancelled the run."""
