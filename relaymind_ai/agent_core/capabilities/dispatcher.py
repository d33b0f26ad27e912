from __future__ import annotations

"""Tool dispatcher.

``ToolDispatcher.dispatch`` turns one model-requested ``FunctionCall`` into
exactly one method invocation on one registered capability and records the
outcome as a ``FunctionCallResult`` in the agent's call history.

Steps
-----

1. Resolve ``"<Capability>.<method>"`` through the registry
   (``UnknownCapability`` / ``UnknownMethod``).
2. Bind arguments (``bind_arguments``): no parameters -> no arguments, one
   parameter -> passed positionally, otherwise each named parameter is placed
   at its schema index (``InvalidParameter`` for unknown names). Parameters
   left out in between are ``UNSET`` and keep their defaults.
3. Invoke with the configured tool timeout.
4. Serialize the return value into ``stdout``, or the error into ``stderr``.
   Outputs above the summary threshold also receive a summary that replaces
   the raw value in later prompts.

Errors never escape ``dispatch``: a failing call is an ordinary result with
``stderr`` set, so the model can react to it in the next iteration.
"""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from relaymind_ai.core.config import EngineSettings

from ..errors import CapabilitySchemaError, InvalidParameter, UnknownMethod
from ..schemas.domain import FunctionCall, FunctionCallResult, LlmMessage
from .base import UNSET, CapabilityContext, MethodSchema
from .registry import CapabilityRegistry

logger = logging.getLogger(__name__)

MEMORY_MARKER = "(see <memory> entry)"
SAVE_MEMORY_CALL = "Agent.save_memory"
GET_MEMORY_CALL = "Agent.get_memory"

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

Summarizer = Callable[[CapabilityContext, str], Awaitable[str]]


def bind_arguments(function_name: str, method: Optional[MethodSchema], parameters: Dict[str, Any]) -> List[Any]:
    """Map a named parameter dict onto a positional argument list.

    Raises:
        InvalidParameter: A parameter name is not declared by the method schema.
        CapabilitySchemaError: Several parameters were supplied but the method
            declares none.
    """
    if not parameters:
        return []
    if len(parameters) == 1:
        return [next(iter(parameters.values()))]

    if method is None or not method.parameters:
        msg = f"Function {function_name} was called with {len(parameters)} parameters but declares no parameter schema"
        logger.error(msg)
        raise CapabilitySchemaError(msg)

    size = max(p.index for p in method.parameters) + 1
    args: List[Any] = [UNSET] * size
    last_filled = -1
    for name, value in parameters.items():
        idx = method.index_of(name)
        if idx is None:
            raise InvalidParameter(function_name, name, method.parameter_names())
        args[idx] = value
        last_filled = max(last_filled, idx)
    # Unsupplied trailing parameters are dropped; gaps stay UNSET and keep their Python defaults.
    return args[: last_filled + 1]


def serialize_output(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, default=str)


def clean_error(err: BaseException) -> str:
    """Format an exception for ``stderr``, without ANSI sequences or control characters."""
    text = f"{type(err).__name__}: {err}"
    text = _ANSI_ESCAPE.sub("", text)
    return _CONTROL_CHARS.sub("", text)


def truncate_summary(text: str, limit: int) -> str:
    """Fallback summary: a prefix of ``text`` with an omission marker."""
    head = text[: max(limit // 2, 1)]
    return f"{head}\n... [{len(text) - len(head)} characters omitted]"


async def summarize_with_provider(ctx: CapabilityContext, text: str) -> str:
    """Condense a large tool output with the run's generation provider.

    The generation cost is charged to the agent.
    """
    if ctx.provider is None:
        raise RuntimeError("no generation provider available for summarization")
    limit = ctx.settings.summary_threshold_chars
    messages = [
        LlmMessage(
            role="system",
            content=(
                "Summarize the following tool output. Keep identifiers, numbers, file paths and error "
                f"messages verbatim. Answer in fewer than {limit // 4} characters."
            ),
        ),
        LlmMessage(role="user", content=text),
    ]
    result = await ctx.provider.generate_text(messages)
    ctx.add_cost(result.cost)
    return result.text


class ToolDispatcher:
    """Resolve, bind, invoke and record model-requested tool calls."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        settings: Optional[EngineSettings] = None,
        summarizer: Optional[Summarizer] = summarize_with_provider,
    ) -> None:
        self._registry = registry
        self._settings = settings or EngineSettings()
        self._summarizer = summarizer

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    def requires_approval(self, call: FunctionCall) -> bool:
        """Return True if the call targets a method flagged for human approval."""
        if not self._registry.has(call.capability):
            return False
        method = self._registry.schema(call.capability).method(call.method)
        return bool(method is not None and method.requires_approval)

    async def dispatch(
        self, ctx: CapabilityContext, call: FunctionCall, *, iteration: Optional[int] = None
    ) -> FunctionCallResult:
        """
        Dispatch one call and append its result to the agent's history.

        Args:
            ctx: Capability context of the run.
            call: The requested call.
            iteration: Iteration number to record; defaults to the iteration
                in progress (``iterations + 1``).

        Returns:
            The recorded ``FunctionCallResult``.
        """
        iteration = ctx.agent.iterations + 1 if iteration is None else iteration
        stdout: Optional[str] = None
        stderr: Optional[str] = None
        try:
            value = await self._invoke(ctx, call)
            stdout = serialize_output(value)
        except Exception as e:
            stderr = clean_error(e)
            logger.debug(f"Call {call.name} failed: {stderr}")

        parameters = dict(call.parameters)
        if call.name == SAVE_MEMORY_CALL and "content" in parameters:
            parameters["content"] = MEMORY_MARKER
        if call.name == GET_MEMORY_CALL and stdout is not None:
            stdout = MEMORY_MARKER

        stdout_summary = await self._maybe_summarize(ctx, stdout)
        stderr_summary = await self._maybe_summarize(ctx, stderr)

        result = FunctionCallResult(
            iteration=iteration,
            function_name=call.name,
            parameters=parameters,
            stdout=stdout,
            stdout_summary=stdout_summary,
            stderr=stderr,
            stderr_summary=stderr_summary,
        )
        ctx.agent.record_call(result)
        logger.debug(f"Dispatched {call.name} for agent {ctx.agent.agent_id} (iteration {iteration}, ok={result.ok})")
        return result

    def _resolve(self, call: FunctionCall) -> Tuple[Any, MethodSchema]:
        capability = self._registry.get(call.capability)
        schema = self._registry.schema(call.capability)
        method = schema.method(call.method)
        if method is None:
            raise UnknownMethod(call.capability, call.method, schema.methods.keys())
        return capability, method

    async def _invoke(self, ctx: CapabilityContext, call: FunctionCall) -> Any:
        capability, method = self._resolve(call)
        args = bind_arguments(call.name, method, dict(call.parameters))
        timeout = self._settings.tool_timeout_seconds
        try:
            return await asyncio.wait_for(capability.invoke(ctx, method.name, args), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"{call.name} did not complete within {timeout}s") from None

    async def _maybe_summarize(self, ctx: CapabilityContext, text: Optional[str]) -> Optional[str]:
        limit = self._settings.summary_threshold_chars
        if text is None or len(text) <= limit:
            return None
        if self._summarizer is not None:
            try:
                return await self._summarizer(ctx, text)
            except Exception as e:
                logger.warning(f"Summarizing {len(text)} characters failed, truncating instead: {e}")
        return truncate_summary(text, limit)
