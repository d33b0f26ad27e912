"""Default prompt builder.

Lays out one generation request as:

1. A system message with the agent's system prompt, the available functions,
   the expected response format, the memory entries and the live files.
2. The conversation (user prompts, operator notes and previous responses).
3. A closing user message with the function call history, where large
   outputs are represented by their summaries.

This is a plain, replaceable layout. Applications with their own prompting
strategy inject a different builder through ``EngineDeps``.
"""

import json
import logging
from typing import List, Optional, Protocol, Sequence

from relaymind_ai.core.config import EngineSettings

from ..capabilities.base import CapabilitySchema
from ..capabilities.builtin import LIVE_FILES_STATE_KEY, resolve_within
from ..schemas.domain import AgentContext, FunctionCallResult, LlmMessage

logger = logging.getLogger(__name__)

RESPONSE_FORMAT = (
    "Respond with your reasoning followed by a JSON document listing the functions to call, in order:\n"
    '{"function_calls": [{"name": "<Capability>.<method>", "parameters": {"<name>": <value>}}]}\n'
    "Call Agent.completed when the task is done and Agent.request_feedback to ask the operator a question."
)


class PromptBuilder(Protocol):
    def build(self, ctx: AgentContext, schemas: Sequence[CapabilitySchema]) -> List[LlmMessage]: ...


def render_call(result: FunctionCallResult) -> str:
    params = json.dumps(result.parameters, default=str)
    tag = "output" if result.ok else "error"
    return (
        f'<function_call iteration="{result.iteration}" name="{result.function_name}">\n'
        f"<parameters>{params}</parameters>\n"
        f"<{tag}>{result.prompt_output()}</{tag}>\n"
        f"</function_call>"
    )


class DefaultPromptBuilder:
    """Build generation messages from an ``AgentContext``."""

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self._settings = settings or EngineSettings()

    def build(self, ctx: AgentContext, schemas: Sequence[CapabilitySchema]) -> List[LlmMessage]:
        messages = [LlmMessage(role="system", content=self._system(ctx, schemas))]
        messages.extend(ctx.messages)
        if ctx.function_call_history:
            history = "\n".join(render_call(r) for r in ctx.function_call_history)
            messages.append(
                LlmMessage(
                    role="user",
                    content=f"<function_call_history>\n{history}\n</function_call_history>\nContinue with the task.",
                )
            )
        elif not messages or messages[-1].role != "user":
            messages.append(LlmMessage(role="user", content="Continue with the task."))
        return messages

    def _system(self, ctx: AgentContext, schemas: Sequence[CapabilitySchema]) -> str:
        functions = [d for s in schemas for d in s.describe()]
        parts = []
        if ctx.system_prompt:
            parts.append(ctx.system_prompt)
        parts.append(f"<functions>\n{json.dumps(functions, indent=2)}\n</functions>")
        parts.append(RESPONSE_FORMAT)
        if ctx.memory:
            entries = "\n".join(f'<entry key="{k}">{v}</entry>' for k, v in ctx.memory.items())
            parts.append(f"<memory>\n{entries}\n</memory>")
        live_files = ctx.tool_state.get(LIVE_FILES_STATE_KEY) or []
        rendered = self._live_files(live_files) if live_files else ""
        if rendered:
            parts.append(f"<live-files>\n{rendered}\n</live-files>")
        return "\n\n".join(parts)

    def _live_files(self, paths: Sequence[str]) -> str:
        rendered = []
        for path in paths:
            try:
                target = resolve_within(self._settings.file_system_root, path)
            except PermissionError:
                logger.warning(f"Skipping live file outside of the working directory: {path}")
                continue
            try:
                contents = target.read_text(encoding="utf-8")
            except (OSError, ValueError) as e:
                contents = f"(unavailable: {e})"
            rendered.append(f'<file path="{path}">\n{contents}\n</file>')
        return "\n".join(rendered)
