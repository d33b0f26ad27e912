"""LangGraph-based execution runtime for agent runs.

The runtime drives the agent control loop: prompt, parse, dispatch, threshold
check, persist, repeat or pause. The main entry point is ``AgentEngine``.

Collaborators are injected through ``EngineDeps``: the context store, the
generation provider, the capability catalogue, the completion handlers, the
function cache, the prompt builder and the response parser.
``ActiveExecutions`` enforces one active execution per agent id.
"""

from .engine import AgentEngine
from .executions import ActiveExecutions, AgentExecution
from .models import EngineDeps
from .parser import JsonFunctionCallParser, ResponseParseError, ResponseParser
from .prompt import DefaultPromptBuilder, PromptBuilder

__all__ = [
    "ActiveExecutions",
    "AgentEngine",
    "AgentExecution",
    "DefaultPromptBuilder",
    "EngineDeps",
    "JsonFunctionCallParser",
    "PromptBuilder",
    "ResponseParseError",
    "ResponseParser",
]
