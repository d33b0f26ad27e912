from __future__ import annotations

"""Completion handler registry.

Completion handlers are notified whenever a run reaches a paused or terminal
state (``completed``, ``error`` or one of the ``hitl_*`` states). The engine
persists the state first and only then notifies, so a handler always sees a
record that is already durable.

Handlers are registered by id with a factory. Each ``AgentContext`` names the
handler it wants via ``completed_handler_id``; chat or ticketing integrations
register their own ids at process start.

The registry is an ordinary object injected into the engine. ``init()``
installs the default console handler and ``reset()`` drops everything, so
tests can isolate instances.
"""

import logging
from typing import Callable, Dict, List, Optional, Protocol

from ..schemas.domain import AgentContext, AgentState

logger = logging.getLogger(__name__)

CONSOLE_HANDLER_ID = "console"


def completion_reason(ctx: AgentContext) -> str:
    """Human-readable reason for the state a run stopped in."""
    if ctx.state == AgentState.error:
        return f"Agent {ctx.name} ({ctx.agent_id}) failed: {ctx.error or 'unknown error'}"
    if ctx.state == AgentState.hitl_feedback:
        return f"Agent {ctx.name} ({ctx.agent_id}) requests feedback: {ctx.feedback_request or ''}"
    if ctx.state == AgentState.hitl_threshold:
        return (
            f"Agent {ctx.name} ({ctx.agent_id}) paused: thresholds reached "
            f"(iterations {ctx.iterations}/{ctx.human_in_loop.count}, "
            f"cost {ctx.cost:.4f}/{ctx.human_in_loop.budget:.4f})"
        )
    if ctx.state == AgentState.hitl_tool:
        pending = ctx.pending_calls[0].name if ctx.pending_calls else "(none)"
        return f"Agent {ctx.name} ({ctx.agent_id}) awaits approval to run {pending}"
    if ctx.state == AgentState.completed:
        return f"Agent {ctx.name} ({ctx.agent_id}) completed: {ctx.output or ''}"
    return f"Agent {ctx.name} ({ctx.agent_id}) is {ctx.state.value}"


class CompletionHandler(Protocol):
    """Protocol for completion notification targets."""

    handler_id: str

    async def notify(self, ctx: AgentContext) -> None: ...


CompletionHandlerFactory = Callable[[], CompletionHandler]


class ConsoleCompletedHandler:
    """Log the stop reason of a run. The default handler."""

    handler_id = CONSOLE_HANDLER_ID

    async def notify(self, ctx: AgentContext) -> None:
        level = logging.ERROR if ctx.state == AgentState.error else logging.INFO
        logger.log(level, completion_reason(ctx))


class CompletionHandlerRegistry:
    """
    Registry of completion handler factories keyed by handler id.

    Notes:
        - ``register`` overwrites an existing id with a warning.
        - ``get`` logs an error and returns None for an unknown id.
        - ``notify`` never raises; handler failures are logged.
    """

    def __init__(self, *, install_defaults: bool = True) -> None:
        self._factories: Dict[str, CompletionHandlerFactory] = {}
        if install_defaults:
            self.init()

    def init(self) -> None:
        """Install the default handlers, keeping any registered ones."""
        self._factories.setdefault(CONSOLE_HANDLER_ID, ConsoleCompletedHandler)

    def reset(self) -> None:
        """Drop every registered handler, then reinstall the defaults."""
        self._factories = {}
        self.init()

    def register(self, handler_id: str, factory: CompletionHandlerFactory) -> None:
        """
        Register a handler factory.

        Args:
            handler_id: The id contexts refer to in ``completed_handler_id``.
            factory: Zero-argument callable returning a handler instance.
        """
        if handler_id in self._factories:
            logger.warning(f"Completion handler '{handler_id}' already registered. Overwriting.")
        self._factories[handler_id] = factory

    def has(self, handler_id: str) -> bool:
        return handler_id in self._factories

    def ids(self) -> List[str]:
        return list(self._factories)

    def get(self, handler_id: Optional[str]) -> Optional[CompletionHandler]:
        """
        Build the handler registered under ``handler_id``.

        Returns:
            A handler instance, or None if ``handler_id`` is empty or unknown.
        """
        if not handler_id:
            return None
        factory = self._factories.get(handler_id)
        if factory is None:
            logger.error(f"No completion handler found for id {handler_id}")
            return None
        return factory()

    async def notify(self, ctx: AgentContext) -> bool:
        """
        Notify the handler named by ``ctx.completed_handler_id``.

        Returns:
            True if a handler ran without raising.
        """
        try:
            handler = self.get(ctx.completed_handler_id)
            if handler is None:
                return False
            await handler.notify(ctx)
            return True
        except Exception as e:
            logger.error(
                f"Completion handler '{ctx.completed_handler_id}' failed for agent {ctx.agent_id}: "
                f"{type(e).__name__}: {e}"
            )
            return False
