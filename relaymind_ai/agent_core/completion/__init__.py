"""Completion notification for paused and terminal runs."""

from .handlers import (
    CONSOLE_HANDLER_ID,
    CompletionHandler,
    CompletionHandlerRegistry,
    ConsoleCompletedHandler,
    completion_reason,
)

__all__ = [
    "CONSOLE_HANDLER_ID",
    "CompletionHandler",
    "CompletionHandlerRegistry",
    "ConsoleCompletedHandler",
    "completion_reason",
]
