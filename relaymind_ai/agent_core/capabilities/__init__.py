"""Capabilities: interface, registry, dispatcher and built-ins."""

from .base import (
    BaseCapability,
    Capability,
    CapabilityContext,
    CapabilitySchema,
    MethodSchema,
    ParameterSchema,
)
from .builtin import (
    AGENT,
    COMPLETED_CALL,
    FILES,
    LIVE_FILES,
    LIVE_FILES_STATE_KEY,
    REQUEST_FEEDBACK_CALL,
    AgentCapability,
    FilesCapability,
    LiveFilesCapability,
)
from .dispatcher import MEMORY_MARKER, ToolDispatcher, bind_arguments, clean_error, serialize_output
from .registry import CapabilityCatalog, CapabilityRegistry

__all__ = [
    "AGENT",
    "COMPLETED_CALL",
    "FILES",
    "LIVE_FILES",
    "LIVE_FILES_STATE_KEY",
    "MEMORY_MARKER",
    "REQUEST_FEEDBACK_CALL",
    "AgentCapability",
    "BaseCapability",
    "Capability",
    "CapabilityCatalog",
    "CapabilityContext",
    "CapabilityRegistry",
    "CapabilitySchema",
    "FilesCapability",
    "LiveFilesCapability",
    "MethodSchema",
    "ParameterSchema",
    "ToolDispatcher",
    "bind_arguments",
    "clean_error",
    "serialize_output",
]
