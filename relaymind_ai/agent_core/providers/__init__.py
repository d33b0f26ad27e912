"""Text generation providers.

- ``GenerationProvider``: abstract contract every provider implements.
- ``PydanticAIProvider``: adapter over a pydantic-ai model.
- ``MultiProvider``: ordered fall-through facade with quota retry.
"""

from .base import GenerationOptions, GenerationProvider, GenerationResult
from .multi import MultiProvider
from .pydantic_ai import PydanticAIProvider, to_model_messages

__all__ = [
    "GenerationOptions",
    "GenerationProvider",
    "GenerationResult",
    "MultiProvider",
    "PydanticAIProvider",
    "to_model_messages",
]
