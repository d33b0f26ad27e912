from __future__ import annotations

"""Generation provider contract.

A generation provider turns a list of ``LlmMessage`` into text and reports
what the call cost. Providers are interchangeable behind
``GenerationProvider``; the ``MultiProvider`` facade orders them and falls
through on failure.

Providers must be cheap to query for ``is_configured()`` (e.g. check that an
API key is present) since the facade asks before every call.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import LlmMessage


class GenerationOptions(BaseSchema):
    """Per-call generation options.

    ``model_settings`` is passed through to the underlying framework for
    anything not covered by the typed fields.
    """

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model_settings: Dict[str, Any] = Field(default_factory=dict)

    def to_model_settings(self) -> Dict[str, Any]:
        settings: Dict[str, Any] = dict(self.model_settings)
        if self.temperature is not None:
            settings["temperature"] = self.temperature
        if self.max_tokens is not None:
            settings["max_tokens"] = self.max_tokens
        return settings


class GenerationResult(BaseSchema):
    """Text produced by one provider call together with its accounting."""

    text: str
    cost: float = Field(default=0.0, ge=0.0)
    input_tokens: int = 0
    output_tokens: int = 0
    provider_id: str = ""


class GenerationProvider(ABC):
    """Abstract text generation provider."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Stable identifier used in logs and aggregate errors."""

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True when the provider has what it needs to serve requests."""

    @abstractmethod
    async def generate_text(
        self, messages: List[LlmMessage], options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        """
        Generate a completion for ``messages``.

        Args:
            messages: The conversation, oldest first. The last message is the
                one being answered.
            options: Optional per-call generation options.

        Returns:
            GenerationResult with the text and the cost of this call.

        Raises:
            ProviderQuotaExceeded: When the provider rate-limited the call.
        """
