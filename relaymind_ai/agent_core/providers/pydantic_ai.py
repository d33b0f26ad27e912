"""Pydantic AI generation provider.

Adapts a pydantic-ai model (a ``"provider:model"`` string or a ``Model``
instance) to ``GenerationProvider``. The conversation is replayed as
pydantic-ai message history and the last message becomes the user prompt.

Cost is computed from token usage with per-million-token prices, since
pydantic-ai reports tokens but not money.
"""

import os
from typing import Any, List, Optional, Union

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from relaymind_ai.core.logging_config import get_logger

from ..errors import ProviderQuotaExceeded
from ..schemas.domain import LlmMessage
from .base import GenerationOptions, GenerationProvider, GenerationResult

logger = get_logger(__name__)


def to_model_messages(messages: List[LlmMessage]) -> List[ModelMessage]:
    """Convert ``LlmMessage`` items into pydantic-ai message history.

    Adjacent system and user messages are grouped into one ``ModelRequest``;
    assistant messages become ``ModelResponse`` items.
    """
    history: List[ModelMessage] = []
    request_parts: List[Any] = []
    for m in messages:
        if m.role == "assistant":
            if request_parts:
                history.append(ModelRequest(parts=request_parts))
                request_parts = []
            history.append(ModelResponse(parts=[TextPart(content=m.content)]))
        elif m.role == "system":
            request_parts.append(SystemPromptPart(content=m.content))
        else:
            request_parts.append(UserPromptPart(content=m.content))
    if request_parts:
        history.append(ModelRequest(parts=request_parts))
    return history


class PydanticAIProvider(GenerationProvider):
    """Generation provider backed by a pydantic-ai ``Agent``.

    Attributes:
        model: Model identifier (e.g. ``"openai:gpt-4o"``) or a ``Model`` instance
        api_key_env: Environment variable pydantic-ai reads the API key from.
            None means always configured (e.g. local or test models).
        api_key: API key from settings. When given, it is exported to
            ``api_key_env`` before the model is first used, unless that
            variable is already set.
        input_price_per_million: Price of one million input tokens
        output_price_per_million: Price of one million output tokens
    """

    def __init__(
        self,
        model: Union[str, Model],
        *,
        provider_id: Optional[str] = None,
        api_key_env: Optional[str] = None,
        api_key: Optional[str] = None,
        input_price_per_million: float = 0.0,
        output_price_per_million: float = 0.0,
    ) -> None:
        self._model = model
        self._provider_id = provider_id or (model if isinstance(model, str) else model.model_name)
        self._api_key_env = api_key_env
        self._api_key = api_key
        self._input_price = input_price_per_million
        self._output_price = output_price_per_million
        self._agent: Optional[Agent] = None

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def is_configured(self) -> bool:
        if self._api_key_env is None:
            return True
        return bool(self._api_key or os.environ.get(self._api_key_env))

    def _export_api_key(self) -> None:
        if self._api_key_env and self._api_key and not os.environ.get(self._api_key_env):
            os.environ[self._api_key_env] = self._api_key
            logger.debug(f"Exported {self._api_key_env} from settings for {self._provider_id}")

    def _get_agent(self) -> Agent:
        if self._agent is None:
            self._export_api_key()
            self._agent = Agent(self._model, output_type=str, defer_model_check=True)
        return self._agent

    def cost_for(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens * self._input_price + output_tokens * self._output_price) / 1_000_000

    async def generate_text(
        self, messages: List[LlmMessage], options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        if not messages:
            raise ValueError("generate_text requires at least one message")

        last = messages[-1]
        prompt: Optional[str]
        if last.role == "user":
            history = to_model_messages(messages[:-1])
            prompt = last.content
        else:
            history = to_model_messages(messages)
            prompt = None

        model_settings = options.to_model_settings() if options is not None else {}
        try:
            result = await self._get_agent().run(
                prompt,
                message_history=history or None,
                model_settings=model_settings or None,
            )
        except ModelHTTPError as e:
            if e.status_code == 429:
                raise ProviderQuotaExceeded(f"{self._provider_id}: {e}") from e
            raise

        # ``usage`` is a method in older pydantic-ai releases and a property in newer ones.
        usage = result.usage
        if callable(usage):
            usage = usage()
        input_tokens = int(getattr(usage, "input_tokens", None) or getattr(usage, "request_tokens", None) or 0)
        output_tokens = int(getattr(usage, "output_tokens", None) or getattr(usage, "response_tokens", None) or 0)
        cost = self.cost_for(input_tokens, output_tokens)
        logger.debug(
            f"{self._provider_id} generated {len(result.output)} chars "
            f"(in={input_tokens}, out={output_tokens}, cost={cost:.6f})"
        )
        return GenerationResult(
            text=result.output,
            cost=cost,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            provider_id=self._provider_id,
        )
