"""
LLM Service

Streaming completion providers used for answer synthesis:
- OpenAI API (GPT-4o family)
- Anthropic API (Claude models)
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import anthropic
import openai
import structlog
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import CompletionError

logger = structlog.get_logger(__name__)


class CompletionProvider(ABC):
    """Abstract base class for streaming completion providers"""

    provider_name = "base"

    def __init__(self, model: str, temperature: float = 0.0, max_tokens: int = 1024):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @abstractmethod
    def validate_config(self) -> bool:
        """Validate that the provider is properly configured"""

    @abstractmethod
    def stream(self, prompt: str) -> AsyncIterator[str]:
        """Stream text deltas for a single-turn prompt.

        Closing the returned iterator (``aclose``) closes the provider stream.
        """


class OpenAICompletionProvider(CompletionProvider):
    """OpenAI chat completions provider"""

    provider_name = "openai"

    def __init__(self, api_key: Optional[str], model: str, **kwargs):
        super().__init__(model, **kwargs)
        self.api_key = api_key
        self.client = AsyncOpenAI(api_key=api_key) if api_key else None

    def validate_config(self) -> bool:
        return self.client is not None

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        if not self.client:
            raise CompletionError(self.provider_name, "OpenAI client not initialized")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
        except (openai.RateLimitError, openai.APITimeoutError, openai.APIConnectionError) as e:
            raise CompletionError(self.provider_name, str(e), retryable=True) from e
        except openai.OpenAIError as e:
            raise CompletionError(self.provider_name, str(e)) from e

        try:
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.OpenAIError as e:
            raise CompletionError(self.provider_name, f"stream interrupted: {e}") from e
        finally:
            await response.close()


class AnthropicCompletionProvider(CompletionProvider):
    """Anthropic messages provider"""

    provider_name = "anthropic"

    def __init__(self, api_key: Optional[str], model: str, **kwargs):
        super().__init__(model, **kwargs)
        self.api_key = api_key
        self.client = AsyncAnthropic(api_key=api_key) if api_key else None

    def validate_config(self) -> bool:
        return self.client is not None

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        if not self.client:
            raise CompletionError(self.provider_name, "Anthropic client not initialized")

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
                stream=True,
            )
        except (anthropic.RateLimitError, anthropic.APITimeoutError, anthropic.APIConnectionError) as e:
            raise CompletionError(self.provider_name, str(e), retryable=True) from e
        except anthropic.AnthropicError as e:
            raise CompletionError(self.provider_name, str(e)) from e

        try:
            async for event in response:
                if event.type == "content_block_delta" and getattr(event.delta, "text", None):
                    yield event.delta.text
        except anthropic.AnthropicError as e:
            raise CompletionError(self.provider_name, f"stream interrupted: {e}") from e
        finally:
            await response.close()


def create_completion_provider(settings: Optional[Settings] = None) -> CompletionProvider:
    """Build the completion provider selected in settings."""
    settings = settings or get_settings()
    config = settings.llm
    kwargs = {"temperature": config.temperature, "max_tokens": config.max_tokens}

    if config.provider == "anthropic":
        provider = AnthropicCompletionProvider(config.anthropic_api_key, config.model, **kwargs)
    else:
        provider = OpenAICompletionProvider(config.openai_api_key, config.model, **kwargs)

    if not provider.validate_config():
        logger.warning("Completion provider has no API key", provider=provider.provider_name)
    else:
        logger.info("Completion provider initialized", provider=provider.provider_name, model=config.model)
    return provider
