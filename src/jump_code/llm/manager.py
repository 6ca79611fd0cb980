"""Model client: provider selection, error classification and quota retries."""

import asyncio
import json
import logging
from typing import Dict, List, Any, Optional, AsyncIterator, Type
import anthropic
import openai
import requests
from .base import BaseLLMProvider, ModelResponse, StreamEvent, TextDelta, ToolDefinition, Turn
from .providers import AnthropicProvider, GatewayProvider, OpenAIProvider
from ..core.errors import ConfigurationError, QuotaError, TransportError
from ..utils.config import LLMConfig, config_manager

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: Dict[str, Type[BaseLLMProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gateway": GatewayProvider,
}

QUOTA_MESSAGE = "API quota exceeded or rate limited. Wait a moment and try again, or check your plan and billing."


def classify_error(error: Exception) -> Optional[TransportError]:
    """Map a provider exception onto TransportError/QuotaError.

    Returns None for exceptions that are not transport failures; those are
    programming errors and should propagate unchanged.
    """
    if isinstance(error, TransportError):
        return error

    if isinstance(error, (openai.APIStatusError, anthropic.APIStatusError)):
        status = error.status_code
        if status == 429 or "insufficient_quota" in str(error):
            return QuotaError(QUOTA_MESSAGE, status)
        return TransportError(f"Model endpoint returned {status}: {error}", status)

    if isinstance(error, (openai.APIConnectionError, anthropic.APIConnectionError)):
        return TransportError(f"Could not reach the model endpoint: {error}")

    if isinstance(error, requests.RequestException):
        return TransportError(f"Request failed: {error}")

    return None


def create_provider(config: LLMConfig) -> BaseLLMProvider:
    """Build the provider named in ``config``; raises ConfigurationError."""
    provider_class = PROVIDER_CLASSES.get(config.provider)
    if provider_class is None:
        raise ConfigurationError(
            f"Unknown provider '{config.provider}'. Choose one of: {', '.join(PROVIDER_CLASSES)}"
        )

    if config.provider == "anthropic":
        if not config.api_key:
            raise ConfigurationError("No API key found. Set ANTHROPIC_API_KEY or llm.api_key.")
        return AnthropicProvider(api_key=config.api_key, model=config.model, timeout=config.request_timeout)

    if config.provider == "openai":
        if not config.api_key and not config.base_url:
            raise ConfigurationError("No API key found. Set OPENAI_API_KEY or llm.api_key.")
        return OpenAIProvider(
            api_key=config.api_key or "not-needed",
            model=config.model,
            base_url=config.base_url,
            timeout=config.request_timeout,
        )

    if not config.base_url:
        raise ConfigurationError("The gateway provider needs llm.base_url or JUMP_CODE_API_URL.")
    return GatewayProvider(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        requests_per_minute=config.requests_per_minute,
        timeout=config.request_timeout,
    )


class LLMManager:
    """Sends conversations to the configured provider, retrying quota errors."""

    def __init__(self, config: Optional[LLMConfig] = None, provider: Optional[BaseLLMProvider] = None):
        self._config = config
        self.provider: Optional[BaseLLMProvider] = provider
        self._initialized = False

    @property
    def config(self) -> LLMConfig:
        if self._config is None:
            self._config = config_manager.config.llm
        return self._config

    async def initialize(self) -> None:
        """Create and initialize the provider."""
        if self._initialized:
            return

        if self.provider is None:
            self.provider = create_provider(self.config)
        await self.provider.initialize()
        self._initialized = True
        logger.debug("Using %s provider with model %s", self.provider.name, self.provider.model)

    @property
    def model(self) -> str:
        return self.provider.model if self.provider else self.config.model

    def set_model(self, model: str) -> None:
        """Switch model for subsequent requests."""
        self.config.model = model
        if self.provider:
            self.provider.model = model
            self.provider._tokenizer = None

    def set_config(self, config: LLMConfig) -> None:
        """Adopt updated settings; the provider keeps its connection."""
        self._config = config
        if self.provider and self.provider.model != config.model:
            self.set_model(config.model)

    def _request_kwargs(self) -> Dict[str, Any]:
        return {"temperature": self.config.temperature, "max_tokens": self.config.max_tokens}

    def _retry_delay(self, attempt: int) -> Optional[float]:
        """Backoff before retry ``attempt`` (0-based), or None once retries are spent."""
        if attempt >= self.config.quota_retries:
            return None
        return self.config.retry_backoff * (2 ** attempt)

    async def send(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
    ) -> ModelResponse:
        """Send the conversation; returns the complete response."""
        await self.initialize()

        attempt = 0
        while True:
            try:
                return await self.provider.send(turns, system_prompt, tools, **self._request_kwargs())
            except Exception as e:
                error = classify_error(e)
                if error is None:
                    raise
                delay = self._retry_delay(attempt) if isinstance(error, QuotaError) else None
                if delay is None:
                    if error is e:
                        raise
                    raise error from e
                logger.warning("Rate limited, retrying in %.1fs (attempt %d)", delay, attempt + 1)
                await asyncio.sleep(delay)
                attempt += 1

    async def stream(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
    ) -> AsyncIterator[StreamEvent]:
        """Stream the conversation.

        A quota error is only retried while no text has been emitted yet.
        """
        await self.initialize()

        attempt = 0
        while True:
            emitted = False
            try:
                async for event in self.provider.stream(turns, system_prompt, tools, **self._request_kwargs()):
                    if isinstance(event, TextDelta):
                        emitted = True
                    yield event
                return
            except Exception as e:
                error = classify_error(e)
                if error is None:
                    raise
                delay = None
                if isinstance(error, QuotaError) and not emitted:
                    delay = self._retry_delay(attempt)
                if delay is None:
                    if error is e:
                        raise
                    raise error from e
                logger.warning("Rate limited, retrying in %.1fs (attempt %d)", delay, attempt + 1)
                await asyncio.sleep(delay)
                attempt += 1

    def get_provider_info(self) -> Dict[str, Any]:
        """Get information about the active provider."""
        return {
            "provider": self.provider.name if self.provider else self.config.provider,
            "model": self.model,
            "base_url": self.config.base_url or "default",
            "initialized": self._initialized,
            "available": self.provider.is_available if self.provider else False,
        }

    def count_tokens(self, text: str) -> int:
        """Count tokens using the active provider's tokenizer."""
        if self.provider:
            return self.provider.count_tokens(text)
        return int(len(text.split()) * 1.3)

    def count_turn_tokens(self, turns: List[Turn]) -> int:
        """Approximate the token size of a conversation."""
        total = 0
        for turn in turns:
            for block in turn.content:
                payload = block.model_dump(exclude={"data"}) if block.type == "image" else block.model_dump()
                total += self.count_tokens(json.dumps(payload))
        return total
