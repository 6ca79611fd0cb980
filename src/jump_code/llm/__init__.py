"""Model client layer for Jump Code."""

from .base import BaseLLMProvider, ModelResponse, StopReason, Turn
from .providers import OpenAIProvider, AnthropicProvider, GatewayProvider
from .manager import LLMManager

__all__ = [
    "BaseLLMProvider",
    "ModelResponse",
    "StopReason",
    "Turn",
    "OpenAIProvider",
    "AnthropicProvider",
    "GatewayProvider",
    "LLMManager",
]
