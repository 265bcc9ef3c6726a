"""LLM provider layer: local and cloud chat backends behind one protocol."""

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderRateLimitError,
    ProviderDisabledError,
    ProviderResponseError,
)
from .provider import LLMProvider
from .chat_completions import ChatCompletionsBackend
from .lm_studio import LMStudioProvider
from .openrouter import OpenRouterProvider
from .rotation import RotatingProvider
from .provider_factory import build_provider, get_provider, reset_provider

__all__ = [
    "ChatMessage",
    "LLMResult",
    "ProviderStatus",
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ProviderRateLimitError",
    "ProviderDisabledError",
    "ProviderResponseError",
    "LLMProvider",
    "ChatCompletionsBackend",
    "LMStudioProvider",
    "OpenRouterProvider",
    "RotatingProvider",
    "build_provider",
    "get_provider",
    "reset_provider",
]
