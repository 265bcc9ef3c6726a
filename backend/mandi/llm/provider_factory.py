"""
LLM provider factory with singleton pattern.

WHAT: Factory to get the configured LLM provider
WHY: Centralize provider selection and avoid multiple instances
HOW: Read LLM_PROVIDER from config, build one backend per OpenRouter key, cache singleton
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provider import LLMProvider

# Singleton instance
_provider_instance: "LLMProvider | None" = None


def build_provider() -> "LLMProvider":
    """
    Build a provider from settings.

    With LLM_PROVIDER=openrouter every configured key becomes a backend and
    LM Studio is appended as the last resort.

    Raises:
        ValueError: If provider name is unknown
    """
    from ..core.config import settings
    from ..utils.logger import get_logger
    from .lm_studio import LMStudioProvider

    logger = get_logger(__name__)
    provider_name = settings.LLM_PROVIDER

    if provider_name == "lm_studio":
        provider = LMStudioProvider()
    elif provider_name == "openrouter":
        from .openrouter import OpenRouterProvider
        from .rotation import RotatingProvider

        backends = []
        if settings.LLM_ENABLE_OPENROUTER:
            backends = [OpenRouterProvider(api_key=key) for key in settings.get_openrouter_keys()]
        backends.append(LMStudioProvider())
        provider = RotatingProvider(backends)
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")

    logger.info(f"LLM provider initialized: {provider_name}")
    return provider


def get_provider() -> "LLMProvider":
    """Get the configured LLM provider singleton."""
    global _provider_instance
    if _provider_instance is None:
        _provider_instance = build_provider()
    return _provider_instance


def reset_provider() -> None:
    """Reset the provider singleton (useful for testing)."""
    global _provider_instance
    _provider_instance = None
