"""
OpenRouter provider.

WHAT: Cloud models through OpenRouter, one instance per API key
WHY: Several keys share the load; an exhausted key hands over to the next
HOW: Bearer key on the shared client; 402 (out of credits) counts as a quota error like 429
"""

import httpx

from .chat_completions import ChatCompletionsBackend
from .types import ProviderDisabledError
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


def mask_key(api_key: str) -> str:
    return "*" * 10 + api_key[-4:] if len(api_key) > 4 else "***"


class OpenRouterProvider(ChatCompletionsBackend):
    """OpenRouter backend bound to a single API key."""

    name = "openrouter"
    label = "OpenRouter"
    quota_status_codes = frozenset({402, 429})
    ping_timeout = 10.0
    ping_model_limit = 10

    def __init__(
        self,
        api_key: str | None = None,
        enabled: bool | None = None,
        base_url: str | None = None,
        default_model: str | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        """
        Raises:
            ProviderDisabledError: Enabled without an API key
        """
        self.enabled = settings.LLM_ENABLE_OPENROUTER if enabled is None else enabled
        self.base_url = (base_url or settings.OPENROUTER_BASE_URL).rstrip("/")
        if api_key is None:
            keys = settings.get_openrouter_keys()
            api_key = keys[0] if keys else ""
        self.api_key = api_key
        self.default_model = default_model or settings.OPENROUTER_DEFAULT_MODEL
        self.max_retries = max(1, max_retries if max_retries is not None else settings.LLM_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY
        self.client = None

        if not self.enabled:
            logger.info("OpenRouter provider initialized (disabled)")
            return
        if not self.api_key.strip():
            logger.error("OpenRouter enabled but no API key is configured")
            raise ProviderDisabledError(
                "OpenRouter is enabled but OPENROUTER_API_KEYS is empty. "
                "Add keys from https://openrouter.ai/keys to your .env file"
            )

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=60.0),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "HTTP-Referer": settings.APP_NAME,
                "X-Title": settings.APP_NAME,
            },
        )
        logger.info(f"OpenRouter provider ready (model: {self.default_model}, key: {mask_key(self.api_key)})")

    def _before_call(self):
        if not self.enabled:
            raise ProviderDisabledError("OpenRouter provider is disabled. Set LLM_ENABLE_OPENROUTER=true to enable.")

    def _on_quota(self, status: int):
        logger.warning(f"OpenRouter key {mask_key(self.api_key)} hit quota (HTTP {status})")
