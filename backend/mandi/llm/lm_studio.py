"""
LM Studio provider.

WHAT: Local inference through LM Studio's OpenAI-compatible server
WHY: Works offline; also the last resort behind rotated cloud keys
HOW: Qwen3 thinking disabled with /no_think, stray <think> blocks removed from answers
"""

import re

import httpx

from .chat_completions import ChatCompletionsBackend
from .types import ChatMessage
from ..core.config import settings

NO_THINK = "/no_think"
_THINK_BLOCK = re.compile(r"<(think|thinking)>.*?</\1>\s*", re.DOTALL | re.IGNORECASE)
_THINK_TAG = re.compile(r"</?think(?:ing)?>\s*", re.IGNORECASE)


class LMStudioProvider(ChatCompletionsBackend):
    """Local model server; retries cover a model that is still loading."""

    name = "lm_studio"
    label = "LM Studio"

    def __init__(
        self,
        base_url: str | None = None,
        default_model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.base_url = (base_url or settings.LM_STUDIO_BASE_URL).rstrip("/")
        self.default_model = default_model or settings.LM_STUDIO_DEFAULT_MODEL
        self.timeout = timeout or settings.LM_STUDIO_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.LLM_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    def _prepare_messages(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        """
        Append /no_think to the system prompt, or to the first user turn.

        Returns copies; the caller's messages are left untouched.
        """
        prepared = [dict(msg) for msg in messages]
        target = next((m for m in prepared if m.get("role") == "system"), None)
        separator = "\n\n"
        if target is None:
            target = next((m for m in prepared if m.get("role") == "user"), None)
            separator = " "
        if target is not None and NO_THINK not in target.get("content", ""):
            target["content"] = f"{target.get('content', '')}{separator}{NO_THINK}"
        return prepared

    def _extra_payload(self) -> dict:
        return {"enable_thinking": False}

    def _clean_text(self, text: str) -> str:
        return _THINK_TAG.sub("", _THINK_BLOCK.sub("", text)).strip()

    def _describe_refusal(self) -> str:
        return "Connection refused - is LM Studio running?"
