"""
Shared client for OpenAI-compatible chat completion backends.

WHAT: One request/retry/error-mapping loop for every HTTP backend
WHY: LM Studio and OpenRouter speak the same wire format and differ only at the edges
HOW: Subclasses adjust messages, payload, response text and quota status codes
"""

import asyncio
import json

import httpx

from .types import (
    ChatMessage,
    LLMResult,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderStatus,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ChatCompletionsBackend:
    """Base for providers exposing /models and /chat/completions."""

    name = "chat_completions"
    label = "Chat backend"
    quota_status_codes: frozenset[int] = frozenset({429})
    ping_timeout = 5.0
    ping_model_limit: int | None = None

    base_url: str
    default_model: str
    max_retries: int
    retry_delay: float
    client: httpx.AsyncClient | None

    # Hooks -------------------------------------------------------------

    def _prepare_messages(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        return messages

    def _extra_payload(self) -> dict:
        return {}

    def _clean_text(self, text: str) -> str:
        return text.strip()

    def _before_call(self):
        """Raise when the backend cannot be used at all."""

    def _describe_refusal(self) -> str:
        return "Connection refused"

    def _on_quota(self, status: int):
        logger.warning(f"{self.label} quota reached (HTTP {status})")

    # Shared flow -------------------------------------------------------

    async def ping(self) -> ProviderStatus:
        """
        Check availability by listing models.

        Network failures are reported in the status, never raised.
        """
        self._before_call()

        def down(error: str) -> ProviderStatus:
            return ProviderStatus(available=False, base_url=self.base_url, error=error, backend=self.name)

        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=self.ping_timeout)
            response.raise_for_status()
            models = [m.get("id") for m in response.json().get("data", [])]
        except httpx.TimeoutException:
            logger.warning(f"{self.label} ping timed out")
            return down("Connection timeout")
        except httpx.ConnectError:
            logger.warning(f"{self.label} not reachable")
            return down(self._describe_refusal())
        except Exception as e:
            logger.error(f"{self.label} ping failed: {e}")
            return down(str(e))

        if self.ping_model_limit is not None:
            models = models[:self.ping_model_limit]
        return ProviderStatus(
            available=True,
            base_url=self.base_url,
            models=models or None,
            backend=self.name,
        )

    async def _backoff(self, attempt: int):
        await asyncio.sleep(self.retry_delay * (2 ** attempt))

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """
        Generate a complete (non-streamed) response.

        Timeouts, refused connections and 5xx answers are retried with
        exponential backoff up to max_retries attempts.

        Raises:
            ProviderTimeoutError: Every attempt timed out
            ProviderUnavailableError: Backend not reachable or failing with 5xx
            ProviderRateLimitError: Backend answered with a quota status
            ProviderResponseError: Any other HTTP error or a malformed body
        """
        self._before_call()
        model_to_use = model or self.default_model
        payload = {
            "model": model_to_use,
            "messages": self._prepare_messages(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
            **self._extra_payload(),
        }
        if stop:
            payload["stop"] = stop

        last_attempt = self.max_retries - 1
        for attempt in range(self.max_retries):
            progress = f"attempt {attempt + 1}/{self.max_retries}"
            try:
                response = await self.client.post(f"{self.base_url}/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()
                raw_text = data["choices"][0]["message"]["content"]
            except httpx.TimeoutException as e:
                logger.warning(f"{self.label} timeout ({progress})")
                if attempt == last_attempt:
                    raise ProviderTimeoutError(f"Request timed out after {self.max_retries} attempts") from e
                await self._backoff(attempt)
                continue
            except httpx.ConnectError as e:
                logger.error(f"{self.label} connection refused ({progress})")
                if attempt == last_attempt:
                    raise ProviderUnavailableError(f"{self.label} is not reachable") from e
                await self._backoff(attempt)
                continue
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in self.quota_status_codes:
                    self._on_quota(status)
                    raise ProviderRateLimitError(f"HTTP {status}: quota exhausted") from e
                if status < 500:
                    raise ProviderResponseError(f"HTTP {status}: {e.response.text}") from e
                logger.error(f"{self.label} server error {status} ({progress})")
                if attempt == last_attempt:
                    raise ProviderUnavailableError(f"Server error: {status}") from e
                await self._backoff(attempt)
                continue
            except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
                logger.error(f"Invalid response from {self.label}: {e}")
                raise ProviderResponseError(f"Invalid response format: {e}") from e

            usage = data.get("usage", {})
            response_model = data.get("model", model_to_use)
            logger.info(
                f"{self.label} generate success (model: {response_model}, tokens: {usage.get('total_tokens', 'unknown')})"
            )
            return LLMResult(text=self._clean_text(raw_text or ""), usage=usage, model=response_model)

    async def close(self):
        """Close the HTTP client."""
        if self.client is not None:
            await self.client.aclose()
