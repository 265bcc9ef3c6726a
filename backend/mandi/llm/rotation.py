"""
Credential and backend rotation.

WHAT: Provider that fans one request over an ordered list of backends
WHY: Several interchangeable API keys (and a local fallback) share quota
HOW: Try the current backend; on rate limit or unavailability advance to the next and stay there
"""

from .types import (
    ChatMessage,
    LLMResult,
    ProviderDisabledError,
    ProviderRateLimitError,
    ProviderStatus,
    ProviderUnavailableError,
)
from .provider import LLMProvider
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Failures that mean "this backend, not this request" is the problem
ROTATE_ON = (ProviderRateLimitError, ProviderUnavailableError, ProviderDisabledError)


class RotatingProvider:
    """
    LLMProvider over several backends.

    Each call tries every backend at most once, starting from the one that
    last succeeded. Errors other than rate limits or unavailability are
    raised straight away.
    """

    name = "rotating"

    def __init__(self, backends: list[LLMProvider]):
        if not backends:
            raise ValueError("RotatingProvider needs at least one backend")
        self.backends = list(backends)
        self.current = 0

    @property
    def active(self) -> LLMProvider:
        return self.backends[self.current]

    def _advance(self, reason: Exception):
        previous = self.current
        self.current = (self.current + 1) % len(self.backends)
        logger.warning(
            f"Rotating LLM backend {previous} ({self.backends[previous].name}) -> "
            f"{self.current} ({self.active.name}): {reason}"
        )

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        last_error: Exception | None = None
        for _ in range(len(self.backends)):
            try:
                return await self.active.generate(
                    messages, temperature=temperature, max_tokens=max_tokens, stop=stop, model=model
                )
            except ROTATE_ON as e:
                last_error = e
                self._advance(e)
        raise last_error

    async def ping(self) -> ProviderStatus:
        """Status of the first backend that answers, else of the active one."""
        statuses = []
        for backend in self.backends:
            try:
                status = await backend.ping()
            except ProviderDisabledError as e:
                status = ProviderStatus(available=False, base_url="", error=str(e), backend=backend.name)
            if status.available:
                return status
            statuses.append(status)
        return statuses[self.current] if self.current < len(statuses) else statuses[0]

    async def close(self):
        for backend in self.backends:
            await backend.close()
