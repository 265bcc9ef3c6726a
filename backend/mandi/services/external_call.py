"""
External call policy.

WHAT: Bounded-time wrapper around every awaited collaborator call
WHY: Negotiation, pricing and messaging must never stall on an outside service
HOW: asyncio.wait_for timeout, at most one retry on network-layer errors, then a fallback value
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from ..core.config import settings
from ..llm.types import (
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ..utils.exceptions import ExternalServiceError
from ..utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Worth another attempt
NETWORK_ERRORS = (
    asyncio.TimeoutError,
    httpx.TransportError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderRateLimitError,
)

# Degrade to the fallback without retrying (bad output, client errors)
DEGRADE_ERRORS = NETWORK_ERRORS + (ProviderError, httpx.HTTPError, ValueError, KeyError)


class ExternalCallPolicy:
    """
    Timeout and retry policy for collaborator calls.

    Credential/backend rotation happens inside the provider (see
    RotatingProvider); this policy only bounds time and attempts.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        retry_delay: float = 0.0,
    ):
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_CALL_TIMEOUT
        self.retries = min(1, max(0, retries if retries is not None else settings.EXTERNAL_CALL_RETRIES))
        self.retry_delay = retry_delay

    async def call(self, operation: Callable[[], Awaitable[T]], label: str = "external call") -> T:
        """
        Run an operation with timeout and retry; no fallback.

        Raises:
            ExternalServiceError: All attempts failed on network-layer errors
            Other exceptions from the operation propagate unchanged
        """
        attempts = 1 + self.retries
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(operation(), timeout=self.timeout)
            except NETWORK_ERRORS as e:
                last_error = e
                logger.warning(
                    f"{label} failed (attempt {attempt + 1}/{attempts}): {type(e).__name__}: {e}"
                )
                if attempt < attempts - 1 and self.retry_delay:
                    await asyncio.sleep(self.retry_delay)
        raise ExternalServiceError(label, str(last_error) or type(last_error).__name__) from last_error

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: T | Callable[[], T],
        label: str = "external call",
    ) -> T:
        """
        Run an operation and degrade to a fallback on failure.

        Args:
            operation: Zero-argument coroutine factory (called once per attempt)
            fallback: Value, or zero-argument callable producing it
            label: Name used in logs
        """
        try:
            return await self.call(operation, label)
        except ExternalServiceError as e:
            logger.warning(f"{label}: using fallback after retries ({e.message})")
        except DEGRADE_ERRORS as e:
            logger.warning(f"{label}: using fallback ({type(e).__name__}: {e})")
        return fallback() if callable(fallback) else fallback


