"""
LLM provider protocol definition.

WHAT: Abstract interface for LLM providers
WHY: Decouple the narrative, pricing and translation oracles from specific backends
HOW: Use Protocol to define async methods for ping, generate and close
"""

from typing import Protocol
from .types import ChatMessage, LLMResult, ProviderStatus


class LLMProvider(Protocol):
    """Protocol defining the interface all LLM providers must implement."""

    name: str

    async def ping(self) -> ProviderStatus:
        """Check provider health and availability."""
        ...

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """Generate a complete response."""
        ...

    async def close(self) -> None:
        """Release HTTP resources."""
        ...
