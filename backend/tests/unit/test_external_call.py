"""
Unit tests for the external call policy.

WHAT: Test timeout, single retry and fallback behaviour
WHY: No collaborator may stall or crash a marketplace operation
HOW: Small coroutine factories that count attempts
"""

import asyncio

import httpx
import pytest

from mandi.llm.types import ProviderResponseError, ProviderTimeoutError
from mandi.services.external_call import ExternalCallPolicy
from mandi.utils.exceptions import ExternalServiceError


class Flaky:
    """Fails with the given errors in order, then returns the value."""

    def __init__(self, *errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


@pytest.mark.unit
class TestExternalCallPolicy:

    def test_retries_capped_at_one(self):
        assert ExternalCallPolicy(retries=5).retries == 1
        assert ExternalCallPolicy(retries=-1).retries == 0

    @pytest.mark.asyncio
    async def test_success_first_time(self):
        operation = Flaky()
        assert await ExternalCallPolicy(timeout=1.0).call(operation) == "ok"
        assert operation.attempts == 1

    @pytest.mark.asyncio
    async def test_network_error_retried_once(self):
        operation = Flaky(httpx.ConnectError("refused"))
        assert await ExternalCallPolicy(timeout=1.0, retries=1).call(operation) == "ok"
        assert operation.attempts == 2

    @pytest.mark.asyncio
    async def test_second_failure_raises_external_service_error(self):
        operation = Flaky(ProviderTimeoutError("slow"), ProviderTimeoutError("slow again"))

        with pytest.raises(ExternalServiceError) as exc_info:
            await ExternalCallPolicy(timeout=1.0, retries=1).call(operation, label="pricing oracle")

        assert operation.attempts == 2
        assert exc_info.value.details == {"service": "pricing oracle"}
        assert "slow again" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_is_enforced(self):
        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(ExternalServiceError):
            await ExternalCallPolicy(timeout=0.01, retries=0).call(hang)

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        operation = Flaky(ProviderResponseError("HTTP 400"))
        with pytest.raises(ProviderResponseError):
            await ExternalCallPolicy(timeout=1.0, retries=1).call(operation)
        assert operation.attempts == 1

    @pytest.mark.asyncio
    async def test_run_returns_fallback_value(self):
        operation = Flaky(ValueError("garbage"))
        assert await ExternalCallPolicy(timeout=1.0).run(operation, "fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_run_calls_fallback_factory(self):
        operation = Flaky(httpx.ConnectError("down"), httpx.ConnectError("down"))
        result = await ExternalCallPolicy(timeout=1.0, retries=1).run(operation, lambda: ["templated"])
        assert result == ["templated"]

    @pytest.mark.asyncio
    async def test_run_does_not_swallow_programming_errors(self):
        operation = Flaky(TypeError("bug"))
        with pytest.raises(TypeError):
            await ExternalCallPolicy(timeout=1.0).run(operation, "fallback")
