"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and marketplace fixtures
WHY: Every test builds the same runtime around a scripted LLM and the sandbox gateway
HOW: Define pytest markers, fixtures, and session setup helpers
"""

import pytest
from fastapi.testclient import TestClient

from mandi.core.runtime import MarketplaceRuntime
from mandi.llm.provider_factory import reset_provider
from mandi.main import create_app
from mandi.services.external_call import ExternalCallPolicy
from mandi.services.payment_gateway import SandboxPaymentGateway

from tests.fixtures.marketplace import LiveSession, open_session
from tests.fixtures.mock_llm import MockLLMProvider

TEST_PAYMENT_SECRET = "test-payment-secret"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )


@pytest.fixture(autouse=True)
def reset_provider_singleton():
    """
    Reset provider singleton before each test.

    WHAT: Clear provider cache between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call reset_provider() before and after each test
    """
    reset_provider()
    yield
    reset_provider()


@pytest.fixture
def mock_llm():
    """Provider that fails every call, so every collaborator uses its fallback."""
    return MockLLMProvider(should_fail=True)


@pytest.fixture
def payment_gateway():
    return SandboxPaymentGateway(secret=TEST_PAYMENT_SECRET, currency="INR")


@pytest.fixture
def runtime(mock_llm, payment_gateway):
    """
    Marketplace runtime wired to test doubles.

    WHAT: Store, hub and services around a mock LLM and the sandbox gateway
    WHY: Deterministic fallbacks, no network
    HOW: Short timeout, one retry, no retry delay
    """
    return MarketplaceRuntime(
        provider=mock_llm,
        payment_gateway=payment_gateway,
        policy=ExternalCallPolicy(timeout=1.0, retries=1),
    )


@pytest.fixture
def live(runtime) -> LiveSession:
    return open_session(runtime)


@pytest.fixture
def client(runtime):
    """
    FastAPI TestClient around the test runtime.

    WHAT: Full app (routes, handlers, lifespan) on the same runtime the test inspects
    WHY: HTTP and WebSocket tests assert on store and hub state directly
    HOW: create_app(runtime) inside the TestClient context manager
    """
    with TestClient(create_app(runtime)) as test_client:
        yield test_client
