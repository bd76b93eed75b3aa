"""Shared pytest fixtures for the price cache test suite.

CRITICAL: Environment variables MUST be set before ANY imports.
"""
import os

# ===============================================================================
# CRITICAL: Set test environment variables FIRST, before ANY other imports!
# This ensures Settings picks up the test configuration.
# ===============================================================================
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DOCUMENT_STORE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_ECHO"] = "false"

# Now import everything else AFTER environment is configured
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from price_cache.core.config import Settings
from price_cache.core.inflight import InFlightTracker
from price_cache.core.rate_limit import RateLimitState
from price_cache.core.usage import InMemoryUsageMeter, UsageRecorder
from price_cache.providers.amber import AmberClient
from price_cache.providers.mock import MockAmberApi
from price_cache.repositories.cache_store import PriceCacheStore
from price_cache.repositories.document_store import InMemoryDocumentStore
from price_cache.services.price_service import PriceService
from price_cache.utils.structured_logging import configure_structured_logging

TEST_NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock returning aware UTC datetimes.

    Call it for a datetime, or use timestamp() where epoch seconds are needed.
    """

    def __init__(self, now: datetime = TEST_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with a server-wide API key.

    Returns:
        Settings: Test configuration
    """
    return Settings(
        environment="test",
        log_level="WARNING",
        amber_api_key="server-test-key",
        amber_base_url="https://api.amber.test/v1",
        document_store_backend="memory",
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture(scope="session", autouse=True)
def configure_logging(test_settings: Settings):
    """Configure structured logging for tests."""
    configure_structured_logging(log_level=test_settings.log_level, json_output=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_api() -> MockAmberApi:
    """Fake Amber upstream with generated prices for both channels."""
    return MockAmberApi()


@pytest.fixture
def usage_meter() -> InMemoryUsageMeter:
    return InMemoryUsageMeter()


@pytest.fixture
def usage_recorder(usage_meter, test_settings) -> UsageRecorder:
    return UsageRecorder(meter=usage_meter, service_tag=test_settings.amber_usage_tag)


@pytest.fixture
def rate_limit(clock) -> RateLimitState:
    return RateLimitState(clock=clock.timestamp)


@pytest_asyncio.fixture
async def amber_client(
    test_settings, rate_limit, usage_recorder, mock_api
) -> AsyncGenerator[AmberClient, None]:
    """AmberClient talking to the mock upstream through httpx.MockTransport."""
    http_client = mock_api.client()
    client = AmberClient(
        settings=test_settings,
        rate_limit=rate_limit,
        usage=usage_recorder,
        http_client=http_client,
    )
    try:
        yield client
    finally:
        await http_client.aclose()


@pytest.fixture
def document_store(clock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def cache_store(document_store, test_settings, clock) -> PriceCacheStore:
    return PriceCacheStore(document_store, settings=test_settings, clock=clock)


@pytest.fixture
def price_service(amber_client, cache_store, usage_recorder, test_settings, clock) -> PriceService:
    """PriceService with isolated state: its own tracker, store and rate limit."""
    return PriceService(
        client=amber_client,
        cache=cache_store,
        inflight=InFlightTracker(),
        usage=usage_recorder,
        settings=test_settings,
        clock=clock,
    )
