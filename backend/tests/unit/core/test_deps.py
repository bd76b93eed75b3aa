"""Unit tests for the process-wide component factories."""
from datetime import date
from unittest.mock import MagicMock

import pytest

from price_cache.core import deps
from price_cache.core.config import get_settings
from price_cache.core.usage import InMemoryUsageMeter
from price_cache.providers.base import PriceRecord
from price_cache.repositories.cache_store import PriceCacheStore
from price_cache.repositories.document_store import InMemoryDocumentStore, SqlDocumentStore


@pytest.fixture(autouse=True)
def reset_singletons():
    """Each test starts and ends with fresh singletons and settings."""
    get_settings.cache_clear()
    for factory in (
        deps.get_price_service,
        deps.get_amber_client,
        deps.get_document_store,
        deps.get_usage_recorder,
        deps.get_inflight_tracker,
        deps.get_rate_limit_state,
    ):
        factory.cache_clear()
    deps.set_usage_meter(None)
    yield
    deps.set_usage_meter(None)
    get_settings.cache_clear()


class TestSingletons:
    """Shared state must be one instance per process."""

    def test_rate_limit_state_is_shared(self) -> None:
        assert deps.get_rate_limit_state() is deps.get_rate_limit_state()

    def test_inflight_tracker_is_shared(self) -> None:
        assert deps.get_inflight_tracker() is deps.get_inflight_tracker()

    @pytest.mark.asyncio
    async def test_price_service_uses_shared_components(self) -> None:
        service = deps.get_price_service()

        assert service.inflight is deps.get_inflight_tracker()
        assert service.client.rate_limit is deps.get_rate_limit_state()
        assert service.usage is deps.get_usage_recorder()
        assert service.cache.store is deps.get_document_store()

        await deps.shutdown()


class TestDocumentStoreSelection:
    """Tests for get_document_store() backend selection."""

    def test_memory_backend(self, monkeypatch) -> None:
        monkeypatch.setenv("DOCUMENT_STORE_BACKEND", "memory")
        assert isinstance(deps.get_document_store(), InMemoryDocumentStore)

    @pytest.mark.asyncio
    async def test_sql_backend(self, monkeypatch) -> None:
        monkeypatch.setenv("DOCUMENT_STORE_BACKEND", "sql")
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

        assert isinstance(deps.get_document_store(), SqlDocumentStore)
        assert deps.get_engine() is not None

        await deps.shutdown()
        assert deps.get_engine() is None

    def test_unknown_backend_raises(self, monkeypatch) -> None:
        monkeypatch.setenv("DOCUMENT_STORE_BACKEND", "redis")
        with pytest.raises(ValueError, match="Unknown document store backend"):
            deps.get_document_store()


class TestStartup:
    """Tests for startup()."""

    @pytest.mark.asyncio
    async def test_configures_logging(self, monkeypatch) -> None:
        configure = MagicMock()
        monkeypatch.setattr(deps, "configure_structured_logging", configure)
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        await deps.startup()

        configure.assert_called_once()
        assert configure.call_args.kwargs["log_level"] == "DEBUG"

    @pytest.mark.asyncio
    async def test_sql_backend_is_usable_after_startup(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setattr(deps, "configure_structured_logging", MagicMock())
        monkeypatch.setenv("DOCUMENT_STORE_BACKEND", "sql")
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")

        await deps.startup()
        cache = PriceCacheStore(deps.get_document_store(), settings=get_settings())
        record = PriceRecord.from_api(
            {"startTime": "2024-03-01T00:00:00Z", "channelType": "general", "perKwh": 21.5}
        )

        try:
            stored = await cache.merge_archive("user-1", "01SITE", [record])
            records = await cache.get_archive_range(
                "user-1", "01SITE", date(2024, 3, 1), date(2024, 3, 1)
            )
        finally:
            await deps.shutdown()

        assert stored == 1
        assert [r.per_kwh for r in records] == [21.5]


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_resets_singletons(self) -> None:
        first = deps.get_rate_limit_state()
        deps.get_price_service()

        await deps.shutdown()

        assert deps.get_rate_limit_state() is not first


class TestUsageMeter:
    @pytest.mark.asyncio
    async def test_installed_meter_receives_usage(self) -> None:
        meter = InMemoryUsageMeter()
        deps.set_usage_meter(meter)

        recorder = deps.get_usage_recorder()
        recorder.fire_and_forget("user-1")
        await recorder.drain()

        assert recorder.meter is meter
        assert meter.count("user-1") == 1
