"""Process-wide shared components.

The rate-limit state and the in-flight tracker must be shared by every
caller in a process: Amber enforces one quota per deployment, and duplicate
fetches can only be collapsed when all requests see the same tracker. These
factories hand out those singletons and build a PriceService around them.

Tests should construct their own instances instead of using these.
"""
import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine

from price_cache.core.config import get_settings
from price_cache.core.database import (
    build_session_factory,
    close_engine,
    create_engine,
    init_models,
)
from price_cache.core.inflight import InFlightTracker
from price_cache.core.rate_limit import RateLimitState
from price_cache.core.usage import UsageMeter, UsageRecorder
from price_cache.providers.amber import AmberClient
from price_cache.repositories.cache_store import PriceCacheStore
from price_cache.repositories.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from price_cache.services.price_service import PriceService
from price_cache.utils.structured_logging import configure_structured_logging

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_usage_meter: UsageMeter | None = None


@lru_cache
def get_rate_limit_state() -> RateLimitState:
    """Get the rate-limit state shared by every Amber call in this process."""
    return RateLimitState()


@lru_cache
def get_inflight_tracker() -> InFlightTracker:
    """Get the in-flight tracker shared by every request in this process."""
    return InFlightTracker()


def set_usage_meter(meter: UsageMeter | None) -> None:
    """Install the usage-metering collaborator.

    Must be called before the first get_usage_recorder() call; without a
    meter, usage events are dropped.
    """
    global _usage_meter
    _usage_meter = meter


@lru_cache
def get_usage_recorder() -> UsageRecorder:
    settings = get_settings()
    return UsageRecorder(meter=_usage_meter, service_tag=settings.amber_usage_tag)


@lru_cache
def get_document_store() -> DocumentStore:
    """Get the document store configured by DOCUMENT_STORE_BACKEND.

    - "memory": InMemoryDocumentStore (development, tests)
    - "sql": SqlDocumentStore on DATABASE_URL

    Raises:
        ValueError: If the backend is unknown
    """
    global _engine
    settings = get_settings()

    if settings.document_store_backend == "memory":
        logger.info("Using InMemoryDocumentStore for the price cache")
        return InMemoryDocumentStore()

    elif settings.document_store_backend == "sql":
        logger.info("Using SqlDocumentStore for the price cache")
        _engine = create_engine(settings)
        return SqlDocumentStore(build_session_factory(_engine))

    else:
        raise ValueError(
            f"Unknown document store backend: {settings.document_store_backend}. "
            "Valid options: 'memory', 'sql'"
        )


@lru_cache
def get_amber_client() -> AmberClient:
    return AmberClient(
        settings=get_settings(),
        rate_limit=get_rate_limit_state(),
        usage=get_usage_recorder(),
    )


@lru_cache
def get_price_service() -> PriceService:
    """Get the PriceService wired to the shared singletons."""
    settings = get_settings()
    return PriceService(
        client=get_amber_client(),
        cache=PriceCacheStore(get_document_store(), settings=settings),
        inflight=get_inflight_tracker(),
        usage=get_usage_recorder(),
        settings=settings,
    )


def get_engine() -> AsyncEngine | None:
    """The SQL engine, once get_document_store() has created one."""
    return _engine


async def startup() -> None:
    """Prepare shared resources on application startup.

    Configures logging and, for the SQL backend, creates the cache tables
    before the store serves its first request.
    """
    settings = get_settings()
    configure_structured_logging(
        log_level=settings.log_level, json_output=not settings.is_development
    )

    get_document_store()
    if _engine is not None:
        await init_models(_engine)

    logger.info(
        f"Price cache ready (environment={settings.environment}, "
        f"store={settings.document_store_backend})"
    )


async def shutdown() -> None:
    """Release shared resources on application shutdown.

    Waits for pending usage events, closes the HTTP client and disposes the
    database engine if one was created.
    """
    global _engine

    if get_usage_recorder.cache_info().currsize:
        await get_usage_recorder().drain()

    if get_amber_client.cache_info().currsize:
        try:
            await get_amber_client().aclose()
        except Exception as e:
            logger.warning(f"Error closing Amber HTTP client: {e}")

    if _engine is not None:
        try:
            await close_engine(_engine)
        finally:
            _engine = None

    for factory in (
        get_price_service,
        get_amber_client,
        get_document_store,
        get_usage_recorder,
        get_inflight_tracker,
        get_rate_limit_state,
    ):
        factory.cache_clear()
