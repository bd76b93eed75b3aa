"""Document store collaborator: get/set JSON documents by owner path.

The cache store only relies on this contract:
- get(path) -> DocumentSnapshot(exists, data, update_time)
- set(path, data, merge=False, expires_at=None)
where update_time is assigned by the store on every write and expires_at is a
retention hint (expired documents read as absent).

Two backends are provided: an in-memory store (default, tests) and a
SQLAlchemy-backed store (PostgreSQL via asyncpg in production).
"""
import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from price_cache.core.exceptions import StorageError
from price_cache.models import CacheDocument
from price_cache.utils.dates import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentSnapshot:
    """Result of reading one document."""

    exists: bool
    data: dict[str, Any] = field(default_factory=dict)
    update_time: datetime | None = None

    @classmethod
    def missing(cls) -> "DocumentSnapshot":
        return cls(exists=False)


class DocumentStore(ABC):
    """Abstract key/value document store."""

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        """Read the document at path.

        Raises:
            StorageError: If the backend fails
        """
        pass

    @abstractmethod
    async def set(
        self,
        path: str,
        data: dict[str, Any],
        merge: bool = False,
        expires_at: datetime | None = None,
    ) -> None:
        """Write the document at path, replacing it unless merge is True.

        Args:
            path: Owner path
            data: Document fields
            merge: Shallow-merge fields into the existing document
            expires_at: Retention hint; None keeps no expiry (or the
                existing one when merging)

        Raises:
            StorageError: If the backend fails
        """
        pass


class InMemoryDocumentStore(DocumentStore):
    """Process-local document store.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the store, matching a real remote store.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._documents: dict[str, tuple[dict[str, Any], datetime, datetime | None]] = {}

    def __contains__(self, path: str) -> bool:
        return path in self._documents

    async def get(self, path: str) -> DocumentSnapshot:
        entry = self._documents.get(path)
        if entry is None:
            return DocumentSnapshot.missing()

        data, update_time, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            return DocumentSnapshot.missing()

        return DocumentSnapshot(exists=True, data=copy.deepcopy(data), update_time=update_time)

    async def set(
        self,
        path: str,
        data: dict[str, Any],
        merge: bool = False,
        expires_at: datetime | None = None,
    ) -> None:
        existing = self._documents.get(path)
        if merge and existing is not None:
            document = {**existing[0], **copy.deepcopy(data)}
            if expires_at is None:
                expires_at = existing[2]
        else:
            document = copy.deepcopy(data)

        self._documents[path] = (document, self._clock(), expires_at)


class SqlDocumentStore(DocumentStore):
    """Document store persisted in the cache_documents table.

    Sessions are short-lived: one per operation. SQLAlchemy errors are
    wrapped in StorageError.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def get(self, path: str) -> DocumentSnapshot:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CacheDocument).where(CacheDocument.path == path)
                )
                document = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read document {path}: {e}")
            raise StorageError(f"Database error reading {path}: {str(e)}")

        if document is None:
            return DocumentSnapshot.missing()

        expires_at = _as_utc(document.expires_at)
        if expires_at is not None and expires_at <= self._clock():
            return DocumentSnapshot.missing()

        return DocumentSnapshot(
            exists=True,
            data=dict(document.data or {}),
            update_time=_as_utc(document.updated_at),
        )

    async def set(
        self,
        path: str,
        data: dict[str, Any],
        merge: bool = False,
        expires_at: datetime | None = None,
    ) -> None:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(CacheDocument).where(CacheDocument.path == path)
                )
                document = result.scalar_one_or_none()

                if document is None:
                    session.add(CacheDocument(path=path, data=dict(data), expires_at=expires_at))
                else:
                    document.data = {**document.data, **data} if merge else dict(data)
                    if expires_at is not None or not merge:
                        document.expires_at = expires_at
                    # Stamp explicitly: an unchanged JSON value would not mark the row dirty
                    document.updated_at = func.now()

                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to write document {path}: {e}")
                raise StorageError(f"Database error writing {path}: {str(e)}")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; func.now() there is UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
