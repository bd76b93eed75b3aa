"""Cache document model: one JSON document per owner path."""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from price_cache.models.base import Base


class CacheDocument(Base):
    """JSON document keyed by a slash-separated owner path.

    Paths look like ``users/{user_id}/cache/amber_{site_id}``. ``updated_at``
    is assigned by the database on every write and serves as the document's
    cachedAt / lastUpdated timestamp.
    """

    __tablename__ = "cache_documents"

    path: Mapped[str] = mapped_column(String(512), unique=True, index=True, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
        doc="Retention horizon; expired documents read as absent",
    )

    def __repr__(self) -> str:
        return f"<CacheDocument(path={self.path!r})>"
