"""Persisted last-known-good comps result."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from flipcheck.database import Base


class CompsSnapshot(Base):
    """The most recent successful comps result for a cache key, stored as JSON."""

    __tablename__ = "comps_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    cache_key: Mapped[str] = mapped_column(String(512), unique=True, index=True, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    payload: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)

    def __repr__(self) -> str:
        return f"<CompsSnapshot(key={self.cache_key!r}, expires_at={self.expires_at})>"
