"""
Persistent cache tables.
Declarative mapping in SQLAlchemy 2.0 style.
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class SearchCacheDB(Base):
    """One cached search: the normalized query and its serialized medication list."""

    __tablename__ = "search_cache"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    written_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ttl_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_search_cache_written", "written_at"),
        Index("idx_search_cache_expires", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<SearchCache(key={self.key}, size={self.size_bytes})>"
