"""
SQLAlchemy ORM models for the job queue, feed sources, and ingested articles.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# BIGINT identity on PostgreSQL; SQLite only auto-increments INTEGER primary keys.
_BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
_Payload = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base that enables async-friendly ORM operations."""

    pass


class Job(Base):
    """A pending unit of work in the durable queue."""

    __tablename__ = "job_queue"

    id: Mapped[int] = mapped_column(_BigIntPK, primary_key=True, autoincrement=True)
    general_id: Mapped[str] = mapped_column(String(512), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(
        _Payload,
        nullable=False,
        default=dict,
    )
    not_before: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("general_id", name="uq_job_queue_general_id"),
        Index("ix_job_queue_not_before_id", "not_before", "id"),
        Index("ix_job_queue_locked_at", "locked_at"),
    )


class Source(Base):
    """An external feed that is periodically fetched."""

    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    home_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )
    last_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recent_failures: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    recent_failure_details: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        server_default=text("''"),
    )
    # "fetch", "parse" or "rate_limit"; None after a success.
    last_failure_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    strategy_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    articles: Mapped[list[Article]] = relationship(
        "Article",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_sources_last_attempt", "last_attempt"),
        Index("ix_sources_recent_failures", "recent_failures"),
        Index("ix_sources_url", "url"),
    )


class Article(Base):
    """An article ingested from a source, identified by its guid."""

    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(_BigIntPK, primary_key=True, autoincrement=True)
    guid: Mapped[str] = mapped_column(String(1024), nullable=False)
    source_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sources.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    author: Mapped[str] = mapped_column(String(512), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_in_feed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )

    source: Mapped[Source] = relationship("Source", back_populates="articles")

    __table_args__ = (
        UniqueConstraint("guid", name="uq_articles_guid"),
        Index("ix_articles_source_id", "source_id"),
        Index("ix_articles_last_seen_in_feed_at", "last_seen_in_feed_at"),
    )


__all__ = ["Article", "Base", "Job", "Source"]
