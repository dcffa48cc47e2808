"""
Database models for openmgr-agent

Uses SQLAlchemy 2.0 async ORM for database operations.
"""

from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, make_url
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class SessionRow(Base):
    """A conversation session, root or subagent."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    # Weak back-reference: no foreign key, children outlive their parent's rows
    parent_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    working_directory: Mapped[str] = mapped_column(Text)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider: Mapped[str] = mapped_column(String(50))
    model: Mapped[str] = mapped_column(String(100))
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Compaction settings
    compaction_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    compaction_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    compaction_token_threshold: Mapped[float] = mapped_column(Float, default=0.8)
    compaction_inception_count: Mapped[int] = mapped_column(Integer, default=4)
    compaction_working_window_count: Mapped[int] = mapped_column(Integer, default=10)

    # Cached transcript stats
    token_estimate: Mapped[int] = mapped_column(Integer, default=0)
    message_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Relationships
    messages: Mapped[list["MessageRow"]] = relationship(
        "MessageRow", back_populates="session", cascade="all, delete-orphan"
    )
    compactions: Mapped[list["CompactionRow"]] = relationship(
        "CompactionRow", back_populates="session", cascade="all, delete-orphan"
    )


class MessageRow(Base):
    """One transcript entry."""

    __tablename__ = "messages"
    __table_args__ = (Index("messages_sequence_idx", "session_id", "sequence"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True)

    # Message content
    role: Mapped[str] = mapped_column(String(20))
    content: Mapped[str] = mapped_column(Text, default="")
    tool_calls: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    tool_results: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    # Compaction bookkeeping
    sequence: Mapped[int] = mapped_column(Integer)
    token_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_inception: Mapped[bool] = mapped_column(Boolean, default=False)
    is_compaction_summary: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Relationships
    session: Mapped["SessionRow"] = relationship("SessionRow", back_populates="messages")


class CompactionRow(Base):
    """Append-only compaction audit trail."""

    __tablename__ = "compaction_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True)

    summary: Mapped[str] = mapped_column(Text, default="")
    summary_message_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    original_tokens: Mapped[int] = mapped_column(Integer, default=0)
    compacted_tokens: Mapped[int] = mapped_column(Integer, default=0)
    messages_pruned: Mapped[int] = mapped_column(Integer, default=0)
    compression_ratio: Mapped[float] = mapped_column(Float, default=0.0)

    from_sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    to_sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    session: Mapped["SessionRow"] = relationship("SessionRow", back_populates="compactions")


def create_engine(database_url: str) -> AsyncEngine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, echo=False)


async def init_database(database_url: str) -> async_sessionmaker:
    """Initialize the database and return session maker."""
    engine = create_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False)
