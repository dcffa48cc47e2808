"""
SQLAlchemy-backed session store (SQLite via aiosqlite by default).
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..agent.types import CompactionConfig, CompactionRecord, Message, Session, new_id, utcnow
from ..errors import SessionNotFoundError
from ..llm.base import ToolCall, ToolResult
from ..models import CompactionRow, MessageRow, SessionRow, init_database
from .base import SessionStore, check_update_fields

logger = structlog.get_logger()


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _session_from_row(row: SessionRow) -> Session:
    return Session(
        id=row.id,
        parent_id=row.parent_id,
        working_directory=row.working_directory,
        provider=row.provider,
        model=row.model,
        title=row.title,
        system_prompt=row.system_prompt,
        compaction_config=CompactionConfig(
            enabled=row.compaction_enabled,
            model=row.compaction_model,
            token_threshold=row.compaction_token_threshold,
            inception_count=row.compaction_inception_count,
            working_window_count=row.compaction_working_window_count,
        ),
        token_estimate=row.token_estimate or 0,
        message_count=row.message_count or 0,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _apply_session_fields(row: SessionRow, fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        if name == "compaction_config":
            row.compaction_enabled = value.enabled
            row.compaction_model = value.model
            row.compaction_token_threshold = value.token_threshold
            row.compaction_inception_count = value.inception_count
            row.compaction_working_window_count = value.working_window_count
        else:
            setattr(row, name, value)


def _message_to_row(session_id: str, message: Message) -> MessageRow:
    return MessageRow(
        id=message.id,
        session_id=session_id,
        role=message.role,
        content=message.content,
        tool_calls=[tc.to_dict() for tc in message.tool_calls] if message.tool_calls is not None else None,
        tool_results=[tr.to_dict() for tr in message.tool_results] if message.tool_results is not None else None,
        sequence=message.sequence,
        token_count=message.token_count,
        is_inception=message.is_inception,
        is_compaction_summary=message.is_compaction_summary,
        created_at=message.created_at,
    )


def _message_from_row(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        session_id=row.session_id,
        role=row.role,  # type: ignore[arg-type]
        content=row.content,
        tool_calls=[ToolCall.from_dict(tc) for tc in row.tool_calls] if row.tool_calls is not None else None,
        tool_results=[ToolResult.from_dict(tr) for tr in row.tool_results] if row.tool_results is not None else None,
        sequence=row.sequence,
        token_count=row.token_count,
        is_inception=row.is_inception,
        is_compaction_summary=row.is_compaction_summary,
        created_at=_aware(row.created_at),
    )


def _record_from_row(row: CompactionRow) -> CompactionRecord:
    return CompactionRecord(
        id=row.id,
        session_id=row.session_id,
        messages_pruned=row.messages_pruned,
        compression_ratio=row.compression_ratio,
        summary_message_id=row.summary_message_id,
        summary=row.summary,
        original_tokens=row.original_tokens,
        compacted_tokens=row.compacted_tokens,
        from_sequence=row.from_sequence,
        to_sequence=row.to_sequence,
        created_at=_aware(row.created_at),
    )


class SQLSessionStore(SessionStore):
    """Session store over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @classmethod
    async def connect(cls, database_url: str) -> "SQLSessionStore":
        """Create tables if needed and return a store bound to the database."""
        session_factory = await init_database(database_url)
        logger.info("Database initialized", database_url=database_url)
        return cls(session_factory)

    async def close(self) -> None:
        await self._session_factory.kw["bind"].dispose()

    async def create(
        self,
        working_directory: str,
        provider: str,
        model: str,
        parent_id: str | None = None,
        title: str | None = None,
        system_prompt: str | None = None,
        compaction_config: CompactionConfig | None = None,
    ) -> Session:
        now = utcnow()
        row = SessionRow(
            id=new_id(),
            parent_id=parent_id,
            working_directory=working_directory,
            provider=provider,
            model=model,
            title=title,
            system_prompt=system_prompt,
            token_estimate=0,
            message_count=0,
            created_at=now,
            updated_at=now,
        )
        _apply_session_fields(row, {"compaction_config": compaction_config or CompactionConfig()})

        async with self._session_factory() as db:
            db.add(row)
            await db.commit()
            return _session_from_row(row)

    async def get_session(self, session_id: str) -> Session | None:
        async with self._session_factory() as db:
            row = await db.get(SessionRow, session_id)
            return _session_from_row(row) if row else None

    async def list_sessions(self, parent_id: str | None = None, limit: int | None = None) -> list[Session]:
        query = select(SessionRow).order_by(SessionRow.created_at.desc())
        if parent_id is not None:
            query = query.where(SessionRow.parent_id == parent_id)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as db:
            result = await db.execute(query)
            return [_session_from_row(row) for row in result.scalars().all()]

    async def update_session(self, session_id: str, **fields: Any) -> Session:
        check_update_fields(fields)
        async with self._session_factory() as db:
            row = await db.get(SessionRow, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)
            _apply_session_fields(row, fields)
            row.updated_at = utcnow()
            await db.commit()
            return _session_from_row(row)

    async def delete_session(self, session_id: str) -> bool:
        async with self._session_factory() as db:
            row = await db.get(SessionRow, session_id)
            if row is None:
                return False
            await db.execute(delete(MessageRow).where(MessageRow.session_id == session_id))
            await db.execute(delete(CompactionRow).where(CompactionRow.session_id == session_id))
            await db.execute(delete(SessionRow).where(SessionRow.id == session_id))
            await db.commit()
            return True

    async def _require(self, db, session_id: str) -> None:
        exists = await db.scalar(select(func.count()).select_from(SessionRow).where(SessionRow.id == session_id))
        if not exists:
            raise SessionNotFoundError(session_id)

    async def append_message(self, session_id: str, message: Message) -> Message:
        async with self._session_factory() as db:
            await self._require(db, session_id)
            db.add(_message_to_row(session_id, message))
            await db.commit()
        return message

    async def get_messages(self, session_id: str) -> list[Message]:
        async with self._session_factory() as db:
            await self._require(db, session_id)
            result = await db.execute(
                select(MessageRow)
                .where(MessageRow.session_id == session_id)
                .order_by(MessageRow.sequence)
            )
            return [_message_from_row(row) for row in result.scalars().all()]

    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        async with self._session_factory() as db:
            await self._require(db, session_id)
            await db.execute(delete(MessageRow).where(MessageRow.session_id == session_id))
            db.add_all([_message_to_row(session_id, m) for m in messages])
            await db.commit()

    async def save_compaction(self, record: CompactionRecord) -> None:
        async with self._session_factory() as db:
            await self._require(db, record.session_id)
            db.add(CompactionRow(
                id=record.id,
                session_id=record.session_id,
                summary=record.summary,
                summary_message_id=record.summary_message_id,
                original_tokens=record.original_tokens,
                compacted_tokens=record.compacted_tokens,
                messages_pruned=record.messages_pruned,
                compression_ratio=record.compression_ratio,
                from_sequence=record.from_sequence,
                to_sequence=record.to_sequence,
                created_at=record.created_at,
            ))
            await db.commit()

    async def get_compaction_history(self, session_id: str) -> list[CompactionRecord]:
        async with self._session_factory() as db:
            await self._require(db, session_id)
            result = await db.execute(
                select(CompactionRow)
                .where(CompactionRow.session_id == session_id)
                .order_by(CompactionRow.created_at)
            )
            return [_record_from_row(row) for row in result.scalars().all()]
