"""
In-memory session store, used when persistence is disabled and in tests.
"""

import copy
from dataclasses import replace
from typing import Any

from ..agent.types import CompactionConfig, CompactionRecord, Message, Session, utcnow
from ..errors import SessionNotFoundError
from .base import SessionStore, check_update_fields


class InMemorySessionStore(SessionStore):
    """Dict-backed store. Returns copies so callers never alias stored state."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._messages: dict[str, list[Message]] = {}
        self._compactions: dict[str, list[CompactionRecord]] = {}

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
        session = Session(
            working_directory=working_directory,
            provider=provider,
            model=model,
            parent_id=parent_id,
            title=title,
            system_prompt=system_prompt,
            compaction_config=compaction_config or CompactionConfig(),
        )
        self._sessions[session.id] = session
        self._messages[session.id] = []
        self._compactions[session.id] = []
        return copy.deepcopy(session)

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def list_sessions(self, parent_id: str | None = None, limit: int | None = None) -> list[Session]:
        sessions = [
            s for s in self._sessions.values()
            if parent_id is None or s.parent_id == parent_id
        ]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        if limit is not None:
            sessions = sessions[:limit]
        return [copy.deepcopy(s) for s in sessions]

    async def update_session(self, session_id: str, **fields: Any) -> Session:
        check_update_fields(fields)
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        updated = replace(session, **fields, updated_at=utcnow())
        self._sessions[session_id] = updated
        return copy.deepcopy(updated)

    async def delete_session(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False
        del self._sessions[session_id]
        self._messages.pop(session_id, None)
        self._compactions.pop(session_id, None)
        return True

    def _require(self, session_id: str) -> None:
        if session_id not in self._sessions:
            raise SessionNotFoundError(session_id)

    async def append_message(self, session_id: str, message: Message) -> Message:
        self._require(session_id)
        self._messages[session_id].append(copy.deepcopy(message))
        return message

    async def get_messages(self, session_id: str) -> list[Message]:
        self._require(session_id)
        messages = sorted(self._messages[session_id], key=lambda m: m.sequence)
        return copy.deepcopy(messages)

    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        self._require(session_id)
        self._messages[session_id] = copy.deepcopy(list(messages))

    async def save_compaction(self, record: CompactionRecord) -> None:
        self._require(record.session_id)
        self._compactions[record.session_id].append(record)

    async def get_compaction_history(self, session_id: str) -> list[CompactionRecord]:
        self._require(session_id)
        return list(self._compactions[session_id])
