"""
Session store interface.

The agent core never persists anything itself; it drives one of these.
"""

from abc import ABC, abstractmethod
from typing import Any

from ..agent.types import CompactionConfig, CompactionRecord, Message, Session

# Session fields callers may change through update_session()
UPDATABLE_SESSION_FIELDS = frozenset({
    "title",
    "provider",
    "model",
    "system_prompt",
    "compaction_config",
    "token_estimate",
    "message_count",
})


class SessionStore(ABC):
    """Persistence for sessions, their transcripts and compaction history."""

    @abstractmethod
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
        """Create and persist a new session."""
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None:
        pass

    @abstractmethod
    async def list_sessions(self, parent_id: str | None = None, limit: int | None = None) -> list[Session]:
        """Sessions, newest first. With parent_id, only that session's children."""
        pass

    @abstractmethod
    async def update_session(self, session_id: str, **fields: Any) -> Session:
        """Change some session fields. Raises SessionNotFoundError."""
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session with its messages and history. False if unknown."""
        pass

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> Message:
        pass

    @abstractmethod
    async def get_messages(self, session_id: str) -> list[Message]:
        """Live transcript ordered by sequence."""
        pass

    @abstractmethod
    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        """Swap the whole transcript in one step (used by compaction and clear)."""
        pass

    @abstractmethod
    async def save_compaction(self, record: CompactionRecord) -> None:
        pass

    @abstractmethod
    async def get_compaction_history(self, session_id: str) -> list[CompactionRecord]:
        """Compaction records, oldest first."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None


def check_update_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_SESSION_FIELDS
    if unknown:
        raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")
