"""
Core data model: messages, sessions, compaction records, turn outcomes.

These are plain dataclasses; the session store maps them to rows and the
API layer serializes them with ``to_dict``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from ..llm.base import ToolCall, ToolResult

MessageRole = Literal["user", "assistant", "tool"]


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Message:
    """One transcript entry.

    An assistant message may carry tool calls; a tool message carries the
    results. No other role carries either.
    """

    session_id: str
    role: MessageRole
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    tool_results: list[ToolResult] | None = None
    sequence: int = 0
    token_count: int | None = None
    is_inception: bool = False
    is_compaction_summary: bool = False
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant", "tool"):
            raise ValueError(f"Invalid message role: {self.role}")
        if self.tool_calls is not None and self.role != "assistant":
            raise ValueError("Only assistant messages may carry tool calls")
        if self.tool_results is not None and self.role != "tool":
            raise ValueError("Only tool messages may carry tool results")
        if self.role == "tool" and not self.tool_results:
            raise ValueError("Tool messages must carry at least one tool result")
        if self.sequence < 0:
            raise ValueError("Message sequence must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "role": self.role,
            "content": self.content,
            "toolCalls": [tc.to_dict() for tc in self.tool_calls] if self.tool_calls is not None else None,
            "toolResults": [tr.to_dict() for tr in self.tool_results] if self.tool_results is not None else None,
            "sequence": self.sequence,
            "tokenCount": self.token_count,
            "isInception": self.is_inception,
            "isCompactionSummary": self.is_compaction_summary,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        tool_calls = data.get("toolCalls")
        tool_results = data.get("toolResults")
        return cls(
            id=data["id"],
            session_id=data["sessionId"],
            role=data["role"],
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls is not None else None,
            tool_results=[ToolResult.from_dict(tr) for tr in tool_results] if tool_results is not None else None,
            sequence=data.get("sequence", 0),
            token_count=data.get("tokenCount"),
            is_inception=data.get("isInception", False),
            is_compaction_summary=data.get("isCompactionSummary", False),
            created_at=_parse_time(data["createdAt"]),
        )


@dataclass
class CompactionConfig:
    """Per-session compaction settings, editable between turns."""

    enabled: bool = True
    model: str | None = None
    token_threshold: float = 0.8
    inception_count: int = 4
    working_window_count: int = 10

    def __post_init__(self) -> None:
        if not 0.0 < self.token_threshold <= 1.0:
            raise ValueError("token_threshold must be in (0, 1]")
        if self.inception_count < 0 or self.working_window_count < 0:
            raise ValueError("inception_count and working_window_count must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "model": self.model,
            "tokenThreshold": self.token_threshold,
            "inceptionCount": self.inception_count,
            "workingWindowCount": self.working_window_count,
        }


@dataclass
class Session:
    """A conversation. Sessions with a parent_id are subagent sessions."""

    working_directory: str
    provider: str
    model: str
    parent_id: str | None = None
    title: str | None = None
    system_prompt: str | None = None
    compaction_config: CompactionConfig = field(default_factory=CompactionConfig)
    token_estimate: int = 0
    message_count: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_subagent(self) -> bool:
        return self.parent_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "workingDirectory": self.working_directory,
            "provider": self.provider,
            "model": self.model,
            "title": self.title,
            "compactionConfig": self.compaction_config.to_dict(),
            "tokenEstimate": self.token_estimate,
            "messageCount": self.message_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class CompactionRecord:
    """Audit entry for one compaction run. Never mutated."""

    session_id: str
    messages_pruned: int
    compression_ratio: float
    summary_message_id: str | None = None
    summary: str = ""
    original_tokens: int = 0
    compacted_tokens: int = 0
    from_sequence: int | None = None
    to_sequence: int | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_noop(self) -> bool:
        return self.messages_pruned == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "messagesPruned": self.messages_pruned,
            "compressionRatio": self.compression_ratio,
            "summaryMessageId": self.summary_message_id,
            "summary": self.summary,
            "originalTokens": self.original_tokens,
            "compactedTokens": self.compacted_tokens,
            "fromSequence": self.from_sequence,
            "toSequence": self.to_sequence,
            "createdAt": self.created_at.isoformat(),
        }


class AgentState(str, Enum):
    """Conversation loop states."""

    IDLE = "idle"
    STREAMING = "streaming"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ABORTED = "aborted"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.DONE, AgentState.ABORTED, AgentState.ERRORED)


@dataclass
class FinalResponse:
    """Outcome of one prompt() call."""

    state: AgentState
    content: str = ""
    message: Message | None = None
    error: str | None = None
    iterations: int = 0

    @property
    def ok(self) -> bool:
        return self.state == AgentState.DONE

    @property
    def aborted(self) -> bool:
        return self.state == AgentState.ABORTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "content": self.content,
            "messageId": self.message.id if self.message else None,
            "error": self.error,
            "iterations": self.iterations,
        }
