"""
Agent module - the orchestration core.

Includes:
- Agent: the conversation loop for one session
- SessionManager: session lifecycle, slash commands, subagents
- CompactionEngine: keeps transcripts inside the context budget
- SubagentCoordinator: child sessions, sync and async
- ToolExecutor: tool calls with timeouts and cancellation
- EventChannel: ordered per-agent events, push and pull
"""

from .cancellation import AbortSignal
from .capabilities import Clearable, Compactable
from .compaction import CompactionEngine, estimate_tokens
from .core import Agent
from .events import EventChannel, parse_event
from .executor import ToolExecutor
from .session import SessionManager
from .subagents import SpawnResult, SubagentCoordinator, TaskHandle
from .types import (
    AgentState,
    CompactionConfig,
    CompactionRecord,
    FinalResponse,
    Message,
    Session,
)

__all__ = [
    "AbortSignal",
    "Agent",
    "AgentState",
    "Clearable",
    "Compactable",
    "CompactionConfig",
    "CompactionEngine",
    "CompactionRecord",
    "EventChannel",
    "FinalResponse",
    "Message",
    "Session",
    "SessionManager",
    "SpawnResult",
    "SubagentCoordinator",
    "TaskHandle",
    "ToolExecutor",
    "estimate_tokens",
    "parse_event",
]
