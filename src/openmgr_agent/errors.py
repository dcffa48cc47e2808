"""
Error taxonomy for the agent core.

Tool and compaction failures are normally recovered into results or log
lines; these exceptions exist for the places where they do cross a
boundary (manual compaction, synchronous subagents, the session layer).
"""


class AgentError(Exception):
    """Base class for agent errors."""


class ProviderError(AgentError):
    """The model provider call failed (network, auth, rate limit)."""


class ToolExecutionError(AgentError):
    """A tool failed. Raised by tools, recovered by the executor."""


class ToolValidationError(ToolExecutionError):
    """Tool arguments did not match the tool's parameter schema."""


class CompactionError(AgentError):
    """Summarization failed; the transcript was left unmodified."""


class SubagentError(AgentError):
    """A child session's turn failed or was aborted."""

    def __init__(self, session_id: str, message: str):
        super().__init__(message)
        self.session_id = session_id


class SessionNotFoundError(AgentError):
    """No session with the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class AbortError(Exception):
    """Cooperative cancellation. Not a failure, so not an AgentError."""

    def __init__(self, reason: str = "aborted"):
        super().__init__(reason)
        self.reason = reason
