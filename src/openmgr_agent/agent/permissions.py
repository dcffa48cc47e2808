"""
Tool permissions.

Every tool call is checked before it runs. A decision comes from, in order:
allow_all, tools the user allowed or denied for the rest of the session,
configured deny patterns, configured allow patterns, then the default mode.
"ask" hands the call to a request callback; with no callback the call is
denied.
"""

from dataclasses import dataclass, field, replace
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, Literal

import structlog

from ..llm.base import ToolCall

logger = structlog.get_logger()

PermissionDecision = Literal["allow", "deny", "ask"]
PermissionResponse = Literal["allow_once", "allow_always", "deny"]
PermissionRequestCallback = Callable[[ToolCall], Awaitable[PermissionResponse]]


@dataclass
class ToolPermissionConfig:
    """Static permission rules. Patterns are shell-style globs (``mcp_*``)."""

    default_mode: PermissionDecision = "ask"
    always_allow: list[str] = field(default_factory=list)
    always_deny: list[str] = field(default_factory=list)
    allow_all: bool = False


def _matches_any(tool_name: str, patterns: list[str]) -> bool:
    return any(fnmatchcase(tool_name, pattern) for pattern in patterns)


class ToolPermissionManager:
    """Permission state for one session."""

    def __init__(
        self,
        config: ToolPermissionConfig | None = None,
        request_callback: PermissionRequestCallback | None = None,
    ):
        self.config = config or ToolPermissionConfig()
        self.request_callback = request_callback
        self._session_allowed: set[str] = set()
        self._session_denied: set[str] = set()

    def update_config(self, **fields: Any) -> ToolPermissionConfig:
        self.config = replace(self.config, **fields)
        return self.config

    def get_decision(self, tool_name: str) -> PermissionDecision:
        """Decide without asking anyone."""
        if self.config.allow_all:
            return "allow"
        if tool_name in self._session_denied:
            return "deny"
        if tool_name in self._session_allowed:
            return "allow"
        # Deny patterns win over allow patterns
        if _matches_any(tool_name, self.config.always_deny):
            return "deny"
        if _matches_any(tool_name, self.config.always_allow):
            return "allow"
        return self.config.default_mode

    async def check(self, tool_call: ToolCall) -> bool:
        """True if the call may run, asking the request callback when needed."""
        decision = self.get_decision(tool_call.name)
        if decision != "ask":
            return decision == "allow"

        if self.request_callback is None:
            logger.warning("Tool permission requested but nobody can answer", tool_name=tool_call.name)
            return False

        response = await self.request_callback(tool_call)
        if response == "allow_always":
            self._session_allowed.add(tool_call.name)
            return True
        # A one-off "deny" is not remembered; the user may allow it next time
        return response == "allow_once"

    def allow_for_session(self, tool_name: str) -> None:
        self._session_allowed.add(tool_name)
        self._session_denied.discard(tool_name)

    def deny_for_session(self, tool_name: str) -> None:
        self._session_denied.add(tool_name)
        self._session_allowed.discard(tool_name)

    def is_allowed_for_session(self, tool_name: str) -> bool:
        return tool_name in self._session_allowed

    def is_denied_for_session(self, tool_name: str) -> bool:
        return tool_name in self._session_denied

    def clear_session_permissions(self) -> None:
        self._session_allowed.clear()
        self._session_denied.clear()
