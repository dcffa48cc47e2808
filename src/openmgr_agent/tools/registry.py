"""
Tool registry for managing available tools.

Registries are plain instances owned by the runtime; tests build their own.
"""

from typing import Iterable

import structlog

from ..llm.base import ToolDefinition
from .base import Tool

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool, replacing any tool with the same name."""
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.debug("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def to_model_tools(self, filter: Iterable[str] | None = None) -> list[ToolDefinition]:
        """Tool definitions offered to the model, optionally limited to some names."""
        if filter is None:
            return [tool.to_definition() for tool in self._tools.values()]

        definitions = []
        for name in filter:
            tool = self._tools.get(name)
            if tool is None:
                logger.warning("Enabled tool is not registered", tool_name=name)
                continue
            definitions.append(tool.to_definition())
        return definitions
