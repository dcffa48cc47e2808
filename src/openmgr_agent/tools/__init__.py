"""
Tools module for agent capabilities.
"""

from .base import Tool, ToolContext, ToolOutput, ToolParameter
from .registry import ToolRegistry
from .shell_tool import create_shell_tools
from .task_tool import create_task_tool

__all__ = [
    "Tool",
    "ToolContext",
    "ToolOutput",
    "ToolParameter",
    "ToolRegistry",
    "create_shell_tools",
    "create_task_tool",
]
