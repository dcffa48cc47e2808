"""
openmgr-agent - orchestration core for an AI coding assistant.

Sessions, the conversation loop, tool execution, context compaction and
subagent delegation, exposed through a CLI and an HTTP API.
"""

__version__ = "0.1.0"
