"""
Slash commands.

Inputs of the form ``/name args`` are handled here instead of being sent
to the model. Unregistered names are not commands and go to the model
unchanged.
"""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Coroutine

import structlog

from .agent.capabilities import Clearable, Compactable
from .errors import CompactionError

if TYPE_CHECKING:
    from .agent.core import Agent
    from .agent.session import SessionManager

logger = structlog.get_logger()

COMMAND_PATTERN = re.compile(r"^/(\w+)(?:\s+(.*))?$", re.DOTALL)


@dataclass
class CommandContext:
    """What a command may act on."""

    session_id: str
    agent: "Agent"
    sessions: "SessionManager"


CommandHandler = Callable[[str, CommandContext], Coroutine[Any, Any, str]]


@dataclass
class Command:
    name: str
    description: str
    handler: CommandHandler


def parse_command(text: str) -> tuple[str, str] | None:
    """Split ``/name args`` into (name, args); None if text is not command-shaped."""
    match = COMMAND_PATTERN.match(text.strip())
    if not match:
        return None
    return match.group(1), (match.group(2) or "").strip()


class CommandRegistry:
    """Registry for slash commands."""

    def __init__(self):
        self._commands: dict[str, Command] = {}

    def register(self, command: Command) -> None:
        self._commands[command.name] = command

    def unregister(self, name: str) -> bool:
        return self._commands.pop(name, None) is not None

    def get(self, name: str) -> Command | None:
        return self._commands.get(name)

    def has(self, name: str) -> bool:
        return name in self._commands

    def list_commands(self) -> list[Command]:
        return list(self._commands.values())

    def match(self, text: str) -> tuple[Command, str] | None:
        """The registered command text invokes, with its argument string."""
        parsed = parse_command(text)
        if parsed is None:
            return None
        name, args = parsed
        command = self._commands.get(name)
        if command is None:
            return None
        return command, args

    async def execute(self, text: str, ctx: CommandContext) -> str | None:
        """Run the command text invokes. None when text is not a registered command."""
        matched = self.match(text)
        if matched is None:
            return None
        command, args = matched
        logger.info("Executing command", command=command.name, session_id=ctx.session_id)
        return await command.handler(args, ctx)


async def help_command(_args: str, ctx: CommandContext) -> str:
    commands = ctx.sessions.runtime.commands.list_commands()
    if not commands:
        return "No commands available."
    lines = "\n".join(f"/{cmd.name} - {cmd.description}" for cmd in commands)
    return f"Available commands:\n{lines}"


async def clear_command(_args: str, ctx: CommandContext) -> str:
    if not isinstance(ctx.agent, Clearable):
        return "Clearing is not available for this session."
    removed = await ctx.agent.clear_messages()
    return f"Conversation cleared ({removed} messages removed)."


async def compact_command(_args: str, ctx: CommandContext) -> str:
    if not isinstance(ctx.agent, Compactable):
        return "Compaction not available."
    try:
        record = await ctx.agent.compact()
    except CompactionError as e:
        return f"Compaction failed: {e}"
    if record.is_noop:
        return "Nothing to compact: the conversation fits in the kept inception and working window."
    return (
        f"Compacted {record.messages_pruned} messages. "
        f"Compression ratio: {record.compression_ratio * 100:.1f}%"
    )


async def tasks_command(_args: str, ctx: CommandContext) -> str:
    handles = [
        h for h in ctx.sessions.subagents.list_tasks()
        if h.parent_session_id == ctx.session_id
    ]
    if not handles:
        return "No background tasks running."
    lines = "\n".join(f"- {h.session_id}: {h.description} ({h.state})" for h in handles)
    return f"Background tasks:\n{lines}"


def builtin_commands() -> list[Command]:
    return [
        Command("help", "List all available commands", help_command),
        Command("clear", "Clear conversation history", clear_command),
        Command("compact", "Force context compaction", compact_command),
        Command("tasks", "List background subagent tasks", tasks_command),
    ]


def create_command_registry() -> CommandRegistry:
    registry = CommandRegistry()
    for command in builtin_commands():
        registry.register(command)
    return registry
