"""
Task Tool - lets the model delegate work to a subagent.
"""

import structlog

from ..errors import SubagentError
from .base import Tool, ToolContext, ToolOutput, ToolParameter

logger = structlog.get_logger()

# Synchronous subagents run whole turns; the shell default would cut them off
TASK_TIMEOUT_SECONDS = 30 * 60

DESCRIPTION = """Launch a subagent to handle a specific task autonomously.

Use this tool when:
- A task is complex and would benefit from focused attention
- You want to delegate work while continuing with other tasks
- The task is self-contained and doesn't need back-and-forth

The subagent will:
1. Work independently on the given task
2. Have access to the same tools as you
3. Return a summary of what it accomplished

Usage notes:
- Provide a clear, specific prompt for the subagent
- Set async: true to run in background (returns immediately with session ID)
- Set async: false (default) to wait for the result
- Subagent sessions are persisted and can be viewed later"""


def _metadata_block(session_id: str, parent_session_id: str, description: str, is_async: bool) -> str:
    lines = [
        "<task_metadata>",
        f"session_id: {session_id}",
        f"parent_session_id: {parent_session_id}",
        f"description: {description}",
    ]
    if is_async:
        lines.append("async: true")
    lines.append("</task_metadata>")
    return "\n".join(lines)


async def task_handler(ctx: ToolContext, description: str, prompt: str, **kwargs) -> ToolOutput:
    """Spawn a subagent for a delegated task."""
    is_async = bool(kwargs.get("async", False))

    if ctx.subagents is None:
        return ToolOutput(
            output="Task tool requires a subagent coordinator. Cannot spawn subagent.",
            metadata={"error": True, "description": description},
        )
    if not ctx.session_id:
        return ToolOutput(
            output="Task tool requires parent session ID. Cannot spawn subagent.",
            metadata={"error": True, "description": description},
        )

    try:
        spawned = await ctx.subagents.spawn(
            parent_session_id=ctx.session_id,
            working_directory=ctx.working_directory,
            description=description,
            prompt=prompt,
            is_async=is_async,
            signal=ctx.signal,
            emit=ctx.emit_event,
        )
    except SubagentError as e:
        logger.warning("Subagent task failed", session_id=e.session_id, description=description, error=str(e))
        return ToolOutput(
            output=f"Task failed: {e}",
            metadata={"error": True, "description": description, "session_id": e.session_id},
        )

    block = _metadata_block(spawned.session_id, ctx.session_id, description, is_async)
    if is_async:
        return ToolOutput(
            output=f"Subagent started in background.\n\n{block}",
            metadata={
                "session_id": spawned.session_id,
                "parent_session_id": ctx.session_id,
                "description": description,
                "async": True,
            },
        )

    return ToolOutput(
        output=f"{spawned.result}\n\n{block}",
        metadata={
            "session_id": spawned.session_id,
            "parent_session_id": ctx.session_id,
            "description": description,
            "message_count": spawned.message_count,
        },
    )


def create_task_tool() -> Tool:
    """Create the subagent task tool."""
    return Tool(
        name="task",
        description=DESCRIPTION,
        parameters=[
            ToolParameter(
                name="description",
                param_type="string",
                description="A short (3-5 words) description of the task",
                required=True,
            ),
            ToolParameter(
                name="prompt",
                param_type="string",
                description="The detailed task for the subagent to perform",
                required=True,
            ),
            ToolParameter(
                name="async",
                param_type="boolean",
                description="If true, run in background and return session ID immediately",
                required=False,
                default=False,
            ),
        ],
        handler=task_handler,
        timeout=TASK_TIMEOUT_SECONDS,
    )
