"""
Tool execution: lookup, validation, timeout and cancellation.

execute() never raises for tool-level problems; every outcome, including
unknown tools, bad arguments, exceptions and termination, comes back as a
ToolResult the model can read.
"""

import asyncio
from dataclasses import replace

import structlog

from ..errors import ToolValidationError
from ..llm.base import ToolCall, ToolResult
from ..tools.base import ToolContext, ToolOutput
from ..tools.registry import ToolRegistry

logger = structlog.get_logger()


def error_result(tool_call_id: str, message: str, **metadata) -> ToolResult:
    return ToolResult(tool_call_id=tool_call_id, content=message, metadata={"error": True, **metadata})


class ToolExecutor:
    """Runs one tool call at a time against a registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        default_timeout: float = 30.0,
        termination_grace: float = 2.0,
        max_timeout: float | None = None,
    ):
        self.registry = registry
        self.default_timeout = default_timeout
        self.termination_grace = termination_grace
        self.max_timeout = max_timeout

    async def execute(self, tool_call: ToolCall, context: ToolContext) -> ToolResult:
        """Execute a single tool call.

        The timeout is context.timeout, else whatever the tool reads from its
        arguments or declares, else the executor default, capped at
        max_timeout. The tool sees a child of context.signal that also fires
        on timeout.
        Tools that own external work should observe it and return what they
        have; a tool that ignores it is cancelled after the grace period.
        """
        tool = self.registry.get(tool_call.name)
        if tool is None:
            logger.warning("Unknown tool requested", tool_name=tool_call.name)
            return error_result(tool_call.id, f"Unknown tool: {tool_call.name}")

        timeout = context.timeout or tool.resolve_timeout(tool_call.arguments) or self.default_timeout
        if self.max_timeout is not None:
            timeout = min(timeout, self.max_timeout)
        tool_signal = context.signal.child()
        tool_context = replace(context, signal=tool_signal, timeout=timeout)

        logger.info("Executing tool", tool_name=tool_call.name, tool_call_id=tool_call.id)
        task = asyncio.ensure_future(tool.execute(tool_call.arguments, tool_context))
        loop = asyncio.get_running_loop()
        timer = loop.call_later(timeout, tool_signal.abort, "timeout")
        signal_waiter = asyncio.ensure_future(tool_signal.wait())

        termination_reason: str | None = None
        abort_reason: str | None = None
        try:
            await asyncio.wait({task, signal_waiter}, return_when=asyncio.FIRST_COMPLETED)
            # A tool that stops because its signal fired was still terminated
            if tool_signal.aborted:
                abort_reason = tool_signal.reason or "aborted"
                termination_reason = "timeout" if abort_reason == "timeout" else "aborted"
                logger.info(
                    "Terminating tool",
                    tool_name=tool_call.name,
                    reason=abort_reason,
                )
                if not task.done():
                    finished, _ = await asyncio.wait({task}, timeout=self.termination_grace)
                    if not finished:
                        task.cancel()
                        await asyncio.gather(task, return_exceptions=True)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            timer.cancel()
            signal_waiter.cancel()
            tool_signal.detach()

        result = self._to_result(tool_call, task)

        if termination_reason is not None:
            metadata = dict(result.metadata)
            metadata["terminated"] = True
            metadata["termination_reason"] = termination_reason
            if termination_reason == "timeout":
                marker = f"[terminated: timed out after {timeout:g}s]"
            else:
                marker = f"[terminated: {abort_reason}]"
            content = f"{result.content}\n\n{marker}" if result.content else marker
            result = ToolResult(tool_call_id=tool_call.id, content=content, metadata=metadata)

        logger.info("Tool executed", tool_name=tool_call.name, error=result.is_error)
        return result

    def _to_result(self, tool_call: ToolCall, task: asyncio.Future) -> ToolResult:
        if task.cancelled():
            return error_result(tool_call.id, "Tool did not stop after termination request")

        exc = task.exception()
        if isinstance(exc, ToolValidationError):
            return error_result(tool_call.id, f"Invalid arguments for {tool_call.name}: {exc}")
        if exc is not None:
            logger.error("Tool execution error", tool_name=tool_call.name, error=str(exc))
            return error_result(tool_call.id, f"Tool execution error: {exc}")

        output: ToolOutput = task.result()
        return ToolResult(tool_call_id=tool_call.id, content=output.output, metadata=dict(output.metadata))
