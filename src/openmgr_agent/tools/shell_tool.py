"""
Shell Command Tool - runs commands in the session's working directory.

The command runs in its own process group so that termination (timeout or
abort) takes down everything it spawned. Output collected up to that point
is still returned.
"""

import asyncio
import logging
import os
import signal
from typing import Optional

from .base import Tool, ToolContext, ToolOutput, ToolParameter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
MAX_OUTPUT_CHARS = 50_000
READ_CHUNK_SIZE = 4096
# How long to wait for pipes to close after the process group is killed
DRAIN_TIMEOUT_SECONDS = 5.0


class _OutputBuffer:
    """Collects a stream up to a size limit, remembering if anything was dropped."""

    def __init__(self, max_chars: int):
        self.max_chars = max_chars
        self._chunks: list[bytes] = []
        self._size = 0
        self.overflowed = False

    def feed(self, data: bytes) -> None:
        # bytes >= chars, so this keeps at least max_chars worth of text
        if self._size >= self.max_chars * 4:
            self.overflowed = True
            return
        self._chunks.append(data)
        self._size += len(data)

    def text(self) -> str:
        text = b"".join(self._chunks).decode("utf-8", errors="replace")
        if self.overflowed or len(text) > self.max_chars:
            return text[: self.max_chars] + "\n... (output truncated)"
        return text


async def _pump(stream: Optional[asyncio.StreamReader], buffer: _OutputBuffer) -> None:
    if stream is None:
        return
    while True:
        data = await stream.read(READ_CHUNK_SIZE)
        if not data:
            return
        buffer.feed(data)


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            process.kill()
        except ProcessLookupError:
            pass


def format_output(stdout: str, stderr: str, killed: bool) -> str:
    output = stdout
    if stderr:
        output += ("\n\nSTDERR:\n" if output else "STDERR:\n") + stderr
    if killed:
        output += ("\n\n" if output else "") + "(Command was terminated)"
    return output or "(no output)"


def timeout_from_arguments(arguments: dict) -> float | None:
    """The bash tool's `timeout` argument (milliseconds) in seconds."""
    value = arguments.get("timeout")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return value / 1000


class ShellExecutor:
    """Runs one command at a time on behalf of the bash tool."""

    def __init__(self, max_output_chars: int = MAX_OUTPUT_CHARS):
        self.max_output_chars = max_output_chars

    async def execute(
        self,
        command: str,
        working_dir: str,
        timeout_seconds: float,
        ctx_signal=None,
    ) -> tuple[int | None, str, str, bool]:
        """
        Execute a shell command.

        Returns:
            Tuple of (return_code, stdout, stderr, killed)
        """
        env = os.environ.copy()
        env["TERM"] = "dumb"

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=working_dir,
            env=env,
            start_new_session=True,
        )

        stdout_buf = _OutputBuffer(self.max_output_chars)
        stderr_buf = _OutputBuffer(self.max_output_chars)
        finished = asyncio.ensure_future(
            asyncio.gather(
                _pump(process.stdout, stdout_buf),
                _pump(process.stderr, stderr_buf),
                process.wait(),
            )
        )
        waiters = {finished}
        abort_waiter = None
        if ctx_signal is not None:
            abort_waiter = asyncio.ensure_future(ctx_signal.wait())
            waiters.add(abort_waiter)

        killed = False
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
            )
            if finished not in done:
                killed = True
                reason = "aborted" if abort_waiter is not None and abort_waiter in done else "timeout"
                logger.info("Terminating command (%s): %s", reason, command)
                _kill_process_group(process)
                try:
                    await asyncio.wait_for(asyncio.shield(finished), timeout=DRAIN_TIMEOUT_SECONDS)
                except asyncio.TimeoutError:
                    logger.warning("Command output did not close after kill: %s", command)
                    finished.cancel()
        except asyncio.CancelledError:
            _kill_process_group(process)
            finished.cancel()
            raise
        finally:
            if abort_waiter is not None:
                abort_waiter.cancel()

        return process.returncode, stdout_buf.text(), stderr_buf.text(), killed


def create_shell_tools(max_output_chars: int = MAX_OUTPUT_CHARS) -> list[Tool]:
    """Create shell-related tools."""

    async def handler(ctx: ToolContext, command: str, timeout: int | None = None) -> ToolOutput:
        # ctx.timeout already reflects the requested timeout, capped by the executor
        if ctx.timeout:
            timeout_seconds = ctx.timeout
        elif timeout:
            timeout_seconds = timeout / 1000
        else:
            timeout_seconds = DEFAULT_TIMEOUT_MS / 1000
        return await _run(ctx, command, timeout_seconds, max_output_chars)

    bash = Tool(
        name="bash",
        description=(
            "Execute a shell command. Use this for running scripts, installing packages, "
            "git operations, or any terminal command. Commands run in the working directory."
        ),
        parameters=[
            ToolParameter(
                name="command",
                param_type="string",
                description="The shell command to execute",
                required=True,
            ),
            ToolParameter(
                name="timeout",
                param_type="integer",
                description=f"Timeout in milliseconds (default: {DEFAULT_TIMEOUT_MS})",
                required=False,
            ),
        ],
        handler=handler,
        timeout_resolver=timeout_from_arguments,
    )

    return [bash]


async def _run(ctx: ToolContext, command: str, timeout_seconds: float, max_output_chars: int) -> ToolOutput:
    executor = ShellExecutor(max_output_chars=max_output_chars)
    try:
        return_code, stdout, stderr, killed = await executor.execute(
            command, ctx.working_directory, timeout_seconds, ctx.signal
        )
    except OSError as e:
        logger.error("Error executing command: %s", e)
        return ToolOutput(output=f"Error executing command: {e}", metadata={"error": True})

    return ToolOutput(
        output=format_output(stdout, stderr, killed),
        metadata={"exit_code": return_code, "killed": killed},
    )
