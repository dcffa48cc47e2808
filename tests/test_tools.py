"""
Tests for tools module.
"""

import asyncio
import time

import pytest

from openmgr_agent.agent.cancellation import AbortSignal
from openmgr_agent.errors import ToolValidationError
from openmgr_agent.tools.base import Tool, ToolContext, ToolOutput, ToolParameter
from openmgr_agent.tools.registry import ToolRegistry
from openmgr_agent.tools.shell_tool import create_shell_tools, format_output
from openmgr_agent.tools.task_tool import create_task_tool, task_handler


def bash_tool(max_output_chars: int = 50_000) -> Tool:
    return create_shell_tools(max_output_chars=max_output_chars)[0]


def make_context(tmp_path, signal=None, timeout=None, **kwargs):
    return ToolContext(
        working_directory=str(tmp_path),
        signal=signal or AbortSignal(),
        timeout=timeout,
        **kwargs,
    )


def test_tool_to_definition():
    """Test converting tool to LLM definition."""
    tool = create_task_tool()
    definition = tool.to_definition()

    assert definition.name == "task"
    schema = definition.parameters
    assert schema["type"] == "object"
    assert set(schema["properties"]) == {"description", "prompt", "async"}
    assert schema["required"] == ["description", "prompt"]
    assert schema["properties"]["async"]["default"] is False


def test_validate_arguments_fills_defaults_and_drops_unknown():
    tool = Tool(
        name="t",
        description="",
        parameters=[
            ToolParameter(name="mode", param_type="string", description="", required=False, default="fast", enum=["fast", "slow"]),
        ],
        handler=None,
    )

    assert tool.validate_arguments({"extra": 1}) == {"mode": "fast"}
    with pytest.raises(ToolValidationError):
        tool.validate_arguments({"mode": "medium"})


def test_validate_arguments_type_checks():
    tool = Tool(
        name="t",
        description="",
        parameters=[ToolParameter(name="count", param_type="integer", description="")],
        handler=None,
    )

    assert tool.validate_arguments({"count": 3}) == {"count": 3}
    with pytest.raises(ToolValidationError):
        tool.validate_arguments({"count": "3"})
    with pytest.raises(ToolValidationError):
        tool.validate_arguments({"count": True})
    with pytest.raises(ToolValidationError):
        tool.validate_arguments("not a dict")


def test_registry_model_tools_filter():
    registry = ToolRegistry([bash_tool(), create_task_tool()])

    assert registry.list_tools() == ["bash", "task"]
    assert [d.name for d in registry.to_model_tools()] == ["bash", "task"]
    assert [d.name for d in registry.to_model_tools(["task", "missing"])] == ["task"]

    registry.unregister("task")
    assert not registry.has("task")
    assert registry.get("task") is None


def test_format_output():
    assert format_output("", "", False) == "(no output)"
    assert format_output("out", "err", False) == "out\n\nSTDERR:\nerr"
    assert format_output("", "err", False) == "STDERR:\nerr"
    assert format_output("partial", "", True) == "partial\n\n(Command was terminated)"
    assert format_output("", "", True) == "(Command was terminated)"


def test_bash_reads_timeout_argument_in_seconds():
    tool = bash_tool()

    assert tool.resolve_timeout({"command": "ls", "timeout": 5000}) == 5.0
    assert tool.resolve_timeout({"command": "ls"}) is None
    assert tool.resolve_timeout({"command": "ls", "timeout": "soon"}) is None
    assert tool.resolve_timeout({"command": "ls", "timeout": 0}) is None


@pytest.mark.asyncio
async def test_bash_runs_in_working_directory(tmp_path):
    (tmp_path / "marker.txt").write_text("here")

    output = await bash_tool().execute({"command": "ls"}, make_context(tmp_path))

    assert isinstance(output, ToolOutput)
    assert "marker.txt" in output.output
    assert output.metadata == {"exit_code": 0, "killed": False}


@pytest.mark.asyncio
async def test_bash_reports_stderr_and_exit_code(tmp_path):
    output = await bash_tool().execute({"command": "echo oops >&2; exit 3"}, make_context(tmp_path))

    assert "STDERR:\noops" in output.output
    assert output.metadata["exit_code"] == 3


@pytest.mark.asyncio
async def test_bash_timeout_kills_and_keeps_partial_output(tmp_path):
    started = time.monotonic()
    output = await bash_tool().execute(
        {"command": "echo before; sleep 30; echo after", "timeout": 300},
        make_context(tmp_path),
    )

    assert time.monotonic() - started < 10
    assert "before" in output.output
    assert "after" not in output.output
    assert "(Command was terminated)" in output.output
    assert output.metadata["killed"] is True


@pytest.mark.asyncio
async def test_bash_abort_kills_process(tmp_path):
    signal = AbortSignal()
    asyncio.get_running_loop().call_later(0.2, signal.abort, "user")

    output = await bash_tool().execute({"command": "sleep 30"}, make_context(tmp_path, signal=signal))

    assert output.metadata["killed"] is True


@pytest.mark.asyncio
async def test_bash_truncates_large_output(tmp_path):
    output = await bash_tool(max_output_chars=100).execute(
        {"command": "yes line | head -n 1000"},
        make_context(tmp_path),
    )

    assert output.output.endswith("... (output truncated)")
    assert len(output.output) < 200


@pytest.mark.asyncio
async def test_task_tool_requires_coordinator(tmp_path):
    output = await task_handler(make_context(tmp_path, session_id="s1"), description="d", prompt="p")

    assert output.metadata["error"] is True
    assert "subagent coordinator" in output.output


@pytest.mark.asyncio
async def test_task_tool_requires_parent_session(tmp_path, manager):
    output = await task_handler(make_context(tmp_path, subagents=manager.subagents), description="d", prompt="p")

    assert output.metadata["error"] is True
    assert "parent session ID" in output.output
