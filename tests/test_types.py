"""
Tests for the core data model.
"""

import pytest

from openmgr_agent.agent.types import (
    AgentState,
    CompactionConfig,
    CompactionRecord,
    FinalResponse,
    Message,
    Session,
)
from openmgr_agent.llm.base import ToolCall, ToolResult


def test_message_round_trip_with_tool_data():
    """Serializing and deserializing a message keeps it structurally identical."""
    assistant = Message(
        session_id="s1",
        role="assistant",
        content="Let me look.",
        tool_calls=[ToolCall(id="call_1", name="bash", arguments={"command": "ls", "timeout": 500})],
        sequence=3,
        token_count=12,
    )
    tool = Message(
        session_id="s1",
        role="tool",
        tool_results=[ToolResult(tool_call_id="call_1", content="a.py\nb.py", metadata={"exit_code": 0})],
        sequence=4,
    )

    assert Message.from_dict(assistant.to_dict()) == assistant
    assert Message.from_dict(tool.to_dict()) == tool


def test_message_wire_keys_are_camel_case():
    msg = Message(session_id="s1", role="user", content="hi", is_inception=True)
    data = msg.to_dict()

    assert data["sessionId"] == "s1"
    assert data["isInception"] is True
    assert data["isCompactionSummary"] is False
    assert data["toolCalls"] is None


def test_message_rejects_invalid_role():
    with pytest.raises(ValueError):
        Message(session_id="s1", role="system", content="nope")


def test_message_rejects_tool_calls_on_user():
    with pytest.raises(ValueError):
        Message(session_id="s1", role="user", tool_calls=[ToolCall(id="x", name="bash", arguments={})])


def test_tool_message_requires_results():
    with pytest.raises(ValueError):
        Message(session_id="s1", role="tool")


def test_message_rejects_negative_sequence():
    with pytest.raises(ValueError):
        Message(session_id="s1", role="user", content="hi", sequence=-1)


def test_tool_result_error_flag():
    assert ToolResult(tool_call_id="c", content="boom", metadata={"error": True}).is_error
    assert not ToolResult(tool_call_id="c", content="fine").is_error


def test_compaction_config_validation():
    with pytest.raises(ValueError):
        CompactionConfig(token_threshold=0.0)
    with pytest.raises(ValueError):
        CompactionConfig(token_threshold=1.5)
    with pytest.raises(ValueError):
        CompactionConfig(inception_count=-1)

    config = CompactionConfig(token_threshold=1.0, inception_count=0, working_window_count=0)
    assert config.to_dict()["tokenThreshold"] == 1.0


def test_session_is_subagent():
    parent = Session(working_directory="/tmp", provider="anthropic", model="m")
    child = Session(working_directory="/tmp", provider="anthropic", model="m", parent_id=parent.id)

    assert not parent.is_subagent
    assert child.is_subagent
    assert child.to_dict()["parentId"] == parent.id


def test_compaction_record_noop():
    record = CompactionRecord(session_id="s1", messages_pruned=0, compression_ratio=0.0)
    assert record.is_noop
    assert record.to_dict()["messagesPruned"] == 0


def test_agent_state_terminal():
    assert AgentState.DONE.is_terminal
    assert AgentState.ABORTED.is_terminal
    assert AgentState.ERRORED.is_terminal
    assert not AgentState.STREAMING.is_terminal


def test_final_response_outcomes():
    assert FinalResponse(state=AgentState.DONE, content="ok").ok
    aborted = FinalResponse(state=AgentState.ABORTED)
    assert aborted.aborted
    assert not aborted.ok
    assert aborted.to_dict()["state"] == "aborted"
