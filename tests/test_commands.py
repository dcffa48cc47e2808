"""
Tests for slash commands.
"""

import pytest

from openmgr_agent.agent.types import AgentState, Message
from openmgr_agent.commands import Command, CommandRegistry, parse_command

from conftest import Reply, text_reply


def test_parse_command():
    assert parse_command("/help") == ("help", "")
    assert parse_command("  /compact now please ") == ("compact", "now please")
    assert parse_command("/note line one\nline two") == ("note", "line one\nline two")
    assert parse_command("not a command") is None
    assert parse_command("/") is None


@pytest.mark.asyncio
async def test_registry_only_matches_registered_names():
    registry = CommandRegistry()

    async def echo(args, ctx):
        return f"echo {args}"

    registry.register(Command("echo", "Echo", echo))

    command, args = registry.match("/echo hi")
    assert command.name == "echo"
    assert args == "hi"
    assert registry.match("/unknown hi") is None
    assert await registry.execute("plain text", ctx=None) is None
    assert registry.unregister("echo")
    assert not registry.has("echo")


@pytest.mark.asyncio
async def test_help_lists_builtins(manager, llm):
    session = await manager.create(working_directory="/tmp")
    events = []

    final = await manager.prompt(session.id, "/help", on_event=events.append)

    assert final.state == AgentState.DONE
    for name in ("/help", "/clear", "/compact", "/tasks"):
        assert name in final.content
    assert [e.type for e in events] == ["command.result"]
    assert events[0].command == "help"
    assert llm.requests == []


@pytest.mark.asyncio
async def test_unknown_slash_goes_to_model(manager, llm):
    llm.queue(text_reply("I don't know that command."))
    session = await manager.create(working_directory="/tmp")

    final = await manager.prompt(session.id, "/frobnicate")

    assert final.content == "I don't know that command."
    assert llm.requests[0].messages[-1].content == "/frobnicate"


@pytest.mark.asyncio
async def test_clear_command(manager, llm, store):
    llm.queue(text_reply("answer"))
    session = await manager.create(working_directory="/tmp")
    await manager.prompt(session.id, "question")

    final = await manager.prompt(session.id, "/clear")

    assert final.content == "Conversation cleared (2 messages removed)."
    assert await store.get_messages(session.id) == []


@pytest.mark.asyncio
async def test_compact_command_noop(manager):
    session = await manager.create(working_directory="/tmp")

    final = await manager.prompt(session.id, "/compact")

    assert final.content.startswith("Nothing to compact")


@pytest.mark.asyncio
async def test_compact_command_reports_ratio(manager, llm):
    session = await manager.create(working_directory="/tmp")
    await manager.update_compaction_config(session.id, inception_count=1, working_window_count=1)
    agent = await manager.restore(session.id)
    for text in ("a" * 400, "b" * 400, "c" * 400, "d" * 40):
        await agent._append(Message(session_id=session.id, role="user", content=text))
    llm.queue(text_reply("tiny"))

    final = await manager.prompt(session.id, "/compact")

    assert final.content.startswith("Compacted 2 messages. Compression ratio: ")
    assert final.content.endswith("%")


@pytest.mark.asyncio
async def test_compact_command_reports_failure(manager, llm):
    session = await manager.create(working_directory="/tmp")
    await manager.update_compaction_config(session.id, inception_count=0, working_window_count=0)
    agent = await manager.restore(session.id)
    await agent._append(Message(session_id=session.id, role="user", content="hello"))
    llm.queue(Reply(error=RuntimeError("summarizer offline")))

    final = await manager.prompt(session.id, "/compact")

    assert final.content.startswith("Compaction failed:")
    assert len(agent.messages) == 1


@pytest.mark.asyncio
async def test_tasks_command(manager, llm):
    parent = await manager.create(working_directory="/tmp")

    final = await manager.prompt(parent.id, "/tasks")
    assert final.content == "No background tasks running."

    llm.route("long job", Reply(hang=True))
    spawned = await manager.subagents.spawn(parent.id, "/tmp", "long job", "long job", is_async=True)

    final = await manager.prompt(parent.id, "/tasks")
    assert spawned.session_id in final.content
    assert "long job (pending)" in final.content

    await manager.shutdown()
