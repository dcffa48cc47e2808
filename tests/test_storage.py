"""
Tests for the session stores (in-memory and SQLite).
"""

import pytest
import pytest_asyncio

from openmgr_agent.agent.types import CompactionConfig, CompactionRecord, Message
from openmgr_agent.errors import SessionNotFoundError
from openmgr_agent.llm.base import ToolCall, ToolResult
from openmgr_agent.storage import InMemorySessionStore, SQLSessionStore


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemorySessionStore()
        return
    store = await SQLSessionStore.connect(f"sqlite+aiosqlite:///{tmp_path / 'data' / 'agent.db'}")
    yield store
    await store.close()


async def create_session(store, **kwargs):
    return await store.create(
        working_directory="/tmp/project",
        provider="anthropic",
        model="claude-sonnet-4-20250514",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_and_get_session(any_store):
    config = CompactionConfig(enabled=False, model="claude-3-5-haiku-20241022", token_threshold=0.5)
    session = await create_session(any_store, title="Fix bug", compaction_config=config)

    loaded = await any_store.get_session(session.id)

    assert loaded.id == session.id
    assert loaded.title == "Fix bug"
    assert loaded.parent_id is None
    assert loaded.compaction_config == config
    assert loaded.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_get_unknown_session(any_store):
    assert await any_store.get_session("missing") is None


@pytest.mark.asyncio
async def test_list_sessions_filters_children(any_store):
    parent = await create_session(any_store)
    child = await create_session(any_store, parent_id=parent.id)
    await create_session(any_store)

    assert len(await any_store.list_sessions()) == 3
    assert len(await any_store.list_sessions(limit=2)) == 2
    children = await any_store.list_sessions(parent_id=parent.id)
    assert [s.id for s in children] == [child.id]


@pytest.mark.asyncio
async def test_update_session(any_store):
    session = await create_session(any_store)

    updated = await any_store.update_session(
        session.id,
        token_estimate=1234,
        message_count=7,
        compaction_config=CompactionConfig(inception_count=1),
    )

    assert updated.token_estimate == 1234
    assert updated.message_count == 7
    assert updated.updated_at >= session.updated_at
    reloaded = await any_store.get_session(session.id)
    assert reloaded.compaction_config.inception_count == 1


@pytest.mark.asyncio
async def test_update_session_rejects_unknown_fields(any_store):
    session = await create_session(any_store)

    with pytest.raises(ValueError):
        await any_store.update_session(session.id, id="other")


@pytest.mark.asyncio
async def test_update_missing_session(any_store):
    with pytest.raises(SessionNotFoundError):
        await any_store.update_session("missing", title="x")


@pytest.mark.asyncio
async def test_messages_round_trip_in_sequence_order(any_store):
    session = await create_session(any_store)
    assistant = Message(
        session_id=session.id,
        role="assistant",
        content="Checking",
        tool_calls=[ToolCall(id="c1", name="bash", arguments={"command": "ls -la"})],
        sequence=1,
        token_count=9,
    )
    tool = Message(
        session_id=session.id,
        role="tool",
        tool_results=[ToolResult(tool_call_id="c1", content="total 0", metadata={"exit_code": 0, "killed": False})],
        sequence=2,
    )
    user = Message(session_id=session.id, role="user", content="list files", sequence=0, is_inception=True)

    for msg in (tool, user, assistant):
        await any_store.append_message(session.id, msg)

    messages = await any_store.get_messages(session.id)

    assert [m.sequence for m in messages] == [0, 1, 2]
    assert messages[0].is_inception
    assert messages[1].tool_calls == assistant.tool_calls
    assert messages[2].tool_results == tool.tool_results
    assert messages[1].token_count == 9


@pytest.mark.asyncio
async def test_append_to_missing_session(any_store):
    with pytest.raises(SessionNotFoundError):
        await any_store.append_message("missing", Message(session_id="missing", role="user", content="x"))


@pytest.mark.asyncio
async def test_replace_messages(any_store):
    session = await create_session(any_store)
    for i in range(4):
        await any_store.append_message(session.id, Message(session_id=session.id, role="user", content=str(i), sequence=i))

    summary = Message(session_id=session.id, role="assistant", content="summary", sequence=0, is_compaction_summary=True)
    await any_store.replace_messages(session.id, [summary])

    messages = await any_store.get_messages(session.id)
    assert [m.id for m in messages] == [summary.id]
    assert messages[0].is_compaction_summary

    await any_store.replace_messages(session.id, [])
    assert await any_store.get_messages(session.id) == []


@pytest.mark.asyncio
async def test_compaction_history(any_store):
    session = await create_session(any_store)
    first = CompactionRecord(session_id=session.id, messages_pruned=5, compression_ratio=0.5, summary="one")
    second = CompactionRecord(session_id=session.id, messages_pruned=3, compression_ratio=0.25, summary="two")

    await any_store.save_compaction(first)
    await any_store.save_compaction(second)
    history = await any_store.get_compaction_history(session.id)

    assert [r.id for r in history] == [first.id, second.id]
    assert history[0].messages_pruned == 5
    assert history[1].compression_ratio == 0.25


@pytest.mark.asyncio
async def test_delete_session(any_store):
    session = await create_session(any_store)
    await any_store.append_message(session.id, Message(session_id=session.id, role="user", content="x"))

    assert await any_store.delete_session(session.id)
    assert await any_store.get_session(session.id) is None
    assert not await any_store.delete_session(session.id)


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    store = InMemorySessionStore()
    session = await create_session(store)
    session.title = "changed locally"

    assert (await store.get_session(session.id)).title is None


@pytest.mark.asyncio
async def test_sql_store_persists_across_connections(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'agent.db'}"
    store = await SQLSessionStore.connect(url)
    session = await create_session(store)
    await store.append_message(session.id, Message(session_id=session.id, role="user", content="remember me"))
    await store.close()

    reopened = await SQLSessionStore.connect(url)
    try:
        messages = await reopened.get_messages(session.id)
    finally:
        await reopened.close()

    assert [m.content for m in messages] == ["remember me"]
