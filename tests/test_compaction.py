"""
Tests for conversation compaction module.
"""

import pytest

from openmgr_agent.agent.compaction import (
    DEFAULT_MODEL_LIMIT,
    SUMMARY_PREFIX,
    CompactionEngine,
    compression_ratio,
    estimate_message_tokens,
    estimate_tokens,
    format_messages_for_summary,
    get_model_limit,
)
from openmgr_agent.agent.types import CompactionConfig, Message, Session
from openmgr_agent.errors import CompactionError
from openmgr_agent.llm.base import ToolCall, ToolResult

from conftest import Reply, text_reply


def test_estimate_tokens_examples():
    """Token estimate is ceil(utf8 bytes / 4)."""
    assert estimate_tokens("") == 0
    assert estimate_tokens("test") == 1
    assert estimate_tokens("tests") == 2
    assert estimate_tokens("a" * 1000) == 250


def test_estimate_tokens_counts_utf8_bytes():
    # Each of these characters is three bytes in UTF-8
    assert estimate_tokens("日本") == 2


def test_estimate_message_tokens_includes_tool_data():
    msg = Message(
        session_id="s1",
        role="assistant",
        content="abcd",
        tool_calls=[ToolCall(id="c", name="bash", arguments={"a": 1})],
    )
    # "abcd" -> 1, "bash" -> 1, '{"a":1}' (7 bytes) -> 2
    assert estimate_message_tokens(msg) == 4

    result = Message(
        session_id="s1",
        role="tool",
        tool_results=[ToolResult(tool_call_id="c", content="x" * 9)],
    )
    assert estimate_message_tokens(result) == 3


def test_get_model_limit():
    assert get_model_limit("claude-sonnet-4-20250514") == 200_000
    assert get_model_limit("gpt-4o-2024-08-06") == 128_000
    assert get_model_limit("gpt-4") == 8_192
    assert get_model_limit("openai/gpt-4o-mini") == 128_000
    assert get_model_limit("some-unknown-model") == DEFAULT_MODEL_LIMIT


def test_compression_ratio_bounds():
    assert compression_ratio(0, 0) == 0.0
    assert compression_ratio(100, 150) == 0.0
    assert compression_ratio(100, 25) == 0.75
    assert compression_ratio(100, 0) < 1.0


def test_format_messages_for_summary():
    messages = [
        Message(session_id="s", role="user", content="Run the tests"),
        Message(
            session_id="s",
            role="assistant",
            content="Running",
            tool_calls=[ToolCall(id="c1", name="bash", arguments={"command": "pytest"})],
        ),
        Message(
            session_id="s",
            role="tool",
            tool_results=[ToolResult(tool_call_id="c1", content="1 failed", metadata={"error": True})],
        ),
    ]

    text = format_messages_for_summary(messages)

    assert "User: Run the tests" in text
    assert "Assistant called tool: bash" in text
    assert "Tool bash failed: 1 failed" in text


async def seed(store, count: int, config: CompactionConfig, model: str = "claude-sonnet-4-20250514"):
    session = await store.create(working_directory="/tmp", provider="anthropic", model=model, compaction_config=config)
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        msg = Message(session_id=session.id, role=role, content=f"message {i} " + "x" * 200, sequence=i)
        msg.token_count = estimate_message_tokens(msg)
        await store.append_message(session.id, msg)
    messages = await store.get_messages(session.id)
    session = await store.update_session(
        session.id,
        token_estimate=sum(m.token_count for m in messages),
        message_count=len(messages),
    )
    return session, messages


def make_engine(runtime):
    return CompactionEngine(runtime.providers, runtime.store)


def test_should_compact_threshold(runtime):
    engine = make_engine(runtime)
    session = Session(working_directory="/tmp", provider="anthropic", model="gpt-4")
    session.token_estimate = 6_000
    assert not engine.should_compact(session)

    session.token_estimate = 7_000
    assert engine.should_compact(session)

    session.compaction_config.enabled = False
    assert not engine.should_compact(session)


@pytest.mark.asyncio
async def test_noop_compaction_changes_nothing(runtime, store, llm):
    """When inception + window cover the transcript nothing is rewritten."""
    session, before = await seed(store, 6, CompactionConfig(inception_count=2, working_window_count=4))
    engine = make_engine(runtime)

    record = await engine.run_compaction(session)

    assert record.messages_pruned == 0
    assert record.compression_ratio == 0.0
    after = await store.get_messages(session.id)
    assert [m.sequence for m in after] == [m.sequence for m in before]
    reloaded = await store.get_session(session.id)
    assert reloaded.token_estimate == session.token_estimate
    assert reloaded.message_count == session.message_count
    assert await store.get_compaction_history(session.id) == []
    assert llm.requests == []


@pytest.mark.asyncio
async def test_compaction_replaces_middle_with_summary(runtime, store, llm):
    session, before = await seed(store, 20, CompactionConfig(inception_count=2, working_window_count=5))
    llm.queue(text_reply("## Tasks Completed\n- seeded twenty messages"))
    engine = make_engine(runtime)

    record = await engine.run_compaction(session)
    after = await store.get_messages(session.id)

    assert record.messages_pruned == len(before) - len(after) + 1
    assert record.messages_pruned == 13
    assert 0 <= record.compression_ratio < 1
    assert record.from_sequence == 2
    assert record.to_sequence == 14

    # Kept regions are identical apart from renumbering
    for original, kept in zip(before[:2] + before[-5:], after[:2] + after[-5:]):
        assert kept.id == original.id
        assert kept.content == original.content
        assert kept.role == original.role

    summary = after[2]
    assert summary.is_compaction_summary
    assert summary.content.startswith(SUMMARY_PREFIX)
    assert summary.id == record.summary_message_id

    assert [m.sequence for m in after] == list(range(len(after)))

    reloaded = await store.get_session(session.id)
    assert reloaded.message_count == len(after)
    assert reloaded.token_estimate == sum(estimate_message_tokens(m) for m in after)
    assert await store.get_compaction_history(session.id) == [record]


@pytest.mark.asyncio
async def test_compaction_uses_summary_model(runtime, store, llm):
    session, _ = await seed(store, 10, CompactionConfig(model="claude-3-5-haiku-20241022", inception_count=1, working_window_count=2))
    llm.queue(text_reply("summary"))

    await make_engine(runtime).run_compaction(session)

    assert llm.requests[0].model == "claude-3-5-haiku-20241022"
    assert "Conversation to summarize" in llm.requests[0].messages[0].content


def test_summary_model_falls_back_to_provider_default(runtime):
    engine = make_engine(runtime)
    session = Session(working_directory="/tmp", provider="anthropic", model="claude-sonnet-4-20250514")
    assert engine.summary_model(session) == "claude-3-5-haiku-20241022"

    engine.default_model = "my-summarizer"
    assert engine.summary_model(session) == "my-summarizer"


@pytest.mark.asyncio
async def test_failed_summary_leaves_transcript_untouched(runtime, store, llm):
    session, before = await seed(store, 12, CompactionConfig(inception_count=2, working_window_count=2))
    llm.queue(Reply(error=RuntimeError("rate limited")))

    with pytest.raises(CompactionError):
        await make_engine(runtime).run_compaction(session)

    after = await store.get_messages(session.id)
    assert [m.id for m in after] == [m.id for m in before]
    assert await store.get_compaction_history(session.id) == []


@pytest.mark.asyncio
async def test_empty_summary_is_an_error(runtime, store, llm):
    session, _ = await seed(store, 12, CompactionConfig(inception_count=2, working_window_count=2))
    llm.queue(text_reply("   "))

    with pytest.raises(CompactionError):
        await make_engine(runtime).run_compaction(session)
