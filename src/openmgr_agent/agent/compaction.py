"""
Conversation Compaction - keeps a transcript inside the model's context budget.

The first ``inception_count`` messages (the task framing) and the last
``working_window_count`` messages (recent context) are kept verbatim. The
slice between them is replaced by a single summary message written by a
small, fast model.

Token counts are a length heuristic, not a tokenizer:
``estimate_tokens(text) == ceil(utf8_bytes / 4)``.
"""

import json
import math
from dataclasses import replace
from typing import TYPE_CHECKING

import structlog

from ..errors import CompactionError
from ..llm.base import LLMMessage, LLMRequest
from .types import CompactionRecord, Message, Session

if TYPE_CHECKING:
    from ..llm.registry import ProviderRegistry
    from ..storage.base import SessionStore

logger = structlog.get_logger()

CHARS_PER_TOKEN = 4

DEFAULT_MODEL_LIMIT = 100_000

MODEL_LIMITS: dict[str, int] = {
    "claude-sonnet-4-20250514": 200_000,
    "claude-opus-4-20250514": 200_000,
    "claude-3-5-sonnet-20241022": 200_000,
    "claude-3-5-haiku-20241022": 200_000,
    "claude-3-opus-20240229": 200_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-4": 8_192,
    "gpt-3.5-turbo": 16_385,
    "gemini-2.5-flash": 1_000_000,
    "gemini-2.5-pro": 1_000_000,
}

# Used when neither the session nor the settings name a summarization model
DEFAULT_SUMMARY_MODELS: dict[str, str] = {
    "anthropic": "claude-3-5-haiku-20241022",
    "openai": "gpt-4o-mini",
    "google": "gemini-2.5-flash",
    "openrouter": "anthropic/claude-3.5-haiku",
}

SUMMARY_MAX_TOKENS = 4096
TOOL_RESULT_PREVIEW_CHARS = 200

SUMMARY_SYSTEM_PROMPT = "You are a helpful assistant that creates structured summaries."

SUMMARY_PROMPT = """You are a conversation summarizer. Summarize the following conversation history into a structured summary that captures all important context.

The summary should include:
## Tasks Completed
- [Bullet list of completed tasks with outcomes]

## Files Modified
- [List of files with brief description of changes]

## Key Decisions
- [Important decisions made and their rationale]

## Problems Encountered
- [Any errors, blockers, or issues]

## Current State
[Where we are - 1-2 sentences]

## Next Steps
- [Unfinished work or pending items]

Be thorough but concise. This summary will replace the original messages to maintain context.

Conversation to summarize:
"""

SUMMARY_PREFIX = "[Previous conversation summary]\n\n"

# Largest float below 1.0; compression ratios live in [0, 1)
_MAX_RATIO = math.nextafter(1.0, 0.0)


def estimate_tokens(text: str) -> int:
    """Estimate token count for a piece of text."""
    if not text:
        return 0
    return math.ceil(len(text.encode("utf-8")) / CHARS_PER_TOKEN)


def estimate_message_tokens(message: Message) -> int:
    """Content plus tool-call names/arguments plus tool-result content."""
    tokens = estimate_tokens(message.content)
    for tool_call in message.tool_calls or []:
        tokens += estimate_tokens(tool_call.name)
        tokens += estimate_tokens(json.dumps(tool_call.arguments, separators=(",", ":")))
    for tool_result in message.tool_results or []:
        tokens += estimate_tokens(tool_result.content)
    return tokens


def estimate_conversation_tokens(messages: list[Message]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)


def get_model_limit(model: str) -> int:
    """Context budget for a model, by exact name or longest known prefix."""
    if model in MODEL_LIMITS:
        return MODEL_LIMITS[model]
    # Dated or provider-prefixed variants, e.g. "gpt-4o-2024-08-06"
    bare = model.rsplit("/", 1)[-1]
    matches = [name for name in MODEL_LIMITS if bare.startswith(name)]
    if matches:
        return MODEL_LIMITS[max(matches, key=len)]
    return DEFAULT_MODEL_LIMIT


def format_messages_for_summary(messages: list[Message]) -> str:
    """Render a transcript slice as plain text for the summarizer."""
    tool_names: dict[str, str] = {}
    parts: list[str] = []

    for msg in messages:
        role = "User" if msg.role == "user" else "Assistant"

        if msg.content:
            parts.append(f"{role}: {msg.content}")

        for tc in msg.tool_calls or []:
            tool_names[tc.id] = tc.name
            parts.append(f"{role} called tool: {tc.name}")

        for tr in msg.tool_results or []:
            name = tool_names.get(tr.tool_call_id, "call")
            status = "failed" if tr.is_error else "succeeded"
            preview = tr.content[:TOOL_RESULT_PREVIEW_CHARS]
            ellipsis = "..." if len(tr.content) > TOOL_RESULT_PREVIEW_CHARS else ""
            parts.append(f"Tool {name} {status}: {preview}{ellipsis}")

    return "\n\n".join(parts)


def compression_ratio(old_tokens: int, new_tokens: int) -> float:
    if old_tokens <= 0:
        return 0.0
    return min(max(1.0 - new_tokens / old_tokens, 0.0), _MAX_RATIO)


class CompactionEngine:
    """Decides when to compact a session and performs the rewrite through the store."""

    def __init__(
        self,
        providers: "ProviderRegistry",
        store: "SessionStore",
        default_model: str | None = None,
    ):
        self.providers = providers
        self.store = store
        self.default_model = default_model

    def should_compact(self, session: Session) -> bool:
        config = session.compaction_config
        if not config.enabled:
            return False
        budget = get_model_limit(session.model)
        return session.token_estimate / budget >= config.token_threshold

    def summary_model(self, session: Session) -> str:
        return (
            session.compaction_config.model
            or self.default_model
            or DEFAULT_SUMMARY_MODELS.get(session.provider, session.model)
        )

    async def run_compaction(self, session: Session) -> CompactionRecord:
        """Compact one session's transcript.

        Returns a record with ``messages_pruned == 0`` (and touches nothing)
        when the kept regions already cover the whole transcript. Raises
        CompactionError if summarization fails; the transcript is then left
        as it was.
        """
        config = session.compaction_config
        messages = await self.store.get_messages(session.id)
        count = len(messages)

        if config.inception_count + config.working_window_count >= count:
            logger.debug("Compaction skipped", session_id=session.id, message_count=count)
            return CompactionRecord(session_id=session.id, messages_pruned=0, compression_ratio=0.0)

        inception = messages[: config.inception_count]
        middle = messages[config.inception_count : count - config.working_window_count]
        window = messages[count - config.working_window_count :]

        old_total = estimate_conversation_tokens(messages)
        logger.info(
            "Starting conversation compaction",
            session_id=session.id,
            message_count=count,
            estimated_tokens=old_total,
            messages_to_compact=len(middle),
        )

        summary = await self._summarize(session, middle)

        summary_message = Message(
            session_id=session.id,
            role="assistant",
            content=SUMMARY_PREFIX + summary,
            is_compaction_summary=True,
        )
        summary_message.token_count = estimate_message_tokens(summary_message)

        compacted = [
            replace(m, sequence=i)
            for i, m in enumerate([*inception, summary_message, *window])
        ]
        new_total = estimate_conversation_tokens(compacted)

        record = CompactionRecord(
            session_id=session.id,
            messages_pruned=len(middle),
            compression_ratio=compression_ratio(old_total, new_total),
            summary_message_id=summary_message.id,
            summary=summary,
            original_tokens=estimate_conversation_tokens(middle),
            compacted_tokens=summary_message.token_count,
            from_sequence=middle[0].sequence,
            to_sequence=middle[-1].sequence,
        )

        await self.store.replace_messages(session.id, compacted)
        await self.store.save_compaction(record)
        await self.store.update_session(
            session.id,
            token_estimate=new_total,
            message_count=len(compacted),
        )

        logger.info(
            "Compaction complete",
            session_id=session.id,
            original=count,
            compacted=len(compacted),
            compression_ratio=round(record.compression_ratio, 3),
        )
        return record

    async def _summarize(self, session: Session, messages: list[Message]) -> str:
        model = self.summary_model(session)
        request = LLMRequest(
            messages=[LLMMessage(role="user", content=SUMMARY_PROMPT + format_messages_for_summary(messages))],
            model=model,
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            max_tokens=SUMMARY_MAX_TOKENS,
        )

        try:
            provider = self.providers.get(session.provider)
            response = await provider.generate(request)
        except Exception as e:
            logger.error("Compaction summarization failed", session_id=session.id, model=model, error=str(e))
            raise CompactionError(f"Summarization failed: {e}") from e

        summary = response.content.strip()
        if not summary:
            raise CompactionError("Summarization returned an empty summary")
        return summary
