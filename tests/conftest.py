"""
Shared fixtures: a scripted model provider and an in-memory runtime.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from openmgr_agent.agent.session import SessionManager
from openmgr_agent.config import Settings
from openmgr_agent.llm.base import BaseLLM, LLMRequest, StreamChunk, ToolCall
from openmgr_agent.llm.registry import ProviderRegistry
from openmgr_agent.runtime import assemble_runtime
from openmgr_agent.storage import InMemorySessionStore


@dataclass
class Reply:
    """One scripted model response."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    error: Exception | None = None
    hang: bool = False


def text_reply(text: str) -> Reply:
    return Reply(text=text)


def tool_reply(name: str, arguments: dict[str, Any] | None = None, call_id: str | None = None, text: str = "") -> Reply:
    return Reply(
        text=text,
        tool_calls=[ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments or {})],
    )


class ScriptedLLM(BaseLLM):
    """Plays back Reply objects in order and records every request.

    Replies registered with route() go to the session whose first user
    message matches, so concurrent sessions get deterministic answers.
    """

    def __init__(self, *replies: Reply):
        super().__init__(api_key="test-key", model="claude-sonnet-4-20250514")
        self.script: list[Reply] = list(replies)
        self.routes: dict[str, list[Reply]] = {}
        self.requests: list[LLMRequest] = []
        self.started = asyncio.Event()

    @property
    def provider_name(self) -> str:
        return "scripted"

    def queue(self, *replies: Reply) -> None:
        self.script.extend(replies)

    def route(self, first_prompt: str, *replies: Reply) -> None:
        self.routes.setdefault(first_prompt, []).extend(replies)

    def _next_reply(self, request: LLMRequest) -> Reply:
        first = next((m.content for m in request.messages if m.role == "user"), None)
        routed = self.routes.get(first)
        if routed:
            return routed.pop(0)
        if not self.script:
            raise RuntimeError("No scripted reply left")
        return self.script.pop(0)

    async def _stream_chunks(self, request: LLMRequest):
        self.requests.append(request)
        self.started.set()
        reply = self._next_reply(request)

        if reply.error is not None:
            raise reply.error
        if reply.hang:
            await asyncio.Event().wait()

        # Split text so streaming produces several deltas
        words = reply.text.split(" ") if reply.text else []
        for i, word in enumerate(words):
            chunk = word if i == len(words) - 1 else word + " "
            if chunk:
                yield StreamChunk(type="text", text=chunk)
        for tool_call in reply.tool_calls:
            yield StreamChunk(type="tool_call", tool_call=tool_call)
        yield StreamChunk(type="done", input_tokens=10, output_tokens=5, model=request.model)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        persistence_enabled=False,
        anthropic_api_key="test-key",
        default_provider="anthropic",
        default_model="claude-sonnet-4-20250514",
        compaction_model=None,
        compaction_default_model=None,
        max_agent_iterations=None,
        loop_detection_window=5,
        tool_timeout_seconds=30.0,
        tool_termination_grace_seconds=0.2,
        enabled_tools="",
        title_generation_enabled=False,
    )


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def runtime(settings, store, llm):
    providers = ProviderRegistry()
    providers.register_instance("anthropic", llm)
    return assemble_runtime(settings, store, providers=providers)


@pytest.fixture
def manager(runtime):
    return SessionManager(runtime)
