"""
Base classes for LLM providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Literal

if TYPE_CHECKING:
    from ..agent.cancellation import AbortSignal


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        return cls(id=data["id"], name=data["name"], arguments=dict(data.get("arguments") or {}))


@dataclass
class ToolResult:
    """Outcome of one tool call, as recorded in the transcript."""

    tool_call_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return bool(self.metadata.get("error"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolCallId": self.tool_call_id,
            "content": self.content,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolResult":
        return cls(
            tool_call_id=data["toolCallId"],
            content=data.get("content", ""),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    is_error: bool = False


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: str | None = None


@dataclass
class LLMRequest:
    """A single, non-recursive generation request."""

    messages: list[LLMMessage]
    model: str = ""
    system_prompt: str | None = None
    tools: list[ToolDefinition] | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    signal: "AbortSignal | None" = None


@dataclass
class StreamChunk:
    """One streamed item: a text delta, a complete tool call, or end-of-stream stats."""

    type: Literal["text", "tool_call", "done"]
    text: str = ""
    tool_call: ToolCall | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: str | None = None


class LLMStream:
    """Async iterable of text / tool-call chunks with a final response.

    Iterate it to receive chunks in generation order; ``await final()``
    drains whatever is left and returns the assembled response.
    """

    def __init__(self, chunks: AsyncIterator[StreamChunk]):
        self._chunks = chunks
        self._text: list[str] = []
        self._tool_calls: list[ToolCall] = []
        self._done: StreamChunk | None = None
        self._exhausted = False

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamChunk]:
        if self._exhausted:
            return
        async for chunk in self._chunks:
            if chunk.type == "done":
                self._done = chunk
                continue
            if chunk.type == "text":
                self._text.append(chunk.text)
            elif chunk.type == "tool_call" and chunk.tool_call is not None:
                self._tool_calls.append(chunk.tool_call)
            yield chunk
        self._exhausted = True

    async def final(self) -> LLMResponse:
        """Drain the stream and return the assembled response."""
        if not self._exhausted:
            async for _ in self:
                pass
        done = self._done or StreamChunk(type="done")
        return LLMResponse(
            content="".join(self._text),
            tool_calls=list(self._tool_calls),
            input_tokens=done.input_tokens,
            output_tokens=done.output_tokens,
            model=done.model,
            stop_reason=done.stop_reason,
        )

    async def aclose(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    def stream(self, request: LLMRequest) -> LLMStream:
        """Start a streaming generation."""
        return LLMStream(self._stream_chunks(request))

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate a complete response (consumes the stream)."""
        return await self.stream(request).final()

    def _resolve(self, request: LLMRequest) -> tuple[str, int, float]:
        return (
            request.model or self.model,
            request.max_tokens or self.max_tokens,
            self.temperature if request.temperature is None else request.temperature,
        )

    @abstractmethod
    def _stream_chunks(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Yield chunks for a request."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass
