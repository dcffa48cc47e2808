"""
Agent events and the per-agent event channel.

Event kinds and their camelCase field names are the contract UIs and the
HTTP stream render, so ``to_dict()`` output must stay stable.

Example:
    unsubscribe = agent.events.subscribe(print)          # push

    stream = agent.stream("fix the failing test")        # pull
    async for event in stream:
        render(event.to_dict())
    final = stream.result
"""

import asyncio
from typing import Annotated, Any, AsyncIterator, Awaitable, Callable, Generic, Literal, TypeVar, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer
from pydantic.alias_generators import to_camel

from ..llm.base import ToolCall, ToolResult

logger = structlog.get_logger()

T = TypeVar("T")


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation."""
        return self.model_dump(by_alias=True, mode="json")


class MessageStartEvent(_Event):
    type: Literal["message.start"] = "message.start"
    session_id: str
    message_id: str


class MessageDeltaEvent(_Event):
    type: Literal["message.delta"] = "message.delta"
    session_id: str
    message_id: str
    text: str


class ToolStartEvent(_Event):
    type: Literal["tool.start"] = "tool.start"
    session_id: str
    tool_call: ToolCall

    @field_serializer("tool_call")
    def _serialize_tool_call(self, value: ToolCall) -> dict[str, Any]:
        return value.to_dict()


class ToolCompleteEvent(_Event):
    type: Literal["tool.complete"] = "tool.complete"
    session_id: str
    tool_result: ToolResult

    @field_serializer("tool_result")
    def _serialize_tool_result(self, value: ToolResult) -> dict[str, Any]:
        return value.to_dict()


class ToolPermissionRequestEvent(_Event):
    type: Literal["tool.permission.request"] = "tool.permission.request"
    session_id: str
    tool_call: ToolCall

    @field_serializer("tool_call")
    def _serialize_tool_call(self, value: ToolCall) -> dict[str, Any]:
        return value.to_dict()


class ToolPermissionGrantedEvent(_Event):
    type: Literal["tool.permission.granted"] = "tool.permission.granted"
    session_id: str
    tool_name: str
    allow_always: bool


class ToolPermissionDeniedEvent(_Event):
    type: Literal["tool.permission.denied"] = "tool.permission.denied"
    session_id: str
    tool_name: str


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    session_id: str
    message: str


class SubagentStartEvent(_Event):
    """Emitted on the parent's channel; session_id is the child's id."""

    type: Literal["subagent.start"] = "subagent.start"
    session_id: str
    parent_session_id: str
    description: str
    is_async: bool = Field(alias="async")


class SubagentCompleteEvent(_Event):
    type: Literal["subagent.complete"] = "subagent.complete"
    session_id: str
    parent_session_id: str
    result: str


class SubagentErrorEvent(_Event):
    type: Literal["subagent.error"] = "subagent.error"
    session_id: str
    parent_session_id: str
    error: str


class CompactionStartEvent(_Event):
    type: Literal["compaction.start"] = "compaction.start"
    session_id: str
    token_estimate: int
    token_budget: int


class CompactionCompleteEvent(_Event):
    type: Literal["compaction.complete"] = "compaction.complete"
    session_id: str
    record: dict[str, Any]


class CommandResultEvent(_Event):
    type: Literal["command.result"] = "command.result"
    session_id: str
    command: str
    output: str


AgentEvent = Annotated[
    Union[
        MessageStartEvent,
        MessageDeltaEvent,
        ToolStartEvent,
        ToolCompleteEvent,
        ToolPermissionRequestEvent,
        ToolPermissionGrantedEvent,
        ToolPermissionDeniedEvent,
        ErrorEvent,
        SubagentStartEvent,
        SubagentCompleteEvent,
        SubagentErrorEvent,
        CompactionStartEvent,
        CompactionCompleteEvent,
        CommandResultEvent,
    ],
    Field(discriminator="type"),
]

EventCallback = Callable[[Any], Any]

_event_adapter: TypeAdapter = TypeAdapter(AgentEvent)


def parse_event(data: dict[str, Any]) -> Any:
    """Rebuild an event from its wire representation."""
    payload = dict(data)
    if "toolCall" in payload and isinstance(payload["toolCall"], dict):
        payload["toolCall"] = ToolCall.from_dict(payload["toolCall"])
    if "toolResult" in payload and isinstance(payload["toolResult"], dict):
        payload["toolResult"] = ToolResult.from_dict(payload["toolResult"])
    return _event_adapter.validate_python(payload)


_END = object()


class EventStream(Generic[T]):
    """Pull-based view of the events emitted while one awaitable runs.

    Iterating yields events in emission order and finishes when the
    awaitable does; its return value is then available as ``result`` and
    its exception, if any, is re-raised from the iteration.
    """

    def __init__(self, channel: "EventChannel", awaitable: Awaitable[T]):
        self._channel = channel
        self._awaitable = awaitable
        self._result: T | None = None
        self._finished = False

    @property
    def result(self) -> T:
        if not self._finished:
            raise RuntimeError("EventStream has not finished")
        return self._result  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._run()

    async def _run(self) -> AsyncIterator[Any]:
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self._channel.subscribe(queue.put_nowait)
        task = asyncio.ensure_future(self._awaitable)
        task.add_done_callback(lambda _task: queue.put_nowait(_END))
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                yield item
            self._result = task.result()
            self._finished = True
        finally:
            unsubscribe()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)


class EventChannel:
    """Ordered event sequence for one agent, with push and pull consumers."""

    def __init__(self, name: str = ""):
        self.name = name
        self._subscribers: list[EventCallback] = []
        self.history: list[Any] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Call callback(event) for every future event. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event: Any) -> None:
        self.history.append(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(
                    "Event subscriber failed",
                    channel=self.name,
                    event_type=event.type,
                    error=str(e),
                )

    def reset(self) -> None:
        """Start a new turn's history."""
        self.history = []

    def stream(self, awaitable: Awaitable[T]) -> EventStream[T]:
        return EventStream(self, awaitable)
