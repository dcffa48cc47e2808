"""
Conversation loop.

One Agent drives one session. A turn appends the user message, then
alternates model calls and tool execution until the model answers without
requesting tools, the turn is aborted, or something fails:

    idle -> streaming -> (tools requested ? executing_tools -> streaming : done)

with aborted / errored reachable from any non-terminal state. After a turn
ends done or aborted the session is compacted if it has outgrown its
token budget.
"""

import json
from collections import deque
from typing import TYPE_CHECKING

import structlog

from ..errors import AbortError, CompactionError
from ..llm.base import LLMMessage, LLMRequest, LLMResponse, ToolCall, ToolDefinition, ToolResult
from ..tools.base import ToolContext
from .cancellation import AbortSignal
from .compaction import estimate_message_tokens, get_model_limit
from .events import (
    CompactionCompleteEvent,
    CompactionStartEvent,
    ErrorEvent,
    EventChannel,
    EventStream,
    MessageDeltaEvent,
    MessageStartEvent,
    ToolCompleteEvent,
    ToolPermissionDeniedEvent,
    ToolPermissionGrantedEvent,
    ToolPermissionRequestEvent,
    ToolStartEvent,
)
from .executor import error_result
from .permissions import PermissionRequestCallback, ToolPermissionManager
from .types import AgentState, CompactionRecord, FinalResponse, Message, Session, new_id

if TYPE_CHECKING:
    from ..runtime import AgentRuntime
    from .subagents import SubagentCoordinator

logger = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = """You are an AI coding assistant working in the user's project directory.

You help with software engineering tasks: reading and changing code, running commands, debugging, and explaining how things work.

Guidelines:
1. Be accurate and concise
2. Use tools to inspect the project instead of guessing
3. Prefer small, verifiable steps and check the results of commands you run
4. Delegate self-contained subtasks with the task tool when that helps
5. If you're unsure, say so"""


class Agent:
    """Runs turns for a single session."""

    def __init__(
        self,
        session: Session,
        runtime: "AgentRuntime",
        subagents: "SubagentCoordinator | None" = None,
        system_prompt: str | None = None,
        max_iterations: int | None = None,
        permission_callback: PermissionRequestCallback | None = None,
    ):
        self.session = session
        self.runtime = runtime
        self.subagents = subagents
        self.base_system_prompt = system_prompt or session.system_prompt or DEFAULT_SYSTEM_PROMPT
        settings = runtime.settings
        self.max_iterations = max_iterations if max_iterations is not None else settings.max_agent_iterations
        self.loop_detection_window = settings.loop_detection_window
        self.permissions = ToolPermissionManager(settings.tool_permission_config(), permission_callback)

        self.events = EventChannel(name=session.id)
        self.messages: list[Message] = []
        self.state = AgentState.IDLE
        self._signal: AbortSignal | None = None
        # Held by a turn (including its automatic compaction), a manual
        # compaction or a clear; the transcript has one writer at a time
        self._busy = False

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def is_running(self) -> bool:
        return self._busy

    def _acquire(self, action: str) -> None:
        if self._busy:
            raise RuntimeError(f"Session {self.session.id} is busy; cannot {action}")
        self._busy = True

    @property
    def system_prompt(self) -> str:
        return f"{self.base_system_prompt}\n\nWorking directory: {self.session.working_directory}"

    async def load(self) -> None:
        """Read the session and its transcript from the store."""
        store = self.runtime.store
        session = await store.get_session(self.session.id)
        if session is not None:
            self.session = session
        self.messages = await store.get_messages(self.session.id)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def stream(self, text: str, signal: AbortSignal | None = None) -> EventStream[FinalResponse]:
        """Run a turn, yielding its events. The FinalResponse is ``.result`` afterwards."""
        return self.events.stream(self.prompt(text, signal))

    def abort(self, reason: str = "aborted") -> bool:
        """Abort the running turn. Returns False when no turn is running."""
        if self._signal is None:
            return False
        self._signal.abort(reason)
        return True

    async def prompt(self, text: str, signal: AbortSignal | None = None) -> FinalResponse:
        """Run one turn for a user message."""
        self._acquire("start a turn")
        try:
            # A child, so abort() here never fires the caller's signal
            turn_signal = (signal or AbortSignal()).child()
            self._signal = turn_signal
            self.events.reset()
            try:
                response = await self._run_turn(text, turn_signal)
            finally:
                self._signal = None
                turn_signal.detach()

            if response.state in (AgentState.DONE, AgentState.ABORTED):
                await self._auto_compact()
            return response
        finally:
            self._busy = False

    async def _run_turn(self, text: str, signal: AbortSignal) -> FinalResponse:
        self.state = AgentState.IDLE
        await self._append(Message(session_id=self.session.id, role="user", content=text))

        model_tools = self.runtime.tools.to_model_tools(self.runtime.settings.enabled_tools_list)
        recent_batches: deque[str] = deque(maxlen=self.loop_detection_window or None)
        iterations = 0
        last_content = ""

        while True:
            if signal.aborted:
                return self._aborted(last_content, iterations)

            if self.max_iterations is not None and iterations >= self.max_iterations:
                return self._errored(f"Maximum iterations reached ({self.max_iterations})", iterations)

            iterations += 1
            self.state = AgentState.STREAMING
            message_id = new_id()
            try:
                response = await self._call_model(message_id, model_tools, signal)
            except AbortError:
                return self._aborted(last_content, iterations)
            except Exception as e:
                logger.error("Model call failed", session_id=self.session.id, error=str(e))
                return self._errored(f"Provider error: {str(e) or type(e).__name__}", iterations)

            last_content = response.content
            assistant = Message(
                id=message_id,
                session_id=self.session.id,
                role="assistant",
                content=response.content,
                tool_calls=response.tool_calls or None,
            )
            await self._append(assistant)

            if not response.tool_calls:
                self.state = AgentState.DONE
                logger.info("Turn complete", session_id=self.session.id, iterations=iterations)
                return FinalResponse(
                    state=AgentState.DONE,
                    content=response.content,
                    message=assistant,
                    iterations=iterations,
                )

            if self.loop_detection_window:
                recent_batches.append(self._batch_signature(response))
                if len(recent_batches) == self.loop_detection_window and len(set(recent_batches)) == 1:
                    names = ", ".join(tc.name for tc in response.tool_calls)
                    return self._errored(
                        f"Loop detected: the same tool calls ({names}) were requested "
                        f"{self.loop_detection_window} times in a row",
                        iterations,
                    )

            self.state = AgentState.EXECUTING_TOOLS
            for tool_call in response.tool_calls:
                if signal.aborted:
                    return self._aborted(last_content, iterations)

                self.events.emit(ToolStartEvent(session_id=self.session.id, tool_call=tool_call))
                result = await self._execute_tool(tool_call, signal)
                self.events.emit(ToolCompleteEvent(session_id=self.session.id, tool_result=result))
                await self._append(Message(session_id=self.session.id, role="tool", tool_results=[result]))

    async def _call_model(
        self,
        message_id: str,
        model_tools: list[ToolDefinition],
        signal: AbortSignal,
    ) -> LLMResponse:
        request = LLMRequest(
            messages=self.build_llm_messages(),
            model=self.session.model,
            system_prompt=self.system_prompt,
            tools=model_tools or None,
            signal=signal,
        )
        provider = self.runtime.providers.get(self.session.provider)
        stream = provider.stream(request)

        async def consume() -> LLMResponse:
            started = False
            async for chunk in stream:
                if chunk.type != "text" or not chunk.text:
                    continue
                if not started:
                    self.events.emit(MessageStartEvent(session_id=self.session.id, message_id=message_id))
                    started = True
                self.events.emit(MessageDeltaEvent(
                    session_id=self.session.id,
                    message_id=message_id,
                    text=chunk.text,
                ))
            return await stream.final()

        try:
            return await signal.race(consume())
        finally:
            await stream.aclose()

    async def _execute_tool(self, tool_call: ToolCall, signal: AbortSignal) -> ToolResult:
        """Run one tool call once its permission is settled."""
        name = tool_call.name
        if self.runtime.tools.has(name):
            decision = self.permissions.get_decision(name)
            if decision == "deny":
                self.events.emit(ToolPermissionDeniedEvent(session_id=self.session.id, tool_name=name))
                return error_result(tool_call.id, f'Tool "{name}" is not permitted', permission_denied=True)

            if decision == "ask":
                self.events.emit(ToolPermissionRequestEvent(session_id=self.session.id, tool_call=tool_call))
                try:
                    granted = await signal.race(self.permissions.check(tool_call))
                except AbortError as e:
                    return error_result(
                        tool_call.id,
                        f"[terminated: {e.reason}]",
                        terminated=True,
                        termination_reason="aborted",
                    )
                if not granted:
                    self.events.emit(ToolPermissionDeniedEvent(session_id=self.session.id, tool_name=name))
                    return error_result(
                        tool_call.id, f'Tool "{name}" execution denied by user', permission_denied=True
                    )
                self.events.emit(ToolPermissionGrantedEvent(
                    session_id=self.session.id,
                    tool_name=name,
                    allow_always=self.permissions.is_allowed_for_session(name),
                ))

        return await self.runtime.executor.execute(tool_call, self._tool_context(signal))

    def _tool_context(self, signal: AbortSignal) -> ToolContext:
        return ToolContext(
            working_directory=self.session.working_directory,
            signal=signal,
            session_id=self.session.id,
            emit_event=self.events.emit,
            subagents=self.subagents,
        )

    @staticmethod
    def _batch_signature(response: LLMResponse) -> str:
        calls = sorted(
            f"{tc.name}:{json.dumps(tc.arguments, sort_keys=True)}" for tc in response.tool_calls
        )
        return "|".join(calls)

    def _aborted(self, content: str, iterations: int) -> FinalResponse:
        self.state = AgentState.ABORTED
        logger.info("Turn aborted", session_id=self.session.id, iterations=iterations)
        return FinalResponse(state=AgentState.ABORTED, content=content, iterations=iterations)

    def _errored(self, error: str, iterations: int) -> FinalResponse:
        self.state = AgentState.ERRORED
        logger.warning("Turn failed", session_id=self.session.id, error=error)
        self.events.emit(ErrorEvent(session_id=self.session.id, message=error))
        return FinalResponse(state=AgentState.ERRORED, error=error, iterations=iterations)

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------

    async def _append(self, message: Message) -> Message:
        message.sequence = self.messages[-1].sequence + 1 if self.messages else 0
        message.is_inception = message.sequence < self.session.compaction_config.inception_count
        message.token_count = estimate_message_tokens(message)

        store = self.runtime.store
        await store.append_message(self.session.id, message)
        self.messages.append(message)
        self.session = await store.update_session(
            self.session.id,
            token_estimate=sum(m.token_count or 0 for m in self.messages),
            message_count=len(self.messages),
        )
        return message

    def build_llm_messages(self) -> list[LLMMessage]:
        """Convert the transcript to provider messages.

        Tool calls without a recorded result (the turn was aborted mid-batch)
        are dropped, and results whose call is no longer in the transcript
        (compacted away) are passed on as plain user text.
        """
        answered = {
            tr.tool_call_id
            for m in self.messages
            for tr in (m.tool_results or [])
        }
        offered: set[str] = set()
        converted: list[LLMMessage] = []

        for msg in self.messages:
            if msg.role == "user":
                converted.append(LLMMessage(role="user", content=msg.content))
            elif msg.role == "assistant":
                calls = [tc for tc in (msg.tool_calls or []) if tc.id in answered]
                if not calls and not msg.content:
                    continue
                offered.update(tc.id for tc in calls)
                converted.append(LLMMessage(role="assistant", content=msg.content, tool_calls=calls or None))
            else:
                for tr in msg.tool_results or []:
                    if tr.tool_call_id in offered:
                        converted.append(LLMMessage(
                            role="tool",
                            content=tr.content,
                            tool_call_id=tr.tool_call_id,
                            is_error=tr.is_error,
                        ))
                    else:
                        converted.append(LLMMessage(role="user", content=f"[Tool result]\n{tr.content}"))

        return converted

    async def clear_messages(self) -> int:
        """Drop the whole transcript. Returns how many messages were removed."""
        self._acquire("clear messages")
        try:
            removed = len(self.messages)
            store = self.runtime.store
            await store.replace_messages(self.session.id, [])
            self.messages = []
            self.session = await store.update_session(self.session.id, token_estimate=0, message_count=0)
        finally:
            self._busy = False
        logger.info("Conversation cleared", session_id=self.session.id, removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    def should_compact(self) -> bool:
        return self.runtime.compaction.should_compact(self.session)

    async def compact(self) -> CompactionRecord:
        """Compact now, regardless of the threshold. Raises CompactionError."""
        self._acquire("compact")
        try:
            return await self._compact()
        finally:
            self._busy = False

    async def _compact(self) -> CompactionRecord:
        self.events.emit(CompactionStartEvent(
            session_id=self.session.id,
            token_estimate=self.session.token_estimate,
            token_budget=get_model_limit(self.session.model),
        ))
        record = await self.runtime.compaction.run_compaction(self.session)
        if not record.is_noop:
            await self.load()
        self.events.emit(CompactionCompleteEvent(session_id=self.session.id, record=record.to_dict()))
        return record

    async def _auto_compact(self) -> None:
        if not self.should_compact():
            return
        try:
            await self._compact()
        except CompactionError as e:
            logger.warning("Automatic compaction failed", session_id=self.session.id, error=str(e))
