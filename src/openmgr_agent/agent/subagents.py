"""
Subagent Coordinator - delegates tasks to child sessions.

A child is an ordinary session with ``parent_id`` set, driven by its own
Agent. Synchronous spawns block the caller until the child's turn ends;
asynchronous spawns return at once and are tracked by a TaskHandle until
the child settles.

The handle table is only ever touched by the coordinator: inserted on
spawn, removed on settlement, before the settle event is emitted.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal

import structlog

from ..errors import SubagentError
from .cancellation import AbortSignal
from .events import SubagentCompleteEvent, SubagentErrorEvent, SubagentStartEvent

if TYPE_CHECKING:
    from .session import SessionManager

logger = structlog.get_logger()

TaskState = Literal["pending", "succeeded", "failed"]

EMPTY_RESULT = "Task completed with no output."


@dataclass
class TaskHandle:
    """A running asynchronous subagent."""

    session_id: str
    parent_session_id: str
    description: str
    signal: AbortSignal = field(default_factory=AbortSignal)
    state: TaskState = "pending"
    result: str | None = None
    error: str | None = None
    task: asyncio.Task | None = field(default=None, repr=False)
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def settled(self) -> bool:
        return self.state != "pending"

    def cancel(self, reason: str = "cancelled") -> None:
        """Abort the child's turn; the handle settles as failed."""
        self.signal.abort(reason)

    async def wait(self) -> "TaskHandle":
        """Wait until the child settles."""
        await self._done.wait()
        return self

    def _settle(self, state: TaskState, result: str | None = None, error: str | None = None) -> None:
        self.state = state
        self.result = result
        self.error = error
        self._done.set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "parentSessionId": self.parent_session_id,
            "description": self.description,
            "state": self.state,
        }


@dataclass
class SpawnResult:
    session_id: str
    result: str | None = None
    message_count: int = 0
    is_async: bool = False


EmitFn = Callable[[Any], None]


def _noop_emit(_event: Any) -> None:
    return None


class SubagentCoordinator:
    """Spawns child sessions and keeps the table of asynchronous ones."""

    def __init__(self, sessions: "SessionManager"):
        self.sessions = sessions
        self._tasks: dict[str, TaskHandle] = {}

    def pending_ids(self) -> list[str]:
        """Child session ids of asynchronous subagents that have not settled."""
        return list(self._tasks.keys())

    def get(self, session_id: str) -> TaskHandle | None:
        return self._tasks.get(session_id)

    def list_tasks(self) -> list[TaskHandle]:
        return list(self._tasks.values())

    def cancel(self, session_id: str) -> bool:
        handle = self._tasks.get(session_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    async def spawn(
        self,
        parent_session_id: str,
        working_directory: str,
        description: str,
        prompt: str,
        is_async: bool = False,
        signal: AbortSignal | None = None,
        emit: EmitFn | None = None,
    ) -> SpawnResult:
        """Create a child session and run prompt in it.

        The prompt always goes to the child's conversation loop, even when it
        looks like a slash command.

        Synchronous mode raises SubagentError when the child's turn does not
        finish successfully (after emitting ``subagent.error``).
        """
        emit = emit or _noop_emit
        child = await self.sessions.create(
            working_directory=working_directory,
            parent_id=parent_session_id,
            title=f"Subagent: {description}",
        )
        logger.info(
            "Subagent spawned",
            session_id=child.id,
            parent_session_id=parent_session_id,
            is_async=is_async,
        )
        emit(SubagentStartEvent(
            session_id=child.id,
            parent_session_id=parent_session_id,
            description=description,
            is_async=is_async,
        ))

        if is_async:
            handle = TaskHandle(
                session_id=child.id,
                parent_session_id=parent_session_id,
                description=description,
            )
            self._tasks[child.id] = handle
            handle.task = asyncio.create_task(self._run_async(handle, prompt, emit))
            return SpawnResult(session_id=child.id, is_async=True)

        try:
            agent = await self.sessions.restore(child.id)
            response = await agent.prompt(prompt, signal=signal)
        except Exception as e:
            logger.error("Subagent failed", session_id=child.id, error=str(e))
            emit(self._error_event(child.id, parent_session_id, str(e)))
            raise SubagentError(child.id, str(e)) from e

        if not response.ok:
            error = response.error or response.state.value
            emit(self._error_event(child.id, parent_session_id, error))
            raise SubagentError(child.id, error)

        result = response.content or EMPTY_RESULT
        emit(SubagentCompleteEvent(session_id=child.id, parent_session_id=parent_session_id, result=result))
        return SpawnResult(session_id=child.id, result=result, message_count=len(agent.messages))

    async def _run_async(self, handle: TaskHandle, prompt: str, emit: EmitFn) -> None:
        # Open question: a failure here is visible only to event subscribers.
        # The model that requested the spawn already got its result and is
        # never told. This fire-and-forget asymmetry is kept on purpose; do
        # not add a propagation path without deciding who should receive it.
        try:
            agent = await self.sessions.restore(handle.session_id)
            response = await agent.prompt(prompt, signal=handle.signal)
        except asyncio.CancelledError:
            handle._settle("failed", error="cancelled")
            self._finish(handle, emit)
            raise
        except Exception as e:
            logger.error("Async subagent failed", session_id=handle.session_id, error=str(e))
            handle._settle("failed", error=str(e))
        else:
            if response.ok:
                handle._settle("succeeded", result=response.content or EMPTY_RESULT)
            else:
                handle._settle("failed", error=response.error or response.state.value)

        self._finish(handle, emit)

    def _finish(self, handle: TaskHandle, emit: EmitFn) -> None:
        self._tasks.pop(handle.session_id, None)
        logger.info("Async subagent settled", session_id=handle.session_id, state=handle.state)
        if handle.state == "succeeded":
            emit(SubagentCompleteEvent(
                session_id=handle.session_id,
                parent_session_id=handle.parent_session_id,
                result=handle.result or EMPTY_RESULT,
            ))
        else:
            emit(self._error_event(handle.session_id, handle.parent_session_id, handle.error or "failed"))

    @staticmethod
    def _error_event(session_id: str, parent_session_id: str, error: str) -> SubagentErrorEvent:
        return SubagentErrorEvent(session_id=session_id, parent_session_id=parent_session_id, error=error)

    async def shutdown(self) -> None:
        """Cancel every pending subagent and wait for all of them to settle."""
        handles = list(self._tasks.values())
        for handle in handles:
            handle.cancel("shutdown")
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
