"""
Cooperative cancellation.

A single AbortSignal is threaded from the caller through the conversation
loop into tool execution and synchronous subagents. Once aborted it stays
aborted.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from ..errors import AbortError

T = TypeVar("T")


class AbortSignal:
    """Cancellation token observed at suspension points."""

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[str], Any]] = []
        self._detach_parent: Callable[[], None] | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def callback_count(self) -> int:
        return len(self._callbacks)

    def abort(self, reason: str = "aborted") -> None:
        """Signal cancellation. Later calls are ignored."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        self.detach()
        for callback in list(self._callbacks):
            callback(reason)

    def check(self) -> None:
        """Raise AbortError if the signal has fired."""
        if self._event.is_set():
            raise AbortError(self._reason or "aborted")

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or "aborted"

    def add_callback(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        """Run callback(reason) on abort. Returns a function that detaches it."""
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def child(self) -> "AbortSignal":
        """A signal that fires when this one does, but can also fire on its own."""
        child = AbortSignal()
        if self.aborted:
            child.abort(self._reason or "aborted")
        else:
            child._detach_parent = self.add_callback(child.abort)
        return child

    def detach(self) -> None:
        """Stop following the parent signal. Call when a child is no longer needed."""
        if self._detach_parent is not None:
            self._detach_parent()
            self._detach_parent = None

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await awaitable unless the signal fires first.

        On abort the awaitable is cancelled and AbortError is raised.
        """
        self.check()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise AbortError(self._reason or "aborted")
