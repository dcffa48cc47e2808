"""
Optional agent capabilities.

Commands and outer surfaces check for these with ``isinstance`` instead of
assuming every agent can compact or clear its transcript.
"""

from typing import Protocol, runtime_checkable

from .types import CompactionRecord


@runtime_checkable
class Compactable(Protocol):
    def should_compact(self) -> bool: ...

    async def compact(self) -> CompactionRecord: ...


@runtime_checkable
class Clearable(Protocol):
    async def clear_messages(self) -> int: ...
