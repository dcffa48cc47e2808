"""
Session stores.
"""

from .base import SessionStore
from .memory import InMemorySessionStore
from .sql import SQLSessionStore

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "SQLSessionStore",
]
