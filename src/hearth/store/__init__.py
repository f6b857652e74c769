"""State store implementations."""

from .base import StateStore, StoreConfig
from .memory import InMemoryStateStore
from .sqlite import SQLiteStateStore

__all__ = [
    "InMemoryStateStore",
    "SQLiteStateStore",
    "StateStore",
    "StoreConfig",
]
