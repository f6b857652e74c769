"""In-process state store."""

import json
from typing import Any

from .base import StateStore


class InMemoryStateStore(StateStore):
    """State store backed by a dict.

    Values are kept as JSON text so callers never share mutable state with
    the store. Each method completes without yielding to the event loop,
    so compare_and_set is atomic for asyncio callers.
    """

    def __init__(self) -> None:
        self._records: dict[str, tuple[int, str]] = {}

    async def get_versioned(self, key: str) -> tuple[dict[str, Any] | None, int]:
        record = self._records.get(key)
        if record is None:
            return None, 0
        version, raw = record
        return json.loads(raw), version

    async def compare_and_set(
        self, key: str, value: dict[str, Any], expected_version: int
    ) -> bool:
        current = self._records.get(key)
        current_version = current[0] if current else 0
        if current_version != expected_version:
            return False
        self._records[key] = (current_version + 1, json.dumps(value))
        return True

    async def set(self, key: str, value: dict[str, Any]) -> None:
        current = self._records.get(key)
        version = current[0] if current else 0
        self._records[key] = (version + 1, json.dumps(value))

    def keys(self) -> list[str]:
        """Return all stored keys (for inspection)."""
        return list(self._records)
