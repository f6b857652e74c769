"""Key-value state store interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class StoreConfig:
    """Configuration for state stores."""

    key_prefix: str = "hearth:"

    def identity_key(self, user_id: str) -> str:
        return f"{self.key_prefix}identity:{user_id}"

    def memory_key(self, user_id: str) -> str:
        return f"{self.key_prefix}memory:{user_id}"


class StateStore(ABC):
    """Async key-value store for per-user records.

    Values are opaque JSON-compatible dicts. Every stored value carries a
    version that increases on each write; version 0 means the key is
    absent. `compare_and_set` lets callers do read-modify-write updates
    without silently dropping a concurrent write.

    Implementations raise StoreUnavailable when the backend fails.
    """

    @abstractmethod
    async def get_versioned(self, key: str) -> tuple[dict[str, Any] | None, int]:
        """Return (value, version), or (None, 0) when the key is absent."""
        ...

    @abstractmethod
    async def compare_and_set(
        self, key: str, value: dict[str, Any], expected_version: int
    ) -> bool:
        """Write value only if the stored version still equals expected_version.

        Returns:
            True if the write happened, False on a version conflict.
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any]) -> None:
        """Write value unconditionally (last writer wins)."""
        ...

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the stored value, or None when absent."""
        value, _ = await self.get_versioned(key)
        return value

    async def close(self) -> None:
        """Release backend resources."""
        return None
