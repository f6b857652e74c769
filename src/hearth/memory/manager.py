"""Memory manager: lifecycle of per-user Identity and Memory records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, TypeVar

from ..store import StateStore, StoreConfig
from .extractor import is_name_fact, name_fact
from .models import Identity, Memory, Role, Turn, normalize_fact, utcnow
from .nudge import NudgePolicy, nudge_allowed

logger = logging.getLogger(__name__)

T = TypeVar("T", Identity, Memory)


@dataclass
class MemoryConfig:
    """Configuration for the memory manager.

    `recent_window` is how many turns the compressor keeps verbatim; it must
    be smaller than `thread_cap`, the number of turns stored per user.
    """

    thread_cap: int = 200
    recent_window: int = 20
    max_cas_attempts: int = 5
    nudge: NudgePolicy = field(default_factory=NudgePolicy)

    def __post_init__(self) -> None:
        if self.thread_cap < 1:
            raise ValueError("thread_cap must be positive")
        if not 0 < self.recent_window < self.thread_cap:
            raise ValueError("recent_window must be between 1 and thread_cap - 1")


class MemoryManager:
    """Owns every mutation of Identity and Memory records.

    Each update is a read-modify-write against the latest stored value,
    retried on compare-and-swap conflicts so concurrent writers touching
    different fields don't drop each other's changes. Nothing is cached
    between calls: the store is the only source of truth.
    """

    def __init__(
        self,
        store: StateStore,
        config: MemoryConfig | None = None,
        store_config: StoreConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.config = config or MemoryConfig()
        self.keys = store_config or StoreConfig()
        self.clock = clock

    async def get_memory(self, user_id: str) -> Memory:
        """Return the user's Memory, creating an empty one on first contact."""
        return await self._load(self.keys.memory_key(user_id), Memory)

    async def get_identity(self, user_id: str) -> Identity:
        """Return the user's Identity, creating an empty one on first contact."""
        return await self._load(self.keys.identity_key(user_id), Identity)

    async def append_turn(
        self, user_id: str, role: Role, text: str, turn_id: str | None = None
    ) -> None:
        """Append a turn and truncate the thread to the cap.

        A turn whose id is already in the thread is skipped.
        """

        def mutate(memory: Memory) -> bool:
            if turn_id is not None and memory.has_turn(turn_id):
                return False
            now = self.clock()
            memory.thread.append(Turn(role=role, text=text, at=now, id=turn_id))
            memory.thread = memory.thread[-self.config.thread_cap :]
            memory.last_seen_at = now
            return True

        await self._update(self.keys.memory_key(user_id), Memory, mutate)

    async def add_facts(self, user_id: str, facts: list[str]) -> bool:
        """Merge facts into the user's set, skipping normalized duplicates.

        Returns:
            True if the stored set changed.
        """
        cleaned = [" ".join(f.split()) for f in facts]
        cleaned = [f for f in cleaned if f]
        if not cleaned:
            return False

        def mutate(memory: Memory) -> bool:
            seen = {normalize_fact(f) for f in memory.facts}
            changed = False
            for fact in cleaned:
                key = normalize_fact(fact)
                if key not in seen:
                    memory.facts.append(fact)
                    seen.add(key)
                    changed = True
            if changed:
                memory.last_seen_at = self.clock()
            return changed

        return await self._update(self.keys.memory_key(user_id), Memory, mutate)

    async def learn_name(self, user_id: str, name: str) -> None:
        """Record the user's name on the Identity and as a fact.

        A previously learned name fact is replaced, not kept alongside.
        """
        name = " ".join(name.split())
        fact = name_fact(name)

        def mutate(identity: Identity) -> bool:
            identity.name = name
            identity.last_seen_at = self.clock()
            return True

        def replace_fact(memory: Memory) -> bool:
            kept = [f for f in memory.facts if not is_name_fact(f)]
            if kept + [fact] == memory.facts:
                return False
            memory.facts = kept + [fact]
            memory.last_seen_at = self.clock()
            return True

        await self._update(self.keys.identity_key(user_id), Identity, mutate)
        await self._update(self.keys.memory_key(user_id), Memory, replace_fact)

    async def touch(self, user_id: str, topic: str | None = None) -> None:
        """Mark the user as seen, optionally remembering what they talked about."""

        def mutate(identity: Identity) -> bool:
            identity.last_seen_at = self.clock()
            if topic:
                identity.last_topic = topic
            return True

        await self._update(self.keys.identity_key(user_id), Identity, mutate)

    async def note_nudge_sent(self, user_id: str) -> None:
        """Count a nudge, resetting the counter when the UTC day changed."""

        def mutate(memory: Memory) -> bool:
            now = self.clock()
            memory.nudge_count_today = memory.nudges_on(now) + 1
            memory.last_nudge_at = now
            return True

        await self._update(self.keys.memory_key(user_id), Memory, mutate)

    async def can_nudge(
        self,
        user_id: str,
        now: datetime | None = None,
        min_gap_ms: int | None = None,
        max_per_day: int | None = None,
    ) -> bool:
        """Decide whether a nudge may be sent now. No side effects."""
        memory = await self.get_memory(user_id)
        return nudge_allowed(
            memory, now or self.clock(), self._policy(min_gap_ms, max_per_day)
        )

    async def claim_nudge(self, user_id: str, now: datetime | None = None) -> bool:
        """Check the nudge policy and record the nudge in one atomic update.

        Returns:
            True if the caller may send a nudge.
        """
        now = now or self.clock()
        policy = self.config.nudge
        allowed = False

        def mutate(memory: Memory) -> bool:
            nonlocal allowed
            allowed = nudge_allowed(memory, now, policy)
            if allowed:
                memory.nudge_count_today = memory.nudges_on(now) + 1
                memory.last_nudge_at = now
            return allowed

        await self._update(self.keys.memory_key(user_id), Memory, mutate)
        return allowed

    def _policy(self, min_gap_ms: int | None, max_per_day: int | None) -> NudgePolicy:
        base = self.config.nudge
        return NudgePolicy(
            min_gap_ms=base.min_gap_ms if min_gap_ms is None else min_gap_ms,
            max_per_day=base.max_per_day if max_per_day is None else max_per_day,
            repeat_cooldown_ms=base.repeat_cooldown_ms,
        )

    def _fresh(self, model: type[T]) -> T:
        now = self.clock()
        if model is Memory:
            return Memory(first_seen_at=now, last_seen_at=now)
        return Identity(last_seen_at=now)

    async def _load(self, key: str, model: type[T]) -> T:
        value, version = await self.store.get_versioned(key)
        if value is not None:
            return model.from_dict(value)

        fresh = self._fresh(model)
        if not await self.store.compare_and_set(key, fresh.to_dict(), version):
            # Another request created it first.
            value = await self.store.get(key)
            if value is not None:
                return model.from_dict(value)
        return fresh

    async def _update(self, key: str, model: type[T], mutate: Callable[[T], bool]) -> bool:
        """Read-modify-write with compare-and-swap retries.

        `mutate` edits the record in place and returns whether it changed;
        unchanged records are not written back.
        """
        for _ in range(self.config.max_cas_attempts):
            value, version = await self.store.get_versioned(key)
            record = model.from_dict(value) if value is not None else self._fresh(model)
            if not mutate(record):
                return False
            if await self.store.compare_and_set(key, record.to_dict(), version):
                return True
            logger.debug(f"Version conflict on {key}, retrying")

        logger.warning(f"Giving up on compare-and-swap for {key}, overwriting")
        value = await self.store.get(key)
        record = model.from_dict(value) if value is not None else self._fresh(model)
        if not mutate(record):
            return False
        await self.store.set(key, record.to_dict())
        return True
