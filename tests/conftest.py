"""Shared fixtures: a scriptable completion provider and a fake clock."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from hearth.memory import MemoryConfig, MemoryManager
from hearth.store import InMemoryStateStore


class StubProvider:
    """Deterministic CompletionProvider for tests.

    `reply` may be a string or a callable taking the messages. `errors`
    is a queue of exceptions raised by successive `complete` calls.
    """

    def __init__(
        self,
        reply: str | Callable[[list[dict[str, Any]]], str] = "Hello there, friend.",
        fragments: list[str] | None = None,
        errors: list[Exception] | None = None,
        stream_error: Exception | None = None,
        first_fragment_delay: float = 0.0,
    ) -> None:
        self.reply = reply
        self.fragments = fragments
        self.errors = list(errors or [])
        self.stream_error = stream_error
        self.first_fragment_delay = first_fragment_delay
        self.complete_calls: list[tuple[list[dict[str, Any]], int]] = []
        self.stream_calls: list[tuple[list[dict[str, Any]], int]] = []

    def text_for(self, messages: list[dict[str, Any]]) -> str:
        return self.reply(messages) if callable(self.reply) else self.reply

    async def complete(self, messages, max_output_tokens, *, timeout=None) -> str:
        self.complete_calls.append((messages, max_output_tokens))
        if self.errors:
            raise self.errors.pop(0)
        return self.text_for(messages)

    async def stream(self, messages, max_output_tokens, *, timeout=None):
        self.stream_calls.append((messages, max_output_tokens))
        if self.stream_error is not None:
            raise self.stream_error
        if self.first_fragment_delay:
            await asyncio.sleep(self.first_fragment_delay)
        fragments = self.fragments
        if fragments is None:
            words = self.text_for(messages).split(" ")
            fragments = [w + " " for w in words[:-1]] + words[-1:]
        for fragment in fragments:
            yield fragment


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def stub_provider() -> type[StubProvider]:
    """The StubProvider class, for tests that configure their own."""
    return StubProvider


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def memory_manager(store: InMemoryStateStore, clock: FakeClock) -> MemoryManager:
    return MemoryManager(store, MemoryConfig(thread_cap=20, recent_window=15), clock=clock)
