"""Completion provider interface.

The engine talks to exactly one language-model backend through this
Protocol, so tests can pass a stub and production passes GroqProvider.
"""

from typing import Any, AsyncIterator, Protocol

Message = dict[str, Any]


class CompletionProvider(Protocol):
    """Protocol for language-model completion backends.

    Implementations raise ProviderTimeout when `timeout` elapses and
    ProviderError for rate-limit, auth and upstream failures.
    """

    async def complete(
        self,
        messages: list[Message],
        max_output_tokens: int,
        *,
        timeout: float | None = None,
    ) -> str:
        """Return the full completion text (buffered call)."""
        ...

    def stream(
        self,
        messages: list[Message],
        max_output_tokens: int,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[str]:
        """Yield incremental text fragments (streamed call).

        `timeout` bounds opening the stream, not its total duration.
        """
        ...
