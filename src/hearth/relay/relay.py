"""Streaming relay: provider token stream to client event stream."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable

from ..provider import CompletionProvider, Message
from .frames import DONE_FRAME, HEARTBEAT_FRAME, OPEN_FRAME, encode_data

if TYPE_CHECKING:
    from ..logging import JSONLLogger

logger = logging.getLogger(__name__)


@dataclass
class RelayConfig:
    """Timing for the streaming relay (seconds)."""

    heartbeat_interval: float = 15.0
    first_fragment_timeout: float = 8.0
    idle_timeout: float = 20.0
    call_timeout: float = 8.0


@dataclass
class RelayResult:
    """Final outcome of one relayed completion.

    Attributes:
        text: The complete assistant text, stripped.
        source: 'stream', 'buffered' (fallback call) or 'fallback' (fixed line).
        fragments: How many fragments were forwarded.
        error: Why the stream path failed, if it did.
    """

    text: str
    source: str
    fragments: int
    error: str | None = None


OnComplete = Callable[[RelayResult], Awaitable[None]]


class StreamingRelay:
    """Forwards provider fragments as SSE frames with a buffered safety net.

    The provider call runs in its own task. If the client goes away the
    relay stops forwarding, but the task runs to the end so `on_complete`
    still persists the final text exactly once.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        config: RelayConfig | None = None,
        events: JSONLLogger | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or RelayConfig()
        self.events = events
        self._inflight: set[asyncio.Task] = set()

    async def relay(
        self,
        messages: list[Message],
        max_output_tokens: int,
        *,
        fallback_text: str,
        on_complete: OnComplete,
        user_id: str | None = None,
    ) -> AsyncIterator[str]:
        """Yield SSE frames for one completion.

        Emits an opening comment, `data:` frames, heartbeats while waiting,
        and a terminal `event: done` frame.
        """
        queue: asyncio.Queue[tuple[str, object]] = asyncio.Queue()
        task = asyncio.create_task(
            self._produce(messages, max_output_tokens, fallback_text, on_complete, queue, user_id)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

        yield OPEN_FRAME
        try:
            while True:
                try:
                    kind, payload = await asyncio.wait_for(
                        queue.get(), timeout=self.config.heartbeat_interval
                    )
                except asyncio.TimeoutError:
                    yield HEARTBEAT_FRAME
                    continue
                if kind == "fragment":
                    yield encode_data(str(payload))
                else:
                    break
            yield DONE_FRAME
        finally:
            if not task.done():
                logger.info("Client left mid-stream; letting the completion finish")

    async def drain(self) -> None:
        """Wait for completions whose clients already disconnected."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _produce(
        self,
        messages: list[Message],
        max_output_tokens: int,
        fallback_text: str,
        on_complete: OnComplete,
        queue: asyncio.Queue,
        user_id: str | None,
    ) -> RelayResult:
        def emit(fragment: str) -> None:
            queue.put_nowait(("fragment", fragment))

        result = RelayResult(text=fallback_text, source="fallback", fragments=0)
        try:
            result = await self.run(
                messages, max_output_tokens, emit, fallback_text=fallback_text, user_id=user_id
            )
            await on_complete(result)
        except Exception as e:
            logger.exception("Relay completion failed")
            if self.events:
                self.events.report_error(e, user_id=user_id, context="relay")
        finally:
            queue.put_nowait(("end", result))
        return result

    async def run(
        self,
        messages: list[Message],
        max_output_tokens: int,
        emit: Callable[[str], None],
        *,
        fallback_text: str,
        user_id: str | None = None,
    ) -> RelayResult:
        """Stream a completion through `emit`, falling back to one buffered call.

        The buffered retry runs only when nothing was forwarded: the stream
        failed to open, errored, went silent, or produced no text. Once a
        fragment has reached the client, a later failure ends the reply with
        what was already sent.
        """
        fragments: list[str] = []
        error: str | None = None
        start = time.monotonic()

        try:
            await self._stream_into(messages, max_output_tokens, fragments, emit)
        except asyncio.TimeoutError:
            error = "silence"
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.warning(f"Stream failed after {len(fragments)} fragment(s): {error}")

        if self.events and user_id:
            self.events.log_provider_call(
                user_id,
                mode="stream",
                max_output_tokens=max_output_tokens,
                duration_ms=(time.monotonic() - start) * 1000,
                error=error,
            )

        text = "".join(fragments).strip()
        if fragments and text:
            return RelayResult(text=text, source="stream", fragments=len(fragments), error=error)

        reason = error or "empty"
        if self.events and user_id:
            self.events.log_fallback(user_id, reason=reason)

        try:
            text = (
                await self.provider.complete(
                    messages, max_output_tokens, timeout=self.config.call_timeout
                )
            ).strip()
            source = "buffered"
        except Exception as e:
            logger.warning(f"Buffered fallback failed: {e}")
            text = ""
            source = "fallback"

        if not text:
            text = fallback_text
            source = "fallback"

        emit(text)
        return RelayResult(text=text, source=source, fragments=len(fragments) + 1, error=reason)

    async def _stream_into(
        self,
        messages: list[Message],
        max_output_tokens: int,
        fragments: list[str],
        emit: Callable[[str], None],
    ) -> None:
        stream = self.provider.stream(
            messages, max_output_tokens, timeout=self.config.call_timeout
        )
        iterator = stream.__aiter__()
        timeout = self.config.first_fragment_timeout
        try:
            while True:
                try:
                    fragment = await asyncio.wait_for(iterator.__anext__(), timeout=timeout)
                except StopAsyncIteration:
                    return
                if not fragment:
                    continue
                fragments.append(fragment)
                emit(fragment)
                timeout = self.config.idle_timeout
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    logger.debug("Ignoring error while closing provider stream")
