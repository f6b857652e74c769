"""Tests for the streaming relay."""

import asyncio
from unittest.mock import MagicMock

import pytest

from hearth.errors import ProviderError
from hearth.logging import JSONLLogger
from hearth.relay import (
    DONE_FRAME,
    HEARTBEAT_FRAME,
    OPEN_FRAME,
    RelayConfig,
    SSEParser,
    StreamingRelay,
    encode_data,
)

FAST = RelayConfig(
    heartbeat_interval=0.5, first_fragment_timeout=0.5, idle_timeout=0.5, call_timeout=0.5
)
MESSAGES = [{"role": "user", "content": "hi"}]


class PartialThenFailProvider:
    """Streams a couple of fragments, then the connection drops."""

    def __init__(self) -> None:
        self.complete_calls = 0

    async def complete(self, messages, max_output_tokens, *, timeout=None):
        self.complete_calls += 1
        return "should not be used"

    async def stream(self, messages, max_output_tokens, *, timeout=None):
        yield "Hello "
        yield "there"
        raise ProviderError("connection reset", kind="connection")


class Recorder:
    """Captures what on_complete receives."""

    def __init__(self) -> None:
        self.results = []

    async def __call__(self, result) -> None:
        self.results.append(result)


async def run_relay(relay: StreamingRelay, fallback_text: str = "fallback line"):
    recorder = Recorder()
    frames = [
        frame
        async for frame in relay.relay(
            MESSAGES, 160, fallback_text=fallback_text, on_complete=recorder, user_id="user-123"
        )
    ]
    return frames, recorder.results


def frame_text(frames: list[str]) -> str:
    parser = SSEParser()
    events = parser.feed("".join(frames).encode("utf-8"))
    return "".join(e.data for e in events if not e.is_done)


class TestStreamingRelay:
    """Tests for relaying a provider stream as SSE."""

    @pytest.mark.asyncio
    async def test_forwards_fragments(self, stub_provider):
        """Each fragment becomes a data frame between open and done."""
        provider = stub_provider(fragments=["Hello ", "there, ", "friend."])
        frames, results = await run_relay(StreamingRelay(provider, FAST))

        assert frames == [
            OPEN_FRAME,
            encode_data("Hello "),
            encode_data("there, "),
            encode_data("friend."),
            DONE_FRAME,
        ]
        assert len(results) == 1
        assert results[0].text == "Hello there, friend."
        assert results[0].source == "stream"
        assert results[0].fragments == 3
        assert provider.complete_calls == []

    @pytest.mark.asyncio
    async def test_skips_empty_fragments(self, stub_provider):
        """Empty fragments produce no frames."""
        provider = stub_provider(fragments=["", "Hi", ""])
        frames, results = await run_relay(StreamingRelay(provider, FAST))

        assert frames == [OPEN_FRAME, encode_data("Hi"), DONE_FRAME]
        assert results[0].fragments == 1

    @pytest.mark.asyncio
    async def test_heartbeats_while_waiting(self, stub_provider):
        """Heartbeats are sent while the first fragment is pending."""
        provider = stub_provider(fragments=["late"], first_fragment_delay=0.2)
        config = RelayConfig(heartbeat_interval=0.05, first_fragment_timeout=1.0)
        frames, results = await run_relay(StreamingRelay(provider, config))

        assert HEARTBEAT_FRAME in frames
        assert frame_text(frames) == "late"
        assert results[0].source == "stream"

    @pytest.mark.asyncio
    async def test_open_failure_falls_back_to_buffered(self, stub_provider):
        """A stream that can't open is replaced by one buffered call."""
        provider = stub_provider(reply="Buffered reply.", stream_error=ProviderError("refused"))
        events = MagicMock(spec=JSONLLogger)
        frames, results = await run_relay(StreamingRelay(provider, FAST, events=events))

        assert frame_text(frames) == "Buffered reply."
        assert frames[-1] == DONE_FRAME
        assert results[0].source == "buffered"
        assert results[0].error == "refused"
        assert len(provider.complete_calls) == 1
        events.log_fallback.assert_called_once_with("user-123", reason="refused")

    @pytest.mark.asyncio
    async def test_silence_falls_back_to_buffered(self, stub_provider):
        """No fragment within first_fragment_timeout triggers the buffered call."""
        provider = stub_provider(reply="Buffered reply.", first_fragment_delay=1.0)
        config = RelayConfig(heartbeat_interval=0.5, first_fragment_timeout=0.05)
        frames, results = await run_relay(StreamingRelay(provider, config))

        assert frame_text(frames) == "Buffered reply."
        assert results[0].source == "buffered"
        assert results[0].error == "silence"

    @pytest.mark.asyncio
    async def test_empty_stream_falls_back_to_buffered(self, stub_provider):
        """A stream of whitespace counts as empty."""
        provider = stub_provider(reply="Buffered reply.", fragments=["  "])
        frames, results = await run_relay(StreamingRelay(provider, FAST))

        assert results[0].source == "buffered"
        assert results[0].text == "Buffered reply."

    @pytest.mark.asyncio
    async def test_both_paths_fail_uses_fixed_line(self, stub_provider):
        """If the buffered call also fails the fixed line is sent."""
        provider = stub_provider(
            stream_error=ProviderError("refused"), errors=[ProviderError("still down")]
        )
        frames, results = await run_relay(StreamingRelay(provider, FAST), fallback_text="I'm here.")

        assert frame_text(frames) == "I'm here."
        assert results[0].source == "fallback"
        assert results[0].text == "I'm here."

    @pytest.mark.asyncio
    async def test_partial_stream_keeps_partial_text(self):
        """Text already shown is the reply; no second call overwrites it."""
        provider = PartialThenFailProvider()
        frames, results = await run_relay(StreamingRelay(provider, FAST))

        assert frame_text(frames) == "Hello there"
        assert results[0].text == "Hello there"
        assert results[0].source == "stream"
        assert results[0].error == "connection reset"
        assert provider.complete_calls == 0

    @pytest.mark.asyncio
    async def test_client_disconnect_still_persists(self, stub_provider):
        """Closing the frame stream early doesn't stop the completion."""
        provider = stub_provider(fragments=["one ", "two ", "three"])
        relay = StreamingRelay(provider, FAST)
        recorder = Recorder()

        frames = relay.relay(MESSAGES, 160, fallback_text="x", on_complete=recorder)
        assert await frames.__anext__() == OPEN_FRAME
        await frames.aclose()
        await relay.drain()

        assert len(recorder.results) == 1
        assert recorder.results[0].text == "one two three"

    @pytest.mark.asyncio
    async def test_on_complete_failure_is_reported(self, stub_provider):
        """A failing on_complete callback is reported, not raised."""
        events = MagicMock(spec=JSONLLogger)
        relay = StreamingRelay(stub_provider(fragments=["ok"]), FAST, events=events)

        async def failing(result):
            raise RuntimeError("disk full")

        frames = [f async for f in relay.relay(MESSAGES, 160, fallback_text="x", on_complete=failing)]

        assert frames[-1] == DONE_FRAME
        events.report_error.assert_called_once()


class TestRun:
    """Tests for run, which hands fragments to a callback."""

    @pytest.mark.asyncio
    async def test_stream_and_buffered_agree(self, stub_provider):
        """The streamed text equals what a buffered call returns for the same input."""
        provider = stub_provider(reply="The same words either way.")
        emitted: list[str] = []

        result = await StreamingRelay(provider, FAST).run(
            MESSAGES, 160, emitted.append, fallback_text="x"
        )
        buffered = await provider.complete(MESSAGES, 160)

        assert "".join(emitted) == result.text == buffered

    @pytest.mark.asyncio
    async def test_slow_fallback_call_times_out_to_fixed_line(self):
        """A buffered call that times out gives the fixed line."""

        class Silent:
            async def complete(self, messages, max_output_tokens, *, timeout=None):
                raise asyncio.TimeoutError()

            async def stream(self, messages, max_output_tokens, *, timeout=None):
                await asyncio.sleep(1)
                yield "never"

        emitted: list[str] = []
        config = RelayConfig(first_fragment_timeout=0.05)
        result = await StreamingRelay(Silent(), config).run(
            MESSAGES, 160, emitted.append, fallback_text="fixed"
        )

        assert emitted == ["fixed"]
        assert result.source == "fallback"
