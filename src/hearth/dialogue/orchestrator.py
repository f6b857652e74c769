"""Dialogue orchestrator: the per-request turn state machine."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator

from ..errors import ProviderError, StoreUnavailable
from ..memory import (
    CompressedContext,
    Identity,
    Memory,
    MemoryManager,
    ThreadCompressor,
    extract_name,
    is_name_fact,
    name_fact,
)
from ..provider import CompletionProvider, Message
from ..relay import RelayResult, StreamingRelay
from ..tasks import BackgroundWriter
from . import prompt
from .prompt import RandomStyleHints, StyleHintProvider
from .requests import (
    AddFactRequest,
    ChatRequest,
    InitRequest,
    LearnIdentityRequest,
    NudgeRequest,
    Reply,
    SayRequest,
    parse_request,
)

if TYPE_CHECKING:
    from ..logging import JSONLLogger

logger = logging.getLogger(__name__)


class TurnState(Enum):
    """States a request passes through."""

    RECEIVED = "received"
    LOADING_STATE = "loading_state"
    COMPRESSING = "compressing"
    PROMPT_ASSEMBLED = "prompt_assembled"
    CALLING_PROVIDER = "calling_provider"
    STREAMING = "streaming"
    BUFFERED = "buffered"
    PERSISTING = "persisting"
    DONE = "done"
    ERROR = "error"


@dataclass
class DialogueConfig:
    """Configuration for the orchestrator.

    Token budgets cap the provider's output per action; a timed-out or
    failed call is retried once with half the budget.
    """

    assistant_name: str = "Hearth"
    provider_timeout: float = 8.0
    init_tokens: int = 120
    nudge_tokens: int = 80
    ack_tokens: int = 60
    say_tokens: dict[str, int] = field(
        default_factory=lambda: {"short": 90, "medium": 160, "long": 320}
    )
    min_retry_tokens: int = 32
    topic_chars: int = 80

    def retry_budget(self, budget: int) -> int:
        return max(self.min_retry_tokens, budget // 2)


@dataclass
class TurnTrace:
    """Record of the states one request went through."""

    user_id: str
    action: str
    states: list[TurnState] = field(default_factory=lambda: [TurnState.RECEIVED])
    started: float = field(default_factory=time.monotonic)
    error: str | None = None

    def enter(self, state: TurnState) -> None:
        self.states.append(state)

    @property
    def state(self) -> TurnState:
        return self.states[-1]

    def names(self) -> list[str]:
        return [s.value for s in self.states]

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


class DialogueOrchestrator:
    """Handles one request at a time per call, with no state between calls.

    Everything per-user lives in the state store behind the MemoryManager.
    Fact learning and bookkeeping run through the BackgroundWriter and
    never hold up the reply.
    """

    def __init__(
        self,
        memory: MemoryManager,
        provider: CompletionProvider,
        compressor: ThreadCompressor | None = None,
        relay: StreamingRelay | None = None,
        hints: StyleHintProvider | None = None,
        config: DialogueConfig | None = None,
        events: JSONLLogger | None = None,
        background: BackgroundWriter | None = None,
    ) -> None:
        self.memory = memory
        self.provider = provider
        self.config = config or DialogueConfig()
        self.compressor = compressor or ThreadCompressor(
            provider,
            window=memory.config.recent_window,
            timeout=self.config.provider_timeout,
        )
        self.relay = relay or StreamingRelay(provider, events=events)
        self.hints = hints or RandomStyleHints()
        self.events = events
        self.background = background or BackgroundWriter(events)

    async def handle(self, data: Any) -> Reply:
        """Validate a raw JSON body and respond to it.

        Raises:
            ValidationError: If the body is invalid for its action.
        """
        return await self.respond(parse_request(data))

    async def respond(self, request: ChatRequest) -> Reply:
        """Produce the reply for one request.

        Every branch except a denied nudge returns non-empty text. A store
        failure yields `ok=False` with a generic fallback line.
        """
        trace = TurnTrace(user_id=request.user_id, action=request.action)
        try:
            if isinstance(request, SayRequest):
                reply = await self._say(request, trace)
            elif isinstance(request, InitRequest):
                reply = await self._init(request, trace)
            elif isinstance(request, LearnIdentityRequest):
                reply = await self._learn_identity(request, trace)
            elif isinstance(request, AddFactRequest):
                reply = await self._add_fact(request, trace)
            elif isinstance(request, NudgeRequest):
                reply = await self._nudge(request, trace)
            else:
                raise TypeError(f"Unhandled request type: {type(request).__name__}")
        except StoreUnavailable as e:
            trace.enter(TurnState.ERROR)
            logger.error(f"State store unavailable for {request.user_id}: {e}")
            self._report(e, request.user_id, f"{request.action}:store")
            reply = Reply(text=prompt.FALLBACK_REPLY, ok=False, error="state store unavailable")

        reply.states = trace.names()
        if self.events:
            self.events.log_turn(
                request.user_id,
                request.action,
                states=reply.states,
                duration_ms=trace.elapsed_ms(),
                reply_length=len(reply.text),
                fallback=reply.error is not None,
            )
        return reply

    async def open_stream(self, request: SayRequest) -> AsyncIterator[str]:
        """Prepare a `say` turn and return its SSE frame stream.

        State is loaded and the user's turn persisted before this returns, so
        store failures surface as StoreUnavailable rather than mid-stream.
        """
        trace = TurnTrace(user_id=request.user_id, action="say")
        identity, memory, messages = await self._prepare_say(request, trace)
        budget = self.config.say_tokens[request.length]
        trace.enter(TurnState.CALLING_PROVIDER)
        trace.enter(TurnState.STREAMING)

        async def on_complete(result: RelayResult) -> None:
            trace.enter(TurnState.PERSISTING)
            await self._persist_turn(
                request.user_id, "assistant", result.text, _turn_id(request, "assistant")
            )
            trace.enter(TurnState.DONE)
            if self.events:
                self.events.log_turn(
                    request.user_id,
                    "say",
                    states=trace.names(),
                    duration_ms=trace.elapsed_ms(),
                    reply_length=len(result.text),
                    fallback=result.source != "stream",
                )

        return self.relay.relay(
            messages,
            budget,
            fallback_text=prompt.FALLBACK_REPLY,
            on_complete=on_complete,
            user_id=request.user_id,
        )

    async def aclose(self) -> None:
        """Wait for background writes and orphaned streams to finish."""
        await self.relay.drain()
        await self.background.drain()

    async def _say(self, request: SayRequest, trace: TurnTrace) -> Reply:
        identity, memory, messages = await self._prepare_say(request, trace)
        text, error = await self._generate(
            request.user_id,
            messages,
            self.config.say_tokens[request.length],
            prompt.FALLBACK_REPLY,
            trace,
        )
        trace.enter(TurnState.PERSISTING)
        await self._persist_turn(request.user_id, "assistant", text, _turn_id(request, "assistant"))
        trace.enter(TurnState.DONE)
        return Reply(
            text=text, error=error, identity=identity.to_dict(), memory=_memory_view(memory)
        )

    async def _prepare_say(
        self, request: SayRequest, trace: TurnTrace
    ) -> tuple[Identity, Memory, list[Message]]:
        user_id = request.user_id
        message = request.message
        identity, memory = await self._load(user_id, trace)
        await self._persist_turn(user_id, "user", message, _turn_id(request, "user"))

        facts = list(memory.facts)
        name = extract_name(message, explicit_only=identity.name is not None)
        if name and name != identity.name:
            identity.name = name
            facts = [f for f in facts if not is_name_fact(f)] + [name_fact(name)]
            self.background.spawn(
                self.memory.learn_name(user_id, name), label="learn_name", user_id=user_id
            )
        self.background.spawn(
            self.memory.touch(user_id, topic=message[: self.config.topic_chars]),
            label="touch",
            user_id=user_id,
        )

        context = await self._context(memory, trace)
        messages = self._messages(
            identity, facts, context, prompt.say_instruction(message), request.timezone, trace
        )
        return identity, memory, messages

    async def _init(self, request: InitRequest, trace: TurnTrace) -> Reply:
        user_id = request.user_id
        identity, memory = await self._load(user_id, trace)
        context = await self._context(memory, trace)
        messages = self._messages(
            identity,
            memory.facts,
            context,
            prompt.init_instruction(identity),
            request.timezone,
            trace,
        )
        text, error = await self._generate(
            user_id,
            messages,
            self.config.init_tokens,
            prompt.greeting(identity, self.hints),
            trace,
        )
        trace.enter(TurnState.PERSISTING)
        await self._persist_turn(user_id, "assistant", text, _turn_id(request, "assistant"))
        self.background.spawn(self.memory.touch(user_id), label="touch", user_id=user_id)
        trace.enter(TurnState.DONE)
        return Reply(
            text=text, error=error, identity=identity.to_dict(), memory=_memory_view(memory)
        )

    async def _learn_identity(self, request: LearnIdentityRequest, trace: TurnTrace) -> Reply:
        user_id = request.user_id
        name = " ".join(request.name.split())
        trace.enter(TurnState.PERSISTING)
        await self.memory.learn_name(user_id, name)
        identity, memory = await self._load(user_id, trace)
        messages = self._messages(
            identity,
            memory.facts,
            CompressedContext(),
            prompt.learn_identity_instruction(name),
            request.timezone,
            trace,
        )
        text, error = await self._generate(
            user_id, messages, self.config.ack_tokens, prompt.learn_identity_ack(name), trace
        )
        trace.enter(TurnState.DONE)
        return Reply(
            text=text, error=error, identity=identity.to_dict(), memory=_memory_view(memory)
        )

    async def _add_fact(self, request: AddFactRequest, trace: TurnTrace) -> Reply:
        user_id = request.user_id
        trace.enter(TurnState.PERSISTING)
        await self.memory.add_facts(user_id, [request.fact])
        identity, memory = await self._load(user_id, trace)
        messages = self._messages(
            identity,
            memory.facts,
            CompressedContext(),
            prompt.add_fact_instruction(request.fact),
            request.timezone,
            trace,
        )
        text, error = await self._generate(
            user_id, messages, self.config.ack_tokens, prompt.add_fact_ack(request.fact), trace
        )
        trace.enter(TurnState.DONE)
        return Reply(
            text=text, error=error, identity=identity.to_dict(), memory=_memory_view(memory)
        )

    async def _nudge(self, request: NudgeRequest, trace: TurnTrace) -> Reply:
        user_id = request.user_id
        trace.enter(TurnState.LOADING_STATE)
        try:
            allowed = await self.memory.claim_nudge(user_id)
        except StoreUnavailable as e:
            # Without throttle state a nudge can't be justified: stay silent.
            self._report(e, user_id, "nudge:claim")
            allowed = False
        if self.events:
            self.events.log_nudge(user_id, allowed=allowed)
        if not allowed:
            trace.enter(TurnState.DONE)
            return Reply(text="")

        identity, memory = await self._load(user_id, trace)
        context = await self._context(memory, trace)
        messages = self._messages(
            identity,
            memory.facts,
            context,
            prompt.nudge_instruction(identity),
            request.timezone,
            trace,
        )
        text, error = await self._generate(
            user_id, messages, self.config.nudge_tokens, prompt.NUDGE_FALLBACK, trace
        )
        trace.enter(TurnState.PERSISTING)
        await self._persist_turn(user_id, "assistant", text, _turn_id(request, "assistant"))
        trace.enter(TurnState.DONE)
        return Reply(text=text, error=error)

    async def _load(self, user_id: str, trace: TurnTrace) -> tuple[Identity, Memory]:
        if trace.state is not TurnState.LOADING_STATE:
            trace.enter(TurnState.LOADING_STATE)
        identity, memory = await asyncio.gather(
            self.memory.get_identity(user_id), self.memory.get_memory(user_id)
        )
        return identity, memory

    async def _context(self, memory: Memory, trace: TurnTrace) -> CompressedContext:
        trace.enter(TurnState.COMPRESSING)
        return await self.compressor.compress(memory.thread)

    def _messages(
        self,
        identity: Identity,
        facts: list[str],
        context: CompressedContext,
        instruction: str,
        timezone: str,
        trace: TurnTrace,
    ) -> list[Message]:
        messages = prompt.build_messages(
            persona=prompt.build_persona_prompt(self.config.assistant_name, identity, facts),
            style_hint=self.hints.hint(),
            context=context,
            instruction=instruction,
            timezone=timezone,
        )
        trace.enter(TurnState.PROMPT_ASSEMBLED)
        return messages

    async def _generate(
        self,
        user_id: str,
        messages: list[Message],
        budget: int,
        fallback: str,
        trace: TurnTrace,
    ) -> tuple[str, str | None]:
        """Buffered completion with one reduced-budget retry.

        Returns:
            (text, error) where error is set when `fallback` was substituted.
        """
        trace.enter(TurnState.CALLING_PROVIDER)
        trace.enter(TurnState.BUFFERED)
        error: str | None = None
        for attempt, tokens in enumerate((budget, self.config.retry_budget(budget)), start=1):
            start = time.monotonic()
            try:
                text = await self.provider.complete(
                    messages, tokens, timeout=self.config.provider_timeout
                )
            except ProviderError as e:
                error = f"provider_{e.kind}"
                logger.warning(f"Completion attempt {attempt} failed for {user_id}: {e}")
                self._log_call(user_id, tokens, start, attempt, str(e))
                continue
            except Exception as e:
                error = "provider_unexpected"
                logger.exception(f"Completion attempt {attempt} raised for {user_id}")
                self._log_call(user_id, tokens, start, attempt, str(e) or type(e).__name__)
                self._report(e, user_id, "provider")
                continue

            self._log_call(user_id, tokens, start, attempt, None)
            text = (text or "").strip()
            if text:
                return text, None
            error = "provider_empty"
            break

        trace.error = error
        return fallback, error

    async def _persist_turn(
        self, user_id: str, role: str, text: str, turn_id: str | None
    ) -> None:
        try:
            await self.memory.append_turn(user_id, role, text, turn_id=turn_id)  # type: ignore[arg-type]
        except StoreUnavailable as e:
            logger.warning(f"Could not persist {role} turn for {user_id}: {e}")
            self._report(e, user_id, f"persist:{role}")

    def _log_call(
        self, user_id: str, tokens: int, start: float, attempt: int, error: str | None
    ) -> None:
        if self.events:
            self.events.log_provider_call(
                user_id,
                mode="buffered",
                max_output_tokens=tokens,
                duration_ms=(time.monotonic() - start) * 1000,
                attempt=attempt,
                error=error,
            )

    def _report(self, error: BaseException, user_id: str, context: str) -> None:
        if self.events:
            self.events.report_error(error, user_id=user_id, context=context)


def _turn_id(request: ChatRequest, role: str) -> str | None:
    if request.request_id is None:
        return None
    return f"{request.request_id}:{role}"


def _memory_view(memory: Memory) -> dict[str, Any]:
    return {
        "facts": list(memory.facts),
        "threadLength": len(memory.thread),
        "lastSeenAt": memory.last_seen_at.isoformat(),
    }
