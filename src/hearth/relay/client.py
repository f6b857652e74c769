"""Client side of the relay: stream consumer with a buffered race, idle nudges."""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from .frames import SSEParser

logger = logging.getLogger(__name__)

STREAM_FALLBACK_MS = 9000

FragmentCallback = Callable[[str], Any]


@dataclass
class ClientReply:
    """Text shown to the user and which path delivered it."""

    text: str
    source: str


@dataclass
class _Race:
    winner: str | None = None
    decided: asyncio.Event = field(default_factory=asyncio.Event)

    def claim(self, source: str) -> bool:
        """First caller wins; later callers learn they lost."""
        if self.winner is None:
            self.winner = source
            self.decided.set()
        return self.winner == source


class RelayClient:
    """Talks to the dialogue endpoints over HTTP.

    `say` streams the reply and, if no fragment arrives within the fallback
    window, races a buffered request against the stream. Whichever produces
    text first is shown; the other is cancelled and discarded. Both carry
    the same requestId, so the server stores the turn once.

    The server keeps whichever assistant write for a requestId lands
    first, which is not always the text the client showed. The default
    window sits above the relay's first_fragment_timeout, so by the time
    the client races, the server has either sent a fragment or started its
    own buffered retry. The stored and shown text can still differ when
    that retry and the client's buffered call both finish, or when a
    stream stalls in transit after the server completed it.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        user_id: str,
        *,
        timezone: str = "UTC",
        fallback_after_ms: int = STREAM_FALLBACK_MS,
    ) -> None:
        self.http = http
        self.user_id = user_id
        self.timezone = timezone
        self.fallback_after = fallback_after_ms / 1000

    def _body(self, **fields: Any) -> dict[str, Any]:
        return {"userId": self.user_id, "timezone": self.timezone, **fields}

    async def send(self, action: str, **fields: Any) -> dict[str, Any]:
        """POST one action and return the decoded response body."""
        response = await self.http.post("/api/chat", json=self._body(action=action, **fields))
        if response.status_code >= 500:
            response.raise_for_status()
        return response.json()

    async def init(self) -> str:
        return (await self.send("init")).get("reply", "")

    async def nudge(self) -> str:
        """Ask for an idle nudge; an empty string means stay silent."""
        return (await self.send("nudge")).get("reply", "")

    async def learn_identity(self, name: str) -> str:
        return (await self.send("learn_identity", name=name)).get("reply", "")

    async def add_fact(self, fact: str) -> str:
        return (await self.send("add_fact", fact=fact)).get("reply", "")

    async def say(
        self,
        message: str,
        *,
        length: str = "medium",
        on_fragment: FragmentCallback | None = None,
    ) -> ClientReply:
        fields = {"message": message, "len": length, "requestId": uuid.uuid4().hex}
        race = _Race()
        stream_task = asyncio.create_task(self._stream_say(self._body(**fields), race, on_fragment))
        waiter = asyncio.create_task(race.decided.wait())
        buffered_task: asyncio.Task | None = None
        try:
            await asyncio.wait(
                {stream_task, waiter},
                timeout=self.fallback_after,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if race.winner is None:
                logger.info("No fragment yet, starting buffered fallback")
                buffered_task = asyncio.create_task(self._buffered_say(fields, race))

            while race.winner is None:
                running = {t for t in (stream_task, buffered_task) if t and not t.done()}
                if not running:
                    break
                await asyncio.wait(running | {waiter}, return_when=asyncio.FIRST_COMPLETED)

            if race.winner == "stream":
                return ClientReply(text=(await stream_task).strip(), source="stream")
            if race.winner == "buffered" and buffered_task is not None:
                return ClientReply(text=(await buffered_task).strip(), source="buffered")

            for task in (buffered_task, stream_task):
                if task is not None and task.exception() is not None:
                    raise task.exception()  # type: ignore[misc]
            return ClientReply(text="", source="none")
        finally:
            waiter.cancel()
            for task in (stream_task, buffered_task):
                if task is None:
                    continue
                if not task.done():
                    task.cancel()
                elif not task.cancelled():
                    task.exception()

    async def _stream_say(
        self, body: dict[str, Any], race: _Race, on_fragment: FragmentCallback | None
    ) -> str:
        parser = SSEParser()
        parts: list[str] = []
        try:
            async with self.http.stream("POST", "/api/chat/stream", json=body) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    for event in parser.feed(chunk):
                        if event.is_done:
                            return "".join(parts)
                        if event.event != "message" or not event.data:
                            continue
                        if not race.claim("stream"):
                            return ""
                        parts.append(event.data)
                        if on_fragment is not None:
                            result = on_fragment(event.data)
                            if inspect.isawaitable(result):
                                await result
        except httpx.HTTPError as e:
            if not parts:
                raise
            logger.warning(f"Stream dropped after {len(parts)} fragment(s): {e}")
        return "".join(parts)

    async def _buffered_say(self, fields: dict[str, Any], race: _Race) -> str:
        data = await self.send("say", **fields)
        text = data.get("reply", "")
        if text and race.claim("buffered"):
            return text
        return ""


@dataclass
class NudgeBackoff:
    """Exponential debounce for idle nudges (seconds)."""

    initial: float = 90.0
    ceiling: float = 20 * 60.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        self._next = self.initial

    def next_delay(self) -> float:
        """Return the wait before the next attempt and grow the one after."""
        delay = self._next
        self._next = min(self._next * self.factor, self.ceiling)
        return delay

    def reset(self) -> None:
        self._next = self.initial


class IdleNudger:
    """Asks the server for a nudge after the user goes quiet.

    Any user activity resets the backoff and restarts the timer. The
    server's policy decides; an empty reply means nothing is shown.
    """

    def __init__(
        self,
        client: RelayClient,
        on_message: Callable[[str], Any],
        backoff: NudgeBackoff | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.on_message = on_message
        self.backoff = backoff or NudgeBackoff()
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._loop())

    def notify_activity(self) -> None:
        """Reset the debounce window after user activity."""
        self.backoff.reset()
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.backoff.next_delay())
            try:
                text = await self.client.nudge()
            except httpx.HTTPError as e:
                logger.warning(f"Nudge request failed: {e}")
                continue
            if text:
                result = self.on_message(text)
                if inspect.isawaitable(result):
                    await result
