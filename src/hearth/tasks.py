"""Best-effort background writes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Coroutine

if TYPE_CHECKING:
    from .logging import JSONLLogger

logger = logging.getLogger(__name__)


class BackgroundWriter:
    """Runs fire-and-forget coroutines off the request path.

    Contract: best effort, logged on failure. A spawned task never raises
    into the caller; its exception is logged and reported to the event
    logger. Strong references are held until each task finishes so the
    event loop can't drop it mid-flight.
    """

    def __init__(self, events: JSONLLogger | None = None) -> None:
        self.events = events
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        label: str,
        user_id: str | None = None,
    ) -> asyncio.Task:
        """Schedule a coroutine and return immediately."""
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, label, user_id))
        return task

    def _finished(self, task: asyncio.Task, label: str, user_id: str | None) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {label} cancelled")
            return
        error = task.exception()
        if error is None:
            return
        logger.warning(f"Background task {label} failed: {error}")
        if self.events:
            self.events.report_error(error, user_id=user_id, context=label)

    async def drain(self) -> None:
        """Wait for every outstanding task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
