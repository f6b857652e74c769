"""Read-time compression of old conversation turns into a summary line."""

import logging
from dataclasses import dataclass, field

from ..errors import ProviderError
from ..provider import CompletionProvider, Message
from .models import Turn

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = """Compress the conversation below into at most {max_sentences} sentences.
Capture the user's goals, decisions made, constraints mentioned and anything left open.
Write plain prose in third person. No preamble, no lists.

Conversation:
{conversation}"""

SUMMARY_PREFIX = "Summary of earlier conversation: "


@dataclass
class CompressedContext:
    """Prompt-ready view of a thread.

    Attributes:
        recent: The newest turns, kept verbatim.
        summary: Condensed text for the older turns, or None.
        compressed_count: How many older turns the summary stands in for.
    """

    recent: list[Turn] = field(default_factory=list)
    summary: str | None = None
    compressed_count: int = 0

    def summary_message(self) -> Message | None:
        """The synthetic system line placed ahead of the recent turns."""
        if not self.summary:
            return None
        return {"role": "system", "content": SUMMARY_PREFIX + self.summary}


class ThreadCompressor:
    """Summarizes turns beyond the recent window with one buffered call.

    Compression never touches storage: it is recomputed for every prompt
    from whatever thread it is handed. A failed summary degrades to the
    recent window alone.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        window: int = 20,
        max_sentences: int = 5,
        max_output_tokens: int = 220,
        timeout: float = 8.0,
    ) -> None:
        self.provider = provider
        self.window = window
        self.max_sentences = max_sentences
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout

    def split(self, thread: list[Turn]) -> tuple[list[Turn], list[Turn]]:
        """Split a thread into (old, recent) around the window."""
        if len(thread) <= self.window:
            return [], list(thread)
        cut = len(thread) - self.window
        return list(thread[:cut]), list(thread[cut:])

    async def compress(self, thread: list[Turn]) -> CompressedContext:
        old, recent = self.split(thread)
        if not old:
            return CompressedContext(recent=recent)

        try:
            summary = await self.provider.complete(
                self._summary_request(old),
                self.max_output_tokens,
                timeout=self.timeout,
            )
        except ProviderError as e:
            logger.warning(f"Thread summary failed, using recent turns only: {e}")
            return CompressedContext(recent=recent)
        except Exception:
            logger.exception("Unexpected error while summarizing thread, using recent turns only")
            return CompressedContext(recent=recent)

        summary = (summary or "").strip()
        if not summary:
            return CompressedContext(recent=recent)
        return CompressedContext(recent=recent, summary=summary, compressed_count=len(old))

    def _summary_request(self, old: list[Turn]) -> list[Message]:
        lines = []
        for turn in old:
            speaker = "User" if turn.role == "user" else "Assistant"
            lines.append(f"{speaker}: {turn.text}")
        prompt = SUMMARY_PROMPT.format(
            max_sentences=self.max_sentences, conversation="\n".join(lines)
        )
        return [{"role": "user", "content": prompt}]
