"""Idle nudge throttle policy."""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from .models import Memory

# Check-in phrasing that marks an assistant turn as an earlier nudge.
NUDGE_PATTERN = re.compile(
    r"\b("
    r"just checking in|checking in|check(ing)? on you|still (there|here|with me)|"
    r"are you (there|still there|around)|haven'?t heard from you|"
    r"thinking of you|been quiet|where did you go|you went quiet"
    r")\b",
    re.IGNORECASE,
)


@dataclass
class NudgePolicy:
    """Throttle settings for unsolicited messages."""

    min_gap_ms: int = 75_000
    max_per_day: int = 3
    repeat_cooldown_ms: int = 5 * 60_000


def looks_like_nudge(text: str) -> bool:
    """Check whether an assistant message reads like a check-in nudge."""
    return bool(NUDGE_PATTERN.search(text or ""))


def nudge_denial_reason(memory: Memory, now: datetime, policy: NudgePolicy) -> str | None:
    """Evaluate the nudge policy against a Memory snapshot.

    Returns:
        None when a nudge is allowed, otherwise a short reason code.
    """
    if now - memory.last_activity_at() < timedelta(milliseconds=policy.min_gap_ms):
        return "recent_activity"

    last_assistant = memory.last_assistant_turn()
    if (
        last_assistant is not None
        and looks_like_nudge(last_assistant.text)
        and now - last_assistant.at < timedelta(milliseconds=policy.repeat_cooldown_ms)
    ):
        return "recent_nudge"

    if memory.nudges_on(now) >= policy.max_per_day:
        return "daily_limit"

    return None


def nudge_allowed(memory: Memory, now: datetime, policy: NudgePolicy) -> bool:
    """Pure decision: may a nudge be sent now?"""
    return nudge_denial_reason(memory, now, policy) is None
