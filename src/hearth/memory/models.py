"""Data models for per-user conversational state."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(value: str | None) -> datetime | None:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def format_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def normalize_fact(text: str) -> str:
    """Comparison key for a fact: trimmed, whitespace-collapsed, case-folded."""
    return " ".join(text.split()).casefold()


@dataclass(frozen=True)
class Turn:
    """One message in a conversation.

    Attributes:
        role: 'user' or 'assistant'.
        text: The message content.
        at: When the turn was recorded.
        id: Optional client-supplied id, used to skip duplicate appends.
    """

    role: Role
    text: str
    at: datetime
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "text": self.text, "at": format_ts(self.at)}
        if self.id is not None:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        return cls(
            role=data["role"],
            text=data.get("text", ""),
            at=parse_ts(data.get("at")) or utcnow(),
            id=data.get("id"),
        )


@dataclass
class Identity:
    """Who the user is, as far as we know."""

    name: str | None = None
    last_seen_at: datetime = field(default_factory=utcnow)
    last_topic: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "lastSeenAt": format_ts(self.last_seen_at),
            "lastTopic": self.last_topic,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Identity":
        return cls(
            name=data.get("name"),
            last_seen_at=parse_ts(data.get("lastSeenAt")) or utcnow(),
            last_topic=data.get("lastTopic"),
        )


@dataclass
class Memory:
    """Facts, bounded thread and nudge throttle state for one user.

    `nudge_count_today` only means something together with
    `last_nudge_at`; use `nudges_on` to read it.
    """

    facts: list[str] = field(default_factory=list)
    thread: list[Turn] = field(default_factory=list)
    first_seen_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)
    last_nudge_at: datetime | None = None
    nudge_count_today: int = 0

    def last_activity_at(self) -> datetime:
        """Time of the newest turn, or first contact when the thread is empty."""
        if self.thread:
            return self.thread[-1].at
        return self.first_seen_at

    def last_assistant_turn(self) -> Turn | None:
        for turn in reversed(self.thread):
            if turn.role == "assistant":
                return turn
        return None

    def nudges_on(self, now: datetime) -> int:
        """Nudges counted on now's UTC date; a stale date counts as zero."""
        if self.last_nudge_at is None:
            return 0
        if self.last_nudge_at.astimezone(timezone.utc).date() != now.astimezone(timezone.utc).date():
            return 0
        return self.nudge_count_today

    def has_fact(self, fact: str) -> bool:
        key = normalize_fact(fact)
        return any(normalize_fact(f) == key for f in self.facts)

    def has_turn(self, turn_id: str) -> bool:
        return any(t.id == turn_id for t in self.thread)

    def to_dict(self) -> dict[str, Any]:
        return {
            "facts": list(self.facts),
            "thread": [t.to_dict() for t in self.thread],
            "firstSeenAt": format_ts(self.first_seen_at),
            "lastSeenAt": format_ts(self.last_seen_at),
            "lastNudgeAt": format_ts(self.last_nudge_at),
            "nudgeCountToday": self.nudge_count_today,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        first_seen = parse_ts(data.get("firstSeenAt")) or utcnow()
        return cls(
            facts=list(data.get("facts") or []),
            thread=[Turn.from_dict(t) for t in data.get("thread") or []],
            first_seen_at=first_seen,
            last_seen_at=parse_ts(data.get("lastSeenAt")) or first_seen,
            last_nudge_at=parse_ts(data.get("lastNudgeAt")),
            nudge_count_today=int(data.get("nudgeCountToday") or 0),
        )
