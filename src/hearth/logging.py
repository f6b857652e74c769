"""JSONL logging for observability."""

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    user_id: str | None = None
    action: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    error_type: str | None = None
    context: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured events in JSONL format.

    Also serves as the error reporter for background work: `report_error`
    never raises, so callers can fire and forget.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".hearth" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        with self._lock:
            self._rotate_if_needed()
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        action: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        error_type: str | None = None,
        context: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id,
            action=action,
            duration_ms=duration_ms,
            error=error,
            error_type=error_type,
            context=context,
            extra=extra if extra else {},
        )
        self._write(entry)

    def report_error(
        self,
        error: BaseException,
        *,
        user_id: str | None = None,
        context: str | None = None,
    ) -> None:
        """Record a failure. Never raises."""
        try:
            self.log(
                "error",
                user_id=user_id,
                error=str(error) or repr(error),
                error_type=type(error).__name__,
                context=context,
            )
        except OSError:
            pass

    def log_turn(
        self,
        user_id: str,
        action: str,
        *,
        states: list[str],
        duration_ms: float,
        reply_length: int,
        fallback: bool = False,
    ) -> None:
        """Log a handled request and the states it went through."""
        self.log(
            "turn",
            user_id=user_id,
            action=action,
            duration_ms=duration_ms,
            states=states,
            reply_length=reply_length,
            fallback=fallback,
        )

    def log_provider_call(
        self,
        user_id: str,
        *,
        mode: str,
        max_output_tokens: int,
        duration_ms: float,
        attempt: int = 1,
        error: str | None = None,
    ) -> None:
        """Log a completion call (mode is 'buffered' or 'stream')."""
        self.log(
            "provider_call",
            user_id=user_id,
            duration_ms=duration_ms,
            error=error,
            mode=mode,
            max_output_tokens=max_output_tokens,
            attempt=attempt,
        )

    def log_fallback(self, user_id: str, *, reason: str) -> None:
        """Log a stream that fell back to a buffered call."""
        self.log("stream_fallback", user_id=user_id, context=reason)

    def log_nudge(self, user_id: str, *, allowed: bool) -> None:
        """Log a nudge decision."""
        self.log("nudge", user_id=user_id, allowed=allowed)
