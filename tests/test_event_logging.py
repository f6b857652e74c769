"""Tests for JSONL event logging."""

import json
from pathlib import Path

import pytest

from hearth.logging import JSONLLogger, LogEntry


def read_entries(logger: JSONLLogger) -> list[dict]:
    return [json.loads(line) for line in logger.log_path.read_text().splitlines()]


@pytest.fixture
def events(tmp_path: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=tmp_path / "logs")


class TestLogEntry:
    """Tests for LogEntry."""

    def test_drops_empty_fields(self):
        """None fields are left out of the dict."""
        entry = LogEntry(timestamp="t", event="turn", user_id="user-1")
        assert entry.to_dict() == {"timestamp": "t", "event": "turn", "user_id": "user-1"}


class TestJSONLLogger:
    """Tests for the JSONL event logger."""

    def test_creates_log_dir(self, tmp_path: Path):
        """The log directory is created on init."""
        JSONLLogger(log_dir=tmp_path / "nested" / "logs")
        assert (tmp_path / "nested" / "logs").is_dir()

    def test_log_turn(self, events):
        """A turn entry carries its states and reply length in extra."""
        events.log_turn(
            "user-1", "say", states=["received", "done"], duration_ms=12.5, reply_length=40
        )

        (entry,) = read_entries(events)
        assert entry["event"] == "turn"
        assert entry["action"] == "say"
        assert entry["duration_ms"] == 12.5
        assert entry["extra"] == {
            "states": ["received", "done"],
            "reply_length": 40,
            "fallback": False,
        }

    def test_log_provider_call_with_error(self, events):
        """A failed provider call records the error and attempt."""
        events.log_provider_call(
            "user-1", mode="buffered", max_output_tokens=80, duration_ms=3.0, attempt=2, error="timeout"
        )

        (entry,) = read_entries(events)
        assert entry["event"] == "provider_call"
        assert entry["error"] == "timeout"
        assert entry["extra"]["attempt"] == 2

    def test_log_fallback_and_nudge(self, events):
        events.log_fallback("user-1", reason="silence")
        events.log_nudge("user-1", allowed=False)

        fallback, nudge = read_entries(events)
        assert fallback["event"] == "stream_fallback"
        assert fallback["context"] == "silence"
        assert nudge["extra"] == {"allowed": False}

    def test_report_error(self, events):
        """Errors record their message, type and context."""
        events.report_error(ValueError("bad"), user_id="user-1", context="learn_name")

        (entry,) = read_entries(events)
        assert entry["event"] == "error"
        assert entry["error"] == "bad"
        assert entry["error_type"] == "ValueError"
        assert entry["context"] == "learn_name"

    def test_report_error_never_raises(self, events, monkeypatch):
        """A failing write doesn't escape report_error."""
        def broken_write(entry):
            raise OSError("disk full")

        monkeypatch.setattr(events, "_write", broken_write)
        events.report_error(RuntimeError("x"))

    def test_rotation(self, tmp_path: Path):
        """A full log file is rotated aside."""
        events = JSONLLogger(log_dir=tmp_path, max_size_mb=0.0001)
        for i in range(20):
            events.log("tick", context=f"entry {i}")

        assert len(list(tmp_path.glob("events_*.jsonl"))) >= 1
        assert events.log_path.exists()
