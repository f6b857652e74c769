"""Server-sent event framing and an incremental frame parser."""

import codecs
import re
from dataclasses import dataclass

OPEN_FRAME = ":\n\n"
HEARTBEAT_FRAME = ":hb\n\n"
DONE_FRAME = "event: done\ndata: [DONE]\n\n"
DONE_DATA = "[DONE]"

_LINE_END = re.compile(r"\r\n|\r|\n")


def encode_data(fragment: str) -> str:
    """Frame a text fragment as one `data:` event.

    Embedded newlines become extra `data:` lines, which a conforming parser
    joins back with newlines.
    """
    lines = _LINE_END.split(fragment)
    return "".join(f"data: {line}\n" for line in lines) + "\n"


def encode_event(event: str, data: str) -> str:
    return f"event: {event}\n" + encode_data(data)


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched event."""

    data: str
    event: str = "message"

    @property
    def is_done(self) -> bool:
        return self.event == "done" or self.data == DONE_DATA


class SSEParser:
    """Incremental parser: feed raw bytes, get complete events back.

    Chunks may split anywhere, including inside a multi-byte character or
    between the CR and LF of a line ending. Comment lines (heartbeats) are
    counted and otherwise ignored. An unterminated event at end of input is
    discarded.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data: list[str] = []
        self._event: str | None = None
        self.comments = 0

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        """Consume a chunk and return the events it completed."""
        self._buffer += self._decoder.decode(chunk)
        events: list[SSEEvent] = []
        while True:
            match = _LINE_END.search(self._buffer)
            if match is None:
                break
            # A trailing CR may be the first half of CRLF.
            if match.group() == "\r" and match.end() == len(self._buffer):
                break
            line = self._buffer[: match.start()]
            self._buffer = self._buffer[match.end() :]
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> SSEEvent | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            self.comments += 1
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        # Other fields (id, retry) carry nothing we use.
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data and self._event is None:
            return None
        event = SSEEvent(data="\n".join(self._data), event=self._event or "message")
        self._data = []
        self._event = None
        return event
