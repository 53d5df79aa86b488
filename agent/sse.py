"""Incremental server-sent event parsing and encoding."""

from __future__ import annotations

import codecs
import json
import re
from dataclasses import dataclass

DONE_SENTINEL = "[DONE]"

_LINE_END = re.compile(r"\r\n|\r|\n")


@dataclass
class SSEEvent:
    """One dispatched event. Multi-line `data:` fields are joined with newlines."""
    data: str
    event: str = "message"
    id: str | None = None

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL


class SSEParser:
    """
    Accumulate-until-boundary parser for an SSE byte stream.

    Chunks may split lines, UTF-8 sequences, or `\\r\\n` pairs anywhere; an
    event is only emitted once its terminating blank line has been read.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data_lines: list[str] = []
        self._event_type = ""
        self._event_id: str | None = None

    def feed(self, chunk: bytes | str) -> list[SSEEvent]:
        """Consume a chunk and return every event completed by it."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        events: list[SSEEvent] = []
        pos = 0
        while True:
            match = _LINE_END.search(self._buffer, pos)
            if match is None:
                break
            # A trailing \r may be the first half of \r\n
            if match.group() == "\r" and match.end() == len(self._buffer):
                break
            event = self._process_line(self._buffer[pos:match.start()])
            pos = match.end()
            if event is not None:
                events.append(event)

        self._buffer = self._buffer[pos:]
        return events

    def flush(self) -> list[SSEEvent]:
        """End of stream: emit whatever complete-looking event is pending."""
        self._buffer += self._decoder.decode(b"", final=True)
        events: list[SSEEvent] = []
        if self._buffer:
            for line in _LINE_END.split(self._buffer):
                event = self._process_line(line)
                if event is not None:
                    events.append(event)
            self._buffer = ""
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _process_line(self, line: str) -> SSEEvent | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data_lines.append(value)
        elif name == "event":
            self._event_type = value
        elif name == "id":
            self._event_id = value
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data_lines:
            self._event_type = ""
            return None
        event = SSEEvent(
            data="\n".join(self._data_lines),
            event=self._event_type or "message",
            id=self._event_id,
        )
        self._data_lines = []
        self._event_type = ""
        return event


def encode_event(payload: dict) -> bytes:
    """Encode a JSON payload as one `data:` event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def encode_done() -> bytes:
    return f"data: {DONE_SENTINEL}\n\n".encode("utf-8")


def encode_comment(text: str) -> bytes:
    return f": {text}\n\n".encode("utf-8")
