"""StreamChannel: the single owner of one outbound SSE stream."""

from __future__ import annotations

import queue
import threading
from typing import Iterator

from agent.sse import encode_comment, encode_done, encode_event

_CLOSE = object()


class StreamChannel:
    """
    Hands encoded events from the producer (the chat run) to the consumer
    (the HTTP response body).

    The channel alone owns the open/closed state: producers send it `write`
    and `close` messages and read back whether the write was accepted, so
    nothing outside checks a flag before writing. A write after close is a
    no-op returning False; close is idempotent. When the consumer goes away
    (client disconnect) it calls `cancel`, which closes the channel so the
    producer's next write fails.
    """

    def __init__(self, keepalive_interval: float = 15.0):
        self.keepalive_interval = keepalive_interval
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._cancelled = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def cancelled(self) -> bool:
        """True when the consumer disconnected before the producer finished."""
        with self._lock:
            return self._cancelled

    def write(self, payload: dict) -> bool:
        """Queue one JSON event. Returns False if the channel is closed."""
        return self._put(encode_event(payload))

    def write_done(self) -> bool:
        """Queue the `[DONE]` sentinel."""
        return self._put(encode_done())

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSE)

    def cancel(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancelled = True
            self._queue.put(_CLOSE)

    def _put(self, data: bytes) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._queue.put(data)
            return True

    # ── Consumer side ────────────────────────────────────────────────

    def iter_sse(self) -> Iterator[bytes]:
        """Yield queued events until the channel closes; keep-alive while idle."""
        try:
            while True:
                try:
                    item = self._queue.get(timeout=self.keepalive_interval)
                except queue.Empty:
                    if self.closed:
                        return
                    yield encode_comment("keepalive")
                    continue
                if item is _CLOSE:
                    return
                yield item
        except GeneratorExit:
            # The WSGI server closed the response: the client is gone.
            self.cancel()
            raise

    def drain(self) -> list[bytes]:
        """Everything queued so far, without blocking. Used by tests and tooling."""
        items: list[bytes] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is not _CLOSE:
                items.append(item)
