"""StreamingRelay - streams the final answer from the provider to the caller."""

from __future__ import annotations

import contextlib
import enum
import json
import logging
import time

from agent.agent_loop import FinalTranscript
from agent.exceptions import ProviderError
from agent.models import CompletionClient
from agent.sse import SSEEvent, SSEParser
from agent.stream_channel import StreamChannel
from agent.telemetry import Telemetry

_log = logging.getLogger("erp_chat.relay")


class RelayState(str, enum.Enum):
    OPEN = "open"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class StreamingRelay:
    """
    Relays `choices[0].delta.content` fragments from the provider's streamed
    completion to the outbound channel as `{"content": ...}` events.

    Every run ends with either the `[DONE]` sentinel or a single
    `{"error": ...}` event, and then the channel is closed exactly once. If the
    consumer has gone away, the relay stops reading from the provider and
    closes without writing anything else.
    """

    def __init__(
        self,
        client: CompletionClient,
        channel: StreamChannel,
        system_prompt: str = "",
        max_completion_tokens: int = 2000,
        telemetry: Telemetry | None = None,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.channel = channel
        self.system_prompt = system_prompt
        self.max_completion_tokens = max_completion_tokens
        self.telemetry = telemetry
        self._logger = logger or _log
        self._state = RelayState.OPEN
        self._outcome: RelayState | None = None
        self._fragments = 0

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def outcome(self) -> str:
        """How the stream ended: done, error or disconnected ("" while running)."""
        return self._outcome.value if self._outcome else ""

    @property
    def fragments_sent(self) -> int:
        return self._fragments

    async def stream(self, final: FinalTranscript) -> None:
        """Stream the final answer for `final` and close the channel."""
        if self._state is not RelayState.OPEN:
            return
        if self.channel.closed:
            self._disconnected()
            return

        self._state = RelayState.STREAMING
        messages = final.to_provider_messages(self.system_prompt)
        parser = SSEParser()
        start = time.monotonic()
        error: str | None = None

        try:
            async with contextlib.aclosing(
                self.client.stream(messages, max_tokens=self.max_completion_tokens)
            ) as chunks:
                async for chunk in chunks:
                    for event in parser.feed(chunk):
                        if not self._relay_event(event):
                            return
                    if self._state is not RelayState.STREAMING:
                        return
            for event in parser.flush():
                if not self._relay_event(event):
                    return
            if self._state is RelayState.STREAMING:
                self.finish()
        except ProviderError as e:
            error = str(e)
            self._logger.error("Final answer stream failed: %s", e)
            self.fail(str(e))
        except Exception as e:
            error = str(e)
            self._logger.exception("Final answer stream failed unexpectedly")
            self.fail("The answer stream was interrupted unexpectedly. Please try again.")
        finally:
            if self.telemetry:
                self.telemetry.record_llm_call(
                    model=getattr(self.client, "model", ""),
                    iteration=final.iterations + 1,
                    latency_ms=(time.monotonic() - start) * 1000,
                    streamed=True,
                    error=error,
                )

    def _relay_event(self, event: SSEEvent) -> bool:
        """Forward one provider event. Returns False once the stream is over."""
        if event.is_done:
            self.finish()
            return False
        try:
            payload = json.loads(event.data)
            content = payload["choices"][0].get("delta", {}).get("content")
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
            self._logger.debug("Skipping malformed stream event: %.200s", event.data)
            return True
        if not isinstance(content, str):
            if content is not None:
                self._logger.debug("Skipping non-text stream content: %.200s", event.data)
            return True
        if not content:
            return True
        if not self._write({"content": content}):
            return False
        self._fragments += 1
        return True

    def send_guidance(self, text: str) -> None:
        """Emit one readable content event, the sentinel, and close."""
        if self._state is not RelayState.OPEN:
            return
        self._state = RelayState.STREAMING
        if self._write({"content": text}):
            self._fragments += 1
            self.finish()

    def finish(self) -> None:
        """Emit the `[DONE]` sentinel and close."""
        if self._outcome is not None:
            return
        if not self.channel.write_done():
            self._disconnected()
            return
        self._outcome = RelayState.DONE
        self._state = RelayState.DONE
        self._logger.info("Stream done (%d fragment(s))", self._fragments)
        self.close()

    def fail(self, message: str) -> None:
        """Emit a single error event and close."""
        if self._outcome is not None:
            return
        if not self.channel.write({"error": message}):
            self._disconnected()
            return
        self._outcome = RelayState.ERROR
        self._state = RelayState.ERROR
        self.close()

    def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        self.channel.close()
        self._state = RelayState.CLOSED

    def _write(self, payload: dict) -> bool:
        if self.channel.write(payload):
            return True
        self._disconnected()
        return False

    def _disconnected(self) -> None:
        if self._outcome is None:
            self._outcome = RelayState.DISCONNECTED
            self._logger.info("Client disconnected; stream abandoned")
        self.close()
