"""Chat transcript records and the adapter to the provider's wire format."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from agent.exceptions import MessageFormatError

ROLES = ("user", "assistant", "tool")


@dataclass
class ToolCallRequest:
    """A tool invocation requested by the model. `arguments` is kept raw."""
    id: str
    name: str
    arguments: Any = None

    def raw_arguments(self) -> str:
        """Arguments as the JSON text sent back to the provider."""
        if self.arguments is None:
            return "{}"
        if isinstance(self.arguments, str):
            return self.arguments or "{}"
        try:
            return json.dumps(self.arguments, ensure_ascii=False)
        except (TypeError, ValueError):
            return "{}"


@dataclass
class ChatMessage:
    """One transcript entry."""
    role: str
    content: Any = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    tool_call_id: str | None = None


@dataclass(frozen=True)
class ToolCallResult:
    """Outcome of one executed (or rejected) tool call. Always text."""
    tool_call_id: str
    tool_name: str
    result: str
    arguments: str = "{}"


@dataclass
class ChatRequest:
    """Inbound request for one chat turn."""
    messages: list[ChatMessage]
    conversation_id: str
    caller_id: str
    caller_profile: dict = field(default_factory=dict)


# ── Inbound parsing ─────────────────────────────────────────────────


def parse_chat_messages(raw: object) -> list[ChatMessage]:
    """
    Validate the caller's transcript and convert it into ChatMessages.

    An assistant turn with tool calls must be followed directly by one tool
    turn per call before any other turn, and the transcript cannot end while
    a call is still waiting for its result.
    """
    if not isinstance(raw, list) or not raw:
        raise MessageFormatError("messages must be a non-empty list")

    messages: list[ChatMessage] = []
    pending_ids: list[str] = []

    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise MessageFormatError(f"messages[{idx}] must be an object")

        role = item.get("role")
        if role not in ROLES:
            raise MessageFormatError(
                f"messages[{idx}].role must be one of: {', '.join(ROLES)}"
            )

        if pending_ids and role != "tool":
            raise MessageFormatError(
                f"messages[{idx}] follows tool call(s) {', '.join(pending_ids)} "
                "before their results"
            )

        content = item.get("content", "")
        if content is None:
            content = ""

        tool_calls = [
            _parse_tool_call(tc) for tc in (item.get("tool_calls") or item.get("toolCalls") or [])
        ] if role == "assistant" else []

        tool_call_id = None
        if role == "tool":
            tool_call_id = item.get("tool_call_id") or item.get("toolCallId")
            if not tool_call_id or tool_call_id not in pending_ids:
                raise MessageFormatError(
                    f"messages[{idx}] is a tool result without a matching earlier tool call"
                )
            pending_ids.remove(tool_call_id)

        pending_ids.extend(tc.id for tc in tool_calls)

        messages.append(ChatMessage(
            role=role,
            content=content,
            tool_calls=tool_calls,
            tool_call_id=tool_call_id,
        ))

    if pending_ids:
        raise MessageFormatError(
            f"tool call(s) {', '.join(pending_ids)} have no result"
        )
    return messages


def _parse_tool_call(raw: object) -> ToolCallRequest:
    """Parse one `tool_calls` entry in the OpenAI function-calling shape."""
    if not isinstance(raw, dict):
        raise MessageFormatError("tool_calls entries must be objects")
    function = raw.get("function")
    if not isinstance(function, dict):
        function = {"name": raw.get("name", ""), "arguments": raw.get("arguments")}
    call_id = raw.get("id")
    if not isinstance(call_id, str) or not call_id:
        call_id = _new_call_id()
    return ToolCallRequest(
        id=call_id,
        name=str(function.get("name") or "").strip(),
        arguments=function.get("arguments"),
    )


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


# ── Provider format ─────────────────────────────────────────────────


def from_provider_format(message: object) -> ChatMessage:
    """Convert a provider assistant message (`choices[0].message`) into a ChatMessage."""
    if not isinstance(message, dict):
        return ChatMessage(role="assistant", content="")

    tool_calls: list[ToolCallRequest] = []
    for raw in message.get("tool_calls") or []:
        if not isinstance(raw, dict):
            continue
        tool_calls.append(_parse_tool_call(raw))

    return ChatMessage(
        role="assistant",
        content=message.get("content") or "",
        tool_calls=tool_calls,
    )


def to_provider_format(
    transcript: Iterable[ChatMessage],
    results: Iterable[ToolCallResult] = (),
    system_prompt: str | None = None,
) -> list[dict]:
    """
    Render the transcript plus accumulated tool results as provider messages.

    Each result becomes an assistant tool-call turn immediately followed by its
    tool turn, in the order the results were produced.
    """
    rendered: list[dict] = []
    if system_prompt:
        rendered.append({"role": "system", "content": system_prompt})

    for message in transcript:
        rendered.append(_render_message(message))

    for result in results:
        rendered.extend(result_pair(result))

    return rendered


def _render_message(message: ChatMessage) -> dict:
    entry: dict[str, Any] = {"role": message.role, "content": message.content}
    if message.role == "assistant" and message.tool_calls:
        entry["tool_calls"] = [_render_tool_call(tc.id, tc.name, tc.raw_arguments()) for tc in message.tool_calls]
    if message.role == "tool":
        entry["tool_call_id"] = message.tool_call_id
    return entry


def _render_tool_call(call_id: str, name: str, arguments: str) -> dict:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": arguments},
    }


def result_pair(result: ToolCallResult) -> list[dict]:
    """The (assistant tool-call, tool result) turns for one result."""
    return [
        {
            "role": "assistant",
            "content": f"Tool call: {result.tool_name}",
            "tool_calls": [_render_tool_call(result.tool_call_id, result.tool_name, result.arguments)],
        },
        {
            "role": "tool",
            "tool_call_id": result.tool_call_id,
            "content": result.result,
        },
    ]


def tools_to_provider_format(definitions: Iterable) -> list[dict]:
    """Advertise tool definitions in the function-calling shape."""
    return [
        {
            "type": "function",
            "function": {
                "name": d.name,
                "description": d.description,
                "parameters": d.parameters,
            },
        }
        for d in definitions
    ]
