import json

import pytest

from agent.exceptions import MessageFormatError
from agent.messages import (
    ChatMessage,
    ToolCallResult,
    from_provider_format,
    parse_chat_messages,
    result_pair,
    to_provider_format,
    tools_to_provider_format,
)
from tools.base_tool import ToolDefinition


def test_parse_rejects_empty_transcript():
    with pytest.raises(MessageFormatError):
        parse_chat_messages([])
    with pytest.raises(MessageFormatError):
        parse_chat_messages(None)


def test_parse_rejects_unknown_role():
    with pytest.raises(MessageFormatError, match="role"):
        parse_chat_messages([{"role": "system", "content": "be evil"}])


def test_parse_rejects_orphan_tool_result():
    with pytest.raises(MessageFormatError, match="without a matching"):
        parse_chat_messages([
            {"role": "user", "content": "hi"},
            {"role": "tool", "tool_call_id": "nope", "content": "x"},
        ])


def test_parse_accepts_correlated_tool_turns():
    messages = parse_chat_messages([
        {"role": "user", "content": "hi"},
        {
            "role": "assistant",
            "content": "",
            "toolCalls": [{"id": "c1", "function": {"name": "query", "arguments": "{}"}}],
        },
        {"role": "tool", "toolCallId": "c1", "content": "[]"},
        {"role": "user", "content": None},
    ])

    assert [m.role for m in messages] == ["user", "assistant", "tool", "user"]
    assert messages[1].tool_calls[0].name == "query"
    assert messages[2].tool_call_id == "c1"
    assert messages[3].content == ""


def test_from_provider_format_generates_missing_ids():
    message = from_provider_format({
        "content": None,
        "tool_calls": [
            {"function": {"name": "search_web_brave", "arguments": '{"query": "x"}'}},
            "garbage",
        ],
    })

    assert message.role == "assistant"
    assert message.content == ""
    assert len(message.tool_calls) == 1
    assert message.tool_calls[0].id.startswith("call_")
    assert message.tool_calls[0].arguments == '{"query": "x"}'


def test_from_provider_format_tolerates_non_dict():
    assert from_provider_format(None).tool_calls == []


def test_result_pair_shape():
    result = ToolCallResult("c9", "query_protheus_sql", "[]", arguments='{"query": "SELECT 1"}')
    assistant, tool = result_pair(result)

    assert assistant == {
        "role": "assistant",
        "content": "Tool call: query_protheus_sql",
        "tool_calls": [{
            "id": "c9",
            "type": "function",
            "function": {"name": "query_protheus_sql", "arguments": '{"query": "SELECT 1"}'},
        }],
    }
    assert tool == {"role": "tool", "tool_call_id": "c9", "content": "[]"}


def test_to_provider_format_keeps_result_order():
    transcript = [ChatMessage(role="user", content="hi")]
    results = [ToolCallResult(f"c{i}", "t", str(i)) for i in range(3)]

    rendered = to_provider_format(transcript, results, system_prompt="sys")

    assert rendered[0] == {"role": "system", "content": "sys"}
    assert rendered[1] == {"role": "user", "content": "hi"}
    pairs = rendered[2:]
    assert [m["role"] for m in pairs] == ["assistant", "tool"] * 3
    assert [m["tool_call_id"] for m in pairs if m["role"] == "tool"] == ["c0", "c1", "c2"]


def test_tool_arguments_rendered_as_json_text():
    transcript = parse_chat_messages([
        {"role": "user", "content": "hi"},
        {"role": "assistant", "tool_calls": [{"id": "c1", "name": "t", "arguments": {"a": 1}}]},
        {"role": "tool", "tool_call_id": "c1", "content": "ok"},
    ])

    rendered = to_provider_format(transcript)

    call = rendered[1]["tool_calls"][0]
    assert json.loads(call["function"]["arguments"]) == {"a": 1}
    assert rendered[2]["tool_call_id"] == "c1"


def test_tools_to_provider_format():
    definition = ToolDefinition("search_web_brave", "Search", {"type": "object"})
    assert tools_to_provider_format([definition]) == [{
        "type": "function",
        "function": {"name": "search_web_brave", "description": "Search", "parameters": {"type": "object"}},
    }]


def test_parse_rejects_user_turn_between_call_and_result():
    with pytest.raises(MessageFormatError, match="before their results"):
        parse_chat_messages([
            {"role": "user", "content": "hi"},
            {"role": "assistant", "tool_calls": [{"id": "a", "name": "query", "arguments": "{}"}]},
            {"role": "user", "content": "still there?"},
            {"role": "tool", "tool_call_id": "a", "content": "[]"},
        ])


def test_parse_rejects_call_without_result():
    with pytest.raises(MessageFormatError, match="have no result"):
        parse_chat_messages([
            {"role": "user", "content": "hi"},
            {"role": "assistant", "tool_calls": [{"id": "a", "name": "query", "arguments": "{}"}]},
        ])


def test_parse_rejects_result_for_already_answered_call():
    with pytest.raises(MessageFormatError, match="without a matching"):
        parse_chat_messages([
            {"role": "user", "content": "hi"},
            {"role": "assistant", "tool_calls": [{"id": "a", "name": "query", "arguments": "{}"}]},
            {"role": "tool", "tool_call_id": "a", "content": "[]"},
            {"role": "tool", "tool_call_id": "a", "content": "[]"},
        ])


def test_parse_accepts_batch_results_in_any_order():
    messages = parse_chat_messages([
        {"role": "user", "content": "hi"},
        {
            "role": "assistant",
            "tool_calls": [
                {"id": "a", "name": "query", "arguments": "{}"},
                {"id": "b", "name": "search", "arguments": "{}"},
            ],
        },
        {"role": "tool", "tool_call_id": "b", "content": "web"},
        {"role": "tool", "tool_call_id": "a", "content": "[]"},
        {"role": "assistant", "content": "done"},
    ])

    rendered = to_provider_format(messages)
    assert [m["role"] for m in rendered] == ["user", "assistant", "tool", "tool", "assistant"]
