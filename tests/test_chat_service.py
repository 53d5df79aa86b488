import json
import tempfile
import unittest
from pathlib import Path

from agent.chat_service import GENERIC_ERROR_MESSAGE, GUIDANCE_MESSAGE, ChatService
from agent.config import AgentConfig, DataSourceSettings, TelemetryConfig
from agent.exceptions import ProviderResponseError
from agent.messages import ChatMessage, ChatRequest
from agent.sse import SSEParser


def delta(text):
    return ("data: " + json.dumps({"choices": [{"delta": {"content": text}}]}) + "\n\n").encode("utf-8")


class FakeCompletionClient:
    model = "fake-model"

    def __init__(self, replies=(), chunks=()):
        self.replies = list(replies)
        self.chunks = list(chunks)
        self.calls = []
        self.stream_calls = []

    async def complete(self, messages, tools=None, max_tokens=1500):
        self.calls.append({"messages": messages, "tools": tools, "max_tokens": max_tokens})
        reply = self.replies.pop(0) if self.replies else {"content": "done"}
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, messages, max_tokens=2000):
        self.stream_calls.append({"messages": messages, "max_tokens": max_tokens})
        for chunk in self.chunks:
            yield chunk


class TestChatService(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        tmpdir = Path(self._tmp.name)
        self.config = AgentConfig(
            log_dir=str(tmpdir / "logs"),
            data_dir=str(tmpdir),
            telemetry=TelemetryConfig(enabled=True, log_dir=str(tmpdir / "metrics")),
            data_sources=[DataSourceSettings(user_id="u1", url="http://erp.invalid")],
        )

    def tearDown(self):
        self._tmp.cleanup()

    def _request(self, caller_id="u1"):
        return ChatRequest(
            messages=[ChatMessage(role="user", content="Quais os maiores clientes?")],
            conversation_id="conv-1",
            caller_id=caller_id,
        )

    async def _run(self, client, caller_id="u1", channel=None):
        service = ChatService(self.config, client=client)
        channel = channel or service.new_channel()
        await service.handle(self._request(caller_id), channel)
        return service, channel, SSEParser().feed(b"".join(channel.drain()))

    async def test_guidance_when_caller_has_no_connection(self):
        client = FakeCompletionClient()

        service, channel, events = await self._run(client, caller_id="stranger")

        self.assertEqual(len(events), 2)
        self.assertEqual(json.loads(events[0].data), {"content": GUIDANCE_MESSAGE})
        self.assertTrue(events[1].is_done)
        self.assertEqual(client.calls, [])
        self.assertEqual(client.stream_calls, [])
        self.assertTrue(channel.closed)
        run = service.recent_runs()[0]
        self.assertEqual(run["stop_reason"], "no_capabilities")
        self.assertEqual(run["tool_calls"], [])

    async def test_answer_streamed_after_loop(self):
        client = FakeCompletionClient(replies=[{"content": "draft"}], chunks=[delta("| A |"), delta(" B |")])

        service, channel, events = await self._run(client)

        contents = [json.loads(e.data)["content"] for e in events if not e.is_done]
        self.assertEqual(contents, ["| A |", " B |"])
        self.assertTrue(events[-1].is_done)
        self.assertEqual(len(client.calls), 1)
        self.assertEqual(client.calls[0]["max_tokens"], 1500)
        self.assertEqual(client.stream_calls[0]["max_tokens"], 2000)

        loop_prompt = client.calls[0]["messages"][0]["content"]
        final_prompt = client.stream_calls[0]["messages"][0]["content"]
        self.assertIn("query_protheus_sql", loop_prompt)
        self.assertTrue(final_prompt.startswith(loop_prompt))
        self.assertIn("final answer", final_prompt)

        run = service.recent_runs()[0]
        self.assertEqual(run["stop_reason"], "no_tool_calls")
        self.assertEqual(run["stream_outcome"], "done")

    async def test_tool_failures_reach_final_answer(self):
        reply = {"content": "", "tool_calls": [{
            "id": "c1",
            "type": "function",
            "function": {
                "name": "query_protheus_sql",
                "arguments": json.dumps({"query": "DROP TABLE SA1010", "description": "x"}),
            },
        }]}
        client = FakeCompletionClient(replies=[reply, {"content": "ok"}], chunks=[delta("Não foi possível.")])

        service, _, events = await self._run(client)

        final_messages = client.stream_calls[0]["messages"]
        self.assertEqual(final_messages[-1]["tool_call_id"], "c1")
        self.assertIn("syntax/validation error", final_messages[-1]["content"])
        self.assertTrue(events[-1].is_done)
        outcomes = [t["outcome"] for t in service.recent_runs()[0]["tool_calls"]]
        self.assertEqual(outcomes, ["syntax/validation"])

    async def test_provider_error_becomes_single_error_event(self):
        client = FakeCompletionClient(replies=[
            ProviderResponseError("AI gateway rate limit reached. Try again in a few moments.", status=429),
        ])

        service, channel, events = await self._run(client)

        self.assertEqual(len(events), 1)
        self.assertEqual(json.loads(events[0].data), {
            "error": "AI gateway rate limit reached. Try again in a few moments.",
        })
        self.assertTrue(channel.closed)
        self.assertEqual(client.stream_calls, [])
        self.assertEqual(service.recent_runs()[0]["stream_outcome"], "error")

    async def test_unexpected_error_is_generic(self):
        client = FakeCompletionClient(replies=[RuntimeError("stack details")])

        _, _, events = await self._run(client)

        self.assertEqual(json.loads(events[0].data), {"error": GENERIC_ERROR_MESSAGE})

    async def test_disconnected_client_skips_final_call(self):
        client = FakeCompletionClient(replies=[{"content": "draft"}], chunks=[delta("x")])
        service = ChatService(self.config, client=client)
        channel = service.new_channel()
        channel.cancel()

        await service.handle(self._request(), channel)

        self.assertEqual(client.stream_calls, [])
        self.assertEqual(client.calls, [])
        self.assertEqual(channel.drain(), [])

    async def test_run_log_written(self):
        client = FakeCompletionClient(replies=[{"content": "draft"}], chunks=[delta("x")])

        service, _, _ = await self._run(client)

        run_id = service.recent_runs()[0]["run_id"]
        log_path = Path(self.config.telemetry.log_dir) / f"{run_id}.jsonl"
        events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
        self.assertIn("llm_call", events)
        self.assertEqual(events[-1], "run_summary")
