import unittest
from unittest import mock

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from agent.config import ProviderConfig
from agent.exceptions import ProviderConfigError, ProviderConnectionError, ProviderResponseError
from agent.models import CompletionClient


class TestCompletionClient(unittest.IsolatedAsyncioTestCase):
    async def test_with_retry_succeeds_after_failures(self):
        client = CompletionClient(api_key="k", max_retries=3)
        attempts = 0

        async def operation():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise aiohttp.ClientError("boom")
            return "ok"

        with mock.patch("agent.models.asyncio.sleep", new=mock.AsyncMock()) as sleep_mock:
            result = await client._with_retry("test", operation)

        self.assertEqual(result, "ok")
        self.assertEqual(attempts, 3)
        self.assertEqual(sleep_mock.call_count, 2)

    async def test_with_retry_raises_after_exhausted(self):
        client = CompletionClient(api_key="k", max_retries=2)

        async def operation():
            raise aiohttp.ClientError("boom")

        with mock.patch("agent.models.asyncio.sleep", new=mock.AsyncMock()):
            with self.assertRaises(ProviderConnectionError):
                await client._with_retry("test", operation)

    async def test_missing_api_key(self):
        client = CompletionClient(api_key="")
        with self.assertRaises(ProviderConfigError):
            await client.complete([{"role": "user", "content": "hi"}])

    def test_status_messages(self):
        self.assertIn("rate limit", CompletionClient.status_error_message(429))
        self.assertIn("credits", CompletionClient.status_error_message(402))
        self.assertIn("API key", CompletionClient.status_error_message(401))
        self.assertEqual(
            CompletionClient.status_error_message(500, "upstream down"),
            "AI gateway error (HTTP 500): upstream down",
        )

    def test_from_config(self):
        client = CompletionClient.from_config(ProviderConfig(base_url="http://gw/v1/", api_key="k", model="m"))
        self.assertEqual(client.base_url, "http://gw/v1")
        self.assertEqual(client.model, "m")


class TestCompletionClientHTTP(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.requests = []
        self.status = 200

        async def completions(request):
            body = await request.json()
            self.requests.append({"body": body, "auth": request.headers.get("Authorization")})
            if self.status != 200:
                return web.Response(status=self.status, text="nope")
            if body.get("stream"):
                resp = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
                await resp.prepare(request)
                await resp.write(b'data: {"choices": [{"delta": {"content": "Ol"}}]}\n\n')
                await resp.write(b"data: [DONE]\n\n")
                await resp.write_eof()
                return resp
            return web.json_response({"choices": [{
                "message": {"role": "assistant", "content": None, "tool_calls": [
                    {"id": "c1", "type": "function", "function": {"name": "t", "arguments": "{}"}},
                ]},
                "finish_reason": "tool_calls",
            }]})

        app = web.Application()
        app.router.add_post("/v1/chat/completions", completions)
        self.server = TestServer(app)
        await self.server.start_server()
        self.client = CompletionClient(
            base_url=str(self.server.make_url("/v1")),
            api_key="secret",
            model="google/gemini-2.5-flash",
            max_retries=1,
        )

    async def asyncTearDown(self):
        await self.server.close()

    async def test_complete_returns_message(self):
        tools = [{"type": "function", "function": {"name": "t", "description": "", "parameters": {}}}]

        message = await self.client.complete([{"role": "user", "content": "hi"}], tools=tools, max_tokens=1500)

        self.assertEqual(message["finish_reason"], "tool_calls")
        self.assertEqual(message["tool_calls"][0]["id"], "c1")
        body = self.requests[0]["body"]
        self.assertEqual(body["model"], "google/gemini-2.5-flash")
        self.assertEqual(body["max_completion_tokens"], 1500)
        self.assertEqual(body["tools"], tools)
        self.assertNotIn("stream", body)
        self.assertEqual(self.requests[0]["auth"], "Bearer secret")

    async def test_complete_error_status(self):
        self.status = 429
        with self.assertRaises(ProviderResponseError) as ctx:
            await self.client.complete([{"role": "user", "content": "hi"}])
        self.assertEqual(ctx.exception.status, 429)
        self.assertIn("rate limit", str(ctx.exception))

    async def test_stream_yields_raw_chunks(self):
        chunks = [c async for c in self.client.stream([{"role": "user", "content": "hi"}])]

        body = b"".join(chunks)
        self.assertIn(b'"content": "Ol"', body)
        self.assertTrue(body.endswith(b"data: [DONE]\n\n"))
        self.assertTrue(self.requests[0]["body"]["stream"])
        self.assertEqual(self.requests[0]["body"]["max_completion_tokens"], 2000)

    async def test_stream_error_status(self):
        self.status = 402
        with self.assertRaises(ProviderResponseError) as ctx:
            async for _ in self.client.stream([{"role": "user", "content": "hi"}]):
                pass
        self.assertIn("credits", str(ctx.exception))
