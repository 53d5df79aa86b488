"""CompletionClient - HTTP communication with an OpenAI-compatible chat gateway."""

import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable, TypeVar

import aiohttp
from agent.config import ProviderConfig
from agent.exceptions import (
    ProviderConfigError,
    ProviderConnectionError,
    ProviderResponseError,
)


T = TypeVar("T")


class CompletionClient:
    """Async client for `POST {base_url}/chat/completions`."""

    def __init__(
        self,
        base_url: str = "https://ai.gateway.lovable.dev/v1",
        api_key: str = "",
        model: str = "google/gemini-2.5-flash",
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        max_retries: int = 3,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_retries = max_retries

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "CompletionClient":
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            model=config.model,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            max_retries=config.max_retries,
        )

    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        max_tokens: int = 1500,
    ) -> dict:
        """
        Non-streaming completion. Returns `choices[0].message` with the
        choice's `finish_reason` copied in.
        """
        payload = self._payload(messages, max_tokens, stream=False)
        if tools:
            payload["tools"] = tools

        async def _request() -> dict:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                ) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderResponseError(
                            self.status_error_message(resp.status, body),
                            status=resp.status,
                        )
                    try:
                        data = await resp.json(content_type=None)
                    except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
                        raise ProviderResponseError(
                            f"AI gateway returned an invalid JSON body: {e}",
                            status=resp.status,
                        ) from e

            choices = data.get("choices") if isinstance(data, dict) else None
            if not choices or not isinstance(choices[0], dict):
                raise ProviderResponseError("AI gateway returned no choices", status=200)
            message = dict(choices[0].get("message") or {})
            message["finish_reason"] = choices[0].get("finish_reason")
            return message

        return await self._with_retry("completion", _request)

    async def stream(
        self,
        messages: list[dict],
        max_tokens: int = 2000,
    ) -> AsyncIterator[bytes]:
        """
        Streaming completion. Yields raw body chunks exactly as read; event
        framing is the caller's job. Retries only before the first byte.
        """
        payload = self._payload(messages, max_tokens, stream=True)

        attempt = 0
        delay = 1.0
        while True:
            received_any = False
            try:
                async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                    async with session.post(
                        f"{self.base_url}/chat/completions",
                        json=payload,
                        headers=self._headers(),
                    ) as resp:
                        if resp.status != 200:
                            body = await resp.text()
                            raise ProviderResponseError(
                                self.status_error_message(resp.status, body),
                                status=resp.status,
                            )
                        async for chunk in resp.content.iter_any():
                            if not chunk:
                                continue
                            received_any = True
                            yield chunk
                        return
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                attempt += 1
                if received_any or attempt >= self.max_retries:
                    raise ProviderConnectionError(
                        self._connection_error_message("streaming completion", e)
                    ) from e
                await asyncio.sleep(delay)
                delay *= 2

    def _payload(self, messages: list[dict], max_tokens: int, stream: bool) -> dict:
        if not self.api_key:
            raise ProviderConfigError("AI gateway API key is not configured")
        payload = {
            "model": self.model,
            "messages": messages,
            "max_completion_tokens": max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _timeout(self) -> aiohttp.ClientTimeout:
        """Build a client timeout configuration from settings."""
        return aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )

    async def _with_retry(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run an async operation with exponential backoff retries."""
        delay = 1.0
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await func()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                await asyncio.sleep(delay)
                delay *= 2

        raise ProviderConnectionError(self._connection_error_message(operation, last_error))

    @staticmethod
    def status_error_message(status: int, body: str = "") -> str:
        """A readable message for a non-success gateway status."""
        if status == 429:
            return "AI gateway rate limit reached. Try again in a few moments."
        if status == 402:
            return "AI gateway credits exhausted. Add credits to the workspace."
        if status in (401, 403):
            return f"AI gateway rejected the API key (HTTP {status})."
        details = body.strip()[:300]
        if details:
            return f"AI gateway error (HTTP {status}): {details}"
        return f"AI gateway error (HTTP {status})"

    def _connection_error_message(self, operation: str, error: Exception | None) -> str:
        """Create a user-friendly connection error message."""
        details = f"{error}" if error else "unknown error"
        return (
            f"Cannot connect to the AI gateway at {self.base_url} during {operation} "
            f"(after {self.max_retries} attempt(s)): {details}"
        )
