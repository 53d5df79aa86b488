"""Web search tool backed by the Brave Search API."""

import asyncio
import json

import aiohttp

from agent.config import SearchConfig
from agent.exceptions import (
    RemoteServiceError,
    ToolConfigurationError,
    ToolConnectivityError,
)
from tools.base_tool import Tool


class WebSearchTool(Tool):
    name = "search_web_brave"
    description = (
        "Search the web using Brave Search API for current information, "
        "documentation, or external data not available in Protheus"
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query to find relevant information",
            },
        },
        "required": ["query"],
    }
    timeout_seconds = 15.0

    def __init__(self, settings: SearchConfig):
        self.settings = settings

    async def execute(self, **kwargs) -> str:
        query = kwargs["query"]
        if not self.settings.api_key:
            raise ToolConfigurationError("Brave API key is not configured")

        params = {"q": query, "count": str(self.settings.result_count)}
        headers = {
            "X-Subscription-Token": self.settings.api_key,
            "Accept": "application/json",
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(self.settings.base_url, params=params, headers=headers) as resp:
                    if resp.status in (401, 403):
                        raise ToolConfigurationError(f"Brave API rejected the key (HTTP {resp.status})")
                    if resp.status != 200:
                        raise RemoteServiceError(f"Brave API error: HTTP {resp.status}")
                    data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ToolConnectivityError("Brave API timed out") from e
        except aiohttp.ClientConnectionError as e:
            raise ToolConnectivityError(f"cannot reach Brave API: {e}") from e
        except json.JSONDecodeError as e:
            raise RemoteServiceError("Brave API returned invalid JSON") from e

        results = ((data or {}).get("web") or {}).get("results") or []
        return json.dumps({
            "query": query,
            "results": [
                {
                    "title": r.get("title"),
                    "url": r.get("url"),
                    "description": r.get("description"),
                }
                for r in results
                if isinstance(r, dict)
            ],
        }, ensure_ascii=False)
