"""Connector to the ERP query backend and the store of per-caller connections."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from agent.config import DataSourceSettings
from agent.exceptions import (
    RemoteServiceError,
    ToolConfigurationError,
    ToolConnectivityError,
    ToolValidationError,
)

_SQL_ERROR_MARKERS = ("ORA-", "invalid identifier")


class DataSourceStore:
    """Looks up the active data-source connection for a caller."""

    def __init__(self, sources: list[DataSourceSettings] | None = None):
        self._sources = list(sources or [])

    def get_active(self, user_id: str) -> DataSourceSettings | None:
        for source in self._sources:
            if source.user_id == user_id and source.is_active:
                return source
        return None


class DataSourceConnector:
    """
    Async client for the query backend (`POST <url>/sql`, `POST <url>/analysis`).

    The backend answers `{"success": bool, "data": [...], "error": str}`.
    Failures are raised as classified ToolErrors.
    """

    def __init__(
        self,
        settings: DataSourceSettings,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
    ):
        self.settings = settings
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

    async def run_query(self, query: str) -> list:
        data = await self._post("/sql", {
            "query": query,
            "connection_type": self.settings.connection_type,
        })
        rows = data.get("data") or []
        return rows if isinstance(rows, list) else [rows]

    async def run_analysis(self, analysis_type: str) -> Any:
        data = await self._post("/analysis", {
            "type": analysis_type,
            "connection_type": self.settings.connection_type,
        })
        return data.get("data") or []

    async def _post(self, endpoint: str, body: dict) -> dict:
        url = f"{self.settings.url}{endpoint}"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.post(url, json=body, headers=self._headers()) as resp:
                    text = await resp.text()
                    status = resp.status
        except asyncio.TimeoutError as e:
            raise ToolConnectivityError(
                f"query backend at {self.settings.url} timed out"
            ) from e
        except aiohttp.ClientConnectionError as e:
            raise ToolConnectivityError(
                f"cannot reach query backend at {self.settings.url}: {e}"
            ) from e

        if status in (400, 401, 403):
            raise ToolConfigurationError(
                f"query backend rejected the request (HTTP {status}): {text[:300]}",
                hint="Check that the ERP connection settings are correct and the endpoint is active.",
            )
        if status >= 300:
            self._raise_backend_error(text[:300] or f"HTTP {status}", status)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RemoteServiceError("query backend returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise RemoteServiceError("query backend returned an unexpected payload")

        if data.get("error"):
            self._raise_backend_error(str(data["error"]), status)
        if data.get("success") is False:
            raise RemoteServiceError("query backend reported a failure without details")
        return data

    def _raise_backend_error(self, message: str, status: int) -> None:
        if any(marker in message for marker in _SQL_ERROR_MARKERS):
            raise ToolValidationError(f"Oracle SQL error: {message}", hint=self.sql_hint())
        raise RemoteServiceError(f"query backend error (HTTP {status}): {message}")

    def sql_hint(self) -> str:
        prefix = self.settings.schema_prefix
        hint = "Never use \"AS\" for table aliases. Drop fields reported as invalid identifiers and retry."
        if prefix:
            hint = f"Always prefix tables with the schema \"{prefix}\" (e.g. {prefix}SA1010). " + hint
        return hint

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )
