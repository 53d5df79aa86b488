"""Per-request tool registry and the failure-isolating dispatcher."""

from __future__ import annotations

import asyncio
import json
import logging
import time

import aiohttp

from agent.config import ToolExecutionConfig
from agent.exceptions import (
    ToolArgumentError,
    ToolConnectivityError,
    ToolError,
    ToolNotFoundError,
    ToolValidationError,
)
from agent.messages import ToolCallRequest, ToolCallResult
from agent.telemetry import Telemetry
from tools.base_tool import Tool, ToolDefinition

_log = logging.getLogger("erp_chat.tool_dispatch")


class ToolRegistry:
    """Maps tool names to handler instances for one request."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a handler under its `name`. Names are unique."""
        if not tool.name:
            raise ValueError(f"{type(tool).__name__} has no name")
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def definitions(self) -> list[ToolDefinition]:
        """Definitions in registration order."""
        return [tool.definition() for tool in self._tools.values()]

    @property
    def tool_names(self) -> list[str]:
        """List all registered tool names."""
        return sorted(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def parse_arguments(raw: object) -> dict:
    """Parse raw tool-call arguments into a dict, or raise ToolArgumentError."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(
                f"arguments are not valid JSON ({e.msg} at line {e.lineno} column {e.colno})"
            ) from e
        if not isinstance(data, dict):
            raise ToolArgumentError(
                f"arguments must be a JSON object, got {type(data).__name__}"
            )
        return data
    raise ToolArgumentError(f"arguments must be a JSON object, got {type(raw).__name__}")


def validate_arguments(args: dict, schema: dict) -> dict:
    """Check required fields, enums and string types declared in `schema`."""
    properties = schema.get("properties", {}) or {}

    missing = [
        key for key in schema.get("required", [])
        if key not in args or args.get(key) in (None, "")
    ]
    if missing:
        raise ToolValidationError(f"missing required argument(s): {', '.join(missing)}")

    for key, spec in properties.items():
        if key not in args or not isinstance(spec, dict):
            continue
        value = args[key]
        if spec.get("type") == "string" and not isinstance(value, str):
            if isinstance(value, (int, float, bool)):
                value = str(value)
                args[key] = value
            else:
                raise ToolValidationError(f"argument '{key}' must be a string")
        allowed = spec.get("enum")
        if allowed and value not in allowed:
            raise ToolValidationError(
                f"argument '{key}' must be one of: {', '.join(map(str, allowed))}"
            )
    return args


def classify_error(error: BaseException) -> str:
    """Coarse failure category shown to the model."""
    if isinstance(error, ToolError):
        return error.category
    if isinstance(error, asyncio.TimeoutError):
        return "connectivity"
    if isinstance(error, aiohttp.ClientResponseError):
        return "configuration" if error.status in (400, 401, 403) else "remote service"
    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError)):
        return "connectivity"
    if isinstance(error, aiohttp.ClientError):
        return "remote service"
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return "syntax/validation"
    return "unexpected"


class ToolDispatcher:
    """
    Executes tool calls by name. `execute` never raises: every outcome,
    including unknown tools, malformed arguments, timeouts and handler
    exceptions, comes back as text the model can read.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        settings: ToolExecutionConfig | None = None,
        telemetry: Telemetry | None = None,
        logger: logging.Logger | None = None,
    ):
        self.registry = registry
        self.settings = settings or ToolExecutionConfig()
        self.telemetry = telemetry
        self._logger = logger or _log

    async def dispatch(self, call: ToolCallRequest) -> ToolCallResult:
        """Execute one requested call and wrap its text as a ToolCallResult."""
        result = await self.execute(call.name, call.arguments)
        return ToolCallResult(
            tool_call_id=call.id,
            tool_name=call.name,
            result=result,
            arguments=call.raw_arguments(),
        )

    async def execute(self, name: str, arguments: object) -> str:
        start = time.monotonic()
        outcome = "ok"
        try:
            text = await self._execute(name, arguments)
        except ToolNotFoundError as e:
            outcome = "unknown tool"
            text = f"[Error: {e}]"
        except ToolError as e:
            outcome = e.category
            text = self._render_failure(name, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            outcome = classify_error(e)
            self._logger.exception("Tool '%s' raised", name)
            text = self._render_failure(name, e)

        duration_ms = (time.monotonic() - start) * 1000
        if outcome == "ok":
            self._logger.info("Tool '%s' ok (%d chars, %.0f ms)", name, len(text), duration_ms)
        else:
            self._logger.info("Tool '%s' failed: %s (%.0f ms)", name, outcome, duration_ms)
        if self.telemetry:
            self.telemetry.record_tool_call(
                tool_name=name,
                arguments=_summarize(arguments),
                duration_ms=duration_ms,
                outcome=outcome,
                result_chars=len(text),
            )
        return text

    async def _execute(self, name: str, arguments: object) -> str:
        tool = self.registry.get_tool(name)
        if tool is None:
            available = ", ".join(self.registry.tool_names) or "none"
            raise ToolNotFoundError(f"Unknown tool '{name}'. Available tools: {available}")

        args = validate_arguments(parse_arguments(arguments), tool.parameters)
        timeout = self._timeout_for(tool)

        async def _run() -> str:
            await tool.before_execution(**args)
            result = await tool.execute(**args)
            return await tool.after_execution(result)

        try:
            result = await asyncio.wait_for(_run(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolConnectivityError(f"timed out after {timeout:g}s") from None

        if not isinstance(result, str):
            result = json.dumps(result, ensure_ascii=False, default=str)
        return self._truncate(result)

    def _timeout_for(self, tool: Tool) -> float:
        if tool.name in self.settings.timeouts:
            return self.settings.timeouts[tool.name]
        if tool.timeout_seconds is not None:
            return tool.timeout_seconds
        return self.settings.default_timeout

    def _truncate(self, text: str) -> str:
        max_len = self.settings.max_result_chars
        if len(text) > max_len:
            return text[:max_len] + f"\n\n[Result truncated at {max_len} characters]"
        return text

    @staticmethod
    def _render_failure(name: str, error: BaseException) -> str:
        category = classify_error(error)
        message = str(error) or type(error).__name__
        text = f"[Tool '{name}' {category} error: {message}]"
        hint = getattr(error, "hint", "")
        if hint:
            text += f"\n{hint}"
        return text


def _summarize(arguments: object, limit: int = 200) -> str:
    if isinstance(arguments, str):
        text = arguments
    else:
        try:
            text = json.dumps(arguments, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = repr(arguments)
    return text[:limit]
