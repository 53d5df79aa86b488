"""AgentLoop - the bounded call / dispatch cycle that runs before the final answer."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from agent.config import AgentLoopConfig
from agent.messages import (
    ChatMessage,
    ToolCallResult,
    from_provider_format,
    to_provider_format,
    tools_to_provider_format,
)
from agent.models import CompletionClient
from agent.telemetry import Telemetry
from tools.tool_registry import ToolDispatcher

STOP_NO_TOOL_CALLS = "no_tool_calls"
STOP_MAX_ITERATIONS = "max_iterations"
STOP_TOOL_LIMIT = "tool_limit"
STOP_CANCELLED = "cancelled"

_log = logging.getLogger("erp_chat.agent_loop")


@dataclass(frozen=True)
class LoopLimits:
    """Cooperative safety valves for one invocation."""
    max_iterations: int = 5
    max_calls_per_tool: int = 3

    @classmethod
    def from_config(cls, config: AgentLoopConfig) -> "LoopLimits":
        return cls(
            max_iterations=config.max_iterations,
            max_calls_per_tool=config.max_calls_per_tool,
        )


@dataclass
class LoopState:
    """Per-request loop state. Owned and mutated only by AgentLoop."""
    iteration: int = 0
    tool_call_counts: dict[str, int] = field(default_factory=dict)
    accumulated_results: list[ToolCallResult] = field(default_factory=list)
    should_continue: bool = True
    stop_reason: str = ""


@dataclass
class FinalTranscript:
    """The loop's output: the caller's transcript plus every tool result."""
    messages: list[ChatMessage]
    results: list[ToolCallResult]
    iterations: int
    stop_reason: str

    def to_provider_messages(self, system_prompt: str | None = None) -> list[dict]:
        return to_provider_format(self.messages, self.results, system_prompt)


def limit_exceeded_message(tool_name: str, max_calls: int) -> str:
    return (
        f"[Error: tool '{tool_name}' was called more than {max_calls} times in this turn. "
        "Execution stopped to avoid an infinite loop. Answer with the results gathered so far.]"
    )


class AgentLoop:
    """
    Runs the tool-calling loop for one request.

    Each iteration sends the transcript plus the accumulated tool results to
    the provider (non-streaming). Requested tool calls are dispatched one at a
    time in the order received. The loop ends when the model stops asking for
    tools, when `max_iterations` is reached, or when a single tool is
    requested more than `max_calls_per_tool` times. The last case stops the
    whole loop, not just the offending call. When `is_cancelled` reports that
    the consumer left, the loop stops before the next provider call.

    Provider failures propagate as `ProviderError`; tool failures never do.
    """

    def __init__(
        self,
        client: CompletionClient,
        dispatcher: ToolDispatcher,
        limits: LoopLimits | None = None,
        system_prompt: str = "",
        max_completion_tokens: int = 1500,
        telemetry: Telemetry | None = None,
        logger: logging.Logger | None = None,
        is_cancelled: Callable[[], bool] | None = None,
    ):
        self.client = client
        self.dispatcher = dispatcher
        self.limits = limits or LoopLimits()
        self.system_prompt = system_prompt
        self.max_completion_tokens = max_completion_tokens
        self.telemetry = telemetry
        self._logger = logger or _log
        self._is_cancelled = is_cancelled or (lambda: False)

    async def run(self, transcript: list[ChatMessage]) -> FinalTranscript:
        state = LoopState()
        tools = tools_to_provider_format(self.dispatcher.registry.definitions())
        self._logger.info(
            "Loop start: %d message(s), tools=[%s]",
            len(transcript),
            ", ".join(self.dispatcher.registry.tool_names),
        )

        while state.iteration < self.limits.max_iterations:
            if self._is_cancelled():
                self._logger.info("Consumer left after %d iteration(s); stopping the loop", state.iteration)
                state.should_continue = False
                state.stop_reason = STOP_CANCELLED
                break

            started = time.monotonic()
            iteration = state.iteration + 1

            messages = to_provider_format(transcript, state.accumulated_results, self.system_prompt)
            reply = await self._complete(messages, tools, iteration)
            assistant = from_provider_format(reply)

            if not assistant.tool_calls:
                state.iteration = iteration
                state.should_continue = False
                state.stop_reason = STOP_NO_TOOL_CALLS
                self._record_iteration(iteration, "answer", started)
                break

            for call in assistant.tool_calls:
                count = state.tool_call_counts.get(call.name, 0) + 1
                state.tool_call_counts[call.name] = count

                if count > self.limits.max_calls_per_tool:
                    self._logger.warning(
                        "Tool '%s' requested %d times (limit %d); stopping the loop",
                        call.name, count, self.limits.max_calls_per_tool,
                    )
                    state.accumulated_results.append(ToolCallResult(
                        tool_call_id=call.id,
                        tool_name=call.name,
                        result=limit_exceeded_message(call.name, self.limits.max_calls_per_tool),
                        arguments=call.raw_arguments(),
                    ))
                    state.should_continue = False
                    state.stop_reason = STOP_TOOL_LIMIT
                    break

                self._logger.info(
                    "Iteration %d: dispatching '%s' (call %d/%d)",
                    iteration, call.name, count, self.limits.max_calls_per_tool,
                )
                state.accumulated_results.append(await self.dispatcher.dispatch(call))

            state.iteration = iteration
            self._record_iteration(
                iteration,
                "tool_limit" if not state.should_continue else f"tools:{len(assistant.tool_calls)}",
                started,
            )
            if not state.should_continue:
                break

        if state.should_continue:
            state.should_continue = False
            state.stop_reason = STOP_MAX_ITERATIONS

        self._logger.info(
            "Loop finished after %d iteration(s): %s (%d tool result(s))",
            state.iteration, state.stop_reason, len(state.accumulated_results),
        )
        return FinalTranscript(
            messages=list(transcript),
            results=list(state.accumulated_results),
            iterations=state.iteration,
            stop_reason=state.stop_reason,
        )

    async def _complete(self, messages: list[dict], tools: list[dict], iteration: int) -> dict:
        start = time.monotonic()
        try:
            reply = await self.client.complete(
                messages,
                tools=tools or None,
                max_tokens=self.max_completion_tokens,
            )
        except Exception as e:
            self._record_llm(iteration, start, 0, error=str(e))
            self._logger.error("Provider call failed on iteration %d: %s", iteration, e)
            raise
        requested = len(reply.get("tool_calls") or []) if isinstance(reply, dict) else 0
        self._record_llm(iteration, start, requested)
        return reply

    def _record_llm(self, iteration: int, start: float, requested: int, error: str | None = None) -> None:
        if not self.telemetry:
            return
        self.telemetry.record_llm_call(
            model=getattr(self.client, "model", ""),
            iteration=iteration,
            latency_ms=(time.monotonic() - start) * 1000,
            tool_calls_requested=requested,
            error=error,
        )

    def _record_iteration(self, iteration: int, decision: str, start: float) -> None:
        if self.telemetry:
            self.telemetry.record_iteration(
                iteration=iteration,
                decision=decision,
                duration_ms=(time.monotonic() - start) * 1000,
            )
