"""Telemetry and metrics logging for chat runs."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
import json
import os
import threading
import time
from typing import Any

from agent.config import TelemetryConfig


@dataclass
class LLMCallMetric:
    """Metrics for a single provider call."""
    model: str
    iteration: int
    latency_ms: float
    tool_calls_requested: int
    streamed: bool = False
    error: str | None = None


@dataclass
class ToolCallMetric:
    """Metrics for a single tool dispatch."""
    tool_name: str
    arguments: str
    duration_ms: float
    outcome: str  # "ok" or an error category
    result_chars: int


@dataclass
class LoopIterationMetric:
    """Metrics for a single loop iteration."""
    iteration: int
    decision: str
    duration_ms: float


@dataclass
class RunMetrics:
    """Run-level metrics summary."""
    run_id: str
    conversation_id: str
    total_iterations: int
    tool_calls: list[ToolCallMetric]
    llm_calls: list[LLMCallMetric]
    total_duration_ms: float
    stop_reason: str
    stream_outcome: str


class Telemetry:
    """Capture structured telemetry for one chat run."""

    def __init__(self, config: TelemetryConfig, run_id: str, conversation_id: str = ""):
        self.config = config
        self.run_id = run_id
        self.conversation_id = conversation_id
        self._lock = threading.Lock()
        self._start_time = time.monotonic()
        self._llm_calls: list[LLMCallMetric] = []
        self._tool_calls: list[ToolCallMetric] = []
        self._loop_iterations: list[LoopIterationMetric] = []
        self._stop_reason = ""
        self._stream_outcome = ""
        self._log_path: str | None = None
        self._tracer = None

        if self.config.enabled:
            os.makedirs(self.config.log_dir, exist_ok=True)
            self._log_path = os.path.join(self.config.log_dir, f"{run_id}.jsonl")
            if self.config.otel_enabled:
                self._setup_otel()

    def record_llm_call(
        self,
        model: str,
        iteration: int,
        latency_ms: float,
        tool_calls_requested: int = 0,
        streamed: bool = False,
        error: str | None = None,
    ) -> None:
        """Record a provider call metric."""
        if not self.config.enabled:
            return
        metric = LLMCallMetric(
            model=model,
            iteration=iteration,
            latency_ms=latency_ms,
            tool_calls_requested=tool_calls_requested,
            streamed=streamed,
            error=error,
        )
        self._llm_calls.append(metric)
        self._log_event("llm_call", asdict(metric))
        self._emit_span("llm_call", asdict(metric))

    def record_tool_call(
        self,
        tool_name: str,
        arguments: str,
        duration_ms: float,
        outcome: str,
        result_chars: int,
    ) -> None:
        """Record a tool dispatch metric."""
        if not self.config.enabled:
            return
        metric = ToolCallMetric(
            tool_name=tool_name,
            arguments=arguments,
            duration_ms=duration_ms,
            outcome=outcome,
            result_chars=result_chars,
        )
        self._tool_calls.append(metric)
        self._log_event("tool_call", asdict(metric))
        self._emit_span("tool_call", asdict(metric))

    def record_iteration(self, iteration: int, decision: str, duration_ms: float) -> None:
        """Record a loop iteration metric."""
        if not self.config.enabled:
            return
        metric = LoopIterationMetric(
            iteration=iteration,
            decision=decision,
            duration_ms=duration_ms,
        )
        self._loop_iterations.append(metric)
        self._log_event("loop_iteration", asdict(metric))

    def finalize(self, stop_reason: str, stream_outcome: str) -> None:
        """Finalize run metrics with how the loop and the stream ended."""
        self._stop_reason = stop_reason
        self._stream_outcome = stream_outcome
        if not self.config.enabled:
            return
        self._log_event("run_summary", self.summary_dict())

    def summary(self) -> RunMetrics:
        """Return a run-level metrics summary."""
        total_duration_ms = (time.monotonic() - self._start_time) * 1000
        return RunMetrics(
            run_id=self.run_id,
            conversation_id=self.conversation_id,
            total_iterations=len(self._loop_iterations),
            tool_calls=list(self._tool_calls),
            llm_calls=list(self._llm_calls),
            total_duration_ms=total_duration_ms,
            stop_reason=self._stop_reason,
            stream_outcome=self._stream_outcome,
        )

    def summary_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable summary."""
        summary = self.summary()
        return {
            "run_id": summary.run_id,
            "conversation_id": summary.conversation_id,
            "total_iterations": summary.total_iterations,
            "tool_calls": [asdict(m) for m in summary.tool_calls],
            "llm_calls": [asdict(m) for m in summary.llm_calls],
            "total_duration_ms": summary.total_duration_ms,
            "stop_reason": summary.stop_reason,
            "stream_outcome": summary.stream_outcome,
        }

    def _log_event(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self.config.enabled or not self._log_path:
            return
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": self.run_id,
            "event": event_type,
            **payload,
        }
        line = json.dumps(record, default=str)
        with self._lock:
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def _emit_span(self, name: str, attributes: dict[str, Any]) -> None:
        if not self._tracer:
            return
        try:
            with self._tracer.start_as_current_span(name) as span:
                span.set_attribute("run_id", self.run_id)
                for key, value in attributes.items():
                    if value is None:
                        continue
                    span.set_attribute(key, value)
        except Exception:
            return

    def _setup_otel(self) -> None:
        try:
            from opentelemetry import trace
            _install_tracer_provider(self.config)
        except ImportError:
            self._tracer = None
            self._log_event(
                "telemetry_warning",
                {"message": "OpenTelemetry not available; install the 'otel' extra."},
            )
            return
        self._tracer = trace.get_tracer(__name__)


_provider_lock = threading.Lock()
_provider_installed = False


def _install_tracer_provider(config: TelemetryConfig) -> None:
    """Install the process-wide tracer provider on first use. Later calls are no-ops."""
    global _provider_installed
    with _provider_lock:
        if _provider_installed:
            return
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        except ImportError:
            OTLPSpanExporter = None

        resource = Resource.create({"service.name": config.otel_service_name})
        provider = TracerProvider(resource=resource)
        if OTLPSpanExporter and config.otel_endpoint:
            exporter = OTLPSpanExporter(endpoint=config.otel_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(provider)
        _provider_installed = True
