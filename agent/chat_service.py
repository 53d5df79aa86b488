"""ChatService - answers one chat request with one event stream."""

from __future__ import annotations

import threading
import uuid
from collections import deque

from agent.agent_loop import AgentLoop, LoopLimits
from agent.config import AgentConfig
from agent.exceptions import ProviderError
from agent.logs import build_logger
from agent.messages import ChatRequest
from agent.models import CompletionClient
from agent.relay import StreamingRelay
from agent.stream_channel import StreamChannel
from agent.telemetry import Telemetry
from prompts.template_engine import PromptLibrary
from tools.capabilities import CapabilityResolver
from tools.data_source import DataSourceStore
from tools.tool_registry import ToolDispatcher

GUIDANCE_MESSAGE = (
    "## ERP connection not configured\n\n"
    "There is no active Protheus data connection for your account, so I cannot "
    "query the ERP yet. Ask an administrator to set up and activate your "
    "connection (endpoint URL and API key), then try again."
)

GENERIC_ERROR_MESSAGE = "Something went wrong while preparing the answer. Please try again."


class ChatService:
    """
    Per-process service that runs each chat request: resolve the caller's
    tools, run the agent loop, then stream the final answer.
    """

    def __init__(
        self,
        config: AgentConfig,
        client: CompletionClient | None = None,
        store: DataSourceStore | None = None,
    ):
        self.config = config
        self.client = client or CompletionClient.from_config(config.provider)
        self.resolver = CapabilityResolver(config, store)
        self.prompts = PromptLibrary(config.prompt_profile)
        self.limits = LoopLimits.from_config(config.agent_loop)
        self._logger = build_logger("chat", config.log_dir)
        self._lock = threading.Lock()
        self._recent_runs: deque = deque(maxlen=config.recent_runs_kept)

    def new_channel(self) -> StreamChannel:
        return StreamChannel(keepalive_interval=self.config.keepalive_interval)

    async def handle(self, chat_request: ChatRequest, channel: StreamChannel) -> str:
        """Run one request, writing its events into `channel`. Returns the run id."""
        run_id = uuid.uuid4().hex[:12]
        telemetry = Telemetry(self.config.telemetry, run_id, chat_request.conversation_id)
        relay = StreamingRelay(
            self.client,
            channel,
            max_completion_tokens=self.config.provider.final_max_completion_tokens,
            telemetry=telemetry,
            logger=self._logger,
        )
        stop_reason = ""
        self._logger.info(
            "Run %s: caller=%s conversation=%s messages=%d",
            run_id, chat_request.caller_id, chat_request.conversation_id,
            len(chat_request.messages),
        )

        try:
            registry = self.resolver.resolve(chat_request.caller_id)
            if registry is None:
                stop_reason = "no_capabilities"
                relay.send_guidance(GUIDANCE_MESSAGE)
                return run_id

            system_prompt = self.prompts.system_prompt(
                registry.tool_names,
                schema_prefix=self.resolver.schema_prefix(chat_request.caller_id),
                max_calls_per_tool=self.limits.max_calls_per_tool,
            )
            dispatcher = ToolDispatcher(
                registry,
                self.config.tool_execution,
                telemetry=telemetry,
                logger=self._logger,
            )
            loop = AgentLoop(
                self.client,
                dispatcher,
                self.limits,
                system_prompt=system_prompt,
                max_completion_tokens=self.config.provider.max_completion_tokens,
                telemetry=telemetry,
                logger=self._logger,
                is_cancelled=lambda: channel.cancelled,
            )
            final = await loop.run(chat_request.messages)
            stop_reason = final.stop_reason

            if channel.cancelled:
                self._logger.info("Run %s: client left before the final answer", run_id)
                relay.close()
                return run_id

            relay.system_prompt = self.prompts.final_prompt(system_prompt)
            await relay.stream(final)
        except ProviderError as e:
            stop_reason = stop_reason or "provider_error"
            self._logger.error("Run %s: provider error: %s", run_id, e)
            relay.fail(str(e))
        except Exception:
            stop_reason = stop_reason or "internal_error"
            self._logger.exception("Run %s failed", run_id)
            relay.fail(GENERIC_ERROR_MESSAGE)
        finally:
            relay.close()
            telemetry.finalize(stop_reason, relay.outcome or "closed")
            self._remember(telemetry)
            self._logger.info("Run %s finished: %s / %s", run_id, stop_reason, relay.outcome)
        return run_id

    def recent_runs(self) -> list[dict]:
        with self._lock:
            return list(self._recent_runs)

    def _remember(self, telemetry: Telemetry) -> None:
        with self._lock:
            self._recent_runs.append(telemetry.summary_dict())
