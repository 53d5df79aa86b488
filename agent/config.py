"""Configuration loading and validation."""

import json
import os
from dataclasses import dataclass, field
from agent.exceptions import ConfigError


@dataclass
class ProviderConfig:
    """Configuration for the chat-completions gateway."""
    base_url: str = "https://ai.gateway.lovable.dev/v1"
    api_key: str = ""
    model: str = "google/gemini-2.5-flash"
    max_completion_tokens: int = 1500
    final_max_completion_tokens: int = 2000
    connect_timeout: float = 5.0
    read_timeout: float = 120.0
    max_retries: int = 3


@dataclass
class AgentLoopConfig:
    """Safety valves for the tool-calling loop."""
    max_iterations: int = 5
    max_calls_per_tool: int = 3


@dataclass
class ToolExecutionConfig:
    """Configuration for tool execution behavior."""
    default_timeout: float = 30.0
    timeouts: dict[str, float] = field(default_factory=dict)
    max_result_chars: int = 50000


@dataclass
class SearchConfig:
    """Configuration for the web search tool."""
    api_key: str = ""
    base_url: str = "https://api.search.brave.com/res/v1/web/search"
    result_count: int = 5


@dataclass
class DataSourceSettings:
    """One caller's connection to the ERP query backend."""
    user_id: str
    url: str
    api_key: str = ""
    connection_type: str = "aksell"  # "aksell" or "totvs"
    is_active: bool = True
    schema_prefix: str = "U_CGIFBA_PR."


@dataclass
class AuthConfig:
    """Configuration for web authentication."""
    enabled: bool = False
    username: str = "admin"
    password_hash: str = ""
    api_keys: dict[str, str] = field(default_factory=dict)  # api key -> caller id


@dataclass
class TelemetryConfig:
    """Configuration for telemetry and metrics logging."""
    enabled: bool = False
    log_dir: str = "./data/metrics"
    otel_enabled: bool = False
    otel_endpoint: str | None = None
    otel_service_name: str = "erp-data-chat"


@dataclass
class AgentConfig:
    """Complete service configuration."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    agent_loop: AgentLoopConfig = field(default_factory=AgentLoopConfig)
    tool_execution: ToolExecutionConfig = field(default_factory=ToolExecutionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    data_sources: list[DataSourceSettings] = field(default_factory=list)
    auth: AuthConfig = field(default_factory=AuthConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    prompt_profile: str = "default"
    keepalive_interval: float = 15.0
    recent_runs_kept: int = 50
    data_dir: str = "data"
    log_dir: str = "data/logs"


def load_config(config_path: str = "config.json") -> AgentConfig:
    """Load configuration from JSON file with defaults."""
    if not os.path.exists(config_path):
        config = AgentConfig()
        _apply_env_overrides(config)
        return config

    try:
        with open(config_path, "r") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    data_dir = raw.get("data_dir", "data")

    provider = _load_provider_settings(raw.get("provider", {}))
    agent_loop = _load_agent_loop_settings(raw.get("agent_loop", {}))
    tool_execution = _load_tool_execution_settings(raw.get("tool_execution", {}))
    search = _load_search_settings(raw.get("search", {}))
    data_sources = _load_data_sources(raw.get("data_sources", []))
    auth = _load_auth_settings(raw.get("auth", {}))
    telemetry = _load_telemetry_settings(raw.get("telemetry", {}), data_dir)

    prompt_profile = raw.get("prompt_profile", "default")
    if not isinstance(prompt_profile, str) or not prompt_profile.strip():
        raise ConfigError("prompt_profile must be a non-empty string")

    keepalive_interval = _coerce_float(raw.get("keepalive_interval", 15.0), "keepalive_interval", 0.1)
    recent_runs_kept = _coerce_int(raw.get("recent_runs_kept", 50), "recent_runs_kept", 0)

    # Ensure data directories exist
    log_dir = raw.get("log_dir", os.path.join(data_dir, "logs"))
    for d in [data_dir, log_dir]:
        os.makedirs(d, exist_ok=True)

    config = AgentConfig(
        provider=provider,
        agent_loop=agent_loop,
        tool_execution=tool_execution,
        search=search,
        data_sources=data_sources,
        auth=auth,
        telemetry=telemetry,
        prompt_profile=prompt_profile.strip(),
        keepalive_interval=keepalive_interval,
        recent_runs_kept=recent_runs_kept,
        data_dir=data_dir,
        log_dir=log_dir,
    )
    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: AgentConfig) -> None:
    """Secrets and endpoints may come from the environment instead of the file."""
    env_api_key = os.getenv("AI_GATEWAY_API_KEY")
    if env_api_key:
        config.provider.api_key = env_api_key

    env_base_url = os.getenv("AI_GATEWAY_BASE_URL")
    if env_base_url:
        config.provider.base_url = env_base_url

    env_search_key = os.getenv("BRAVE_API_KEY")
    if env_search_key:
        config.search.api_key = env_search_key


def _load_provider_settings(raw: dict) -> ProviderConfig:
    """Parse and validate provider settings."""
    if not isinstance(raw, dict):
        raise ConfigError("provider must be an object")

    base_url = raw.get("base_url", "https://ai.gateway.lovable.dev/v1")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("provider.base_url must be a non-empty string")

    api_key = raw.get("api_key", "")
    if not isinstance(api_key, str):
        raise ConfigError("provider.api_key must be a string")

    model = raw.get("model", "google/gemini-2.5-flash")
    if not isinstance(model, str) or not model.strip():
        raise ConfigError("provider.model must be a non-empty string")

    return ProviderConfig(
        base_url=base_url.strip().rstrip("/"),
        api_key=api_key.strip(),
        model=model.strip(),
        max_completion_tokens=_coerce_int(
            raw.get("max_completion_tokens", 1500), "provider.max_completion_tokens", 1
        ),
        final_max_completion_tokens=_coerce_int(
            raw.get("final_max_completion_tokens", 2000), "provider.final_max_completion_tokens", 1
        ),
        connect_timeout=_coerce_float(raw.get("connect_timeout", 5.0), "provider.connect_timeout", 0.1),
        read_timeout=_coerce_float(raw.get("read_timeout", 120.0), "provider.read_timeout", 0.1),
        max_retries=_coerce_int(raw.get("max_retries", 3), "provider.max_retries", 1),
    )


def _load_agent_loop_settings(raw: dict) -> AgentLoopConfig:
    """Parse and validate loop limits."""
    if not isinstance(raw, dict):
        raise ConfigError("agent_loop must be an object")
    return AgentLoopConfig(
        max_iterations=_coerce_int(raw.get("max_iterations", 5), "agent_loop.max_iterations", 1),
        max_calls_per_tool=_coerce_int(
            raw.get("max_calls_per_tool", 3), "agent_loop.max_calls_per_tool", 1
        ),
    )


def _load_tool_execution_settings(raw: dict) -> ToolExecutionConfig:
    """Parse and validate tool execution settings."""
    if not isinstance(raw, dict):
        raise ConfigError("tool_execution must be an object")

    default_timeout = _coerce_float(
        raw.get("default_timeout", 30.0),
        "tool_execution.default_timeout",
        0.1,
    )

    timeouts_raw = raw.get("timeouts", {})
    if timeouts_raw is None:
        timeouts_raw = {}
    if not isinstance(timeouts_raw, dict):
        raise ConfigError("tool_execution.timeouts must be an object")

    timeouts: dict[str, float] = {}
    for key, value in timeouts_raw.items():
        if not isinstance(key, str):
            raise ConfigError("tool_execution.timeouts keys must be strings")
        timeouts[key] = _coerce_float(value, f"tool_execution.timeouts.{key}", 0.1)

    max_result_chars = _coerce_int(
        raw.get("max_result_chars", 50000),
        "tool_execution.max_result_chars",
        100,
    )

    return ToolExecutionConfig(
        default_timeout=default_timeout,
        timeouts=timeouts,
        max_result_chars=max_result_chars,
    )


def _load_search_settings(raw: dict) -> SearchConfig:
    """Parse and validate web search settings."""
    if not isinstance(raw, dict):
        raise ConfigError("search must be an object")

    api_key = raw.get("api_key", "")
    if not isinstance(api_key, str):
        raise ConfigError("search.api_key must be a string")

    base_url = raw.get("base_url", "https://api.search.brave.com/res/v1/web/search")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("search.base_url must be a non-empty string")

    return SearchConfig(
        api_key=api_key.strip(),
        base_url=base_url.strip(),
        result_count=_coerce_int(raw.get("result_count", 5), "search.result_count", 1),
    )


def _load_data_sources(raw: list) -> list[DataSourceSettings]:
    """Parse and validate per-caller data-source connections."""
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise ConfigError("data_sources must be a list")

    sources: list[DataSourceSettings] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigError("data_sources entries must be objects")

        user_id = entry.get("user_id")
        if not isinstance(user_id, str) or not user_id.strip():
            raise ConfigError(f"data_sources[{idx}].user_id must be a non-empty string")

        url = entry.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ConfigError(f"data_sources[{idx}].url must be a non-empty string")

        api_key = entry.get("api_key", "")
        if not isinstance(api_key, str):
            raise ConfigError(f"data_sources[{idx}].api_key must be a string")

        connection_type = entry.get("connection_type", "aksell")
        if connection_type not in ("aksell", "totvs"):
            raise ConfigError(f"data_sources[{idx}].connection_type must be 'aksell' or 'totvs'")

        is_active = entry.get("is_active", True)
        if not isinstance(is_active, bool):
            raise ConfigError(f"data_sources[{idx}].is_active must be a boolean")

        schema_prefix = entry.get("schema_prefix", "U_CGIFBA_PR.")
        if not isinstance(schema_prefix, str):
            raise ConfigError(f"data_sources[{idx}].schema_prefix must be a string")

        sources.append(
            DataSourceSettings(
                user_id=user_id.strip(),
                url=url.strip().rstrip("/"),
                api_key=api_key.strip(),
                connection_type=connection_type,
                is_active=is_active,
                schema_prefix=schema_prefix.strip(),
            )
        )
    return sources


def _load_auth_settings(raw: dict) -> AuthConfig:
    """Parse and validate auth settings."""
    if not isinstance(raw, dict):
        raise ConfigError("auth must be an object")

    enabled = raw.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ConfigError("auth.enabled must be a boolean")

    username = raw.get("username", "admin")
    if not isinstance(username, str) or not username.strip():
        raise ConfigError("auth.username must be a non-empty string")

    password_hash = raw.get("password_hash", "")
    if not isinstance(password_hash, str):
        raise ConfigError("auth.password_hash must be a string")

    api_keys = raw.get("api_keys", {})
    if api_keys is None:
        api_keys = {}
    if not isinstance(api_keys, dict):
        raise ConfigError("auth.api_keys must map api keys to caller ids")
    cleaned_keys: dict[str, str] = {}
    for key, caller_id in api_keys.items():
        if not isinstance(key, str) or not key.strip():
            raise ConfigError("auth.api_keys keys must be non-empty strings")
        if not isinstance(caller_id, str):
            raise ConfigError("auth.api_keys values must be strings")
        cleaned_keys[key.strip()] = caller_id.strip()

    if enabled and not password_hash.strip() and not cleaned_keys:
        raise ConfigError("auth.enabled requires password_hash or api_keys")

    return AuthConfig(
        enabled=enabled,
        username=username.strip(),
        password_hash=password_hash.strip(),
        api_keys=cleaned_keys,
    )


def _load_telemetry_settings(raw: dict, data_dir: str) -> TelemetryConfig:
    """Parse and validate telemetry settings."""
    if not isinstance(raw, dict):
        raise ConfigError("telemetry must be an object")

    enabled = raw.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ConfigError("telemetry.enabled must be a boolean")

    log_dir = raw.get("log_dir", os.path.join(data_dir, "metrics"))
    if not isinstance(log_dir, str) or not log_dir.strip():
        raise ConfigError("telemetry.log_dir must be a non-empty string")

    otel_enabled = raw.get("otel_enabled", False)
    if not isinstance(otel_enabled, bool):
        raise ConfigError("telemetry.otel_enabled must be a boolean")

    otel_endpoint = raw.get("otel_endpoint")
    if otel_endpoint is not None and (not isinstance(otel_endpoint, str) or not otel_endpoint.strip()):
        raise ConfigError("telemetry.otel_endpoint must be a non-empty string if provided")

    otel_service_name = raw.get("otel_service_name", "erp-data-chat")
    if not isinstance(otel_service_name, str) or not otel_service_name.strip():
        raise ConfigError("telemetry.otel_service_name must be a non-empty string")

    return TelemetryConfig(
        enabled=enabled,
        log_dir=log_dir,
        otel_enabled=otel_enabled,
        otel_endpoint=otel_endpoint.strip() if isinstance(otel_endpoint, str) else None,
        otel_service_name=otel_service_name.strip(),
    )


def _coerce_float(value: object, name: str, min_value: float) -> float:
    """Coerce config value to float with basic validation."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value


def _coerce_int(value: object, name: str, min_value: int) -> int:
    """Coerce config value to int with basic validation."""
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value
