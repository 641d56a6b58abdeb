# koro/config.py
"""
Configuration for Koro.

All configuration flows through this module. Values come from three layers,
lowest priority first: field defaults, an optional ``koro.toml`` file, and
environment variables (including a ``.env`` file). Every section is a
pydantic-settings model so values are validated and normalized once, at
startup, instead of at every call site.
"""

from __future__ import annotations

import ipaddress
import os
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from koro.config_file import find_config, load_config
from koro.errors import ConfigError

logger = structlog.get_logger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

DEFAULT_BASE_DIR = Path.home() / ".koro"

_SETTINGS_CONFIG = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class LLMConfig(BaseSettings):
    """Provider selection, credentials and the retry policy for LLM calls."""

    provider: str = Field("openrouter", alias="KORO_LLM_PROVIDER")
    model: str = Field("google/gemini-2.5-flash", alias="KORO_LLM_MODEL")
    api_key: Optional[str] = Field(None, alias="KORO_LLM_API_KEY")
    base_url: Optional[str] = Field(None, alias="KORO_LLM_BASE_URL")
    max_tokens: int = Field(8192, alias="KORO_LLM_MAX_TOKENS")
    request_timeout_seconds: float = Field(120.0, alias="KORO_LLM_REQUEST_TIMEOUT_SECONDS")
    retry_max_retries: int = Field(2, alias="KORO_LLM_RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(1.0, alias="KORO_LLM_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(30.0, alias="KORO_LLM_RETRY_MAX_DELAY")
    retry_exponential_base: float = Field(2.0, alias="KORO_LLM_RETRY_EXPONENTIAL_BASE")
    retry_jitter_range: float = Field(0.0, alias="KORO_LLM_RETRY_JITTER_RANGE")

    model_config = _SETTINGS_CONFIG

    @model_validator(mode="after")
    def normalize_limits(self) -> "LLMConfig":
        self.provider = self.provider.strip().lower() or "openrouter"
        self.max_tokens = max(1, int(self.max_tokens))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.retry_max_retries = max(0, int(self.retry_max_retries))
        self.retry_base_delay = max(0.0, float(self.retry_base_delay))
        self.retry_max_delay = max(self.retry_base_delay, float(self.retry_max_delay))
        self.retry_exponential_base = max(1.0, float(self.retry_exponential_base))
        self.retry_jitter_range = min(1.0, max(0.0, float(self.retry_jitter_range)))
        if isinstance(self.api_key, str):
            self.api_key = self.api_key.strip() or None
        if isinstance(self.base_url, str):
            self.base_url = self.base_url.strip().rstrip("/") or None
        return self


class MemoryConfig(BaseSettings):
    """Location of the flat-file memory tree (core files, logs, sessions, skills)."""

    base_dir: Path = Field(DEFAULT_BASE_DIR, alias="KORO_BASE_DIR")

    model_config = _SETTINGS_CONFIG

    @property
    def sessions_dir(self) -> Path:
        return self.base_dir / "sessions"


class AgentConfig(BaseSettings):
    """Turn orchestration limits."""

    name: str = Field("koro", alias="KORO_AGENT_NAME")
    max_tool_iterations: int = Field(10, alias="KORO_MAX_TOOL_ITERATIONS")
    compression_threshold: int = Field(20, alias="KORO_COMPRESSION_THRESHOLD")
    summary_max_chars: int = Field(2000, alias="KORO_SUMMARY_MAX_CHARS")
    shutdown_grace_seconds: float = Field(30.0, alias="KORO_SHUTDOWN_GRACE_SECONDS")

    model_config = _SETTINGS_CONFIG

    @model_validator(mode="after")
    def normalize_limits(self) -> "AgentConfig":
        self.max_tool_iterations = max(1, int(self.max_tool_iterations))
        # Compression halves the history, so fewer than two turns is meaningless.
        self.compression_threshold = max(2, int(self.compression_threshold))
        self.summary_max_chars = max(1, int(self.summary_max_chars))
        self.shutdown_grace_seconds = max(0.0, float(self.shutdown_grace_seconds))
        return self


class ToolsConfig(BaseSettings):
    """Which built-in tools are exposed and how they are bounded."""

    shell_enabled: bool = Field(False, alias="KORO_SHELL_ENABLED")
    tool_timeout: float = Field(30.0, alias="KORO_TOOL_TIMEOUT")
    max_output_length: int = Field(25000, alias="KORO_TOOL_MAX_OUTPUT_LENGTH")

    model_config = _SETTINGS_CONFIG

    @model_validator(mode="after")
    def normalize_limits(self) -> "ToolsConfig":
        self.tool_timeout = max(1.0, float(self.tool_timeout))
        self.max_output_length = max(200, int(self.max_output_length))
        return self


class GatewayConfig(BaseSettings):
    """HTTP gateway: message endpoint, health check and tool-access protocol."""

    enabled: bool = Field(True, alias="KORO_GATEWAY_ENABLED")
    host: str = Field("127.0.0.1", alias="KORO_GATEWAY_HOST")
    port: int = Field(3000, alias="KORO_GATEWAY_PORT")
    auth_token: Optional[str] = Field(None, alias="KORO_GATEWAY_AUTH_TOKEN")
    mcp_enabled: bool = Field(False, alias="KORO_MCP_ENABLED")

    model_config = _SETTINGS_CONFIG

    @model_validator(mode="after")
    def normalize_limits(self) -> "GatewayConfig":
        self.port = min(65535, max(0, int(self.port)))
        if isinstance(self.auth_token, str):
            self.auth_token = self.auth_token.strip() or None
        return self

    @property
    def is_loopback(self) -> bool:
        host = self.host.strip().strip("[]")
        if host == "localhost":
            return True
        try:
            return ipaddress.ip_address(host).is_loopback
        except ValueError:
            return False


class ChannelConfig(BaseSettings):
    """Inbound channel adapters."""

    cli_enabled: bool = Field(True, alias="KORO_CLI_ENABLED")
    default_user: str = Field("default", alias="KORO_CLI_USER")

    model_config = _SETTINGS_CONFIG


# TOML table name → section model.
SECTIONS: dict[str, type[BaseSettings]] = {
    "llm": LLMConfig,
    "memory": MemoryConfig,
    "agent": AgentConfig,
    "tools": ToolsConfig,
    "gateway": GatewayConfig,
    "channels": ChannelConfig,
}


def _file_overrides(section_cls: type[BaseSettings], values: Any) -> dict[str, Any]:
    """Pick the TOML values for a section that no environment variable overrides."""
    if not isinstance(values, dict):
        return {}
    overrides: dict[str, Any] = {}
    for name, field_info in section_cls.model_fields.items():
        if name not in values:
            continue
        alias = field_info.alias or name
        if alias in os.environ:
            continue
        overrides[alias] = values[name]
    return overrides


class KoroConfig:
    """
    Master configuration that composes all subsystem configs.

    Every component receives its settings from here. The TOML file is read
    once; environment variables always win over it.
    """

    def __init__(self, config_path: Optional[Path] = None, *, require_file: bool = False):
        path = config_path if config_path is not None else find_config()
        data: dict[str, Any] = {}
        if path is not None and path.is_file():
            try:
                data = load_config(path)
            except (OSError, ValueError) as e:
                raise ConfigError(f"Failed to read config {path}: {e}") from e
        elif require_file:
            raise ConfigError(f"Config file not found: {path}")
        self.source_path: Optional[Path] = path if data else None

        self.llm = LLMConfig(**_file_overrides(LLMConfig, data.get("llm")))
        self.memory = MemoryConfig(**_file_overrides(MemoryConfig, data.get("memory")))
        self.agent = AgentConfig(**_file_overrides(AgentConfig, data.get("agent")))
        self.tools = ToolsConfig(**_file_overrides(ToolsConfig, data.get("tools")))
        self.gateway = GatewayConfig(**_file_overrides(GatewayConfig, data.get("gateway")))
        self.channel = ChannelConfig(**_file_overrides(ChannelConfig, data.get("channels")))

        self.memory.base_dir = self.memory.base_dir.expanduser().resolve()
        unknown = sorted(set(data) - set(SECTIONS))
        if unknown:
            logger.warning("config.unknown_sections", sections=unknown, path=str(path))

    def validate_gateway(self) -> None:
        """Refuse to expose the gateway beyond loopback without a bearer token."""
        if self.gateway.enabled and not self.gateway.is_loopback and not self.gateway.auth_token:
            raise ConfigError(
                f"Gateway host {self.gateway.host!r} is not a loopback address; "
                "set KORO_GATEWAY_AUTH_TOKEN before binding to it."
            )

    def __repr__(self) -> str:
        return (
            f"KoroConfig(provider={self.llm.provider}, model={self.llm.model}, "
            f"base_dir={self.memory.base_dir})"
        )
