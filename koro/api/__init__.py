"""LLM provider clients and the factory that picks one from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from koro.api.anthropic_client import AnthropicClient
from koro.api.base import LLMClient
from koro.api.openai_client import OpenAICompatibleClient
from koro.errors import ConfigError

if TYPE_CHECKING:
    from koro.config import LLMConfig

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "minimax": "https://api.minimaxi.chat/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai",
    "groq": "https://api.groq.com/openai/v1",
    "together": "https://api.together.xyz/v1",
    "deepseek": "https://api.deepseek.com/v1",
}


def create_client(config: "LLMConfig") -> LLMClient:
    """Pick the client variant once, at startup, from ``config.provider``."""
    if not config.api_key:
        raise ConfigError("No LLM API key configured. Set KORO_LLM_API_KEY or llm.api_key.")
    if config.provider == "anthropic":
        return AnthropicClient(config)
    base_url = config.base_url or DEFAULT_BASE_URLS.get(config.provider)
    if base_url is None:
        raise ConfigError(
            f"Unknown LLM provider {config.provider!r}; set llm.base_url for custom endpoints."
        )
    return OpenAICompatibleClient(config, base_url)


__all__ = [
    "AnthropicClient",
    "DEFAULT_BASE_URLS",
    "LLMClient",
    "OpenAICompatibleClient",
    "create_client",
]
