"""Exception hierarchy shared across Koro subsystems."""

from __future__ import annotations


class KoroError(Exception):
    """Base class for every error Koro raises on purpose."""


class ConfigError(KoroError):
    """Configuration is missing or unsafe."""


class SessionPersistError(KoroError):
    """A session record could not be written to disk."""


class MemoryStoreError(KoroError):
    """A memory store operation was rejected or failed."""


class ToolError(KoroError):
    """Base class for tool registry and tool handler failures."""


class UnknownToolError(ToolError):
    """No tool with the requested name is registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidArgumentsError(ToolError):
    """Tool arguments were not valid JSON or did not match the schema."""


class ToolExecutionError(ToolError):
    """A tool handler failed or timed out."""


class LLMClientError(KoroError):
    """The LLM provider could not produce a usable response."""


class LLMResponseError(LLMClientError):
    """The provider answered, but the payload could not be interpreted."""
