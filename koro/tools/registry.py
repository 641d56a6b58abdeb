"""
Tool Registry — Koro's catalog of capabilities.

Every tool is registered here with its JSON Schema, description, and handler.
The registry serves two callers through the same instance:

1. DISCOVERY: the tool-calling loop sends ``schemas()`` with every LLM request,
   and the JSON-RPC ``tools/list`` method publishes the same list.

2. DISPATCH: ``execute(name, args)`` validates the arguments and forwards them
   to the handler together with the shared ``ToolContext``.

Handlers are called as ``handler(context, **arguments)`` and may be sync or
async. They return either a string or a ``RegistryExecutionResult``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

import structlog

from koro.errors import UnknownToolError
from koro.tools.executor import RegistryExecutionResult, ToolExecutor, parse_arguments

if TYPE_CHECKING:
    from koro.memory.store import MemoryStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """Shared resources every handler may use."""

    memory: "MemoryStore"
    base_dir: Path


@dataclass(frozen=True)
class ToolDefinition:
    """
    A registered tool with its schema, description, and handler.

    The schema is exactly what is sent to the provider; definitions are
    immutable once registered.
    """
    name: str
    description: str
    input_schema: dict[str, Any]          # JSON Schema for tool parameters
    handler: Optional[Callable] = None    # handler(context, **arguments)
    timeout: Optional[float] = None       # Per-tool timeout in seconds (None = use default)

    def to_api_format(self) -> dict[str, Any]:
        """Provider-neutral schema entry: ``{name, description, input_schema}``."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """
    Central registry for all tools available to Koro.

    Registration happens at startup; afterwards the registry is only read,
    so it is safe to share between concurrent turns.
    """

    def __init__(self, context: ToolContext, executor: Optional[ToolExecutor] = None):
        self._tools: dict[str, ToolDefinition] = {}
        self._context = context
        self._executor = executor or ToolExecutor()
        logger.info("tool_registry.initialized")

    @property
    def context(self) -> ToolContext:
        return self._context

    def register(self, tool: ToolDefinition) -> None:
        """Register a tool; a later registration under the same name replaces the earlier one."""
        replaced = tool.name in self._tools
        self._tools[tool.name] = tool
        logger.info("tool_registry.registered", name=tool.name, replaced=replaced)

    def unregister(self, name: str) -> bool:
        """Remove a tool from the registry."""
        if name in self._tools:
            del self._tools[name]
            logger.info("tool_registry.unregistered", name=name)
            return True
        return False

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Look up a tool by name."""
        return self._tools.get(name)

    def schemas(self) -> list[ToolDefinition]:
        """All definitions in a stable, name-sorted order."""
        return [self._tools[name] for name in sorted(self._tools)]

    async def execute(self, name: str, args: str | dict[str, Any] | None) -> RegistryExecutionResult:
        """
        Run one tool call.

        Raises:
            UnknownToolError: no tool named ``name``.
            InvalidArgumentsError: arguments are not a JSON object or violate the schema.
            ToolError: the handler failed (``ToolExecutionError`` unless it raised a ToolError itself).
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("tool_registry.unknown_tool", name=name)
            raise UnknownToolError(name)
        arguments = parse_arguments(args)
        return await self._executor.run(tool, arguments, self._context)

    @property
    def count(self) -> int:
        return len(self._tools)
