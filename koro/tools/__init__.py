"""Tool system — registry, executor and built-in tools."""
from koro.tools.executor import RegistryExecutionResult, ToolExecutor
from koro.tools.registry import ToolContext, ToolDefinition, ToolRegistry

__all__ = [
    "RegistryExecutionResult",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRegistry",
]
