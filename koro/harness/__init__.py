"""Agent harness — the runtime infrastructure that makes Koro an agent."""
from koro.harness.context import ContextBuilder, MemorySnapshot
from koro.harness.loop import LoopResult, ToolCallingLoop
from koro.harness.retry import RetryConfig, with_retries

__all__ = [
    "ContextBuilder",
    "LoopResult",
    "MemorySnapshot",
    "RetryConfig",
    "ToolCallingLoop",
    "with_retries",
]
