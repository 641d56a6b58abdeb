"""
Tool Executor — the boundary between deciding to act and acting.

The registry decides *which* handler runs; the executor decides *how*:

1. VALIDATION: arguments must be a JSON object matching the tool's schema
2. TIMEOUT PROTECTION: no tool can run forever
3. ISOLATION: synchronous handlers run in a worker thread, off the event loop
4. BOUNDED OUTPUT: oversized results are truncated before reaching the model

Failures are raised as ``ToolError`` subclasses. Turning them into in-band
text for the model is the caller's job.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import structlog

from koro.errors import InvalidArgumentsError, ToolError, ToolExecutionError

if TYPE_CHECKING:
    from koro.tools.registry import ToolContext, ToolDefinition

logger = structlog.get_logger(__name__)


@dataclass
class RegistryExecutionResult:
    """Tool output: ``for_llm`` goes back to the model, ``for_user`` may be shown directly."""

    for_llm: str
    for_user: Optional[str] = None


# JSON Schema type → Python types (for lightweight validation)
_JSON_TYPE_MAP: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def parse_arguments(args: str | dict[str, Any] | None) -> dict[str, Any]:
    """Decode tool arguments; an empty string or None means no arguments."""
    if args is None:
        return {}
    if isinstance(args, dict):
        return args
    if not args.strip():
        return {}
    try:
        decoded = json.loads(args)
    except json.JSONDecodeError as e:
        raise InvalidArgumentsError(f"Invalid tool arguments: {e.msg}") from e
    if not isinstance(decoded, dict):
        raise InvalidArgumentsError(
            f"Tool arguments must be a JSON object, got {type(decoded).__name__}"
        )
    return decoded


def _validate_tool_input(
    schema: dict[str, Any],
    tool_input: dict[str, Any],
) -> Optional[str]:
    """
    Lightweight JSON Schema validation for tool inputs.

    Checks required fields, basic type constraints and string enums. Returns
    an error message string on failure, or None if the input is valid.
    """
    required = schema.get("required", [])
    properties = schema.get("properties", {})

    missing = [name for name in required if name not in tool_input]
    if missing:
        return f"Missing required parameter(s): {', '.join(missing)}"

    for name, value in tool_input.items():
        prop_schema = properties.get(name)
        if not prop_schema or not isinstance(prop_schema, dict):
            continue
        expected_type = prop_schema.get("type")
        py_types = _JSON_TYPE_MAP.get(expected_type) if expected_type else None
        if py_types is not None:
            # In Python bool is a subclass of int, but JSON booleans are distinct
            if isinstance(value, bool) and expected_type in ("integer", "number"):
                return f"Parameter '{name}' expected {expected_type}, got boolean"
            if not isinstance(value, py_types):
                return f"Parameter '{name}' expected {expected_type}, got {type(value).__name__}"
        allowed = prop_schema.get("enum")
        if isinstance(allowed, list) and value not in allowed:
            choices = ", ".join(str(a) for a in allowed)
            return f"Parameter '{name}' must be one of: {choices}"

    return None


class ToolExecutor:
    """Runs validated tool calls with a timeout and an output cap."""

    def __init__(
        self,
        default_timeout: float = 30.0,
        max_output_length: int = 25000,
    ):
        self._default_timeout = default_timeout
        self._max_output_length = max_output_length

        logger.info(
            "tool_executor.initialized",
            timeout=default_timeout,
            max_output=max_output_length,
        )

    async def run(
        self,
        tool: "ToolDefinition",
        arguments: dict[str, Any],
        context: "ToolContext",
    ) -> RegistryExecutionResult:
        start_time = time.monotonic()

        if tool.handler is None:
            raise ToolExecutionError(f"No handler registered for tool: {tool.name}")

        validation_error = _validate_tool_input(tool.input_schema, arguments)
        if validation_error:
            raise InvalidArgumentsError(validation_error)

        # Only declared parameters reach the handler; models sometimes add extras.
        properties = tool.input_schema.get("properties")
        if isinstance(properties, dict):
            arguments = {k: v for k, v in arguments.items() if k in properties}

        timeout = tool.timeout if tool.timeout is not None else self._default_timeout
        handler = tool.handler
        try:
            if inspect.iscoroutinefunction(handler):
                raw = await asyncio.wait_for(handler(context, **arguments), timeout=timeout)
            else:
                call = functools.partial(handler, context, **arguments)
                raw = await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning("tool_executor.timeout", tool_name=tool.name, timeout=timeout)
            raise ToolExecutionError(f"Tool '{tool.name}' timed out after {timeout}s") from e
        except ToolError:
            raise
        except Exception as e:
            logger.warning(
                "tool_executor.error",
                tool_name=tool.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ToolExecutionError(str(e) or type(e).__name__) from e

        result = raw if isinstance(raw, RegistryExecutionResult) else RegistryExecutionResult(
            for_llm="" if raw is None else str(raw)
        )
        result.for_llm = self._truncate(result.for_llm)

        logger.info(
            "tool_executor.success",
            tool_name=tool.name,
            elapsed=round(time.monotonic() - start_time, 2),
            result_length=len(result.for_llm),
        )
        return result

    def _truncate(self, text: str) -> str:
        if len(text) <= self._max_output_length:
            return text
        keep = self._max_output_length - 100
        return (
            text[:keep]
            + f"\n\n[Output truncated: {len(text)} chars total, showing first {keep}]"
        )
