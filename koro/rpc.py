"""
Tool-Access Router — transport-independent JSON-RPC 2.0 dispatch.

External clients (editors, other agents) reach Koro's tools through the
MCP-style methods below. The router shares the agent's ``ToolRegistry``, so
both paths see exactly the same tool set and argument validation.

Methods:
  initialize  — protocol version, capabilities and server info
  ping        — liveness
  tools/list  — ``{name, description, inputSchema}`` per tool, name-sorted
  tools/call  — run a tool, reply ``{content: [{type: "text", text}]}``

Requests without an ``id`` are notifications: they are processed and get no
response. The HTTP gateway (``POST /mcp``) and ``serve_stdio`` are the two
transports.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import TYPE_CHECKING, Any, Optional, TextIO

import structlog

from koro import __version__
from koro.errors import InvalidArgumentsError, ToolError, UnknownToolError

if TYPE_CHECKING:
    from koro.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 helpers
# ---------------------------------------------------------------------------


def make_response(req_id: str | int | None, result: dict[str, Any]) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 success response."""
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def make_error(
    req_id: str | int | None,
    code: int,
    message: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": req_id, "error": error}


# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Implementation-defined: a tool ran and failed.
TOOL_EXECUTION_ERROR = -32000


class ToolAccessRouter:
    """Routes JSON-RPC messages to the shared tool registry."""

    def __init__(
        self,
        registry: "ToolRegistry",
        server_name: str = "koro",
        server_version: str = __version__,
    ) -> None:
        self._registry = registry
        self._server_name = server_name
        self._server_version = server_version

    async def handle_raw(self, raw: str | bytes) -> dict[str, Any] | None:
        """Decode one serialized message and dispatch it."""
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("rpc.parse_error", error=str(e))
            return make_error(None, PARSE_ERROR, "Parse error")
        return await self.handle(payload)

    async def handle(self, payload: Any) -> dict[str, Any] | None:
        """Dispatch one decoded message; returns None for notifications."""
        if not isinstance(payload, dict):
            return make_error(None, INVALID_REQUEST, "Invalid Request")

        req_id = payload.get("id")
        is_notification = "id" not in payload
        if payload.get("jsonrpc") != "2.0":
            return make_error(req_id, INVALID_REQUEST, "Invalid JSON-RPC version")
        method = payload.get("method")
        if not isinstance(method, str) or not method:
            return make_error(req_id, INVALID_REQUEST, "Missing method")

        params = payload.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            response = make_error(req_id, INVALID_PARAMS, "params must be an object")
        else:
            response = await self.dispatch(method, params, req_id)

        if is_notification:
            logger.debug("rpc.notification", method=method)
            return None
        return response

    async def dispatch(
        self,
        method: str,
        params: dict[str, Any],
        req_id: str | int | None,
    ) -> dict[str, Any]:
        try:
            handler = self._handlers.get(method)
            if handler is None:
                return make_error(req_id, METHOD_NOT_FOUND, f"Method not found: {method}")
            return await handler(self, params, req_id)
        except Exception as e:
            logger.error("rpc.dispatch_error", method=method, error=str(e), exc_info=True)
            return make_error(req_id, INTERNAL_ERROR, "Internal error")

    # ------------------------------------------------------------------
    # RPC method handlers
    # ------------------------------------------------------------------

    async def _handle_initialize(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return make_response(req_id, {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": self._server_name, "version": self._server_version},
        })

    async def _handle_ping(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        return make_response(req_id, {})

    async def _handle_tools_list(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        tools = [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.input_schema,
            }
            for tool in self._registry.schemas()
        ]
        return make_response(req_id, {"tools": tools})

    async def _handle_tools_call(self, params: dict[str, Any], req_id: str | int | None) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            return make_error(req_id, INVALID_PARAMS, "Missing tool name")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, (dict, str)):
            return make_error(req_id, INVALID_PARAMS, "arguments must be an object")

        try:
            result = await self._registry.execute(name, arguments)
        except (UnknownToolError, InvalidArgumentsError) as e:
            return make_error(req_id, INVALID_PARAMS, str(e))
        except ToolError as e:
            logger.warning("rpc.tool_failed", tool=name, error=str(e))
            return make_error(req_id, TOOL_EXECUTION_ERROR, str(e))

        logger.info("rpc.tool_called", tool=name)
        return make_response(req_id, {"content": [{"type": "text", "text": result.for_llm}]})

    # ------------------------------------------------------------------
    # Handler registry
    # ------------------------------------------------------------------

    _handlers: dict[str, Any] = {
        "initialize": _handle_initialize,
        "ping": _handle_ping,
        "tools/list": _handle_tools_list,
        "tools/call": _handle_tools_call,
    }


async def serve_stdio(
    router: ToolAccessRouter,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> None:
    """Newline-delimited JSON-RPC over stdin/stdout until EOF."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    logger.info("rpc.stdio_started")
    while True:
        line = await asyncio.to_thread(stdin.readline)
        if not line:
            break
        if not line.strip():
            continue
        response = await router.handle_raw(line)
        if response is not None:
            stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
            stdout.flush()
    logger.info("rpc.stdio_stopped")
