"""
Gateway Server — Koro's HTTP surface, built on aiohttp.

Routes:
  POST /message — one conversational turn: ``{text, channel?, user?}`` → ``{text}``
  GET  /health  — health check (unauthenticated)
  POST /mcp     — JSON-RPC tool access (only when enabled)

The gateway owns no business logic: turns go to the ``Agent`` and tool
access goes to the ``ToolAccessRouter``. When an auth token is configured,
every request except ``/health`` and the JSON-RPC ``initialize`` handshake
must carry ``Authorization: Bearer <token>``.
"""

from __future__ import annotations

import hmac
import json
import time
from typing import TYPE_CHECKING, Any

import structlog
from aiohttp import web

from koro import __version__
from koro.rpc import INVALID_REQUEST, PARSE_ERROR, make_error
from koro.types import InboundMessage

if TYPE_CHECKING:
    from koro.agent import Agent
    from koro.config import GatewayConfig
    from koro.rpc import ToolAccessRouter

logger = structlog.get_logger(__name__)

_UNAUTHENTICATED_RPC_METHODS = frozenset({"initialize"})
_MAX_BODY_BYTES = 1024 * 1024


class GatewayServer:
    """HTTP gateway server.

    Lifecycle: create → start() → (serve requests) → stop()
    """

    def __init__(
        self,
        config: "GatewayConfig",
        agent: "Agent",
        router: "ToolAccessRouter",
        *,
        agent_name: str = "koro",
        default_user: str = "default",
    ) -> None:
        self._config = config
        self._agent = agent
        self._router = router
        self._agent_name = agent_name
        self._default_user = default_user
        self._auth_token = (config.auth_token or "").strip() or None

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started_at: float = 0.0
        self._requests_served = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application(client_max_size=_MAX_BODY_BYTES)
        app.router.add_post("/message", self._handle_message)
        app.router.add_get("/health", self._handle_health)
        if self._config.mcp_enabled:
            app.router.add_post("/mcp", self._handle_mcp)
        return app

    async def start(self, host: str | None = None, port: int | None = None) -> None:
        """Start the HTTP server."""
        host = host or self._config.host
        port = self._config.port if port is None else port
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        self._started_at = time.monotonic()
        logger.info(
            "gateway.started",
            host=host,
            port=port,
            mcp_enabled=self._config.mcp_enabled,
            auth=self._auth_token is not None,
        )

    async def stop(self) -> None:
        """Stop accepting requests and release the socket."""
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("gateway.stopped", requests_served=self._requests_served)

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check — unauthenticated, for monitoring."""
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return web.json_response({
            "status": "ok",
            "name": self._agent_name,
            "version": __version__,
            "uptime": round(uptime, 1),
        })

    async def _handle_message(self, request: web.Request) -> web.Response:
        if not self._is_authorized(request):
            return web.json_response({"error": "unauthorized"}, status=401)

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response({"error": "invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "body must be a JSON object"}, status=400)

        text = body.get("text")
        if not isinstance(text, str) or not text.strip():
            return web.json_response({"error": "'text' is required"}, status=400)
        channel = body.get("channel") or "cli"
        user = body.get("user") or self._default_user
        if not isinstance(channel, str) or not isinstance(user, str) or ":" in channel:
            return web.json_response({"error": "'channel' and 'user' must be strings"}, status=400)

        self._requests_served += 1
        reply = await self._agent.handle_message(
            InboundMessage(session_key=f"{channel}:{user}", user_display_name=user, text=text)
        )
        status = 500 if reply.is_error else 200
        return web.json_response({"text": reply.text}, status=status)

    async def _handle_mcp(self, request: web.Request) -> web.Response:
        raw = await request.read()
        try:
            payload: Any = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response(make_error(None, PARSE_ERROR, "Parse error"))

        method = payload.get("method") if isinstance(payload, dict) else None
        if method not in _UNAUTHENTICATED_RPC_METHODS and not self._is_authorized(request):
            req_id = payload.get("id") if isinstance(payload, dict) else None
            return web.json_response(
                make_error(req_id, INVALID_REQUEST, "Unauthorized"),
                status=401,
            )

        self._requests_served += 1
        response = await self._router.handle(payload)
        if response is None:
            return web.Response(status=202)
        return web.json_response(response)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def _is_authorized(self, request: web.Request) -> bool:
        """Constant-time bearer token check; open when no token is configured."""
        if not self._auth_token:
            return True
        header = request.headers.get("Authorization", "")
        scheme, _, provided = header.partition(" ")
        if scheme.lower() != "bearer" or not provided:
            return False
        return hmac.compare_digest(provided.strip(), self._auth_token)
