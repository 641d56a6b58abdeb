"""
Main — Koro's ignition sequence.

``KoroRuntime`` wires the pieces together and runs until shutdown:

  1. configuration → memory store → tool registry → LLM client
  2. session store (reloaded from disk) → skills → agent
  3. message bus → channels → HTTP gateway
  4. consume inbound messages, one task per message
  5. on SIGINT/SIGTERM (or end of CLI input): stop accepting work, give
     in-flight turns a grace period, then tear everything down

Turns for different sessions run concurrently; the session store's per-key
lock keeps turns for the same session strictly ordered.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
from typing import TYPE_CHECKING, Optional, TextIO

import structlog
from rich.console import Console

from koro.agent import Agent
from koro.api import create_client
from koro.bus import MessageBus
from koro.channels import ChannelManager, CLIChannel
from koro.gateway import GatewayServer
from koro.memory import MemoryStore, SessionStore
from koro.rpc import ToolAccessRouter
from koro.skills import load_skill_summaries
from koro.tools import ToolContext, ToolRegistry
from koro.tools.builtin import register_builtin_tools
from koro.tools.executor import ToolExecutor
from koro.types import InboundMessage

if TYPE_CHECKING:
    from koro.api.base import LLMClient
    from koro.config import KoroConfig

_SECRET_KEYS = {"api_key", "auth_token", "token", "authorization", "password"}
_TEXT_KEYS = {"text", "content", "query", "user_message"}
_MAX_DISPLAY_LEN = 80
_SECRET_VALUE_RE = re.compile(r"\b(sk-[A-Za-z0-9_-]{8,}|Bearer\s+\S+)")


def _redact_sensitive_fields(logger, method_name, event_dict):
    """
    Structlog processor that keeps secrets and conversation text out of logs.

    Credential fields are replaced outright; free-text fields have key-like
    tokens masked and are truncated.
    """
    for key in list(event_dict):
        if key in _SECRET_KEYS and event_dict[key]:
            event_dict[key] = "[redacted]"
        elif key in _TEXT_KEYS and isinstance(event_dict[key], str):
            val = _SECRET_VALUE_RE.sub("[redacted]", event_dict[key])
            if len(val) > _MAX_DISPLAY_LEN:
                val = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
            event_dict[key] = val
    return event_dict


_logging_configured = False


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog over standard-library logging for Koro entry points.

    Level comes from ``KORO_LOG_LEVEL`` (default WARNING); ``KORO_LOG_JSON``
    switches the console renderer for a JSON one. Safe to call more than
    once; subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    level_name = (level or os.environ.get("KORO_LOG_LEVEL") or "WARNING").upper()
    if json_logs is None:
        json_logs = os.environ.get("KORO_LOG_JSON", "").strip().lower() in {"1", "true", "yes"}

    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _redact_sensitive_fields,
    ]
    if json_logs:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


def build_tool_registry(config: "KoroConfig", memory: MemoryStore) -> ToolRegistry:
    """The tool set shared by the agent and the tool-access router."""
    registry = ToolRegistry(
        ToolContext(memory=memory, base_dir=config.memory.base_dir),
        ToolExecutor(
            default_timeout=config.tools.tool_timeout,
            max_output_length=config.tools.max_output_length,
        ),
    )
    register_builtin_tools(registry, shell_enabled=config.tools.shell_enabled)
    return registry


class KoroRuntime:
    """Owns every long-lived component of a running Koro process."""

    def __init__(
        self,
        config: "KoroConfig",
        *,
        client: Optional["LLMClient"] = None,
        stdin: Optional[TextIO] = None,
        console: Optional[Console] = None,
        enable_cli: Optional[bool] = None,
        enable_gateway: Optional[bool] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._stdin = stdin
        self._console = console or Console()
        self._enable_cli = config.channel.cli_enabled if enable_cli is None else enable_cli
        self._enable_gateway = config.gateway.enabled if enable_gateway is None else enable_gateway

        self.memory: Optional[MemoryStore] = None
        self.registry: Optional[ToolRegistry] = None
        self.sessions: Optional[SessionStore] = None
        self.agent: Optional[Agent] = None
        self.router: Optional[ToolAccessRouter] = None
        self.bus: Optional[MessageBus] = None
        self.channels: Optional[ChannelManager] = None
        self.gateway: Optional[GatewayServer] = None

        self._shutdown_event = asyncio.Event()
        self._in_flight: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    async def bootstrap(self) -> None:
        """Create and connect every component. No traffic is accepted yet."""
        config = self._config
        if self._enable_gateway:
            config.validate_gateway()

        base_dir = config.memory.base_dir
        self.memory = MemoryStore(base_dir)
        created = await asyncio.to_thread(self.memory.initialize, config.agent.name)
        if created:
            logger.info("runtime.memory_initialized", base_dir=str(base_dir), created=len(created))

        self.registry = build_tool_registry(config, self.memory)
        if self._client is None:
            self._client = create_client(config.llm)

        self.sessions = SessionStore(config.memory.sessions_dir)
        loaded = await asyncio.to_thread(self.sessions.load_all)
        skills = await asyncio.to_thread(load_skill_summaries, base_dir)

        self.agent = Agent(
            self._client,
            self.registry,
            self.sessions,
            self.memory,
            skills=skills,
            max_tool_iterations=config.agent.max_tool_iterations,
            compression_threshold=config.agent.compression_threshold,
            summary_max_chars=config.agent.summary_max_chars,
        )
        self.router = ToolAccessRouter(self.registry, server_name=config.agent.name)

        self.bus = MessageBus()
        self.channels = ChannelManager(self.bus)
        if self._enable_cli:
            self.channels.register(
                CLIChannel(
                    self.bus,
                    user=config.channel.default_user,
                    agent_name=config.agent.name,
                    stdin=self._stdin,
                    console=self._console,
                    on_eof=self.request_shutdown,
                )
            )
        if self._enable_gateway:
            self.gateway = GatewayServer(
                config.gateway,
                self.agent,
                self.router,
                agent_name=config.agent.name,
                default_user=config.channel.default_user,
            )

        logger.info(
            "runtime.bootstrapped",
            provider=config.llm.provider,
            model=config.llm.model,
            sessions=loaded,
            skills=len(skills),
            tools=self.registry.count,
            channels=self.channels.names,
            gateway=self._enable_gateway,
        )

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Bootstrap, serve until shutdown is requested, then shut down."""
        if self.agent is None:
            await self.bootstrap()
        assert self.bus is not None and self.channels is not None

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.request_shutdown)
            loop.add_signal_handler(signal.SIGTERM, self.request_shutdown)
        except NotImplementedError:
            logger.warning("runtime.signal_handlers_unavailable")

        consumer: Optional[asyncio.Task[None]] = None
        try:
            await self.bus.start()
            if self.gateway is not None:
                await self.gateway.start()
            await self.channels.start_all()
            consumer = asyncio.create_task(self._consume(), name="koro-inbound-consumer")
            await self._shutdown_event.wait()
        finally:
            await self._shutdown(consumer)
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, ValueError):
                    pass

    def request_shutdown(self) -> None:
        if not self._shutdown_event.is_set():
            logger.info("runtime.shutdown_requested")
            self._shutdown_event.set()

    async def _consume(self) -> None:
        assert self.bus is not None
        while True:
            inbound = await self.bus.next_inbound()
            if inbound is None:
                break
            task = asyncio.create_task(self._process(inbound), name=f"turn:{inbound.session_key}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _process(self, inbound: InboundMessage) -> None:
        assert self.agent is not None and self.bus is not None
        reply = await self.agent.handle_message(inbound)
        self.bus.publish_outbound(reply)

    async def _shutdown(self, consumer: Optional[asyncio.Task[None]]) -> None:
        """Stop intake, drain in-flight turns within the grace period, release resources."""
        grace = self._config.agent.shutdown_grace_seconds
        loop = asyncio.get_running_loop()
        # One deadline covers both the consumer and the in-flight turns.
        deadline = loop.time() + grace

        if self.channels is not None:
            await self.channels.stop_all()
        if self.bus is not None:
            self.bus.close_inbound()
        if consumer is not None:
            try:
                await asyncio.wait_for(consumer, timeout=max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError:
                consumer.cancel()

        if self._in_flight:
            remaining = max(0.0, deadline - loop.time())
            logger.info("runtime.draining", in_flight=len(self._in_flight), grace_seconds=round(remaining, 2))
            _, pending = await asyncio.wait(set(self._in_flight), timeout=remaining)
            if pending:
                logger.warning("runtime.abandoning_turns", count=len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        if self.gateway is not None:
            await self.gateway.stop()
        if self.bus is not None:
            await self.bus.stop()
        if self._client is not None:
            await self._client.close()

        stats = self.agent.stats if self.agent is not None else {}
        logger.info("runtime.stopped", **stats)


async def run(config: "KoroConfig", **kwargs) -> None:
    """Run Koro until SIGINT/SIGTERM or end of CLI input."""
    runtime = KoroRuntime(config, **kwargs)
    await runtime.run()
