"""
Message Bus — decouples channels from the agent.

Channels publish ``InboundMessage`` objects; the runtime consumes them one
by one and spawns a turn per message. Replies are published as
``OutboundMessage`` objects and fanned out by a dispatcher task to the
handlers subscribed for the reply's channel (the session-key prefix).

Concurrency model:
  - publish_* enqueue, non-blocking and sync-safe
  - next_inbound() returns None once the inbound side is closed and drained
  - a dispatcher task delivers outbound replies in publication order
  - handler exceptions are logged and never propagate
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine

import structlog

from koro.types import InboundMessage, OutboundMessage

logger = structlog.get_logger(__name__)

OutboundHandler = Callable[[OutboundMessage], Any] | Callable[[OutboundMessage], Coroutine[Any, Any, Any]]

# Subscribing under this name receives every reply.
ANY_CHANNEL = "*"

_SENTINEL = object()


class MessageBus:
    """Inbound queue plus outbound fan-out keyed by channel name."""

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._inbound: asyncio.Queue[InboundMessage | object] = asyncio.Queue(maxsize=max_queue_size)
        self._outbound: asyncio.Queue[OutboundMessage | object] = asyncio.Queue(maxsize=max_queue_size)
        self._handlers: dict[str, list[OutboundHandler]] = {}
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._running = False
        self._inbound_closed = False
        self._published_inbound = 0
        self._delivered_outbound = 0
        self._undeliverable = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the outbound dispatcher task."""
        if self._running:
            return
        self._running = True
        self._dispatcher_task = asyncio.create_task(
            self._dispatch_loop(), name="message-bus-dispatcher"
        )
        logger.info("message_bus.started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Deliver pending replies, then stop the dispatcher."""
        self.close_inbound()
        if not self._running:
            return
        self._running = False
        await self._outbound.put(_SENTINEL)
        if self._dispatcher_task is not None:
            try:
                await asyncio.wait_for(self._dispatcher_task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("message_bus.stop_timeout_cancelling", timeout=timeout)
                self._dispatcher_task.cancel()
                try:
                    await self._dispatcher_task
                except asyncio.CancelledError:
                    pass
            self._dispatcher_task = None
        logger.info("message_bus.stopped", **self.stats)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def publish_inbound(self, message: InboundMessage) -> bool:
        """Enqueue a message for the agent. Returns False if it was dropped."""
        if self._inbound_closed:
            logger.warning("message_bus.inbound_closed", session_key=message.session_key)
            return False
        try:
            self._inbound.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("message_bus.inbound_full", session_key=message.session_key, dropped=True)
            return False
        self._published_inbound += 1
        return True

    async def next_inbound(self) -> InboundMessage | None:
        """Wait for the next inbound message; None once closed and drained."""
        if self._inbound_closed and self._inbound.empty():
            return None
        item = await self._inbound.get()
        if item is _SENTINEL:
            # Leave the sentinel for any other consumer.
            self._inbound.put_nowait(_SENTINEL)
            return None
        return item  # type: ignore[return-value]

    def close_inbound(self) -> None:
        """Stop accepting inbound work; pending messages are still returned."""
        if self._inbound_closed:
            return
        self._inbound_closed = True
        # A full queue has no waiting consumer to wake; next_inbound sees the
        # closed flag once the queue drains.
        if not self._inbound.full():
            self._inbound.put_nowait(_SENTINEL)

    @property
    def inbound_closed(self) -> bool:
        return self._inbound_closed

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def subscribe_outbound(self, channel: str, handler: OutboundHandler) -> None:
        """Deliver replies whose session key starts with ``channel:``."""
        self._handlers.setdefault(channel, []).append(handler)
        logger.debug("message_bus.subscribed", channel=channel)

    def publish_outbound(self, message: OutboundMessage) -> None:
        try:
            self._outbound.put_nowait(message)
        except asyncio.QueueFull:
            self._undeliverable += 1
            logger.warning("message_bus.outbound_full", session_key=message.session_key, dropped=True)

    async def _dispatch_loop(self) -> None:
        while True:
            item = await self._outbound.get()
            if item is _SENTINEL:
                break
            await self._dispatch(item)  # type: ignore[arg-type]

    async def _dispatch(self, message: OutboundMessage) -> None:
        handlers = self._handlers.get(message.channel, []) + self._handlers.get(ANY_CHANNEL, [])
        if not handlers:
            self._undeliverable += 1
            logger.warning(
                "message_bus.no_channel",
                channel=message.channel,
                session_key=message.session_key,
            )
            return
        for handler in handlers:
            try:
                result = handler(message)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    await result
            except Exception:
                logger.error(
                    "message_bus.handler_error",
                    channel=message.channel,
                    session_key=message.session_key,
                    exc_info=True,
                )
        self._delivered_outbound += 1

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return {
            "published_inbound": self._published_inbound,
            "delivered_outbound": self._delivered_outbound,
            "undeliverable": self._undeliverable,
        }
