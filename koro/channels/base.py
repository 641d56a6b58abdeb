"""
Base channel abstract class and the channel manager.

Every adapter (CLI stdin, …) inherits from BaseChannel and implements
``name``, ``start()``, ``stop()`` and ``send()``. A channel only publishes
``InboundMessage`` objects onto the bus; it never calls the agent directly.
The ChannelManager subscribes each channel to the replies addressed to it,
so routing is by session-key prefix (``"cli:alice"`` → the ``cli`` channel).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from koro.bus import MessageBus
    from koro.types import OutboundMessage

logger = structlog.get_logger(__name__)


class BaseChannel(ABC):
    """Abstract base for all Koro channel adapters."""

    def __init__(self, bus: "MessageBus") -> None:
        self._bus = bus

    @property
    @abstractmethod
    def name(self) -> str:
        """Short channel identifier, used as the session-key prefix."""

    @abstractmethod
    async def start(self) -> None:
        """Begin producing inbound messages."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop producing inbound messages and release resources."""

    @abstractmethod
    async def send(self, message: "OutboundMessage") -> None:
        """Deliver one reply to the user identified by ``message.session_key``."""

    def make_session_key(self, user: str) -> str:
        return f"{self.name}:{user}"


class ChannelManager:
    """Starts and stops channels and wires them to the bus's outbound side."""

    def __init__(self, bus: "MessageBus") -> None:
        self._bus = bus
        self._channels: dict[str, BaseChannel] = {}
        self._started: list[BaseChannel] = []

    def register(self, channel: BaseChannel) -> None:
        if channel.name in self._channels:
            raise ValueError(f"Channel already registered: {channel.name}")
        self._channels[channel.name] = channel
        self._bus.subscribe_outbound(channel.name, channel.send)
        logger.info("channels.registered", channel=channel.name)

    def get(self, name: str) -> BaseChannel | None:
        return self._channels.get(name)

    @property
    def names(self) -> list[str]:
        return sorted(self._channels)

    async def start_all(self, *, continue_on_start_error: bool = False) -> list[BaseChannel]:
        """
        Start every registered channel.

        On failure the already-started channels are rolled back, unless
        ``continue_on_start_error`` is set, in which case the failing channel
        is skipped.
        """
        try:
            for channel in self._channels.values():
                try:
                    await channel.start()
                except Exception as exc:
                    if not continue_on_start_error:
                        raise
                    logger.error("channels.start_skipped", channel=channel.name, error=str(exc))
                    continue
                self._started.append(channel)
                logger.info("channels.started", channel=channel.name)
        except Exception:
            await self.stop_all()
            raise
        return list(self._started)

    async def stop_all(self) -> None:
        """Stop started channels in reverse order; failures are logged."""
        while self._started:
            channel = self._started.pop()
            try:
                await channel.stop()
            except Exception:
                logger.exception("channels.stop_failed", channel=channel.name)
