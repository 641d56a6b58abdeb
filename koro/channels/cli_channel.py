"""
CLI Channel — the terminal as a chat surface.

Each non-empty stdin line becomes an ``InboundMessage`` for
``cli:<default_user>``; replies for the ``cli`` channel are rendered with
rich. Lines are read on a daemon thread so a blocked ``readline`` never
holds up shutdown.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import TYPE_CHECKING, Callable, Optional, TextIO

import structlog
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape as markup_escape

from koro.channels.base import BaseChannel
from koro.types import InboundMessage

if TYPE_CHECKING:
    from koro.bus import MessageBus
    from koro.types import OutboundMessage

logger = structlog.get_logger(__name__)

_EXIT_COMMANDS = frozenset({"/quit", "/exit"})


class CLIChannel(BaseChannel):
    """Reads user turns from stdin and prints replies to the console."""

    def __init__(
        self,
        bus: "MessageBus",
        *,
        user: str = "default",
        agent_name: str = "koro",
        stdin: Optional[TextIO] = None,
        console: Optional[Console] = None,
        on_eof: Optional[Callable[[], None]] = None,
    ) -> None:
        super().__init__(bus)
        self._user = user
        self._agent_name = agent_name
        self._stdin = stdin
        self._console = console or Console()
        self._on_eof = on_eof
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reader: threading.Thread | None = None
        self._stopping = threading.Event()

    @property
    def name(self) -> str:
        return "cli"

    @property
    def session_key(self) -> str:
        return self.make_session_key(self._user)

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stopping.clear()
        self._reader = threading.Thread(target=self._read_lines, name="koro-cli-stdin", daemon=True)
        self._reader.start()
        self._console.print(
            f"[dim]{markup_escape(self._agent_name)} is listening. "
            "Type a message, or /quit to exit.[/dim]"
        )

    async def stop(self) -> None:
        self._stopping.set()
        self._reader = None

    async def send(self, message: "OutboundMessage") -> None:
        style = "bold red" if message.is_error else "bold cyan"
        self._console.print(f"[{style}]{markup_escape(self._agent_name)}:[/{style}]")
        self._console.print(Markdown(message.text))

    def submit(self, line: str) -> bool:
        """Publish one line as a user turn. Returns False if nothing was sent."""
        text = line.strip()
        if not text:
            return False
        return self._bus.publish_inbound(
            InboundMessage(session_key=self.session_key, user_display_name=self._user, text=text)
        )

    def _read_lines(self) -> None:
        stream = self._stdin or sys.stdin
        while not self._stopping.is_set():
            line = stream.readline()
            if not line or line.strip() in _EXIT_COMMANDS:
                break
            if self._loop is None or self._loop.is_closed():
                break
            self._loop.call_soon_threadsafe(self.submit, line)

        logger.info("cli_channel.input_closed")
        if not self._stopping.is_set() and self._on_eof is not None and self._loop is not None:
            if not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._on_eof)
