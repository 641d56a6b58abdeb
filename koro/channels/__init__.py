"""
Koro channel adapters — surfaces that feed the shared agent through the bus.

Usage (from koro/main.py):
    from koro.channels import ChannelManager, CLIChannel
"""

from koro.channels.base import BaseChannel, ChannelManager
from koro.channels.cli_channel import CLIChannel

__all__ = [
    "BaseChannel",
    "ChannelManager",
    "CLIChannel",
]
