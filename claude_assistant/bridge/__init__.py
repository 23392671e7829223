"""
Bridge relaying Claude calls from a process without network access to one
that has it.
"""

from .channel import (
    STREAMING_PROGRESS_EVENT,
    ChannelClient,
    ClaudeChannel,
    StreamingProgress,
)
from .http import HttpChannel, create_bridge_router

__all__ = [
    "STREAMING_PROGRESS_EVENT",
    "ChannelClient",
    "ClaudeChannel",
    "HttpChannel",
    "StreamingProgress",
    "create_bridge_router",
]
