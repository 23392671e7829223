"""
Utility modules for the claude-assistant client.

This package contains the streaming decoder and SSE helpers, the error
taxonomy and error mapping, and loguru-based logging helpers.
"""

from .streaming import (
    DONE_SENTINEL,
    SSEFormatter,
    StreamDecoder,
    decode_stream,
    iter_sse_events,
    parse_stream_line,
)

__all__ = [
    "DONE_SENTINEL",
    "SSEFormatter",
    "StreamDecoder",
    "decode_stream",
    "iter_sse_events",
    "parse_stream_line",
]
