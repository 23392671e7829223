#!/usr/bin/env python3
"""
Streaming example for claude-assistant.

Streams a response, printing each text fragment as it arrives, then shows
cancellation of an in-flight request.
"""

import asyncio
import sys

from claude_assistant.core.cancellation import CancellationTokenSource
from claude_assistant.core.config import configure_logging, get_settings
from claude_assistant.main import build_client
from claude_assistant.models.anthropic import Message, MessageRole
from claude_assistant.utils.error_handling import ClaudeClientError, RequestCancelledError


def print_chunk(chunk: str) -> None:
    print(chunk, end="", flush=True)


async def main() -> int:
    settings = get_settings()
    configure_logging(settings)
    client = build_client(settings)

    if not client.holder.is_configured():
        print("Set CLAUDE_API_KEY to run this example.")
        return 1

    print("=== Streaming ===")
    try:
        response = await client.send_message(
            [Message(role=MessageRole.USER, content="Write a haiku about asynchronous code.")],
            on_progress=print_chunk,
        )
    except ClaudeClientError as e:
        print(f"\nRequest failed: {e}")
        return 1
    print()
    if response.usage is not None:
        print(f"[{response.usage.output_tokens} output tokens, stop reason {response.stop_reason}]")

    print("\n=== Cancellation ===")
    source = CancellationTokenSource()
    asyncio.get_running_loop().call_later(0.5, source.cancel)
    try:
        await client.send_message(
            [Message(role=MessageRole.USER, content="Count slowly from 1 to 500, one number per line.")],
            on_progress=print_chunk,
            token=source.token,
        )
    except RequestCancelledError:
        print("\n[cancelled after 0.5s]")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
