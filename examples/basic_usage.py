#!/usr/bin/env python3
"""
Basic usage example for claude-assistant.

Sends non-streaming messages with the client built from environment
settings. Set CLAUDE_API_KEY (or ANTHROPIC_API_KEY) first; set BRIDGE_URL
to relay through a running bridge server instead of calling the API.
"""

import asyncio
import sys

from claude_assistant.core.config import configure_logging, get_settings
from claude_assistant.main import build_client
from claude_assistant.models.anthropic import Message, MessageRole, RequestOptions
from claude_assistant.utils.error_handling import ClaudeClientError


def print_response(title: str, text: str, usage) -> None:
    print(f"\n=== {title} ===")
    print(text)
    if usage is not None:
        print(f"[{usage.input_tokens} input / {usage.output_tokens} output tokens]")


async def main() -> int:
    settings = get_settings()
    configure_logging(settings)
    client = build_client(settings)

    if not await client.test_connection():
        print("Cannot reach the Claude API. Is CLAUDE_API_KEY set?")
        return 1

    try:
        response = await client.send_message(
            [Message(role=MessageRole.USER, content="Hello! Can you tell me a fun fact about Python?")],
            options=RequestOptions(max_tokens=300),
        )
        print_response("Simple message", response.text, response.usage)

        response = await client.send_message(
            [
                Message(role=MessageRole.SYSTEM, content="You are a concise assistant. Answer in one sentence."),
                Message(role=MessageRole.USER, content="What is a context manager?"),
            ],
            model="claude-3-5-haiku-20241022",
            options=RequestOptions(temperature=0.2),
        )
        print_response("With system message", response.text, response.usage)

        conversation = [
            Message(role=MessageRole.USER, content="My favourite number is 7."),
            Message(role=MessageRole.ASSISTANT, content="Noted, your favourite number is 7."),
            Message(role=MessageRole.USER, content="What is my favourite number times 6?"),
        ]
        response = await client.send_message(conversation)
        print_response("Conversation", response.text, response.usage)
    except ClaudeClientError as e:
        print(f"Request failed: {e}")
        return 1

    text = "How many tokens is this sentence, roughly?"
    print(f"\nEstimated tokens for {text!r}: {client.estimate_tokens(text)}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
