"""
Unit tests for the cross-process bridge.

Tests cover command dispatch and argument validation on ``ClaudeChannel``,
progress routing by request id in ``ChannelClient``, listener cleanup, and
the HTTP binding served through ``httpx.ASGITransport``.
"""

import asyncio
import json
from typing import List

import httpx
import pytest
from fastapi import FastAPI

from claude_assistant.bridge.channel import (
    STREAMING_PROGRESS_EVENT,
    ChannelClient,
    ClaudeChannel,
    StreamingProgress,
)
from claude_assistant.bridge.http import ChannelCallRequest, HttpChannel, _stream_command, create_bridge_router
from claude_assistant.core.cancellation import CancellationTokenSource
from claude_assistant.core.claude_client import ClaudeApiClient
from claude_assistant.core.claude_service import ClaudeHttpService
from claude_assistant.core.configuration import ConfigurationHolder
from claude_assistant.core.events import Emitter
from claude_assistant.models.anthropic import ClaudeConfiguration, Message, MessageRole
from claude_assistant.utils.error_handling import (
    ApiError,
    InvalidArgumentsError,
    MalformedResponseError,
    NotConfiguredError,
    RequestCancelledError,
    UnknownCommandError,
)


CONFIG = {"apiKey": "sk-x", "model": "claude-sonnet-4-20250514"}
MESSAGES = [{"role": "user", "content": "Hello"}]


def ok_body(text: str = "Hi") -> dict:
    return {
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "model": "claude-sonnet-4-20250514",
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 5, "output_tokens": 3},
    }


def sse_body(*texts: str) -> str:
    lines = []
    for text in texts:
        lines.append("data: " + json.dumps({"type": "content_block_delta", "delta": {"text": text}}))
    lines.append('data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"output_tokens":2}}')
    return "\n".join(lines) + "\n"


def upstream(handler) -> ClaudeHttpService:
    return ClaudeHttpService(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def reply_with(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if body["stream"]:
        return httpx.Response(200, text=sse_body("He", "llo"))
    return httpx.Response(200, json=ok_body())


class TestClaudeChannel:
    """Test cases for the server-side channel."""

    @pytest.fixture
    def channel(self) -> ClaudeChannel:
        return ClaudeChannel(upstream(reply_with))

    @pytest.mark.asyncio
    async def test_unknown_command(self, channel):
        """Test that unknown commands are rejected by name."""
        with pytest.raises(UnknownCommandError, match="Call not found: deleteEverything"):
            await channel.call("deleteEverything", [])

    def test_unknown_event(self, channel):
        """Test that unknown events are rejected by name."""
        with pytest.raises(UnknownCommandError, match="Event not found: nope"):
            channel.listen("nope")

    def test_progress_event(self, channel):
        """Test that the progress event is an emitter."""
        assert isinstance(channel.listen(STREAMING_PROGRESS_EVENT), Emitter)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command,args",
        [
            ("testConnection", []),
            ("sendMessage", [CONFIG]),
            ("sendStreamingMessage", [CONFIG]),
            ("sendMessage", "not-a-list"),
            ("sendMessage", None),
        ],
    )
    async def test_invalid_arguments(self, command, args):
        """Test that short or non-list args never reach the service."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=ok_body())

        channel = ClaudeChannel(upstream(handler))

        with pytest.raises(InvalidArgumentsError):
            await channel.call(command, args)

        assert calls == []

    @pytest.mark.asyncio
    async def test_send_message(self, channel):
        """Test that sendMessage returns a JSON-compatible response."""
        result = await channel.call("sendMessage", [CONFIG, MESSAGES])

        assert result["id"] == "msg_01"
        assert result["content"] == [{"type": "text", "text": "Hi"}]
        json.dumps(result)

    @pytest.mark.asyncio
    async def test_send_message_with_options(self):
        """Test that the optional third argument carries options."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=ok_body())

        channel = ClaudeChannel(upstream(handler))
        await channel.call("sendMessage", [CONFIG, MESSAGES, {"maxTokens": 12, "toolChoice": {"type": "any"}}])

        assert bodies[0]["max_tokens"] == 12
        assert bodies[0]["tool_choice"] == {"type": "any"}

    @pytest.mark.asyncio
    async def test_test_connection(self, channel):
        """Test that testConnection returns a boolean."""
        assert await channel.call("testConnection", [CONFIG]) is True
        assert await channel.call("testConnection", [{"apiKey": ""}]) is False

    @pytest.mark.asyncio
    async def test_streaming_progress_tagged(self, channel):
        """Test that progress events carry the request id."""
        events: List[StreamingProgress] = []
        channel.listen(STREAMING_PROGRESS_EVENT)(events.append)

        result = await channel.call("sendStreamingMessage", [CONFIG, MESSAGES], request_id="req-1")

        assert [(e.request_id, e.chunk) for e in events] == [("req-1", "He"), ("req-1", "llo")]
        assert result["content"][0]["text"] == "Hello"

    @pytest.mark.asyncio
    async def test_not_configured(self, channel):
        """Test that an empty key is reported as not configured."""
        with pytest.raises(NotConfiguredError):
            await channel.call("sendMessage", [{"apiKey": ""}, MESSAGES])


class TestChannelClient:
    """Test cases for the relay transport."""

    @pytest.mark.asyncio
    async def test_relay_through_channel(self):
        """Test a full client round trip over the in-process channel."""
        channel = ClaudeChannel(upstream(reply_with))
        client = ClaudeApiClient(ConfigurationHolder(CONFIG), ChannelClient(channel))
        received = []

        response = await client.send_message(
            [Message(role=MessageRole.USER, content="Hello")], on_progress=received.append
        )

        assert received == ["He", "llo"]
        assert response.text == "Hello"
        assert channel.on_streaming_progress.listener_count == 0

    @pytest.mark.asyncio
    async def test_only_own_request_progress(self):
        """Test that progress for other requests is ignored."""
        emitter = Emitter(STREAMING_PROGRESS_EVENT)

        class FakeChannel:
            def listen(self, event):
                return emitter

            async def call(self, command, args, request_id=None, token=None):
                emitter.fire(StreamingProgress(request_id="someone-else", chunk="X"))
                emitter.fire(StreamingProgress(request_id=request_id, chunk="mine"))
                return ok_body("mine")

        relay = ChannelClient(FakeChannel())
        received = []

        await relay.send_streaming_message(ClaudeConfiguration(api_key="sk-x"), [], received.append)

        assert received == ["mine"]
        assert emitter.listener_count == 0

    @pytest.mark.asyncio
    async def test_listener_disposed_on_error(self):
        """Test that the listener is removed when the call fails."""
        emitter = Emitter(STREAMING_PROGRESS_EVENT)

        class FailingChannel:
            def listen(self, event):
                return emitter

            async def call(self, command, args, request_id=None, token=None):
                assert emitter.listener_count == 1
                raise ApiError(500, "upstream down")

        relay = ChannelClient(FailingChannel())

        with pytest.raises(ApiError):
            await relay.send_streaming_message(ClaudeConfiguration(api_key="sk-x"), [], lambda c: None)

        assert emitter.listener_count == 0

    @pytest.mark.asyncio
    async def test_listener_disposed_on_cancel(self):
        """Test that the listener is removed when the call is cancelled."""
        emitter = Emitter(STREAMING_PROGRESS_EVENT)
        started = asyncio.Event()

        class SlowChannel:
            def listen(self, event):
                return emitter

            async def call(self, command, args, request_id=None, token=None):
                started.set()
                await asyncio.sleep(3600)

        relay = ChannelClient(SlowChannel())
        source = CancellationTokenSource()
        task = asyncio.ensure_future(relay.send_streaming_message(
            ClaudeConfiguration(api_key="sk-x"), [], lambda c: None, token=source.token
        ))
        await started.wait()
        source.cancel()

        with pytest.raises(RequestCancelledError):
            await task
        assert emitter.listener_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_streams_separated(self):
        """Test that concurrent streams over one channel get their own chunks."""
        channel = ClaudeChannel(upstream(reply_with))
        relay = ChannelClient(channel)
        config = ClaudeConfiguration(api_key="sk-x")
        first, second = [], []

        await asyncio.gather(
            relay.send_streaming_message(config, [Message(role=MessageRole.USER, content="a")], first.append),
            relay.send_streaming_message(config, [Message(role=MessageRole.USER, content="b")], second.append),
        )

        assert first == ["He", "llo"]
        assert second == ["He", "llo"]

    @pytest.mark.asyncio
    async def test_connection_test_failure_is_false(self):
        """Test that relay errors in testConnection become False."""
        class BrokenChannel:
            def listen(self, event):
                raise UnknownCommandError(f"Event not found: {event}")

            async def call(self, command, args, request_id=None, token=None):
                raise ConnectionError("bridge down")

        relay = ChannelClient(BrokenChannel())
        assert await relay.test_connection(ClaudeConfiguration(api_key="sk-x")) is False


@pytest.fixture
def bridge_app() -> FastAPI:
    app = FastAPI()
    app.include_router(create_bridge_router(ClaudeChannel(upstream(reply_with))))
    return app


@pytest.fixture
def http_channel(bridge_app) -> HttpChannel:
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=bridge_app))
    return HttpChannel("http://bridge", http_client)


class TestHttpBinding:
    """Test cases for the HTTP router and HttpChannel."""

    @pytest.mark.asyncio
    async def test_plain_call(self, http_channel):
        """Test a plain command over HTTP."""
        result = await http_channel.call("sendMessage", [CONFIG, MESSAGES])
        assert result["content"][0]["text"] == "Hi"

    @pytest.mark.asyncio
    async def test_test_connection(self, http_channel):
        """Test that testConnection relays a boolean."""
        assert await http_channel.call("testConnection", [CONFIG]) is True

    @pytest.mark.asyncio
    async def test_streaming_call_fires_progress(self, http_channel):
        """Test that SSE progress events are re-fired locally."""
        events = []
        http_channel.listen(STREAMING_PROGRESS_EVENT)(events.append)

        result = await http_channel.call("sendStreamingMessage", [CONFIG, MESSAGES], request_id="r-9")

        assert [(e.request_id, e.chunk) for e in events] == [("r-9", "He"), ("r-9", "llo")]
        assert result["content"][0]["text"] == "Hello"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command,args,error_class,message",
        [
            ("nope", [], UnknownCommandError, "Call not found: nope"),
            ("sendMessage", [CONFIG], InvalidArgumentsError, "sendMessage requires"),
            ("sendMessage", [{"apiKey": ""}, MESSAGES], NotConfiguredError, "not configured"),
            ("sendStreamingMessage", [CONFIG], InvalidArgumentsError, "sendStreamingMessage requires"),
        ],
    )
    async def test_errors_keep_kind_and_message(self, http_channel, command, args, error_class, message):
        """Test that remote errors are re-raised with kind and message."""
        with pytest.raises(error_class, match=message):
            await http_channel.call(command, args)

    @pytest.mark.asyncio
    async def test_upstream_api_error(self):
        """Test that an upstream API error crosses the bridge as ApiError."""
        app = FastAPI()
        app.include_router(create_bridge_router(ClaudeChannel(
            upstream(lambda r: httpx.Response(401, text='{"error":"invalid api key"}'))
        )))
        channel = HttpChannel("http://bridge", httpx.AsyncClient(transport=httpx.ASGITransport(app=app)))

        with pytest.raises(ApiError) as exc_info:
            await channel.call("sendMessage", [CONFIG, MESSAGES])

        assert exc_info.value.status_code == 401
        assert "invalid api key" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_client_over_http(self, http_channel):
        """Test ClaudeApiClient relaying through the HTTP bridge."""
        client = ClaudeApiClient(ConfigurationHolder(CONFIG), ChannelClient(http_channel))
        received = []

        response = await client.send_message(
            [Message(role=MessageRole.USER, content="Hello")], on_progress=received.append
        )

        assert received == ["He", "llo"]
        assert response.text == "Hello"
        assert http_channel.on_streaming_progress.listener_count == 0
        assert await client.test_connection() is True

    def test_unknown_event(self):
        """Test that HttpChannel rejects unknown events."""
        channel = HttpChannel("http://bridge", httpx.AsyncClient())
        with pytest.raises(UnknownCommandError, match="Event not found: other"):
            channel.listen("other")

    @pytest.mark.asyncio
    async def test_malformed_response_keeps_snippet(self):
        """Test that a parse failure crosses the bridge with its body snippet."""
        app = FastAPI()
        app.include_router(create_bridge_router(ClaudeChannel(
            upstream(lambda r: httpx.Response(200, text="<html>gateway oops</html>"))
        )))
        channel = HttpChannel("http://bridge", httpx.AsyncClient(transport=httpx.ASGITransport(app=app)))

        with pytest.raises(MalformedResponseError) as exc_info:
            await channel.call("sendMessage", [CONFIG, MESSAGES])

        assert exc_info.value.snippet == "<html>gateway oops</html>"

    @pytest.mark.asyncio
    async def test_malformed_progress_event_skipped(self):
        """Test that a progress event of the wrong shape is skipped, not raised."""
        stream = (
            'event: streamingProgress\ndata: {"chunk": 1}\n\n'
            'event: streamingProgress\ndata: {"requestId": "r-1", "chunk": "Hi"}\n\n'
            'event: result\ndata: {"result": {"ok": true}}\n\n'
        )
        transport = httpx.MockTransport(
            lambda r: httpx.Response(200, text=stream, headers={"content-type": "text/event-stream"})
        )
        channel = HttpChannel("http://bridge", httpx.AsyncClient(transport=transport))
        events = []
        channel.listen(STREAMING_PROGRESS_EVENT)(events.append)

        result = await channel.call("sendStreamingMessage", [CONFIG, MESSAGES], request_id="r-1")

        assert result == {"ok": True}
        assert [e.chunk for e in events] == ["Hi"]


class TestStreamCommand:
    """Test cases for the SSE generator behind streaming calls."""

    @pytest.mark.asyncio
    async def test_closing_stream_cancels_and_awaits_call(self):
        """Test that a client going away cancels the call and waits for it to finish."""

        class HangingChannel:
            def __init__(self):
                self.on_streaming_progress = Emitter(STREAMING_PROGRESS_EVENT)
                self.cancelled = False

            def listen(self, event):
                return self.on_streaming_progress

            async def call(self, command, args, request_id=None, token=None):
                self.on_streaming_progress.fire(StreamingProgress(request_id=request_id, chunk="He"))
                try:
                    await asyncio.Event().wait()
                except asyncio.CancelledError:
                    self.cancelled = True
                    raise

        channel = HangingChannel()
        body = ChannelCallRequest(args=[CONFIG, MESSAGES], request_id="r-1")
        events = _stream_command(channel, "sendStreamingMessage", body, False)

        first = await events.__anext__()
        await events.aclose()

        assert "streamingProgress" in first
        assert channel.cancelled is True
        assert channel.on_streaming_progress.listener_count == 0
