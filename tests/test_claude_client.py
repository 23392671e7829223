"""
Unit tests for the Claude API client and its direct HTTP transport.

Tests use ``httpx.MockTransport`` in place of the network and cover request
shaping, parameter precedence, response validation, error mapping,
streaming, cancellation, connection tests and token estimation.
"""

import asyncio
import json
from typing import Callable, List

import httpx
import pytest

from claude_assistant.core.cancellation import CancellationTokenSource
from claude_assistant.core.claude_client import ClaudeApiClient
from claude_assistant.core.claude_service import ClaudeHttpService
from claude_assistant.core.configuration import ConfigurationHolder
from claude_assistant.models.anthropic import (
    AutoToolChoice,
    ContentBlock,
    Message,
    MessageRole,
    RequestOptions,
    ToolDefinition,
)
from claude_assistant.utils.error_handling import (
    ApiError,
    MalformedResponseError,
    NotConfiguredError,
    RequestCancelledError,
    TransportError,
)


def ok_body(text: str = "Hi there", model: str = "claude-sonnet-4-20250514") -> dict:
    return {
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "model": model,
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 5, "output_tokens": 3},
    }


def sse_body(*texts: str) -> str:
    lines = ['event: message_start', 'data: {"type":"message_start","message":{"id":"msg_s","model":"claude-sonnet-4-20250514"}}', ""]
    for text in texts:
        lines.append("event: content_block_delta")
        lines.append("data: " + json.dumps({
            "type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}
        }))
        lines.append("")
    lines.append('data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"output_tokens":2}}')
    lines.append("")
    lines.append('data: {"type":"message_stop"}')
    return "\n".join(lines) + "\n"


class Recorder:
    """Mock transport handler recording every request."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def bodies(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


def make_client(recorder: Recorder, api_key: str = "sk-x", **config) -> ClaudeApiClient:
    service = ClaudeHttpService(httpx.AsyncClient(transport=httpx.MockTransport(recorder)))
    holder = ConfigurationHolder({"apiKey": api_key, **config})
    return ClaudeApiClient(holder, service)


def user(text: str) -> Message:
    return Message(role=MessageRole.USER, content=text)


class TestRequestShaping:
    """Test cases for request headers and body."""

    @pytest.mark.asyncio
    async def test_end_to_end_body(self):
        """Test the body sent for a simple configured request."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder, model="claude-sonnet-4-20250514", maxTokens=10)

        response = await client.send_message([user("Hello")])

        assert response.text == "Hi there"
        assert len(recorder.requests) == 1
        body = recorder.bodies[0]
        assert body["model"] == "claude-sonnet-4-20250514"
        assert body["max_tokens"] == 10
        assert body["stream"] is False
        assert body["messages"] == [{"role": "user", "content": "Hello"}]
        assert "system" not in body
        assert "tools" not in body
        assert "tool_choice" not in body

    @pytest.mark.asyncio
    async def test_headers_and_url(self):
        """Test the endpoint URL and required headers."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder, api_key="sk-abc", baseUrl="https://proxy.example.com/")

        await client.send_message([user("Hello")])

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://proxy.example.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-abc"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert request.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_system_message_extracted(self):
        """Test that the system message moves to the system field."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder)

        await client.send_message([
            Message(role=MessageRole.SYSTEM, content="Be brief."),
            user("Hello"),
        ])

        body = recorder.bodies[0]
        assert body["system"] == "Be brief."
        assert body["messages"] == [{"role": "user", "content": "Hello"}]

    @pytest.mark.asyncio
    async def test_images_survive_encoding(self):
        """Test that text and image parts keep content and MIME type."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder)

        await client.send_message([
            Message(role=MessageRole.USER, content=[
                ContentBlock.text_block("What is this?"),
                ContentBlock.image_block("iVBORw0KGgo=", "image/png"),
            ])
        ])

        content = recorder.bodies[0]["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "What is this?"}
        assert content[1] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="},
        }

    @pytest.mark.asyncio
    async def test_parameter_precedence(self):
        """Test options over configuration over defaults."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))

        client = make_client(recorder)
        await client.send_message([user("a")])
        assert recorder.bodies[-1]["max_tokens"] == 4096
        assert recorder.bodies[-1]["temperature"] == 0.7

        client = make_client(recorder, maxTokens=100, temperature=0.0)
        await client.send_message([user("a")])
        assert recorder.bodies[-1]["max_tokens"] == 100
        assert recorder.bodies[-1]["temperature"] == 0.0

        await client.send_message([user("a")], options=RequestOptions(max_tokens=7, temperature=0.3))
        assert recorder.bodies[-1]["max_tokens"] == 7
        assert recorder.bodies[-1]["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_model_argument_overrides_configuration(self):
        """Test that the model argument is used for the request only."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder)

        await client.send_message([user("a")], model="claude-3-7-sonnet-20250219")

        assert recorder.bodies[0]["model"] == "claude-3-7-sonnet-20250219"
        assert client.holder.configuration.model == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_tools_passed_through(self):
        """Test that tools and tool choice are included when supplied."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder)
        schema = {"type": "object", "properties": {"q": {"type": "string"}}}

        await client.send_message([user("a")], options=RequestOptions(
            tools=[ToolDefinition(name="search", description="Search", input_schema=schema)],
            tool_choice=AutoToolChoice(),
        ))

        body = recorder.bodies[0]
        assert body["tools"] == [{"name": "search", "description": "Search", "input_schema": schema}]
        assert body["tool_choice"] == {"type": "auto"}


class TestErrors:
    """Test cases for error mapping."""

    @pytest.mark.asyncio
    async def test_not_configured_makes_no_call(self):
        """Test that an unconfigured client fails without I/O."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder, api_key="")

        with pytest.raises(NotConfiguredError):
            await client.send_message([user("Hello")])

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_http_401(self):
        """Test that an error status raises ApiError with status and body."""
        recorder = Recorder(lambda r: httpx.Response(401, text='{"error":"invalid api key"}'))
        client = make_client(recorder)

        with pytest.raises(ApiError) as exc_info:
            await client.send_message([user("Hello")])

        assert exc_info.value.status_code == 401
        assert "401" in str(exc_info.value)
        assert '{"error":"invalid api key"}' in str(exc_info.value)
        assert await client.test_connection() is False

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test that a non-JSON body raises MalformedResponseError with a snippet."""
        html = "<html>" + "x" * 1000 + "</html>"
        recorder = Recorder(lambda r: httpx.Response(200, text=html))
        client = make_client(recorder)

        with pytest.raises(MalformedResponseError) as exc_info:
            await client.send_message([user("Hello")])

        assert exc_info.value.snippet == html[:500]

    @pytest.mark.asyncio
    async def test_missing_input_tokens(self):
        """Test that a response without usage.input_tokens is rejected."""
        body = ok_body()
        del body["usage"]["input_tokens"]
        recorder = Recorder(lambda r: httpx.Response(200, json=body))
        client = make_client(recorder)

        with pytest.raises(MalformedResponseError):
            await client.send_message([user("Hello")])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field,value",
        [("id", None), ("type", "completion"), ("role", "user"), ("content", "text"), ("model", 3)],
    )
    async def test_invalid_structure(self, field, value):
        """Test that each required field is checked."""
        body = ok_body()
        body[field] = value
        recorder = Recorder(lambda r: httpx.Response(200, json=body))
        client = make_client(recorder)

        with pytest.raises(MalformedResponseError):
            await client.send_message([user("Hello")])

    @pytest.mark.asyncio
    async def test_network_failure(self):
        """Test that connection failures raise TransportError."""
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(Recorder(refuse))

        with pytest.raises(TransportError):
            await client.send_message([user("Hello")])

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test that timeouts raise TransportError."""
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(Recorder(slow))

        with pytest.raises(TransportError, match="timed out"):
            await client.send_message([user("Hello")])


class TestStreaming:
    """Test cases for streaming requests."""

    @pytest.mark.asyncio
    async def test_streaming_deltas(self):
        """Test that deltas reach the callback and the text accumulates."""
        recorder = Recorder(lambda r: httpx.Response(
            200, text=sse_body("He", "llo"), headers={"content-type": "text/event-stream"}
        ))
        client = make_client(recorder)
        received = []

        response = await client.send_message([user("Hello")], on_progress=received.append)

        assert recorder.bodies[0]["stream"] is True
        assert received == ["He", "llo"]
        assert response.text == "Hello"
        assert response.id == "msg_s"
        assert response.usage.output_tokens == 2
        assert response.stop_reason == "end_turn"

    @pytest.mark.asyncio
    async def test_streaming_error_status(self):
        """Test that an error status on a stream raises ApiError."""
        recorder = Recorder(lambda r: httpx.Response(529, text='{"type":"error"}'))
        client = make_client(recorder)

        with pytest.raises(ApiError) as exc_info:
            await client.send_message([user("Hello")], on_progress=lambda chunk: None)

        assert exc_info.value.status_code == 529

    @pytest.mark.asyncio
    async def test_streaming_done_sentinel(self):
        """Test that the sentinel ends the stream early."""
        body = 'data: {"type":"content_block_delta","delta":{"text":"a"}}\ndata: [DONE]\ndata: {"type":"content_block_delta","delta":{"text":"b"}}\n'
        client = make_client(Recorder(lambda r: httpx.Response(200, text=body)))

        response = await client.send_message([user("x")], on_progress=lambda chunk: None)

        assert response.text == "a"


class TestCancellation:
    """Test cases for cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_call(self):
        """Test that a cancelled token prevents any transport call."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder)
        source = CancellationTokenSource()
        source.cancel()

        with pytest.raises(RequestCancelledError):
            await client.send_message([user("Hello")], token=source.token)

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_during_call(self):
        """Test that cancelling mid-flight abandons the request."""
        started = asyncio.Event()

        class SlowService:
            supports_streaming = False

            async def send_message(self, config, messages, options=None, token=None):
                from claude_assistant.core.cancellation import run_cancellable

                async def forever():
                    started.set()
                    await asyncio.sleep(3600)

                return await run_cancellable(forever(), token)

        client = ClaudeApiClient(ConfigurationHolder({"apiKey": "sk-x"}), SlowService())
        source = CancellationTokenSource()

        task = asyncio.ensure_future(client.send_message([user("Hello")], token=source.token))
        await started.wait()
        source.cancel()

        with pytest.raises(RequestCancelledError):
            await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_cancellation_takes_precedence(self):
        """Test that a failure after cancellation reports cancellation."""
        source = CancellationTokenSource()

        class FailingService:
            supports_streaming = False

            async def send_message(self, config, messages, options=None, token=None):
                source.cancel()
                raise TransportError("connection reset")

        client = ClaudeApiClient(ConfigurationHolder({"apiKey": "sk-x"}), FailingService())

        with pytest.raises(RequestCancelledError):
            await client.send_message([user("Hello")], token=source.token)


class TestConnectionAndTokens:
    """Test cases for test_connection and estimate_tokens."""

    @pytest.mark.asyncio
    async def test_connection_request(self):
        """Test the connectivity check request."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body(model="claude-3-5-haiku-20241022")))
        client = make_client(recorder)

        assert await client.test_connection() is True

        body = recorder.bodies[0]
        assert body["model"] == "claude-3-5-haiku-20241022"
        assert body["max_tokens"] == 10
        assert body["messages"] == [{"role": "user", "content": "Hello"}]

    @pytest.mark.asyncio
    async def test_connection_not_configured(self):
        """Test that an unconfigured client reports no connection."""
        recorder = Recorder(lambda r: httpx.Response(200, json=ok_body()))
        client = make_client(recorder, api_key="")

        assert await client.test_connection() is False
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_connection_network_failure(self):
        """Test that transport failures become False."""
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        assert await make_client(Recorder(refuse)).test_connection() is False

    @pytest.mark.parametrize("text,expected", [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 40, 10)])
    def test_estimate_tokens(self, text, expected):
        """Test the four-characters-per-token estimate."""
        assert ClaudeApiClient.estimate_tokens(text) == expected
        assert ClaudeApiClient.estimate_tokens(text) == ClaudeApiClient.estimate_tokens(text)

    def test_supports_streaming_forwarded(self):
        """Test that the capability flag comes from the transport."""
        holder = ConfigurationHolder()
        assert ClaudeApiClient(holder, ClaudeHttpService(supports_streaming=False)).supports_streaming is False
        assert ClaudeApiClient(holder, ClaudeHttpService()).supports_streaming is True


class TestServiceLifecycle:
    """Test cases for ClaudeHttpService client ownership."""

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        """Test that an injected client is left open."""
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        service = ClaudeHttpService(http_client)

        await service.close()

        assert http_client.is_closed is False
        await http_client.aclose()
