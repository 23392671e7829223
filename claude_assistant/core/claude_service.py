"""
Direct network transport for the Claude Messages API.

``ClaudeHttpService`` performs the HTTP exchange with ``POST /v1/messages``
using an ``httpx.AsyncClient``. It shapes the request body from a
configuration, a list of messages and per-call options, validates the
response, and decodes streamed responses incrementally.

Every method takes the configuration explicitly so that one service can
serve several callers (the bridge server relays calls with the caller's
configuration).
"""

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from ..models.anthropic import (
    ANTHROPIC_VERSION,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    ClaudeConfiguration,
    Message,
    MessageResponse,
    MessageRole,
    RequestOptions,
)
from ..models.catalog import TEST_CONNECTION_MODEL
from ..utils.error_handling import (
    ApiError,
    InvalidArgumentsError,
    MalformedResponseError,
    NotConfiguredError,
    TransportError,
    truncate_snippet,
)
from ..utils.loguru_utils import LoguruLogger, log_claude_api_error
from ..utils.streaming import ProgressCallback, decode_stream
from .cancellation import CancellationToken, run_cancellable
from .config import Settings


logger = LoguruLogger("claude_service")

MessagesInput = Sequence[Union[Message, Mapping[str, Any]]]
OptionsInput = Optional[Union[RequestOptions, Mapping[str, Any]]]

NON_STREAMING_TIMEOUT = 30.0
CONNECTION_TEST_PROMPT = "Hello"
CONNECTION_TEST_MAX_TOKENS = 10


def coerce_configuration(config: Union[ClaudeConfiguration, Mapping[str, Any]]) -> ClaudeConfiguration:
    if isinstance(config, ClaudeConfiguration):
        return config
    try:
        return ClaudeConfiguration.model_validate(dict(config))
    except (TypeError, ValueError) as e:
        raise InvalidArgumentsError(f"Invalid configuration: {e}") from e


def coerce_messages(messages: MessagesInput) -> List[Message]:
    try:
        return [m if isinstance(m, Message) else Message.model_validate(m) for m in messages]
    except (TypeError, ValueError) as e:
        raise InvalidArgumentsError(f"Invalid messages: {e}") from e


def coerce_options(options: OptionsInput) -> RequestOptions:
    if options is None:
        return RequestOptions()
    if isinstance(options, RequestOptions):
        return options
    try:
        return RequestOptions.model_validate(dict(options))
    except (TypeError, ValueError) as e:
        raise InvalidArgumentsError(f"Invalid request options: {e}") from e


def validate_response(data: Any, raw: str) -> MessageResponse:
    """
    Check the shape of a non-streaming response body.

    Raises:
        MalformedResponseError: If a required field is missing or mistyped
    """
    def invalid(reason: str) -> MalformedResponseError:
        return MalformedResponseError(
            f"Invalid response structure from Claude API: {reason}",
            truncate_snippet(raw),
        )

    if not isinstance(data, dict):
        raise invalid("expected a JSON object")
    if not isinstance(data.get("id"), str):
        raise invalid("missing 'id'")
    if data.get("type") != "message":
        raise invalid("'type' is not 'message'")
    if data.get("role") != "assistant":
        raise invalid("'role' is not 'assistant'")
    if not isinstance(data.get("content"), list):
        raise invalid("'content' is not a list")
    if not isinstance(data.get("model"), str):
        raise invalid("missing 'model'")

    usage = data.get("usage")
    if not isinstance(usage, dict):
        raise invalid("missing 'usage'")
    for field in ("input_tokens", "output_tokens"):
        value = usage.get(field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise invalid(f"'usage.{field}' is not a number")

    try:
        return MessageResponse.model_validate(data)
    except ValidationError as e:
        raise invalid(str(e.errors()[0]["msg"])) from e


class ClaudeHttpService:
    """
    Talks to the Messages API over HTTP.

    The ``httpx.AsyncClient`` is created lazily unless one is injected;
    tests inject a client backed by ``httpx.MockTransport``.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = NON_STREAMING_TIMEOUT,
        stream_read_timeout: float = 300.0,
        supports_streaming: bool = True,
    ):
        self._http = http_client
        self._owns_client = http_client is None
        self.timeout = timeout
        self.stream_read_timeout = stream_read_timeout
        self._supports_streaming = supports_streaming

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ClaudeHttpService":
        http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
        service = cls(http_client=http_client, **settings.get_transport_config())
        service._owns_client = True
        return service

    @property
    def supports_streaming(self) -> bool:
        return self._supports_streaming

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    @staticmethod
    def build_headers(config: ClaudeConfiguration) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    @staticmethod
    def build_request_body(
        config: ClaudeConfiguration,
        messages: Sequence[Message],
        options: Optional[RequestOptions] = None,
        stream: bool = False,
    ) -> Dict[str, Any]:
        """
        Shape the JSON body for ``POST /v1/messages``.

        System messages are removed from the turn list; the first one
        becomes the top-level ``system`` field. Token budget and temperature
        resolve per-call option, then configuration, then default.
        """
        options = options or RequestOptions()

        system = None
        turns = []
        for message in messages:
            if message.role == MessageRole.SYSTEM:
                if system is None:
                    system = message.wire_content()
                continue
            turns.append(message.to_wire())

        max_tokens = options.max_tokens or config.max_tokens or DEFAULT_MAX_TOKENS
        temperature = options.temperature
        if temperature is None:
            temperature = config.temperature
        if temperature is None:
            temperature = DEFAULT_TEMPERATURE

        body: Dict[str, Any] = {
            "model": config.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": turns,
            "stream": stream,
        }
        if system is not None:
            body["system"] = system
        if options.tools:
            body["tools"] = [tool.model_dump(mode="json") for tool in options.tools]
        if options.tool_choice is not None:
            body["tool_choice"] = options.tool_choice.model_dump(mode="json", exclude_none=True)
        return body

    async def send_message(
        self,
        config: Union[ClaudeConfiguration, Mapping[str, Any]],
        messages: MessagesInput,
        options: OptionsInput = None,
        token: Optional[CancellationToken] = None,
    ) -> MessageResponse:
        """
        Send a non-streaming request.

        Raises:
            NotConfiguredError: If the configuration has no API key
            TransportError: If the request could not complete
            ApiError: If the API answered with an error status
            MalformedResponseError: If the body is not a valid response
            RequestCancelledError: If ``token`` is cancelled
        """
        config = coerce_configuration(config)
        body = self.build_request_body(config, coerce_messages(messages), coerce_options(options))
        return await run_cancellable(self._post(config, body), token)

    async def send_streaming_message(
        self,
        config: Union[ClaudeConfiguration, Mapping[str, Any]],
        messages: MessagesInput,
        on_progress: ProgressCallback,
        options: OptionsInput = None,
        token: Optional[CancellationToken] = None,
    ) -> MessageResponse:
        """
        Send a streaming request, reporting each text delta to ``on_progress``.

        Returns the response assembled from the stream once it ends.
        """
        config = coerce_configuration(config)
        body = self.build_request_body(
            config, coerce_messages(messages), coerce_options(options), stream=True
        )
        return await run_cancellable(self._post_stream(config, body, on_progress), token)

    async def test_connection(
        self,
        config: Union[ClaudeConfiguration, Mapping[str, Any]],
        token: Optional[CancellationToken] = None,
    ) -> bool:
        """Send a tiny request to the cheapest model; any failure is ``False``."""
        try:
            config = coerce_configuration(config).model_copy(update={"model": TEST_CONNECTION_MODEL})
            await self.send_message(
                config,
                [Message(role=MessageRole.USER, content=CONNECTION_TEST_PROMPT)],
                RequestOptions(max_tokens=CONNECTION_TEST_MAX_TOKENS),
                token,
            )
        except Exception as e:
            logger.warning(f"Claude connection test failed: {e}", error_type=e.__class__.__name__)
            return False
        return True

    async def _post(self, config: ClaudeConfiguration, body: Dict[str, Any]) -> MessageResponse:
        if not config.api_key:
            raise NotConfiguredError()

        logger.log_claude_api_request("send_message", config.model, max_tokens=body["max_tokens"])
        timer_id = logger.start_timer("send_message")

        try:
            response = await self._client().post(
                config.messages_url,
                headers=self.build_headers(config),
                json=body,
                timeout=httpx.Timeout(self.timeout),
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to Claude API timed out: {e}") from e
        except httpx.HTTPError as e:
            log_claude_api_error(logger, "send_message", e)
            raise TransportError(f"Network error calling Claude API: {e}") from e
        finally:
            duration = logger.stop_timer(timer_id)

        if response.status_code >= 400:
            logger.log_claude_api_response(
                "send_message", config.model, duration, success=False, status_code=response.status_code
            )
            raise ApiError(response.status_code, response.text)

        raw = response.text
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Failed to parse Claude API response: {e}", truncate_snippet(raw)
            ) from e

        result = validate_response(data, raw)
        logger.log_claude_api_response(
            "send_message",
            result.model,
            duration,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
        )
        return result

    async def _post_stream(
        self,
        config: ClaudeConfiguration,
        body: Dict[str, Any],
        on_progress: ProgressCallback,
    ) -> MessageResponse:
        if not config.api_key:
            raise NotConfiguredError()

        logger.log_claude_api_request("send_streaming_message", config.model, max_tokens=body["max_tokens"])
        timer_id = logger.start_timer("send_streaming_message")

        try:
            async with self._client().stream(
                "POST",
                config.messages_url,
                headers=self.build_headers(config),
                json=body,
                timeout=httpx.Timeout(self.timeout, read=self.stream_read_timeout),
            ) as response:
                if response.status_code >= 400:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        f"Claude API send_streaming_message failed with {response.status_code}",
                        model=config.model,
                        status_code=response.status_code,
                    )
                    raise ApiError(response.status_code, error_body)

                result = await decode_stream(response.aiter_lines(), config.model, on_progress)
        except httpx.TimeoutException as e:
            raise TransportError(f"Streaming request to Claude API timed out: {e}") from e
        except httpx.HTTPError as e:
            log_claude_api_error(logger, "send_streaming_message", e)
            raise TransportError(f"Network error streaming from Claude API: {e}") from e
        finally:
            duration = logger.stop_timer(timer_id)

        logger.log_claude_api_response(
            "send_streaming_message",
            result.model,
            duration,
            output_tokens=result.usage.output_tokens if result.usage else None,
        )
        return result
