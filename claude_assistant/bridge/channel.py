"""
Command channel between a process that can reach the network and one that
cannot.

``ClaudeChannel`` is the server side: it dispatches named commands with
positional arguments to ``ClaudeHttpService`` and publishes streaming text on
a separate ``streamingProgress`` event. ``ChannelClient`` is the caller side:
a transport for ``ClaudeApiClient`` that relays every request through any
object with the channel ``call``/``listen`` surface (the in-process channel
or ``HttpChannel``).
"""

import uuid
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.cancellation import CancellationToken, run_cancellable
from ..core.claude_service import ClaudeHttpService
from ..core.events import Emitter
from ..models.anthropic import ClaudeConfiguration, Message, MessageResponse, RequestOptions
from ..utils.error_handling import InvalidArgumentsError, MalformedResponseError, UnknownCommandError
from ..utils.loguru_utils import LoguruLogger
from ..utils.streaming import ProgressCallback


logger = LoguruLogger("bridge")

STREAMING_PROGRESS_EVENT = "streamingProgress"

# Minimum number of positional arguments per command
COMMAND_ARITY: Dict[str, int] = {
    "testConnection": 1,
    "sendMessage": 2,
    "sendStreamingMessage": 2,
}


class StreamingProgress(BaseModel):
    """A text fragment of the streaming request identified by ``request_id``."""
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., alias="requestId")
    chunk: str


class Channel(Protocol):
    """The surface ``ChannelClient`` relays through."""

    async def call(
        self,
        command: str,
        args: Any,
        request_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> Any: ...

    def listen(self, event: str) -> Emitter: ...


class ClaudeChannel:
    """Dispatches bridge commands to the direct HTTP service."""

    def __init__(self, service: ClaudeHttpService):
        self.service = service
        self.on_streaming_progress: Emitter[StreamingProgress] = Emitter(STREAMING_PROGRESS_EVENT)

    def listen(self, event: str) -> Emitter:
        if event == STREAMING_PROGRESS_EVENT:
            return self.on_streaming_progress
        raise UnknownCommandError(f"Event not found: {event}")

    async def call(
        self,
        command: str,
        args: Any,
        request_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Run ``command`` with positional ``args``.

        Returns:
            ``bool`` for testConnection, otherwise the response as a JSON
            compatible dict

        Raises:
            UnknownCommandError: If the command is not recognized
            InvalidArgumentsError: If ``args`` is not a list or is too short
        """
        if command not in COMMAND_ARITY:
            raise UnknownCommandError(f"Call not found: {command}")
        if not isinstance(args, (list, tuple)):
            raise InvalidArgumentsError(f"Invalid arguments for command: {command}")
        if len(args) < COMMAND_ARITY[command]:
            raise InvalidArgumentsError(
                f"{command} requires at least {COMMAND_ARITY[command]} argument(s), got {len(args)}"
            )

        logger.debug(f"Bridge call: {command}", command=command, bridge_request_id=request_id)

        if command == "testConnection":
            return await self.service.test_connection(args[0], token)

        config, messages = args[0], args[1]
        options = args[2] if len(args) > 2 else None

        if command == "sendMessage":
            result = await self.service.send_message(config, messages, options, token)
            return result.model_dump(mode="json")

        request_id = request_id or uuid.uuid4().hex

        def forward(chunk: str) -> None:
            self.on_streaming_progress.fire(StreamingProgress(request_id=request_id, chunk=chunk))

        result = await self.service.send_streaming_message(config, messages, forward, options, token)
        return result.model_dump(mode="json")


def _dump_messages(messages: Sequence[Union[Message, Dict[str, Any]]]) -> List[Any]:
    return [
        m.model_dump(mode="json", exclude_none=True) if isinstance(m, Message) else m
        for m in messages
    ]


def _dump_options(options: Optional[RequestOptions]) -> Optional[Dict[str, Any]]:
    if options is None:
        return None
    if isinstance(options, RequestOptions):
        return options.model_dump(mode="json", exclude_none=True)
    return dict(options)


def _to_response(result: Any) -> MessageResponse:
    try:
        return MessageResponse.model_validate(result)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Invalid response relayed over bridge: {e.error_count()} error(s)", str(result)
        ) from e


class ChannelClient:
    """Transport that relays Claude requests over a channel."""

    def __init__(self, channel: Channel, supports_streaming: bool = True):
        self.channel = channel
        self._supports_streaming = supports_streaming

    @property
    def supports_streaming(self) -> bool:
        return self._supports_streaming

    async def send_message(
        self,
        config: ClaudeConfiguration,
        messages: Sequence[Message],
        options: Optional[RequestOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> MessageResponse:
        args = [config.model_dump(mode="json", by_alias=True), _dump_messages(messages), _dump_options(options)]
        result = await run_cancellable(self.channel.call("sendMessage", args, token=token), token)
        return _to_response(result)

    async def send_streaming_message(
        self,
        config: ClaudeConfiguration,
        messages: Sequence[Message],
        on_progress: ProgressCallback,
        options: Optional[RequestOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> MessageResponse:
        """
        Relay a streaming request, forwarding only this request's fragments.

        The progress listener is registered before the call goes out and
        removed once it settles.
        """
        request_id = uuid.uuid4().hex

        def on_event(progress: StreamingProgress) -> None:
            if progress.request_id == request_id:
                on_progress(progress.chunk)

        args = [config.model_dump(mode="json", by_alias=True), _dump_messages(messages), _dump_options(options)]
        with self.channel.listen(STREAMING_PROGRESS_EVENT)(on_event):
            result = await run_cancellable(
                self.channel.call("sendStreamingMessage", args, request_id=request_id, token=token),
                token,
            )
        return _to_response(result)

    async def test_connection(
        self,
        config: ClaudeConfiguration,
        token: Optional[CancellationToken] = None,
    ) -> bool:
        args = [config.model_dump(mode="json", by_alias=True)]
        try:
            return bool(await run_cancellable(self.channel.call("testConnection", args, token=token), token))
        except Exception as e:
            logger.warning(f"Connection test over bridge failed: {e}", error_type=e.__class__.__name__)
            return False
