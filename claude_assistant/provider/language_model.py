"""
Language model provider backed by the Claude API client.

Adapts ``ClaudeApiClient`` to a host's generic chat-model interface: it
lists the catalog models once the client is configured and reachable,
converts host chat messages and tool descriptors into API messages, and
returns responses as an async stream of text parts plus the final text.
"""

import asyncio
import base64
import json
from enum import IntEnum
from typing import (
    Annotated,
    Any,
    AsyncIterator,
    Awaitable,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.cancellation import CancellationToken
from ..core.claude_client import ClaudeApiClient
from ..core.events import Disposable, Emitter
from ..models.anthropic import (
    AutoToolChoice,
    ContentBlock,
    Message,
    MessageRole,
    RequestOptions,
    ToolDefinition,
)
from ..models.catalog import list_models
from ..utils.error_handling import NotConfiguredError
from ..utils.loguru_utils import LoguruLogger


logger = LoguruLogger("language_model")

MODEL_IDENTIFIER_PREFIX = "claude-"
EXTENSION_ID = "internal.claude"


class ChatMessageRole(IntEnum):
    """Roles used by the host chat model interface."""
    SYSTEM = 0
    USER = 1
    ASSISTANT = 2


class ChatTextPart(BaseModel):
    """A run of text in a host message or response."""
    type: Literal["text"] = "text"
    value: str


class ChatImageData(BaseModel):
    """Raw image bytes with their MIME type."""
    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(..., alias="mimeType")
    data: bytes


class ChatImagePart(BaseModel):
    """An image attached to a host message."""
    type: Literal["image_url"] = "image_url"
    value: ChatImageData


ChatMessagePart = Annotated[Union[ChatTextPart, ChatImagePart], Field(discriminator="type")]


def _has_image_data(value: Any) -> bool:
    if isinstance(value, ChatImageData):
        return bool(value.data)
    if isinstance(value, Mapping):
        return bool(value.get("data")) and bool(value.get("mimeType") or value.get("mime_type"))
    return False


def _part_as_text(part: Any) -> str:
    if isinstance(part, BaseModel):
        part = part.model_dump(mode="json", by_alias=True)
    if isinstance(part, Mapping):
        value = part.get("value")
        if isinstance(value, str):
            return value
        return json.dumps(dict(part), default=str)
    return str(part)


def normalize_part(part: Any) -> Any:
    """
    Pass text and image parts through; anything else becomes a text part.

    Covers the host's tool-call and tool-result parts as well as image
    parts that carry no data.
    """
    if isinstance(part, ChatTextPart):
        return part
    if isinstance(part, ChatImagePart):
        return part if part.value.data else ChatTextPart(value=_part_as_text(part))
    if isinstance(part, Mapping):
        part_type = part.get("type")
        if part_type == "text" and isinstance(part.get("value"), str):
            return part
        if part_type == "image_url" and _has_image_data(part.get("value")):
            return part
    return ChatTextPart(value=_part_as_text(part))


class ChatMessage(BaseModel):
    """A host chat message."""
    role: ChatMessageRole
    content: Union[str, List[ChatMessagePart]] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def normalize_parts(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return [normalize_part(part) for part in v]
        return v


class ChatToolDescriptor(BaseModel):
    """A tool offered by the host."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = Field(None, alias="inputSchema")


class ChatRequestOptions(BaseModel):
    """Per-request options passed by the host."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    max_tokens: Optional[int] = Field(None, alias="maxTokens", gt=0)
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    tools: Optional[List[ChatToolDescriptor]] = None
    tool_mode: Optional[Any] = Field(None, alias="toolMode")


class PrepareOptions(BaseModel):
    """Options for listing models; ``silent`` skips the connection check."""
    silent: bool = False


class LanguageModelChatMetadata(BaseModel):
    """Description of one selectable chat model."""
    extension: str
    id: str
    name: str
    family: str
    vendor: str
    description: str
    version: str
    max_input_tokens: int
    max_output_tokens: int
    is_default: bool = False
    is_user_selectable: bool = True
    model_picker_category: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Dict[str, bool] = Field(default_factory=dict)


class LanguageModelChatMetadataAndIdentifier(BaseModel):
    identifier: str
    metadata: LanguageModelChatMetadata


class LanguageModelChatResponse:
    """
    A chat response: ``stream`` yields text parts, ``result`` resolves to the
    full text.

    ``stream`` can be iterated once.
    """

    def __init__(self, stream: AsyncIterator[ChatTextPart], result: Awaitable[str]):
        self.stream = stream
        self.result = result


async def _single_part(text: str) -> AsyncIterator[ChatTextPart]:
    yield ChatTextPart(value=text)


async def _queued_parts(queue: asyncio.Queue, task: "asyncio.Task[str]") -> AsyncIterator[ChatTextPart]:
    while True:
        chunk = await queue.get()
        if chunk is None:
            break
        yield ChatTextPart(value=chunk)
    # Surface the request's failure, if any, to the consumer of the stream
    await task


def _convert_role(role: ChatMessageRole) -> MessageRole:
    if role == ChatMessageRole.SYSTEM:
        return MessageRole.SYSTEM
    if role == ChatMessageRole.ASSISTANT:
        return MessageRole.ASSISTANT
    return MessageRole.USER


def convert_messages(messages: Sequence[Union[ChatMessage, Mapping[str, Any]]]) -> List[Message]:
    """Convert host chat messages into API messages; image bytes become base64."""
    converted = []
    for message in messages:
        if not isinstance(message, ChatMessage):
            message = ChatMessage.model_validate(message)

        role = _convert_role(message.role)
        if isinstance(message.content, str):
            converted.append(Message(role=role, content=message.content))
            continue

        blocks = []
        for part in message.content:
            if isinstance(part, ChatImagePart):
                blocks.append(ContentBlock.image_block(
                    base64_encode(part.value.data),
                    part.value.mime_type,
                ))
            else:
                blocks.append(ContentBlock.text_block(part.value))
        converted.append(Message(role=role, content=blocks))
    return converted


def base64_encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def convert_tools(tools: Optional[Sequence[ChatToolDescriptor]]) -> Optional[List[ToolDefinition]]:
    if not tools:
        return None
    return [
        ToolDefinition(name=tool.name, description=tool.description, input_schema=tool.input_schema or {})
        for tool in tools
    ]


def extract_text(message: Union[str, ChatMessage]) -> str:
    """Plain text of a message; text parts are joined with spaces."""
    if isinstance(message, str):
        return message
    if isinstance(message.content, str):
        return message.content
    return " ".join(part.value for part in message.content if isinstance(part, ChatTextPart))


class ClaudeLanguageModelProvider:
    """
    Chat model provider for the Claude models in the catalog.

    Re-fires configuration changes on ``on_did_change`` so the host can
    refresh its model list.
    """

    def __init__(self, client: ClaudeApiClient, vendor_id: str = "claude"):
        self.client = client
        self.vendor_id = vendor_id
        self.on_did_change: Emitter[None] = Emitter("language_model_changed")
        self._subscription: Disposable = client.holder.on_configuration_changed(
            lambda _: self.on_did_change.fire(None)
        )

    def dispose(self) -> None:
        self._subscription.dispose()
        self.on_did_change.clear()

    async def prepare_language_model_chat(
        self,
        options: Union[PrepareOptions, Mapping[str, Any], None] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[LanguageModelChatMetadataAndIdentifier]:
        """
        List the available models.

        Returns an empty list when the client is not configured or, unless
        ``silent``, when the connection test fails.
        """
        if options is None:
            options = PrepareOptions()
        elif not isinstance(options, PrepareOptions):
            options = PrepareOptions.model_validate(dict(options))

        if not self.client.holder.is_configured():
            if not options.silent:
                logger.warning("Claude API client is not configured")
            return []

        if not options.silent:
            try:
                connected = await self.client.test_connection(token)
            except Exception as e:
                logger.error(f"Error testing Claude API connection: {e}", error_type=e.__class__.__name__)
                return []
            if not connected:
                logger.error("Failed to connect to Claude API")
                return []

        return [
            LanguageModelChatMetadataAndIdentifier(
                identifier=f"{MODEL_IDENTIFIER_PREFIX}{descriptor.id}",
                metadata=LanguageModelChatMetadata(
                    extension=EXTENSION_ID,
                    id=descriptor.id,
                    name=descriptor.name,
                    family=descriptor.family,
                    vendor=self.vendor_id,
                    description=f"{descriptor.name} - Advanced AI assistant by Anthropic",
                    version=descriptor.id.split("-")[-1],
                    max_input_tokens=descriptor.max_input_tokens,
                    max_output_tokens=descriptor.max_output_tokens,
                    is_default=descriptor.is_default,
                    model_picker_category={"label": "Claude", "order": 1},
                    capabilities={
                        "vision": descriptor.supports_vision,
                        "tool_calling": descriptor.supports_tools,
                    },
                ),
            )
            for descriptor in list_models()
        ]

    async def send_chat_request(
        self,
        model_id: str,
        messages: Sequence[Union[ChatMessage, Mapping[str, Any]]],
        from_extension_id: Optional[str] = None,
        options: Union[ChatRequestOptions, Mapping[str, Any], None] = None,
        token: Optional[CancellationToken] = None,
    ) -> LanguageModelChatResponse:
        """
        Send a chat request for ``model_id`` (``claude-<model id>``).

        Streams real deltas when the client can stream; otherwise the
        response stream yields the whole text as one part.
        """
        if options is None:
            options = ChatRequestOptions()
        elif not isinstance(options, ChatRequestOptions):
            options = ChatRequestOptions.model_validate(dict(options))

        model = model_id[len(MODEL_IDENTIFIER_PREFIX):] if model_id.startswith(MODEL_IDENTIFIER_PREFIX) else model_id
        logger.info(f"Claude chat request for model {model}", model=model, extension=from_extension_id)

        request_options = RequestOptions(
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            tools=convert_tools(options.tools),
            tool_choice=AutoToolChoice() if options.tool_mode else None,
        )
        claude_messages = convert_messages(messages)

        if self.client.supports_streaming:
            return self._stream_response(claude_messages, model, request_options, token)

        response = await self.client.send_message(claude_messages, model, request_options, token=token)
        usage = response.usage
        logger.info(
            "Claude response completed",
            model=model,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
        )

        text = response.text
        result: asyncio.Future = asyncio.get_running_loop().create_future()
        result.set_result(text)
        return LanguageModelChatResponse(_single_part(text), result)

    def _stream_response(
        self,
        messages: List[Message],
        model: str,
        options: RequestOptions,
        token: Optional[CancellationToken],
    ) -> LanguageModelChatResponse:
        if not self.client.holder.is_configured():
            raise NotConfiguredError()
        if token is not None:
            token.raise_if_cancelled()

        queue: asyncio.Queue = asyncio.Queue()

        async def run() -> str:
            try:
                response = await self.client.send_message(
                    messages, model, options, on_progress=queue.put_nowait, token=token
                )
            finally:
                queue.put_nowait(None)
            return response.text

        task = asyncio.ensure_future(run())
        return LanguageModelChatResponse(_queued_parts(queue, task), task)

    async def provide_token_count(
        self,
        model_id: str,
        message: Union[str, ChatMessage],
        token: Optional[CancellationToken] = None,
    ) -> int:
        return self.client.estimate_tokens(extract_text(message))
