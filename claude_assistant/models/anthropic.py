"""
Pydantic models for the Anthropic Messages API.

This module contains the data models exchanged with the /v1/messages endpoint:
client configuration, conversation messages and content blocks, tool
definitions, responses, streaming events and the error envelope.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
ANTHROPIC_VERSION = "2023-06-01"


class ContentType(str, Enum):
    """Content block types supported by the API."""
    TEXT = "text"
    IMAGE = "image"


class MessageRole(str, Enum):
    """Message roles in conversations."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class StopReason(str, Enum):
    """Possible reasons for stopping generation."""
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    TOOL_USE = "tool_use"


class ClaudeConfiguration(BaseModel):
    """
    Credentials and generation defaults used for every API call.

    Accepts both the host settings spelling (``apiKey``, ``baseUrl``,
    ``maxTokens``) and the Python field names.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str = Field("", alias="apiKey", repr=False, description="Anthropic API key")
    base_url: str = Field(DEFAULT_BASE_URL, alias="baseUrl", description="API base URL")
    model: str = Field(DEFAULT_MODEL, description="Default model identifier")
    max_tokens: Optional[int] = Field(None, alias="maxTokens", description="Default output token budget")
    temperature: Optional[float] = Field(None, description="Default sampling temperature")

    @field_validator("base_url", mode="before")
    @classmethod
    def default_base_url(cls, v):
        """Treat an empty base URL as the public endpoint."""
        if not v:
            return DEFAULT_BASE_URL
        return v

    @property
    def messages_url(self) -> str:
        """Full URL of the messages endpoint."""
        return f"{self.base_url.rstrip('/')}/v1/messages"


class ImageSource(BaseModel):
    """Image source information for image content blocks."""
    model_config = ConfigDict(frozen=True)

    type: Literal["base64"] = "base64"
    media_type: str = Field(..., description="MIME type of the image")
    data: str = Field(..., description="Base64-encoded image data")

    @field_validator("media_type")
    @classmethod
    def validate_media_type(cls, v):
        """Validate that media type is an image format."""
        if not v.startswith("image/"):
            raise ValueError(f"Unsupported media type: {v}")
        return v


class ContentBlock(BaseModel):
    """Content block that can contain text or image data."""
    model_config = ConfigDict(frozen=True)

    type: ContentType = Field(..., description="Type of content block")
    text: Optional[str] = Field(None, description="Text content (required for text blocks)")
    source: Optional[ImageSource] = Field(None, description="Image source (required for image blocks)")

    @model_validator(mode='after')
    def validate_content_block(self):
        """Ensure content block has appropriate fields for its type."""
        if self.type == ContentType.TEXT:
            if self.text is None:
                raise ValueError("Text content blocks must have 'text' field")
            if self.source:
                raise ValueError("Text content blocks cannot have 'source' field")
        elif self.type == ContentType.IMAGE:
            if not self.source:
                raise ValueError("Image content blocks must have 'source' field")
            if self.text:
                raise ValueError("Image content blocks cannot have 'text' field")

        return self

    @classmethod
    def text_block(cls, text: str) -> "ContentBlock":
        return cls(type=ContentType.TEXT, text=text)

    @classmethod
    def image_block(cls, data: str, media_type: str) -> "ContentBlock":
        return cls(type=ContentType.IMAGE, source=ImageSource(media_type=media_type, data=data))

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Message(BaseModel):
    """A single conversation turn."""
    model_config = ConfigDict(frozen=True)

    role: MessageRole = Field(..., description="Role of the message sender")
    content: Union[str, List[ContentBlock]] = Field(..., description="Plain text or ordered content blocks")

    def plain_text(self, separator: str = "") -> str:
        """Text of the message, ignoring images."""
        if isinstance(self.content, str):
            return self.content
        return separator.join(block.text or "" for block in self.content if block.type == ContentType.TEXT)

    def wire_content(self) -> Union[str, List[Dict[str, Any]]]:
        if isinstance(self.content, str):
            return self.content
        return [block.to_wire() for block in self.content]

    def to_wire(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.wire_content()}


class ToolDefinition(BaseModel):
    """A tool the model may call, described by a JSON schema."""
    name: str = Field(..., min_length=1, description="Tool name")
    description: str = Field("", description="What the tool does")
    input_schema: Dict[str, Any] = Field(default_factory=dict, description="JSON schema of the tool input")

    @field_validator("input_schema", mode="before")
    @classmethod
    def validate_input_schema(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("input_schema must be a JSON object")
        schema_type = v.get("type")
        if schema_type is not None and schema_type != "object":
            raise ValueError(f"input_schema type must be 'object', got {schema_type!r}")
        return v


class AutoToolChoice(BaseModel):
    type: Literal["auto"] = "auto"


class AnyToolChoice(BaseModel):
    type: Literal["any"] = "any"


class NamedToolChoice(BaseModel):
    type: Literal["tool"] = "tool"
    name: str = Field(..., min_length=1)


ToolChoice = Annotated[
    Union[AutoToolChoice, AnyToolChoice, NamedToolChoice],
    Field(discriminator="type"),
]


class RequestOptions(BaseModel):
    """Per-call overrides; unset values fall back to the configuration."""
    model_config = ConfigDict(populate_by_name=True)

    max_tokens: Optional[int] = Field(None, alias="maxTokens", gt=0)
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    tools: Optional[List[ToolDefinition]] = None
    tool_choice: Optional[ToolChoice] = Field(None, alias="toolChoice")


class Usage(BaseModel):
    """Token usage information."""
    input_tokens: int = Field(0, ge=0, description="Number of input tokens")
    output_tokens: int = Field(0, ge=0, description="Number of output tokens")

    @property
    def total_tokens(self) -> int:
        """Calculate total tokens used."""
        return self.input_tokens + self.output_tokens


class MessageResponse(BaseModel):
    """Response of the /v1/messages endpoint."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Unique message identifier")
    type: Literal["message"] = Field("message", description="Response type")
    role: Literal["assistant"] = Field("assistant", description="Role of the response")
    content: List[Dict[str, Any]] = Field(default_factory=list, description="Response content blocks")
    model: str = Field(..., description="Model that generated the response")
    stop_reason: Optional[str] = Field(None, description="Reason for stopping generation")
    stop_sequence: Optional[str] = Field(None, description="Stop sequence that triggered stopping")
    usage: Optional[Usage] = Field(None, description="Token usage, unknown for some streams")

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(
            block.get("text", "") for block in self.content
            if block.get("type") == "text"
        )


class StreamEvent(BaseModel):
    """Base class for streaming events."""
    model_config = ConfigDict(extra="allow")

    type: str = Field(..., description="Event type")


class MessageStartEvent(StreamEvent):
    """Event sent at the start of a streaming response."""
    type: Literal["message_start"] = "message_start"
    message: Dict[str, Any] = Field(default_factory=dict, description="Initial message data")


class ContentBlockStartEvent(StreamEvent):
    """Event sent when a content block starts."""
    type: Literal["content_block_start"] = "content_block_start"
    index: int = Field(0, ge=0, description="Index of the content block")
    content_block: Dict[str, Any] = Field(default_factory=dict, description="Content block data")


class ContentBlockDeltaEvent(StreamEvent):
    """Event sent for incremental content updates."""
    type: Literal["content_block_delta"] = "content_block_delta"
    index: int = Field(0, ge=0, description="Index of the content block")
    delta: Dict[str, Any] = Field(default_factory=dict, description="Incremental content update")

    @property
    def text(self) -> Optional[str]:
        return self.delta.get("text")


class ContentBlockStopEvent(StreamEvent):
    """Event sent when a content block ends."""
    type: Literal["content_block_stop"] = "content_block_stop"
    index: int = Field(0, ge=0, description="Index of the content block")


class MessageDeltaEvent(StreamEvent):
    """Event sent for message-level updates."""
    type: Literal["message_delta"] = "message_delta"
    delta: Dict[str, Any] = Field(default_factory=dict, description="Message-level updates")
    usage: Optional[Usage] = Field(None, description="Updated usage information")


class MessageStopEvent(StreamEvent):
    """Event sent when streaming ends."""
    type: Literal["message_stop"] = "message_stop"


class PingEvent(StreamEvent):
    """Ping event to keep connection alive."""
    type: Literal["ping"] = "ping"


class ErrorEvent(StreamEvent):
    """In-stream error reported after a 200 status."""
    type: Literal["error"] = "error"
    error: Dict[str, Any] = Field(default_factory=dict)


STREAM_EVENT_TYPES = {
    "message_start": MessageStartEvent,
    "content_block_start": ContentBlockStartEvent,
    "content_block_delta": ContentBlockDeltaEvent,
    "content_block_stop": ContentBlockStopEvent,
    "message_delta": MessageDeltaEvent,
    "message_stop": MessageStopEvent,
    "ping": PingEvent,
    "error": ErrorEvent,
}


class ErrorType(str, Enum):
    """Types of API errors."""
    INVALID_REQUEST_ERROR = "invalid_request_error"
    AUTHENTICATION_ERROR = "authentication_error"
    PERMISSION_ERROR = "permission_error"
    NOT_FOUND_ERROR = "not_found_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    API_ERROR = "api_error"
    OVERLOADED_ERROR = "overloaded_error"


class AnthropicError(BaseModel):
    """Error information following Anthropic's format."""
    type: ErrorType = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    kind: Optional[str] = Field(None, description="Client exception class that raised the error")
    status_code: Optional[int] = Field(None, description="Upstream HTTP status, for API errors")
    detail: Optional[str] = Field(None, description="Upstream body or snippet, for API and parse errors")


class ErrorResponse(BaseModel):
    """Error response following Anthropic's format."""
    type: Literal["error"] = Field("error", description="Response type")
    error: AnthropicError = Field(..., description="Error details")
