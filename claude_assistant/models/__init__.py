"""
Models package for claude-assistant.

This package contains the Pydantic models used for request/response
validation and serialization, following Anthropic's API specification,
plus the static model catalog.
"""

from .anthropic import (
    ANTHROPIC_VERSION,
    DEFAULT_BASE_URL,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    STREAM_EVENT_TYPES,
    AnthropicError,
    AnyToolChoice,
    AutoToolChoice,
    ClaudeConfiguration,
    ContentBlock,
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    ContentType,
    ErrorEvent,
    ErrorResponse,
    ErrorType,
    ImageSource,
    Message,
    MessageDeltaEvent,
    MessageResponse,
    MessageRole,
    MessageStartEvent,
    MessageStopEvent,
    NamedToolChoice,
    PingEvent,
    RequestOptions,
    StopReason,
    StreamEvent,
    ToolChoice,
    ToolDefinition,
    Usage,
)
from .catalog import CLAUDE_MODELS, TEST_CONNECTION_MODEL, ModelDescriptor

__all__ = [
    # Constants
    "ANTHROPIC_VERSION",
    "DEFAULT_BASE_URL",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MODEL",
    "DEFAULT_TEMPERATURE",
    # Core models
    "ClaudeConfiguration",
    "Message",
    "ContentBlock",
    "ImageSource",
    "RequestOptions",
    "ToolDefinition",
    "ToolChoice",
    "AutoToolChoice",
    "AnyToolChoice",
    "NamedToolChoice",
    "MessageResponse",
    "Usage",
    # Streaming models
    "STREAM_EVENT_TYPES",
    "StreamEvent",
    "MessageStartEvent",
    "ContentBlockStartEvent",
    "ContentBlockDeltaEvent",
    "ContentBlockStopEvent",
    "MessageDeltaEvent",
    "MessageStopEvent",
    "PingEvent",
    "ErrorEvent",
    # Error models
    "AnthropicError",
    "ErrorResponse",
    # Catalog
    "CLAUDE_MODELS",
    "TEST_CONNECTION_MODEL",
    "ModelDescriptor",
    # Enums
    "ContentType",
    "MessageRole",
    "StopReason",
    "ErrorType",
]
