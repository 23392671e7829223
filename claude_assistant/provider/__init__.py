"""
Language model provider adapting the Claude client to a host chat interface.
"""

from .language_model import (
    ChatImageData,
    ChatImagePart,
    ChatMessage,
    ChatMessageRole,
    ChatRequestOptions,
    ChatTextPart,
    ChatToolDescriptor,
    ClaudeLanguageModelProvider,
    LanguageModelChatMetadata,
    LanguageModelChatMetadataAndIdentifier,
    LanguageModelChatResponse,
    PrepareOptions,
)

__all__ = [
    "ChatImageData",
    "ChatImagePart",
    "ChatMessage",
    "ChatMessageRole",
    "ChatRequestOptions",
    "ChatTextPart",
    "ChatToolDescriptor",
    "ClaudeLanguageModelProvider",
    "LanguageModelChatMetadata",
    "LanguageModelChatMetadataAndIdentifier",
    "LanguageModelChatResponse",
    "PrepareOptions",
]
