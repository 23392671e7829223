"""
Claude API client used by the rest of the application.

``ClaudeApiClient`` combines the configuration holder with a transport.
The transport is either ``ClaudeHttpService`` (this process talks to the
network) or ``ChannelClient`` (calls are relayed through the bridge). The
client checks configuration and cancellation before any I/O, resolves the
request model and estimates token counts.
"""

import math
from typing import Optional, Protocol, Sequence

from ..models.anthropic import ClaudeConfiguration, Message, MessageResponse, RequestOptions
from ..utils.error_handling import NotConfiguredError, RequestCancelledError
from ..utils.loguru_utils import LoguruLogger
from ..utils.streaming import ProgressCallback
from .cancellation import CancellationToken
from .configuration import ConfigurationHolder


logger = LoguruLogger("claude_client")

CHARS_PER_TOKEN = 4


class ClaudeTransport(Protocol):
    """Operations a transport must offer to ``ClaudeApiClient``."""

    @property
    def supports_streaming(self) -> bool: ...

    async def send_message(
        self,
        config: ClaudeConfiguration,
        messages: Sequence[Message],
        options: Optional[RequestOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> MessageResponse: ...

    async def send_streaming_message(
        self,
        config: ClaudeConfiguration,
        messages: Sequence[Message],
        on_progress: ProgressCallback,
        options: Optional[RequestOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> MessageResponse: ...

    async def test_connection(
        self,
        config: ClaudeConfiguration,
        token: Optional[CancellationToken] = None,
    ) -> bool: ...


class ClaudeApiClient:
    """
    Sends messages to Claude with the current configuration.

    This class handles:
    - Failing fast when no API key is configured
    - Honouring cancellation before and during a request
    - Choosing streaming or non-streaming requests
    - Connectivity checks and token estimation
    """

    def __init__(self, holder: ConfigurationHolder, transport: ClaudeTransport):
        """
        Initialize the client.

        Args:
            holder: Shared configuration holder
            transport: Direct HTTP service or bridge relay
        """
        self._holder = holder
        self._transport = transport

    @property
    def holder(self) -> ConfigurationHolder:
        return self._holder

    @property
    def supports_streaming(self) -> bool:
        return self._transport.supports_streaming

    async def send_message(
        self,
        messages: Sequence[Message],
        model: Optional[str] = None,
        options: Optional[RequestOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> MessageResponse:
        """
        Send messages and return Claude's response.

        Args:
            messages: Conversation turns, system messages included
            model: Model id; defaults to the configured model
            options: Per-call token budget, temperature and tools
            on_progress: When given, the request streams and each text
                fragment is passed here as it arrives
            token: Cancellation token

        Raises:
            NotConfiguredError: If no API key is configured
            RequestCancelledError: If ``token`` is or becomes cancelled
        """
        if not self._holder.is_configured():
            raise NotConfiguredError()
        if token is not None:
            token.raise_if_cancelled()

        config = self._holder.configuration
        if model:
            config = config.model_copy(update={"model": model})

        try:
            if on_progress is not None:
                return await self._transport.send_streaming_message(
                    config, messages, on_progress, options, token
                )
            return await self._transport.send_message(config, messages, options, token)
        except RequestCancelledError:
            raise
        except Exception as e:
            if token is not None and token.is_cancellation_requested:
                raise RequestCancelledError() from e
            logger.error(f"Claude request failed: {e}", error_type=e.__class__.__name__, model=config.model)
            raise

    async def test_connection(self, token: Optional[CancellationToken] = None) -> bool:
        """Check that the configured key can reach the API."""
        if not self._holder.is_configured():
            logger.debug("Connection test skipped: not configured")
            return False
        try:
            return await self._transport.test_connection(self._holder.configuration, token)
        except Exception as e:
            logger.warning(f"Connection test failed: {e}", error_type=e.__class__.__name__)
            return False

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough token count: one token per four characters, rounded up."""
        return math.ceil(len(text) / CHARS_PER_TOKEN)
