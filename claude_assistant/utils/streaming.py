"""
Streaming utilities for Server-Sent Events (SSE).

This module decodes the chunked event stream returned by the Messages API
into text deltas plus a final response, and formats/parses the SSE stream
the bridge server uses to relay progress to other processes.
"""

import json
import uuid
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple, Union

from pydantic import ValidationError

from ..models.anthropic import (
    STREAM_EVENT_TYPES,
    ContentBlockDeltaEvent,
    ErrorEvent,
    ErrorResponse,
    MessageDeltaEvent,
    MessageResponse,
    MessageStartEvent,
    StreamEvent,
    Usage,
)
from .error_handling import ApiError
from .loguru_utils import LoguruLogger


logger = LoguruLogger("streaming")

DATA_PREFIX = "data: "
EVENT_PREFIX = "event: "
DONE_SENTINEL = "[DONE]"

ProgressCallback = Callable[[str], None]


class _Done:
    """Marker returned for the end-of-stream sentinel line."""


DONE = _Done()


def parse_stream_line(line: str) -> Union[StreamEvent, _Done, None]:
    """
    Parse one line of a Messages API stream.

    Returns:
        The stream event, ``DONE`` for the sentinel, or ``None`` for lines
        that are not data lines or do not hold a valid JSON event
    """
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX):]
    if payload.strip() == DONE_SENTINEL:
        return DONE

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream chunk", chunk=payload[:100])
        return None

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None

    event_class = STREAM_EVENT_TYPES.get(data["type"], StreamEvent)
    try:
        return event_class.model_validate(data)
    except ValidationError:
        logger.debug("Skipping invalid stream event", event_type=data["type"])
        return None


class StreamDecoder:
    """
    Folds stream events into text deltas and one final response.

    Text deltas are handed to the progress callback as soon as they are fed,
    in arrival order. Usage from ``message_delta`` events is last-write-wins.
    """

    def __init__(self, model: str, on_progress: Optional[ProgressCallback] = None):
        self.model = model
        self.on_progress = on_progress
        self.message_id: Optional[str] = None
        self.stop_reason: Optional[str] = None
        self.stop_sequence: Optional[str] = None
        self.usage: Optional[Usage] = None
        self.done = False
        self._parts: list = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed_line(self, line: str) -> bool:
        """
        Feed one raw line.

        Returns:
            False once the end-of-stream sentinel has been seen
        """
        if self.done:
            return False

        parsed = parse_stream_line(line)
        if parsed is DONE:
            self.done = True
            return False
        if parsed is not None:
            self.feed_event(parsed)
        return True

    def feed_event(self, event: StreamEvent) -> None:
        if isinstance(event, ContentBlockDeltaEvent):
            text = event.text
            if text:
                self._parts.append(text)
                if self.on_progress is not None:
                    self.on_progress(text)
        elif isinstance(event, MessageDeltaEvent):
            if event.usage is not None:
                self.usage = event.usage
            self.stop_reason = event.delta.get("stop_reason", self.stop_reason)
            self.stop_sequence = event.delta.get("stop_sequence", self.stop_sequence)
        elif isinstance(event, MessageStartEvent):
            self.message_id = event.message.get("id") or self.message_id
            self.model = event.message.get("model") or self.model
        elif isinstance(event, ErrorEvent):
            error = event.error
            raise ApiError(
                200,
                json.dumps(event.model_dump()),
                message=f"Claude API stream error: {error.get('type', 'unknown')} - {error.get('message', '')}",
            )

    def finish(self) -> MessageResponse:
        """Build the response accumulated so far."""
        return MessageResponse(
            id=self.message_id or f"msg_{uuid.uuid4().hex[:24]}",
            content=[{"type": "text", "text": self.text}],
            model=self.model,
            stop_reason=self.stop_reason,
            stop_sequence=self.stop_sequence,
            usage=self.usage,
        )


async def decode_stream(
    lines: AsyncIterator[str],
    model: str,
    on_progress: Optional[ProgressCallback] = None,
) -> MessageResponse:
    """
    Decode a line stream into a response, closing the source on every exit.

    Args:
        lines: Async iterator over the body's lines
        model: Model id to report if the stream does not name one
        on_progress: Called with each text fragment in arrival order

    Returns:
        The synthesized response with one accumulated text block
    """
    decoder = StreamDecoder(model, on_progress)
    try:
        async for line in lines:
            if not decoder.feed_line(line):
                break
    finally:
        aclose = getattr(lines, "aclose", None)
        if aclose is not None:
            await aclose()

    return decoder.finish()


class SSEFormatter:
    """Utility class for formatting Server-Sent Events."""

    @staticmethod
    def format_event(event_type: str, data: Union[str, Dict[str, Any]], event_id: Optional[str] = None) -> str:
        """
        Format data as a Server-Sent Event.

        Args:
            event_type: The event type (e.g., 'streamingProgress', 'result')
            data: The event data (string or dict that will be JSON-encoded)
            event_id: Optional event ID

        Returns:
            Formatted SSE string, terminated by a blank line
        """
        lines = []

        if event_id:
            lines.append(f"id: {event_id}")

        lines.append(f"event: {event_type}")

        if isinstance(data, dict):
            data_str = json.dumps(data, separators=(',', ':'))
        else:
            data_str = str(data)

        lines.append(f"data: {data_str}")
        lines.append("")
        lines.append("")

        return "\n".join(lines)

    @staticmethod
    def format_error_event(error: ErrorResponse, event_id: Optional[str] = None) -> str:
        """Format an error envelope as an SSE error event."""
        return SSEFormatter.format_event(
            event_type="error",
            data=error.model_dump(mode="json"),
            event_id=event_id
        )


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
    """
    Group SSE lines into ``(event type, JSON data)`` pairs.

    Events without a JSON object payload are skipped.
    """
    event_type = "message"
    data_lines = []

    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data_lines:
                payload = "\n".join(data_lines)
                try:
                    data = json.loads(payload)
                except json.JSONDecodeError:
                    data = None
                if isinstance(data, dict):
                    yield event_type, data
            event_type = "message"
            data_lines = []
        elif line.startswith(EVENT_PREFIX):
            event_type = line[len(EVENT_PREFIX):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[5:].lstrip(" "))

    if data_lines:
        try:
            data = json.loads("\n".join(data_lines))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            yield event_type, data
