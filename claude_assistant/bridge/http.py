"""
HTTP binding for the bridge channel.

The server side is a FastAPI router exposing ``POST /channel/{command}``
with a ``{"args": [...], "request_id": ...}`` body. Plain commands answer
``{"result": ...}``; ``sendStreamingMessage`` answers with Server-Sent
Events: one ``streamingProgress`` event per text fragment, then a single
``result`` or ``error`` event.

``HttpChannel`` is the matching client. It offers the same ``call`` and
``listen`` surface as ``ClaudeChannel`` so ``ChannelClient`` can relay
through either.
"""

import asyncio
import contextlib
import json
import uuid
from typing import Any, Optional

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.cancellation import CancellationToken, run_cancellable
from ..core.events import Emitter
from ..models.anthropic import ErrorResponse
from ..utils.error_handling import (
    ErrorMapper,
    TransportError,
    UnknownCommandError,
    truncate_snippet,
)
from ..utils.loguru_utils import LoguruLogger
from ..utils.streaming import SSEFormatter, iter_sse_events
from .channel import STREAMING_PROGRESS_EVENT, ClaudeChannel, StreamingProgress


logger = LoguruLogger("bridge_http")

STREAMING_COMMAND = "sendStreamingMessage"
RESULT_EVENT = "result"
ERROR_EVENT = "error"


class ChannelCallRequest(BaseModel):
    """Body of a bridge call."""
    model_config = ConfigDict(populate_by_name=True)

    args: Any = Field(None, description="Positional command arguments")
    request_id: Optional[str] = Field(None, alias="requestId", description="Id tagging streamed progress")


def _error_exception(exception: Exception, request: Request, debug: bool) -> HTTPException:
    error_response, status_code = ErrorMapper.map_exception_to_error_response(
        exception, request, include_details=debug
    )
    return HTTPException(status_code=status_code, detail=error_response.model_dump(mode="json"))


def create_bridge_router(channel: ClaudeChannel, debug: bool = False) -> APIRouter:
    """
    Build the router serving ``channel``.

    Args:
        channel: Channel the calls are dispatched to
        debug: Whether unexpected error messages are passed to callers

    Returns:
        APIRouter mounted under ``/channel``
    """
    router = APIRouter(prefix="/channel", tags=["bridge"])

    @router.post("/{command}", response_model=None)
    async def call_command(command: str, body: ChannelCallRequest, request: Request):
        """Run a bridge command; streaming commands answer with SSE."""
        if command == STREAMING_COMMAND:
            return StreamingResponse(
                _stream_command(channel, command, body, debug),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        try:
            result = await channel.call(command, body.args, body.request_id)
        except Exception as e:
            raise _error_exception(e, request, debug) from e
        return {"result": result}

    return router


async def _stream_command(channel: ClaudeChannel, command: str, body: ChannelCallRequest, debug: bool):
    request_id = body.request_id or uuid.uuid4().hex
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(progress: StreamingProgress) -> None:
        if progress.request_id == request_id:
            queue.put_nowait(progress)

    subscription = channel.listen(STREAMING_PROGRESS_EVENT)(on_progress)
    task = asyncio.ensure_future(channel.call(command, body.args, request_id))
    task.add_done_callback(lambda _: queue.put_nowait(None))

    try:
        while True:
            progress = await queue.get()
            if progress is None:
                break
            yield SSEFormatter.format_event(
                STREAMING_PROGRESS_EVENT, progress.model_dump(mode="json", by_alias=True)
            )

        try:
            result = task.result()
        except Exception as e:
            error_response, _ = ErrorMapper.map_exception_to_error_response(e, include_details=debug)
            yield SSEFormatter.format_error_event(error_response)
        else:
            yield SSEFormatter.format_event(RESULT_EVENT, {"result": result})
    finally:
        subscription.dispose()
        if not task.done():
            # Caller went away
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task


def _error_from_body(status_code: int, text: str) -> Exception:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return TransportError(f"Bridge error {status_code}: {truncate_snippet(text)}")

    # HTTPException bodies are wrapped in "detail"
    if isinstance(data, dict) and isinstance(data.get("detail"), dict):
        data = data["detail"]

    try:
        return ErrorMapper.to_exception(ErrorResponse.model_validate(data))
    except ValidationError:
        return TransportError(f"Bridge error {status_code}: {truncate_snippet(text)}")


class HttpChannel:
    """Client for a bridge served by ``create_bridge_router``."""

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 300.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self.on_streaming_progress: Emitter[StreamingProgress] = Emitter(STREAMING_PROGRESS_EVENT)

    def listen(self, event: str) -> Emitter:
        if event == STREAMING_PROGRESS_EVENT:
            return self.on_streaming_progress
        raise UnknownCommandError(f"Event not found: {event}")

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def call(
        self,
        command: str,
        args: Any,
        request_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Run ``command`` on the bridge server.

        Errors reported by the server are raised here with their original
        kind and message.

        Raises:
            TransportError: If the bridge cannot be reached
        """
        return await run_cancellable(self._call(command, args, request_id), token)

    async def _call(self, command: str, args: Any, request_id: Optional[str]) -> Any:
        url = f"{self.base_url}/channel/{command}"
        payload = {"args": args, "request_id": request_id}

        try:
            if command == STREAMING_COMMAND:
                return await self._call_streaming(url, payload)
            response = await self._http.post(url, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"Bridge request failed: {e}") from e

        if response.status_code >= 400:
            raise _error_from_body(response.status_code, response.text)

        try:
            return response.json()["result"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise TransportError(f"Invalid bridge reply: {truncate_snippet(response.text)}") from e

    async def _call_streaming(self, url: str, payload: dict) -> Any:
        async with self._http.stream("POST", url, json=payload) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise _error_from_body(response.status_code, body)

            async for event_type, data in iter_sse_events(response.aiter_lines()):
                if event_type == STREAMING_PROGRESS_EVENT:
                    try:
                        progress = StreamingProgress.model_validate(data)
                    except ValidationError:
                        logger.warning("Skipping malformed bridge progress event", payload=truncate_snippet(str(data)))
                        continue
                    self.on_streaming_progress.fire(progress)
                elif event_type == RESULT_EVENT:
                    return data.get("result")
                elif event_type == ERROR_EVENT:
                    raise _error_from_body(200, json.dumps(data))

        raise TransportError("Bridge stream ended without a result")
