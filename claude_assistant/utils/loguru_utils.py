"""
Structured logging on top of loguru.

Every record is bound with the emitting component and, while a bridge
request is being served, that request's id. ``LoguruLogger`` also keeps
named timers for measuring Claude API calls.
"""

import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional, Tuple

from fastapi import Request, Response
from loguru import logger


REQUEST_ID_HEADER = "x-request-id"

current_request_id: ContextVar[Optional[str]] = ContextVar("current_request_id", default=None)


class LoguruLogger:
    """Component logger binding request context onto loguru records."""

    def __init__(self, component: str = "claude_assistant"):
        self.component = component
        self._timers: Dict[str, Tuple[str, float]] = {}

    def bound(self, **extra: Any):
        """Return the loguru logger bound with component and request context."""
        context: Dict[str, Any] = {"component": self.component}
        request_id = current_request_id.get()
        if request_id is not None:
            context["request_id"] = request_id
        context.update(extra)
        return logger.bind(**context)

    def log(self, level: str, message: str, **extra: Any) -> None:
        # depth=2 reports the caller of debug()/info()/... as the source
        self.bound(**extra).opt(depth=2).log(level, message)

    def debug(self, message: str, **extra: Any) -> None:
        self.log("DEBUG", message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self.log("INFO", message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        self.log("WARNING", message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        self.log("ERROR", message, **extra)

    def start_timer(self, operation: str) -> str:
        """Start timing ``operation``; returns the id to stop it with."""
        timer_id = f"{operation}-{uuid.uuid4().hex[:8]}"
        self._timers[timer_id] = (operation, time.monotonic())
        return timer_id

    def stop_timer(self, timer_id: str, **extra: Any) -> float:
        """
        Stop a timer and log its duration at debug level.

        Returns:
            Elapsed seconds, or 0.0 for an unknown or already stopped timer
        """
        entry = self._timers.pop(timer_id, None)
        if entry is None:
            return 0.0

        operation, started = entry
        elapsed = time.monotonic() - started
        self.debug(f"{operation} took {elapsed:.3f}s", operation=operation, duration_seconds=elapsed, **extra)
        return elapsed

    def log_claude_api_request(self, operation: str, model: str, **extra: Any) -> None:
        self.info(f"Claude API {operation} -> {model}", operation=operation, model=model, **extra)

    def log_claude_api_response(
        self,
        operation: str,
        model: str,
        duration: float,
        success: bool = True,
        **extra: Any,
    ) -> None:
        outcome = "ok" if success else "failed"
        self.log(
            "INFO" if success else "ERROR",
            f"Claude API {operation} {outcome} in {duration:.2f}s",
            operation=operation,
            model=model,
            duration_seconds=duration,
            success=success,
            **extra,
        )

    def log_bridge_response(self, request: Request, response: Response, duration: float) -> None:
        """Log a bridge response at a level matching its status."""
        status = response.status_code
        if status >= 500:
            level = "ERROR"
        elif status >= 400:
            level = "WARNING"
        else:
            level = "INFO"

        self.log(
            level,
            f"{request.method} {request.url.path} -> {status}",
            method=request.method,
            path=request.url.path,
            status_code=status,
            duration_seconds=duration,
        )


def log_claude_api_error(log: LoguruLogger, operation: str, error: Exception) -> None:
    log.error(
        f"Claude API {operation} raised {error.__class__.__name__}: {error}",
        operation=operation,
        error_type=error.__class__.__name__,
    )


def log_request_validation_error(log: LoguruLogger, request: Request, validation_errors: list) -> None:
    fields = sorted({".".join(str(part) for part in error["loc"]) for error in validation_errors})
    log.warning(
        f"Rejected {request.method} {request.url.path}: invalid {', '.join(fields)}",
        method=request.method,
        path=request.url.path,
        error_count=len(validation_errors),
    )


class RequestContextMiddleware:
    """
    ASGI middleware giving each bridge request an id.

    A caller-supplied ``x-request-id`` header is kept; otherwise a fresh id
    is generated. The id is echoed on the response and bound to every log
    record emitted while the request is served.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming = dict(scope.get("headers") or []).get(REQUEST_ID_HEADER.encode())
        request_id = incoming.decode("latin-1") if incoming else uuid.uuid4().hex
        reset_token = current_request_id.set(request_id)

        async def send_with_id(message):
            if message["type"] == "http.response.start":
                message["headers"] = [
                    *message.get("headers", []),
                    (REQUEST_ID_HEADER.encode(), request_id.encode("latin-1")),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        finally:
            current_request_id.reset(reset_token)
