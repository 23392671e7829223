"""
Bridge server and composition root for the Claude assistant client.

``create_app`` builds the network-capable process: a FastAPI application
serving the bridge channel over HTTP, with request context, logging and
Anthropic-style error responses. ``build_client`` wires a
``ClaudeApiClient`` for callers, talking to the API directly or through a
bridge server when ``bridge_url`` is set.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from . import __version__
from .bridge.channel import COMMAND_ARITY, ChannelClient, ClaudeChannel
from .bridge.http import HttpChannel, create_bridge_router
from .core.claude_client import ClaudeApiClient
from .core.claude_service import ClaudeHttpService
from .core.config import Settings, configure_logging, get_settings
from .core.configuration import ConfigurationHolder
from .utils.error_handling import ErrorHandler
from .utils.loguru_utils import (
    LoguruLogger,
    RequestContextMiddleware,
    log_request_validation_error,
)


logger = LoguruLogger("main")


def build_client(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ClaudeApiClient:
    """
    Wire a configuration holder and a request executor from settings.

    Args:
        settings: Process settings; defaults to the loaded settings
        transport: Optional httpx transport (tests use ``MockTransport``)

    Returns:
        ClaudeApiClient over a direct or bridge transport
    """
    settings = settings or get_settings()
    holder = ConfigurationHolder.from_settings(settings)

    if settings.bridge_url:
        http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
        channel = HttpChannel(settings.bridge_url, http_client, timeout=settings.stream_read_timeout)
        relay = ChannelClient(channel, supports_streaming=settings.streaming_enabled)
        logger.info(f"Relaying Claude calls through bridge at {settings.bridge_url}")
        return ClaudeApiClient(holder, relay)

    return ClaudeApiClient(holder, ClaudeHttpService.from_settings(settings, transport))


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create the bridge server application.

    Args:
        settings: Process settings; defaults to the loaded settings
        transport: Optional httpx transport for the upstream Claude API

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(settings)

    service = ClaudeHttpService.from_settings(settings, transport)
    channel = ClaudeChannel(service)
    default_configuration = ConfigurationHolder.from_settings(settings)
    error_handler = ErrorHandler(debug=settings.debug)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Log startup and close the upstream HTTP client on shutdown."""
        logger.info(f"Starting Claude bridge server v{settings.api_version}")
        if not default_configuration.is_configured():
            logger.warning("No default API key configured; callers must supply one")

        yield

        try:
            await service.close()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.channel = channel

    app.add_middleware(RequestContextMiddleware)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Log failed and slow bridge requests."""
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                method=request.method,
                path=request.url.path,
                duration_seconds=time.time() - start_time,
                error_type=e.__class__.__name__,
            )
            raise

        process_time = time.time() - start_time
        if response.status_code >= 400:
            logger.log_bridge_response(request, response, process_time)
        elif process_time > 1.0 and not request.url.path.startswith("/channel"):
            logger.warning(
                "Slow request detected",
                method=request.method,
                path=request.url.path,
                duration_seconds=process_time,
                status_code=response.status_code,
            )

        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Answer malformed bridge bodies with an invalid_request_error."""
        log_request_validation_error(logger, request, exc.errors())
        return error_handler.create_validation_error_response(exc.errors(), request)

    @app.exception_handler(ValidationError)
    async def pydantic_validation_exception_handler(request: Request, exc: ValidationError):
        return await error_handler.handle_error(exc, request)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return await error_handler.handle_error(exc, request)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        return await error_handler.handle_error(exc, request)

    app.include_router(create_bridge_router(channel, debug=settings.debug))

    @app.get("/health")
    async def health_check():
        """
        Report whether a default API key is configured.

        No request is made to the Claude API.
        """
        configured = default_configuration.is_configured()
        return {
            "status": "healthy",
            "version": settings.api_version,
            "components": {
                "claude_api": {
                    "configured": configured,
                    "model": default_configuration.configuration.model,
                    "streaming": service.supports_streaming,
                }
            },
        }

    @app.get("/")
    async def root():
        """Basic service information."""
        return {
            "name": settings.api_title,
            "description": settings.api_description,
            "version": settings.api_version,
            "package_version": __version__,
            "endpoints": {
                "channel": "/channel/{command}",
                "health": "/health",
                "docs": "/docs",
            },
            "commands": list(COMMAND_ARITY),
            "status": "running",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "claude_assistant.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level="critical",
        access_log=False,
    )
