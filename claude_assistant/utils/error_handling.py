"""
Error taxonomy and centralized error handling for the Claude assistant client.

This module defines the exceptions raised by the client, maps them to
Anthropic-compatible error envelopes (and HTTP status codes) for the bridge
server, and rebuilds the typed exceptions on the calling side so that errors
cross the process boundary with their kind and message intact.
"""

from enum import Enum
from typing import Dict, Optional, Tuple, Type

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..models.anthropic import AnthropicError, ErrorResponse, ErrorType
from .loguru_utils import LoguruLogger


logger = LoguruLogger("error_handling")

# Bodies of failed responses are cut to this many characters in error messages
MAX_SNIPPET_LENGTH = 500


class ClaudeClientError(Exception):
    """Base class for all errors raised by the Claude assistant client."""

    error_type: ErrorType = ErrorType.API_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotConfiguredError(ClaudeClientError):
    """No API key is configured; no network call was attempted."""

    error_type = ErrorType.AUTHENTICATION_ERROR

    def __init__(self, message: str = "Claude API client is not configured"):
        super().__init__(message)


class TransportError(ClaudeClientError):
    """The HTTP call could not complete (DNS, TLS, reset, timeout)."""


class ApiError(ClaudeClientError):
    """The API answered with an HTTP error status."""

    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        super().__init__(message or f"Claude API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body

    @property
    def error_type(self) -> ErrorType:  # type: ignore[override]
        return STATUS_TO_ERROR_TYPE.get(self.status_code, ErrorType.API_ERROR)


class MalformedResponseError(ClaudeClientError):
    """The response body was not JSON or lacked required fields."""

    def __init__(self, message: str, snippet: str = ""):
        super().__init__(message)
        self.snippet = snippet[:MAX_SNIPPET_LENGTH]


class RequestCancelledError(ClaudeClientError):
    """The caller's cancellation token was signaled."""

    def __init__(self, message: str = "Request was cancelled"):
        super().__init__(message)


class InvalidArgumentsError(ClaudeClientError):
    """A bridge call received arguments of the wrong shape or arity."""

    error_type = ErrorType.INVALID_REQUEST_ERROR


class UnknownCommandError(ClaudeClientError):
    """A bridge call or event name is not recognized."""

    error_type = ErrorType.NOT_FOUND_ERROR


STATUS_TO_ERROR_TYPE: Dict[int, ErrorType] = {
    400: ErrorType.INVALID_REQUEST_ERROR,
    401: ErrorType.AUTHENTICATION_ERROR,
    403: ErrorType.PERMISSION_ERROR,
    404: ErrorType.NOT_FOUND_ERROR,
    429: ErrorType.RATE_LIMIT_ERROR,
    529: ErrorType.OVERLOADED_ERROR,
}


class HTTPStatusCode(int, Enum):
    """HTTP status codes used by the bridge server for error responses."""
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    NOT_FOUND = 404
    CLIENT_CLOSED_REQUEST = 499
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503


class ErrorMapper:
    """Maps exceptions to Anthropic-compatible error responses and back."""

    # Status code the bridge answers with for each client error kind
    ERROR_MAPPINGS: Dict[Type[Exception], HTTPStatusCode] = {
        NotConfiguredError: HTTPStatusCode.UNAUTHORIZED,
        InvalidArgumentsError: HTTPStatusCode.BAD_REQUEST,
        UnknownCommandError: HTTPStatusCode.NOT_FOUND,
        RequestCancelledError: HTTPStatusCode.CLIENT_CLOSED_REQUEST,
        MalformedResponseError: HTTPStatusCode.BAD_GATEWAY,
        ApiError: HTTPStatusCode.BAD_GATEWAY,
        TransportError: HTTPStatusCode.SERVICE_UNAVAILABLE,
        ValidationError: HTTPStatusCode.BAD_REQUEST,
        ValueError: HTTPStatusCode.BAD_REQUEST,
    }

    # Exception classes that can be rebuilt from an error envelope
    KINDS: Dict[str, Type[ClaudeClientError]] = {
        cls.__name__: cls
        for cls in (
            NotConfiguredError,
            TransportError,
            ApiError,
            MalformedResponseError,
            RequestCancelledError,
            InvalidArgumentsError,
            UnknownCommandError,
        )
    }

    @classmethod
    def map_exception_to_error_response(
        cls,
        exception: Exception,
        request: Optional[Request] = None,
        include_details: bool = True
    ) -> Tuple[ErrorResponse, int]:
        """
        Map an exception to an Anthropic-compatible error response.

        Args:
            exception: The exception to map
            request: Optional FastAPI request object for context
            include_details: Whether to keep the message of unexpected errors

        Returns:
            Tuple of (ErrorResponse, HTTP status code)
        """
        if isinstance(exception, HTTPException):
            return cls._handle_http_exception(exception)

        status_code = cls._get_status_code(type(exception))

        if isinstance(exception, ClaudeClientError):
            error = AnthropicError(
                type=exception.error_type,
                message=exception.message,
                kind=exception.__class__.__name__,
                status_code=getattr(exception, "status_code", None),
                detail=_error_detail(exception),
            )
        elif isinstance(exception, (ValidationError, ValueError)):
            error = AnthropicError(
                type=ErrorType.INVALID_REQUEST_ERROR,
                message=str(exception),
                kind=InvalidArgumentsError.__name__,
            )
        else:
            message = str(exception) if include_details and str(exception) else "Internal server error"
            error = AnthropicError(type=ErrorType.API_ERROR, message=message)

        cls._log_error(exception, request, status_code)
        return ErrorResponse(error=error), status_code.value

    @classmethod
    def to_exception(cls, error_response: ErrorResponse) -> Exception:
        """
        Rebuild the exception described by an error envelope.

        Unknown kinds become a plain ``ClaudeClientError`` carrying the message.
        """
        error = error_response.error
        kind = cls.KINDS.get(error.kind or "")

        if kind is ApiError:
            return ApiError(error.status_code or 0, error.detail or "", message=error.message)
        if kind is MalformedResponseError:
            return MalformedResponseError(error.message, error.detail or "")
        if kind is not None:
            return kind(error.message)

        fallback = ClaudeClientError(error.message)
        fallback.error_type = error.type
        return fallback

    @classmethod
    def _handle_http_exception(cls, exception: HTTPException) -> Tuple[ErrorResponse, int]:
        """Handle HTTPException specifically."""
        if isinstance(exception.detail, dict) and "error" in exception.detail:
            return ErrorResponse(**exception.detail), exception.status_code

        error_type = STATUS_TO_ERROR_TYPE.get(exception.status_code, ErrorType.API_ERROR)
        error_response = ErrorResponse(
            error=AnthropicError(type=error_type, message=str(exception.detail))
        )
        return error_response, exception.status_code

    @classmethod
    def _get_status_code(cls, exception_type: Type[Exception]) -> HTTPStatusCode:
        """Get the status code for an exception type, honouring subclasses."""
        if exception_type in cls.ERROR_MAPPINGS:
            return cls.ERROR_MAPPINGS[exception_type]

        for mapped_type, status_code in cls.ERROR_MAPPINGS.items():
            if issubclass(exception_type, mapped_type):
                return status_code

        return HTTPStatusCode.INTERNAL_SERVER_ERROR

    @classmethod
    def _log_error(
        cls,
        exception: Exception,
        request: Optional[Request],
        status_code: HTTPStatusCode
    ) -> None:
        """Log error with appropriate level and context."""
        context = {
            "exception_type": exception.__class__.__name__,
            "status_code": status_code.value,
        }
        if request:
            context.update({
                "method": request.method,
                "path": request.url.path,
            })

        message = f"Error {status_code.value}: {exception.__class__.__name__} - {exception}"
        if status_code.value >= 500:
            logger.error(message, **context)
        else:
            logger.warning(message, **context)


class ErrorHandler:
    """Centralized error handler for the bridge application."""

    def __init__(self, debug: bool = False):
        """
        Initialize error handler.

        Args:
            debug: Whether to include messages of unexpected errors
        """
        self.debug = debug
        self.mapper = ErrorMapper()

    async def handle_error(
        self,
        exception: Exception,
        request: Optional[Request] = None
    ) -> JSONResponse:
        """
        Handle an error and return appropriate JSON response.

        Args:
            exception: The exception to handle
            request: Optional FastAPI request object

        Returns:
            JSONResponse with error details
        """
        error_response, status_code = self.mapper.map_exception_to_error_response(
            exception,
            request,
            include_details=self.debug
        )

        return JSONResponse(
            status_code=status_code,
            content=error_response.model_dump(mode="json")
        )

    def create_validation_error_response(
        self,
        validation_errors: list,
        request: Optional[Request] = None
    ) -> JSONResponse:
        """
        Create error response for request validation errors.

        Args:
            validation_errors: List of validation errors from Pydantic
            request: Optional FastAPI request object

        Returns:
            JSONResponse with validation error details
        """
        error_details = []
        for error in validation_errors:
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            error_details.append(f"{field_path}: {error['msg']}")

        error_message = f"Request validation failed: {'; '.join(error_details)}"

        if request:
            logger.warning(
                f"Validation error for {request.method} {request.url.path}: {error_message}",
                method=request.method,
                path=request.url.path,
            )

        error_response = ErrorResponse(
            error=AnthropicError(
                type=ErrorType.INVALID_REQUEST_ERROR,
                message=error_message,
                kind=InvalidArgumentsError.__name__,
            )
        )

        return JSONResponse(
            status_code=HTTPStatusCode.BAD_REQUEST.value,
            content=error_response.model_dump(mode="json")
        )


def truncate_snippet(text: str, limit: int = MAX_SNIPPET_LENGTH) -> str:
    """Cut a response body down to a diagnostic snippet."""
    return text[:limit]


def _error_detail(exception: ClaudeClientError) -> Optional[str]:
    if isinstance(exception, MalformedResponseError):
        return exception.snippet or None
    if isinstance(exception, ApiError):
        return truncate_snippet(exception.body) or None
    return None
