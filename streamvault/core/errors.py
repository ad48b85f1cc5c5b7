"""Centralized error handling for the API.

This module provides standardized error codes, exception-to-response mapping,
and a global exception handler for FastAPI.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from streamvault.core.exceptions import (
    EncodeError,
    FileTooLargeError,
    InvalidInputError,
    NotFoundError,
    ObjectNotFoundError,
    ProbeError,
    RateLimitedError,
    ShareLinkNotFoundError,
    StorageError,
    StreamUnavailableError,
    StreamVaultError,
    TrackNotFoundError,
    UnsupportedFileTypeError,
    VideoNotFoundError,
)
from streamvault.core.logging import get_request_id
from streamvault.core.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

HTTP_413_CONTENT_TOO_LARGE = 413
HTTP_422_UNPROCESSABLE_CONTENT = 422


class ErrorCode:
    """Standardized error codes for API responses.

    These codes provide machine-readable identifiers for error conditions
    that clients can use to implement error handling logic.
    """

    # Client Errors (4xx)
    INVALID_INPUT = "INVALID_INPUT"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_MEDIA = "INVALID_MEDIA"
    VIDEO_NOT_FOUND = "VIDEO_NOT_FOUND"
    TRACK_NOT_FOUND = "TRACK_NOT_FOUND"
    SHARE_LINK_NOT_FOUND = "SHARE_LINK_NOT_FOUND"
    STREAM_UNAVAILABLE = "STREAM_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Server Errors (5xx)
    ENCODING_FAILED = "ENCODING_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"
    OBJECT_MISSING = "OBJECT_MISSING"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    COMPONENT_UNAVAILABLE = "COMPONENT_UNAVAILABLE"


# Error code to HTTP status code mapping
ERROR_CODE_TO_STATUS: Dict[str, int] = {
    # 400 Bad Request
    ErrorCode.INVALID_INPUT: HTTP_400_BAD_REQUEST,
    ErrorCode.UNSUPPORTED_FILE_TYPE: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_MEDIA: HTTP_400_BAD_REQUEST,
    # 404 Not Found
    ErrorCode.VIDEO_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.TRACK_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.SHARE_LINK_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.STREAM_UNAVAILABLE: HTTP_404_NOT_FOUND,
    ErrorCode.NOT_FOUND: HTTP_404_NOT_FOUND,
    # 413 Payload Too Large
    ErrorCode.FILE_TOO_LARGE: HTTP_413_CONTENT_TOO_LARGE,
    # 422 Unprocessable Entity
    ErrorCode.VALIDATION_ERROR: HTTP_422_UNPROCESSABLE_CONTENT,
    # 429 Too Many Requests
    ErrorCode.RATE_LIMIT_EXCEEDED: HTTP_429_TOO_MANY_REQUESTS,
    # 500 Internal Server Error
    ErrorCode.ENCODING_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.INTERNAL_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
    # 502 Bad Gateway
    ErrorCode.STORAGE_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.OBJECT_MISSING: HTTP_502_BAD_GATEWAY,
    # 503 Service Unavailable
    ErrorCode.COMPONENT_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
}


# User-friendly suggestions for error resolution
ERROR_SUGGESTIONS: Dict[str, str] = {
    ErrorCode.INVALID_INPUT: "Check the request parameters and try again",
    ErrorCode.UNSUPPORTED_FILE_TYPE: (
        "Upload a video file with one of the supported extensions: "
        "mp4, avi, mkv, mov, wmv, flv, webm, m4v, 3gp"
    ),
    ErrorCode.FILE_TOO_LARGE: "The file exceeds the maximum upload size (10GB by default)",
    ErrorCode.INVALID_MEDIA: "The uploaded file could not be read as a video",
    ErrorCode.VIDEO_NOT_FOUND: "The video ID does not exist or has been deleted",
    ErrorCode.TRACK_NOT_FOUND: (
        "Use GET /api/v1/videos/{video_id}/audio-tracks to list available tracks"
    ),
    ErrorCode.SHARE_LINK_NOT_FOUND: "The share link does not exist or has expired",
    ErrorCode.STREAM_UNAVAILABLE: (
        "The video is not available for streaming yet. "
        "Check GET /api/v1/videos/{video_id}/status"
    ),
    ErrorCode.NOT_FOUND: "The requested resource does not exist",
    ErrorCode.VALIDATION_ERROR: "Check the request body and query parameters",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Wait before making more requests",
    ErrorCode.ENCODING_FAILED: "Video processing failed. Check server logs for details",
    ErrorCode.STORAGE_ERROR: "The object store is unavailable. Try again later",
    ErrorCode.OBJECT_MISSING: "The stored copy of this file is no longer available",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Contact administrator if the issue persists",
    ErrorCode.COMPONENT_UNAVAILABLE: "A required system component is unavailable. Check /health for status",
}


# Exception type to error code mapping
# Order matters: subclasses must come before their base classes
EXCEPTION_TO_ERROR_CODE: Dict[Type[Exception], str] = {
    UnsupportedFileTypeError: ErrorCode.UNSUPPORTED_FILE_TYPE,
    FileTooLargeError: ErrorCode.FILE_TOO_LARGE,
    InvalidInputError: ErrorCode.INVALID_INPUT,
    ProbeError: ErrorCode.INVALID_MEDIA,
    VideoNotFoundError: ErrorCode.VIDEO_NOT_FOUND,
    TrackNotFoundError: ErrorCode.TRACK_NOT_FOUND,
    ShareLinkNotFoundError: ErrorCode.SHARE_LINK_NOT_FOUND,
    StreamUnavailableError: ErrorCode.STREAM_UNAVAILABLE,
    NotFoundError: ErrorCode.NOT_FOUND,
    EncodeError: ErrorCode.ENCODING_FAILED,
    RateLimitedError: ErrorCode.RATE_LIMIT_EXCEEDED,
    ObjectNotFoundError: ErrorCode.OBJECT_MISSING,
    StorageError: ErrorCode.STORAGE_ERROR,
    # StreamVaultError must be last (after its subclasses)
    StreamVaultError: ErrorCode.INTERNAL_ERROR,
}


class APIError(Exception):
    """Structured API error that can be converted to ErrorDetail response.

    This exception class provides a standardized way to raise errors
    that will be converted to consistent error responses by the global
    exception handler.
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        """Initialize an API error.

        Args:
            error_code: Machine-readable error code from ErrorCode class.
            message: Human-readable error message.
            details: Optional additional details about the error.
            suggestion: Optional suggestion for resolution. If not provided,
                        the default suggestion for the error code is used.
        """
        self.error_code = error_code
        self.message = message
        self.details = details
        self.suggestion = suggestion or ERROR_SUGGESTIONS.get(error_code)
        super().__init__(message)


def map_exception_to_api_error(exc: Exception) -> APIError:
    """Map domain exceptions to APIError.

    Dictionary order ensures subclasses are checked before their base classes.

    Args:
        exc: The exception to map.

    Returns:
        An APIError with the appropriate error code and message.
    """
    for exc_type, error_code in EXCEPTION_TO_ERROR_CODE.items():
        if isinstance(exc, exc_type):
            return APIError(error_code, str(exc))
    return APIError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def _build_error_response(
    error_code: str,
    message: str,
    details: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a standardized error response dictionary.

    Args:
        error_code: Machine-readable error code.
        message: Human-readable error message.
        details: Optional additional details.
        suggestion: Optional suggestion for resolution.

    Returns:
        Dictionary matching the ErrorDetail schema.
    """
    request_id = get_request_id()
    timestamp = datetime.now(timezone.utc).isoformat()

    response: Dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "timestamp": timestamp,
    }

    if details:
        response["details"] = details
    if request_id:
        response["request_id"] = request_id
    if suggestion:
        response["suggestion"] = suggestion

    return response


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for FastAPI.

    Converts all exceptions to standardized ErrorDetail responses with
    consistent structure, proper HTTP status codes, and request tracing.

    Args:
        request: The FastAPI request object.
        exc: The exception that was raised.

    Returns:
        JSONResponse with ErrorDetail body and appropriate status code.
    """
    if isinstance(exc, APIError):
        status_code = ERROR_CODE_TO_STATUS.get(exc.error_code, HTTP_500_INTERNAL_SERVER_ERROR)
        response = _build_error_response(
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details,
            suggestion=exc.suggestion,
        )
        logger.warning(
            "api_error",
            error_code=exc.error_code,
            message=exc.message,
            path=request.url.path,
        )

    elif isinstance(exc, RequestValidationError):
        status_code = HTTP_422_UNPROCESSABLE_CONTENT
        response = _build_error_response(
            error_code=ErrorCode.VALIDATION_ERROR,
            message="Request validation failed",
            details=str(exc.errors()),
            suggestion=ERROR_SUGGESTIONS.get(ErrorCode.VALIDATION_ERROR),
        )
        logger.warning("validation_error", path=request.url.path)

    elif isinstance(exc, HTTPException):
        status_code = exc.status_code

        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            error_code = exc.detail["error_code"]
            message = exc.detail.get("message", str(exc.detail))
            details = exc.detail.get("details")
        else:
            error_code = _status_to_error_code(status_code)
            message = str(exc.detail) if exc.detail else "An error occurred"
            details = None

        response = _build_error_response(
            error_code=error_code,
            message=message,
            details=details,
            suggestion=ERROR_SUGGESTIONS.get(error_code),
        )
        logger.warning(
            "http_exception",
            status_code=status_code,
            error_code=error_code,
            path=request.url.path,
        )

    elif isinstance(exc, StreamVaultError):
        api_error = map_exception_to_api_error(exc)
        status_code = ERROR_CODE_TO_STATUS.get(api_error.error_code, HTTP_500_INTERNAL_SERVER_ERROR)
        response = _build_error_response(
            error_code=api_error.error_code,
            message=api_error.message,
            details=api_error.details,
            suggestion=api_error.suggestion,
        )
        logger.warning(
            "domain_error",
            error_code=api_error.error_code,
            error_type=type(exc).__name__,
            message=str(exc),
            path=request.url.path,
        )

    else:
        # Unexpected error - log with full traceback
        status_code = HTTP_500_INTERNAL_SERVER_ERROR
        response = _build_error_response(
            error_code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
            suggestion=ERROR_SUGGESTIONS.get(ErrorCode.INTERNAL_ERROR),
        )
        logger.error(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

    route = request.scope.get("route")
    MetricsCollector.record_error(response["error_code"], route.path if route else "/unmatched")

    return JSONResponse(status_code=status_code, content=response)


def _status_to_error_code(status_code: int) -> str:
    """Infer error code from HTTP status code.

    Args:
        status_code: HTTP status code.

    Returns:
        Appropriate error code string.
    """
    if status_code == HTTP_400_BAD_REQUEST:
        return ErrorCode.INVALID_INPUT
    elif status_code == HTTP_404_NOT_FOUND:
        return ErrorCode.NOT_FOUND
    elif status_code == HTTP_413_CONTENT_TOO_LARGE:
        return ErrorCode.FILE_TOO_LARGE
    elif status_code == HTTP_429_TOO_MANY_REQUESTS:
        return ErrorCode.RATE_LIMIT_EXCEEDED
    elif status_code == HTTP_503_SERVICE_UNAVAILABLE:
        return ErrorCode.COMPONENT_UNAVAILABLE
    else:
        return ErrorCode.INTERNAL_ERROR
