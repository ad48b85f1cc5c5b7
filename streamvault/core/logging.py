"""Structured logging configuration with request_id and video_id propagation

HTTP requests carry a ``request_id``; background processing runs carry the
``video_id`` they work on, so ffmpeg and object store log lines emitted deep
inside a run can be traced back to their video.
"""

import contextvars
import logging
import sys
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

# Context variable for request_id propagation
request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)

# Set for the duration of a processing run
video_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "video_id", default=None
)

# Libraries that are chatty below WARNING (multipart parser, aiohttp client)
QUIET_LOGGERS = ("multipart", "aiohttp")


def add_request_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Add request_id to log entries from context variable

    Args:
        logger: The logger instance
        method_name: The logging method name
        event_dict: The event dictionary

    Returns:
        Updated event dictionary with request_id
    """
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_video_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the video_id of the current processing run, unless the call already passed one"""
    video_id = video_id_var.get()
    if video_id:
        event_dict.setdefault("video_id", video_id)
    return event_dict


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure structured logging with structlog

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_id,
        add_video_id,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        # Console format for development
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request_id in context variable

    Args:
        request_id: Optional request ID, generates one if not provided

    Returns:
        The request_id that was set
    """
    if request_id is None:
        request_id = f"req_{uuid4().hex[:12]}"
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    """Get current request_id from context variable"""
    return request_id_var.get()


def clear_request_id() -> None:
    request_id_var.set(None)


def bind_video_id(video_id: str) -> contextvars.Token:
    """
    Tag every log line of the current task with ``video_id``

    Background tasks copy the context they are created in, so the binding
    stays local to the processing run that made it.

    Returns:
        Token to pass to ``reset_video_id``
    """
    return video_id_var.set(video_id)


def reset_video_id(token: contextvars.Token) -> None:
    video_id_var.reset(token)
