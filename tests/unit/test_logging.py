"""Tests for structured logging"""

import asyncio
import logging

import pytest

from streamvault.core.logging import (
    QUIET_LOGGERS,
    add_request_id,
    add_video_id,
    bind_video_id,
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    reset_video_id,
    set_request_id,
    video_id_var,
)


class TestRequestIDManagement:
    """Test request_id context variable management"""

    def test_set_request_id_explicit(self) -> None:
        """Test setting explicit request_id"""
        result = set_request_id("test-request-123")

        assert result == "test-request-123"
        assert get_request_id() == "test-request-123"

    def test_set_request_id_auto_generate(self) -> None:
        """Test auto-generating request_id"""
        result = set_request_id()

        assert result.startswith("req_")
        assert len(result) == 16  # "req_" (4) + 12 hex chars
        assert get_request_id() == result

    def test_clear_request_id(self) -> None:
        set_request_id("test-123")
        clear_request_id()

        assert get_request_id() is None


class TestAddRequestIDProcessor:
    """Test request_id processor for structlog"""

    def test_add_request_id_when_set(self) -> None:
        set_request_id("test-request-456")

        result = add_request_id(None, "info", {"event": "upload_received"})

        assert result == {"event": "upload_received", "request_id": "test-request-456"}
        clear_request_id()

    def test_add_request_id_when_not_set(self) -> None:
        clear_request_id()

        result = add_request_id(None, "info", {"event": "upload_received"})

        assert "request_id" not in result


class TestLoggingConfiguration:
    """Test logging configuration"""

    def test_configure_logging_json_format(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test JSON format logging configuration"""
        configure_logging(log_level="INFO", log_format="json")

        logger = get_logger("test")
        set_request_id("req-json-test")

        with caplog.at_level(logging.INFO):
            logger.info("upload_received", video_id="abc", size=1024)

        clear_request_id()

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.levelname == "INFO"
        assert '"event": "upload_received"' in record.message
        assert '"request_id": "req-json-test"' in record.message

    def test_configure_logging_console_format(self) -> None:
        """Test console format logging configuration"""
        configure_logging(log_level="DEBUG", log_format="console")

        # Should not raise
        get_logger("test").debug("debug_message")

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    def test_configure_logging_levels(self, level: str) -> None:
        configure_logging(log_level=level, log_format="json")

        get_logger(f"test_{level}").info("level_check")

    def test_get_logger(self) -> None:
        configure_logging()
        logger = get_logger("test.module")

        assert hasattr(logger, "info")
        assert hasattr(logger, "error")


class TestVideoIDBinding:
    """Test video_id binding for processing runs"""

    def test_add_video_id_when_bound(self) -> None:
        token = bind_video_id("abc123")
        try:
            result = add_video_id(None, "info", {"event": "encode_started"})
        finally:
            reset_video_id(token)

        assert result["video_id"] == "abc123"
        assert video_id_var.get() is None

    def test_explicit_video_id_wins(self) -> None:
        token = bind_video_id("abc123")
        try:
            event = {"event": "replication_failed", "video_id": "other"}
            result = add_video_id(None, "info", event)
        finally:
            reset_video_id(token)

        assert result["video_id"] == "other"

    def test_add_video_id_when_not_bound(self) -> None:
        result = add_video_id(None, "info", {"event": "sweep_completed"})

        assert "video_id" not in result

    @pytest.mark.asyncio
    async def test_binding_stays_inside_task(self) -> None:
        async def run() -> str:
            bind_video_id("in-task")
            return video_id_var.get()

        assert await asyncio.create_task(run()) == "in-task"
        assert video_id_var.get() is None


def test_quiet_loggers_raised_to_warning() -> None:
    configure_logging(log_level="DEBUG", log_format="json")

    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
