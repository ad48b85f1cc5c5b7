"""Tests for the media binary checks"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from streamvault.core.checks import check_ffmpeg, check_ffprobe


def mock_process(stdout: bytes, returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, b""))
    process.wait = AsyncMock(return_value=returncode)
    return process


class TestBinaryChecks:
    """Tests for ffmpeg and ffprobe availability"""

    @pytest.mark.asyncio
    async def test_ffmpeg_version(self) -> None:
        process = mock_process(b"ffmpeg version 6.1.1 Copyright (c) 2000-2023")
        with patch(
            "streamvault.core.checks.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ) as spawn:
            result = await check_ffmpeg("/opt/ffmpeg")

        assert result.available is True
        assert result.version == "6.1.1"
        assert spawn.await_args.args[:2] == ("/opt/ffmpeg", "-version")

    @pytest.mark.asyncio
    async def test_ffprobe_version(self) -> None:
        process = mock_process(b"ffprobe version n7.0 Copyright")
        with patch(
            "streamvault.core.checks.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            result = await check_ffprobe()

        assert result.available is True
        assert result.version == "n7.0"

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        with patch(
            "streamvault.core.checks.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError()),
        ):
            result = await check_ffmpeg()

        assert result.available is False
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_nonzero_exit(self) -> None:
        with patch(
            "streamvault.core.checks.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=mock_process(b"", returncode=1)),
        ):
            result = await check_ffprobe()

        assert result.available is False

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        process = mock_process(b"")
        process.communicate = AsyncMock(side_effect=asyncio.TimeoutError())
        with patch(
            "streamvault.core.checks.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            result = await check_ffmpeg(timeout=0.01)

        assert result.available is False
        assert "timed out" in result.error
        process.kill.assert_called_once()
