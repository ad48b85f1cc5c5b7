"""Tests for ffprobe media introspection"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from streamvault.core.exceptions import ProbeError
from streamvault.media.probe import MediaProbe, parse_frame_rate, parse_probe_output

SAMPLE_OUTPUT: Dict[str, Any] = {
    "format": {
        "format_name": "matroska,webm",
        "duration": "120.500000",
        "size": "5242880",
        "bit_rate": "348000",
    },
    "streams": [
        {
            "index": 0,
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "r_frame_rate": "24000/1001",
        },
        {
            "index": 1,
            "codec_type": "audio",
            "codec_name": "aac",
            "channels": 2,
            "sample_rate": "48000",
            "tags": {"language": "eng", "title": "English"},
        },
        {
            "index": 2,
            "codec_type": "audio",
            "codec_name": "ac3",
            "channels": 6,
            "sample_rate": "48000",
            "tags": {"language": "spa"},
        },
        {"index": 3, "codec_type": "subtitle", "codec_name": "subrip"},
    ],
}


def mock_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.wait = AsyncMock(return_value=returncode)
    return process


class TestParseFrameRate:
    """Tests for frame rate parsing"""

    def test_fraction(self) -> None:
        assert parse_frame_rate("30000/1001") == 29.97

    def test_plain_number(self) -> None:
        assert parse_frame_rate("25") == 25.0

    def test_zero_denominator(self) -> None:
        assert parse_frame_rate("0/0") == 0.0

    def test_garbage(self) -> None:
        assert parse_frame_rate("fast") == 0.0
        assert parse_frame_rate(None) == 0.0


class TestParseProbeOutput:
    """Tests for ffprobe JSON reduction"""

    def test_full_output(self) -> None:
        info = parse_probe_output(SAMPLE_OUTPUT)

        assert info.duration == 120.5
        assert info.format_name == "matroska,webm"
        assert info.size == 5242880
        assert info.video.codec == "h264"
        assert info.video.fps == 23.976
        assert info.resolution == "1920x1080"
        assert info.has_multiple_audio is True

        first, second = info.audio_streams
        assert (first.index, first.language, first.title) == (0, "eng", "English")
        assert first.stream_index == 1
        assert (second.index, second.language, second.title) == (1, "spa", "Audio Track 2")
        assert second.channels == 6

    def test_audio_stream_limit(self) -> None:
        info = parse_probe_output(SAMPLE_OUTPUT, max_audio_streams=1)
        assert len(info.audio_streams) == 1
        assert info.has_multiple_audio is False

    def test_cover_art_is_not_the_video(self) -> None:
        raw = {
            "format": {"duration": "10"},
            "streams": [
                {"codec_type": "video", "codec_name": "mjpeg", "disposition": {"attached_pic": 1}},
                {"codec_type": "video", "codec_name": "vp9", "width": 640, "height": 360},
            ],
        }
        info = parse_probe_output(raw)
        assert info.video.codec == "vp9"

    def test_duration_from_streams(self) -> None:
        raw = {
            "format": {},
            "streams": [{"codec_type": "audio", "duration": "42.0"}],
        }
        info = parse_probe_output(raw)
        assert info.duration == 42.0
        assert info.video is None
        assert info.audio_streams[0].language == "unknown"


class TestMediaProbe:
    """Tests for running ffprobe"""

    @pytest.fixture
    def media_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "clip.mkv"
        path.write_bytes(b"\x00" * 64)
        return path

    def test_build_command(self, media_file: Path) -> None:
        cmd = MediaProbe("/usr/bin/ffprobe").build_command(media_file)
        assert cmd[0] == "/usr/bin/ffprobe"
        assert "-show_streams" in cmd
        assert cmd[-1] == str(media_file)

    @pytest.mark.asyncio
    async def test_probe_success(self, media_file: Path) -> None:
        process = mock_process(stdout=json.dumps(SAMPLE_OUTPUT).encode())
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            info = await MediaProbe().probe(media_file)

        assert info.duration == 120.5
        assert len(info.audio_streams) == 2

    @pytest.mark.asyncio
    async def test_lightweight_probe(self, media_file: Path) -> None:
        process = mock_process(stdout=json.dumps(SAMPLE_OUTPUT).encode())
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            info = await MediaProbe().probe(media_file, full=False)

        assert len(info.audio_streams) == 1

    @pytest.mark.asyncio
    async def test_size_falls_back_to_stat(self, media_file: Path) -> None:
        raw = {"format": {"duration": "1"}, "streams": [{"codec_type": "audio"}]}
        process = mock_process(stdout=json.dumps(raw).encode())
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            info = await MediaProbe().probe(media_file)

        assert info.size == 64

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, media_file: Path) -> None:
        process = mock_process(stderr=b"Invalid data found", returncode=1)
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(ProbeError, match="Invalid data found"):
                await MediaProbe().probe(media_file)

    @pytest.mark.asyncio
    async def test_no_streams(self, media_file: Path) -> None:
        process = mock_process(stdout=b'{"format": {}, "streams": []}')
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(ProbeError, match="no streams"):
                await MediaProbe().probe(media_file)

    @pytest.mark.asyncio
    async def test_invalid_json(self, media_file: Path) -> None:
        process = mock_process(stdout=b"not json")
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(ProbeError, match="parse"):
                await MediaProbe().probe(media_file)

    @pytest.mark.asyncio
    async def test_missing_binary(self, media_file: Path) -> None:
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError()),
        ):
            with pytest.raises(ProbeError, match="not installed"):
                await MediaProbe("ffprobe-missing").probe(media_file)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, media_file: Path) -> None:
        process = mock_process()
        process.communicate = AsyncMock(side_effect=asyncio.TimeoutError())
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(ProbeError, match="timed out"):
                await MediaProbe(timeout=0.1).probe(media_file)

        process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_probe_or_stat_degrades(self, media_file: Path) -> None:
        with patch(
            "streamvault.media.probe.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError()),
        ):
            info = await MediaProbe().probe_or_stat(media_file)

        assert info.probed is False
        assert info.size == 64
        assert info.audio_streams == []
