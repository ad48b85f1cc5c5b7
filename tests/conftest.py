"""Pytest configuration and shared fixtures"""

import os
from pathlib import Path
from typing import List, Optional

import pytest

from streamvault.core.config import PlaybackConfig, StorageConfig, TranscodeConfig
from streamvault.core.exceptions import EncodeError
from streamvault.media.ffmpeg import EncodeParams, PercentCallback
from streamvault.services.video_store import VideoStore
from streamvault.services.workspace import Workspace


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables before each test"""
    # Clear any APP_ prefixed environment variables
    for key in list(os.environ.keys()):
        if key.startswith("APP_"):
            monkeypatch.delenv(key, raising=False)


class FakeFFmpegRunner:
    """Stands in for FFmpegRunner, writing small placeholder outputs.

    Any run whose output path contains one of ``fail_patterns`` raises
    EncodeError instead.
    """

    def __init__(self) -> None:
        self.fail_patterns: List[str] = []
        self.frame_fails = False
        self.runs: List[EncodeParams] = []

    async def run(
        self,
        params: EncodeParams,
        duration: float = 0.0,
        on_progress: Optional[PercentCallback] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.runs.append(params)
        if any(pattern in params.output_path.as_posix() for pattern in self.fail_patterns):
            raise EncodeError(f"ffmpeg exited with code 1: {params.output_path.name}")

        params.output_path.parent.mkdir(parents=True, exist_ok=True)
        if params.segment_pattern is not None:
            segment = params.output_path.parent / "segment_000.ts"
            segment.write_bytes(b"\x47" * 188)
            params.output_path.write_text(
                "#EXTM3U\n#EXT-X-PLAYLIST-TYPE:VOD\n#EXTINF:6.0,\nsegment_000.ts\n#EXT-X-ENDLIST\n"
            )
        else:
            params.output_path.write_bytes(b"\x00" * 256)

        if on_progress is not None:
            await on_progress(50.0)
            await on_progress(100.0)

    async def extract_frame(
        self, input_path: Path, output_path: Path, offset: float, timeout: float = 60.0
    ) -> None:
        if self.frame_fails:
            raise EncodeError("Frame extraction failed: no frame written")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"\xff\xd8\xff\xe0jpeg")


@pytest.fixture
def fake_runner() -> FakeFFmpegRunner:
    """ffmpeg stand-in that writes placeholder playlists, segments and files"""
    return FakeFFmpegRunner()


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    """Storage config rooted in a temporary directory"""
    return StorageConfig(
        upload_dir=str(tmp_path / "uploads"),
        temp_dir=str(tmp_path / "temp"),
        audio_dir=str(tmp_path / "audio"),
        hls_dir=str(tmp_path / "hls"),
        data_dir=str(tmp_path / "data"),
        thumbnail_dir=str(tmp_path / "thumbnails"),
        max_upload_size=10 * 1024 * 1024,
    )


@pytest.fixture
def workspace(storage_config: StorageConfig) -> Workspace:
    """Initialized workspace"""
    workspace = Workspace(storage_config)
    workspace.initialize()
    return workspace


@pytest.fixture
def video_store() -> VideoStore:
    """In-memory video store"""
    return VideoStore()


@pytest.fixture
def transcode_config() -> TranscodeConfig:
    """Transcode config with short upload timeouts"""
    return TranscodeConfig(
        segment_duration=6,
        max_audio_tracks=4,
        thumbnail_offset=5.0,
        audio_track_upload_timeout=5.0,
        audio_upload_group_timeout=10.0,
    )


@pytest.fixture
def playback_config() -> PlaybackConfig:
    """Playback config with a small segmented delivery threshold"""
    return PlaybackConfig(prefer_segmented_above=1024)
