"""Integration tests for the assembled application.

The full app is started through its lifespan with a temporary configuration.
ffmpeg and ffprobe are replaced by in-process fakes so no binaries are needed.
"""

import time
from pathlib import Path
from typing import Any, Dict, Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from fastapi import FastAPI
from fastapi.testclient import TestClient

from streamvault.models.video import AudioStreamInfo, MediaInfo, VideoStreamInfo

SOURCE = bytes(range(256)) * 16  # 4096 bytes

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def base_config(tmp_path: Path) -> Dict[str, Any]:
    """Configuration rooted in a temporary directory with a local object store."""
    return {
        "server": {"host": "127.0.0.1", "port": 8000},
        "storage": {
            "upload_dir": str(tmp_path / "uploads"),
            "temp_dir": str(tmp_path / "temp"),
            "audio_dir": str(tmp_path / "audio"),
            "hls_dir": str(tmp_path / "hls"),
            "data_dir": str(tmp_path / "data"),
            "thumbnail_dir": str(tmp_path / "thumbnails"),
        },
        "object_store": {
            "backend": "local",
            "local_dir": str(tmp_path / "objects"),
            "retry_attempts": 1,
            "retry_delay": 0,
            "bulk_batch_delay": 0,
        },
        "transcode": {"segment_duration": 6, "thumbnail_offset": 5},
        "logging": {"level": "INFO", "format": "json"},
    }


@pytest.fixture
def probe() -> MagicMock:
    """ffprobe stand-in reporting a 720p source with two audio streams."""
    probe = MagicMock()
    probe.probe_or_stat = AsyncMock(
        return_value=MediaInfo(
            duration=60.0,
            format_name="matroska,webm",
            size=len(SOURCE),
            video=VideoStreamInfo(codec="h264", width=1280, height=720, fps=25.0),
            audio_streams=[
                AudioStreamInfo(index=0, codec="aac", channels=2, language="eng", title="English"),
                AudioStreamInfo(index=1, codec="aac", channels=2, language="spa", title="Spanish"),
            ],
        )
    )
    return probe


def start_client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    config: Dict[str, Any],
    fake_runner: Any,
    probe: MagicMock,
) -> Iterator[TestClient]:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config))
    monkeypatch.setenv("APP_CONFIG_PATH", str(config_path))

    from streamvault.main import create_app

    with patch("streamvault.services.processing.FFmpegRunner", return_value=fake_runner), patch(
        "streamvault.main.MediaProbe", return_value=probe
    ):
        with TestClient(create_app()) as client:
            yield client


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    base_config: Dict[str, Any],
    fake_runner: Any,
    probe: MagicMock,
) -> Iterator[TestClient]:
    """Running application with a working object store."""
    yield from start_client(tmp_path, monkeypatch, base_config, fake_runner, probe)


@pytest.fixture
def offline_client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    base_config: Dict[str, Any],
    fake_runner: Any,
    probe: MagicMock,
) -> Iterator[TestClient]:
    """Running application whose object store rejects every write."""
    blocked = tmp_path / "blocked"
    blocked.write_text("not a directory")
    base_config["object_store"]["local_dir"] = str(blocked)
    yield from start_client(tmp_path, monkeypatch, base_config, fake_runner, probe)


def upload(client: TestClient) -> str:
    response = client.post(
        "/api/v1/upload", files={"video": ("holiday.mkv", SOURCE, "video/x-matroska")}
    )
    assert response.status_code == 202
    return response.json()["video_id"]


def wait_until_complete(client: TestClient, video_id: str, timeout: float = 10.0) -> Dict[str, Any]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = client.get(f"/api/v1/videos/{video_id}/status").json()
        if status["complete"]:
            return status
        time.sleep(0.05)
    raise AssertionError(f"processing of {video_id} did not complete within {timeout}s")


# ============================================================================
# Application Assembly Tests
# ============================================================================


class TestApplicationAssembly:
    """Tests for app creation, middleware and error handling."""

    def test_create_app_returns_fastapi_instance(self) -> None:
        from streamvault.main import create_app

        app = create_app()

        assert isinstance(app, FastAPI)
        assert app.title == "StreamVault API"

    def test_openapi_schema_lists_routes(self, client: TestClient) -> None:
        paths = client.get("/openapi.json").json()["paths"]

        assert "/api/v1/upload" in paths
        assert "/api/v1/stream/{video_id}" in paths
        assert "/api/v1/hls/{video_id}/{file_path}" in paths
        assert "/share/{share_id}/stream" in paths

    def test_request_id_echoed(self, client: TestClient) -> None:
        response = client.get("/liveness", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client: TestClient) -> None:
        response = client.get("/liveness")

        assert response.headers["X-Request-ID"]

    def test_error_response_format(self, client: TestClient) -> None:
        response = client.get("/api/v1/videos/unknown", headers={"X-Request-ID": "req-404"})

        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "VIDEO_NOT_FOUND"
        assert data["request_id"] == "req-404"
        assert "timestamp" in data

    def test_unmatched_route(self, client: TestClient) -> None:
        response = client.get("/nowhere")

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_metrics_endpoint_returns_prometheus_format(self, client: TestClient) -> None:
        client.get("/liveness")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text


# ============================================================================
# End-to-End Processing Tests
# ============================================================================


class TestMultiAudioWorkflow:
    """Upload, process and play a multi-audio source with a working object store."""

    def test_full_flow(self, client: TestClient, tmp_path: Path) -> None:
        video_id = upload(client)

        status = wait_until_complete(client, video_id)

        assert status["errors"] == []
        assert status["percent"] == 100.0
        capabilities = status["capabilities"]
        assert capabilities["cloud_backup"] is True
        assert capabilities["segment_backup"] is True
        assert capabilities["adaptive_streaming"] is True
        assert capabilities["multi_audio"] is True
        assert capabilities["quality_switching"] is True
        assert capabilities["audio_tracks"] == [0, 1]

        # Everything with a cloud copy was removed locally
        assert not (tmp_path / "uploads" / video_id).exists()
        assert not (tmp_path / "hls" / video_id).exists()
        assert not any((tmp_path / "audio").rglob("*.aac"))

        # The original streams from the object store, ranges included
        full = client.get(f"/api/v1/stream/{video_id}")
        assert full.status_code == 200
        assert full.headers["x-stream-source"] == "cloud"
        assert full.content == SOURCE

        ranged = client.get(f"/api/v1/stream/{video_id}", headers={"Range": "bytes=1000-1999"})
        assert ranged.status_code == 206
        assert ranged.headers["content-range"] == "bytes 1000-1999/4096"
        assert ranged.content == SOURCE[1000:2000]

        # Manifests and segments come back from the segment backup
        master = client.get(f"/api/v1/hls/{video_id}/master.m3u8")
        assert master.status_code == 200
        assert "720p/playlist.m3u8" in master.text
        segment = client.get(f"/api/v1/hls/{video_id}/720p/segment_000.ts")
        assert segment.content == b"\x47" * 188

        tracks = client.get(f"/api/v1/videos/{video_id}/audio-tracks").json()
        assert [t["uploaded"] for t in tracks["tracks"]] == [True, True]
        assert tracks["video_only_manifest_url"] == f"/api/v1/hls/{video_id}/video-only/master.m3u8"

        audio = client.get(f"/api/v1/audio/{video_id}/1")
        assert audio.status_code == 200
        assert audio.headers["content-type"] == "audio/aac"

        assert client.get(f"/api/v1/videos/{video_id}/thumbnail").status_code == 200
        assert client.get(f"/api/v1/videos/{video_id}").json()["view_count"] == 1

    def test_delete_with_purge(self, client: TestClient, tmp_path: Path) -> None:
        video_id = upload(client)
        wait_until_complete(client, video_id)

        response = client.delete(f"/api/v1/videos/{video_id}", params={"purge": "true"})

        data = response.json()
        assert data["purged"] is True
        assert data["objects_failed"] == 0
        assert data["objects_deleted"] > 0
        assert list((tmp_path / "objects" / "primary").iterdir()) == []
        assert client.get(f"/api/v1/stream/{video_id}").status_code == 404


class TestObjectStoreFailure:
    """Processing and playback when every object store write fails."""

    def test_degrades_to_local_playback(self, offline_client: TestClient, tmp_path: Path) -> None:
        client = offline_client
        video_id = upload(client)

        status = wait_until_complete(client, video_id)

        # Only the audio uploads count as failures; the original stays local
        assert status["errors"] == ["audio_upload: audio track(s) 0, 1 not uploaded"]
        assert status["capabilities"]["cloud_backup"] is False
        assert status["capabilities"]["segment_backup"] is False
        assert status["capabilities"]["adaptive_streaming"] is True

        record = client.get(f"/api/v1/videos/{video_id}").json()
        assert record["storage"]["method"] == "none"
        assert Path(record["local_path"]).exists()
        assert (tmp_path / "hls" / video_id / "master.m3u8").exists()

        redirect = client.get(f"/api/v1/stream/{video_id}", follow_redirects=False)
        assert redirect.status_code == 302
        assert redirect.headers["location"] == f"/api/v1/hls/{video_id}/master.m3u8"

        audio = client.get(f"/api/v1/audio/{video_id}/1", follow_redirects=False)
        assert audio.status_code == 302
        assert audio.headers["location"] == f"/api/v1/hls/{video_id}/audio/track_1/playlist.m3u8"

        # Local files without a cloud copy survive a sweep
        sweep = client.post("/api/v1/admin/cleanup").json()
        assert sweep["files_deleted"] == 0
        assert Path(record["local_path"]).exists()

    def test_storage_health_reports_failure(self, offline_client: TestClient) -> None:
        data = offline_client.get("/api/v1/storage/health").json()

        assert data["backend"] == "local"
        assert data["healthy"] is False
        assert data["destinations"][0]["available"] is False
