"""Playback source resolution and range streaming.

Picks the best source that exists at request time and returns it as a
``StreamResolution`` the HTTP layer turns into a response:

- video: cloud object, then local manifest (redirect), then local original
- audio track: track cloud object, track manifest, local extracted file,
  then the main video manifest
- segment files: local file, then the segment backup in the object store

Range headers that cannot be satisfied are ignored and the full content
is served.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import structlog

from streamvault.core.config import PlaybackConfig
from streamvault.core.exceptions import (
    NotFoundError,
    StorageError,
    StreamUnavailableError,
    TrackNotFoundError,
)
from streamvault.core.metrics import MetricsCollector
from streamvault.core.ranges import parse_range_header
from streamvault.core.validation import file_extension, resolve_within
from streamvault.models.storage import ChunkedObject, SingleObject, StorageRecord
from streamvault.models.video import VideoRecord
from streamvault.services.workspace import Workspace
from streamvault.storage.chunked import ChunkedObjectStore

logger = structlog.get_logger(__name__)

READ_CHUNK_SIZE = 1024 * 1024

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_CONTENT_TYPE = "video/mp2t"
AUDIO_CONTENT_TYPE = "audio/aac"
DEFAULT_VIDEO_CONTENT_TYPE = "video/mp4"

CONTENT_TYPES: Dict[str, str] = {
    "m3u8": MANIFEST_CONTENT_TYPE,
    "ts": SEGMENT_CONTENT_TYPE,
    "aac": AUDIO_CONTENT_TYPE,
    "jpg": "image/jpeg",
    "mp4": "video/mp4",
    "m4v": "video/x-m4v",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "3gp": "video/3gpp",
}


def content_type_for(name: str, default: str = DEFAULT_VIDEO_CONTENT_TYPE) -> str:
    return CONTENT_TYPES.get(file_extension(name), default)


async def iter_file_range(
    path: Path, start: int, end: int, chunk_size: int = READ_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """Yield bytes ``start``..``end`` (inclusive) of a local file."""
    with open(path, "rb") as f:
        f.seek(start)
        remaining = end - start + 1
        while remaining > 0:
            data = await asyncio.to_thread(f.read, min(chunk_size, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data


async def _prime(stream: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Pull the first chunk now so backend errors surface before a response starts."""
    try:
        first: Optional[bytes] = await stream.__anext__()
    except StopAsyncIteration:
        first = None

    async def body() -> AsyncIterator[bytes]:
        if first:
            yield first
        async for chunk in stream:
            yield chunk

    return body()


@dataclass
class StreamResolution:
    """What to send back for a playback request.

    Either ``redirect_url`` is set, or ``body`` streams the selected bytes.
    """

    source: str
    status_code: int = 200
    content_type: str = DEFAULT_VIDEO_CONTENT_TYPE
    content_length: Optional[int] = None
    content_range: Optional[str] = None
    accepts_ranges: bool = True
    body: Optional[AsyncIterator[bytes]] = None
    redirect_url: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_redirect(self) -> bool:
        return self.redirect_url is not None

    @property
    def headers(self) -> Dict[str, str]:
        headers = dict(self.extra_headers)
        if self.accepts_ranges:
            headers["Accept-Ranges"] = "bytes"
        if self.content_length is not None:
            headers["Content-Length"] = str(self.content_length)
        if self.content_range:
            headers["Content-Range"] = self.content_range
        headers["X-Stream-Source"] = self.source
        return headers


class PlaybackResolver:
    """Resolves playback requests against whatever artifacts exist."""

    def __init__(
        self,
        chunked_store: ChunkedObjectStore,
        workspace: Workspace,
        config: PlaybackConfig,
        hls_url_prefix: str = "/api/v1/hls",
    ) -> None:
        self.chunked_store = chunked_store
        self.workspace = workspace
        self.config = config
        self.hls_url_prefix = hls_url_prefix.rstrip("/")

    def manifest_url(self, video_id: str, manifest: str) -> str:
        return f"{self.hls_url_prefix}/{video_id}/{manifest}"

    def manifest_available(self, record: VideoRecord, manifest: Optional[str]) -> bool:
        """True if a manifest can be served locally or from the segment backup."""
        if not manifest:
            return False
        if (self.workspace.hls_video_dir(record.id) / manifest).is_file():
            return True
        backup = record.stream_artifacts.segment_backup
        return backup is not None and manifest in backup.objects

    def main_manifest(self, record: VideoRecord) -> Optional[str]:
        """The servable video manifest, the combined one first."""
        artifacts = record.stream_artifacts
        for manifest in (artifacts.master_manifest, artifacts.video_only_manifest):
            if self.manifest_available(record, manifest):
                return manifest
        return None

    def prefers_segmented(self, record: VideoRecord) -> bool:
        """Large chunked uploads play from segments when a manifest exists."""
        return (
            isinstance(record.storage, ChunkedObject)
            and record.size > self.config.prefer_segmented_above
            and self.main_manifest(record) is not None
        )

    def _redirect(self, video_id: str, manifest: str, source: str) -> StreamResolution:
        return StreamResolution(
            source=source,
            status_code=302,
            content_type=MANIFEST_CONTENT_TYPE,
            accepts_ranges=False,
            redirect_url=self.manifest_url(video_id, manifest),
        )

    async def _from_cloud(
        self, storage: StorageRecord, range_header: Optional[str], content_type: str
    ) -> StreamResolution:
        total = storage.total_size
        byte_range = parse_range_header(range_header, total)
        if byte_range is None:
            body = await _prime(self.chunked_store.open_range(storage))
            return StreamResolution(
                source="cloud", content_type=content_type, content_length=total, body=body
            )

        body = await _prime(self.chunked_store.open_range(storage, byte_range.start, byte_range.end))
        return StreamResolution(
            source="cloud",
            status_code=206,
            content_type=content_type,
            content_length=byte_range.length,
            content_range=byte_range.content_range(),
            body=body,
        )

    def _from_file(
        self, path: Path, range_header: Optional[str], content_type: str, source: str = "local"
    ) -> StreamResolution:
        size = path.stat().st_size
        byte_range = parse_range_header(range_header, size)
        if byte_range is None:
            return StreamResolution(
                source=source,
                content_type=content_type,
                content_length=size,
                body=iter_file_range(path, 0, size - 1),
            )
        return StreamResolution(
            source=source,
            status_code=206,
            content_type=content_type,
            content_length=byte_range.length,
            content_range=byte_range.content_range(),
            body=iter_file_range(path, byte_range.start, byte_range.end),
        )

    async def _try_cloud(
        self,
        storage: StorageRecord,
        range_header: Optional[str],
        content_type: str,
        **log_context: object,
    ) -> Optional[StreamResolution]:
        if not storage.uploaded or not self.chunked_store.enabled:
            return None
        try:
            return await self._from_cloud(storage, range_header, content_type)
        except StorageError as e:
            logger.warning("cloud_stream_failed", error=str(e), **log_context)
            return None

    async def resolve_stream(
        self, record: VideoRecord, range_header: Optional[str] = None
    ) -> StreamResolution:
        """Resolve whole-file or ranged playback of a video.

        Raises:
            StreamUnavailableError: If no source exists.
        """
        content_type = content_type_for(record.original_name)

        if not self.prefers_segmented(record):
            resolution = await self._try_cloud(
                record.storage, range_header, content_type, video_id=record.id
            )
            if resolution is not None:
                MetricsCollector.record_playback("video", resolution.source)
                return resolution

        manifest = self.main_manifest(record)
        if manifest:
            MetricsCollector.record_playback("video", "manifest")
            return self._redirect(record.id, manifest, "manifest")

        local = Path(record.local_path) if record.local_path else None
        if local is not None and local.is_file():
            MetricsCollector.record_playback("video", "local")
            return self._from_file(local, range_header, content_type)

        logger.info("stream_unavailable", video_id=record.id)
        raise StreamUnavailableError(f"Video {record.id} is not available for streaming")

    async def resolve_audio(
        self, record: VideoRecord, track_index: int, range_header: Optional[str] = None
    ) -> StreamResolution:
        """Resolve playback of one audio track.

        Falls back to the main video manifest when the track itself has no
        playable source, so a missing alternate track never breaks playback.

        Raises:
            TrackNotFoundError: If neither the track nor the main stream exists.
        """
        track = record.stream_artifacts.track(track_index)
        log_context = {"video_id": record.id, "track": track_index}

        if track is not None:
            resolution = await self._try_cloud(
                track.storage, range_header, AUDIO_CONTENT_TYPE, **log_context
            )
            if resolution is not None:
                MetricsCollector.record_playback("audio", resolution.source)
                return resolution

            if self.manifest_available(record, track.playlist):
                MetricsCollector.record_playback("audio", "manifest")
                return self._redirect(record.id, track.playlist, "manifest")

            local = Path(track.path)
            if local.is_file():
                MetricsCollector.record_playback("audio", "local")
                return self._from_file(local, range_header, AUDIO_CONTENT_TYPE)

        manifest = self.main_manifest(record)
        if manifest:
            logger.info("audio_track_fallback_to_main", **log_context)
            MetricsCollector.record_playback("audio", "main_manifest")
            return self._redirect(record.id, manifest, "main_manifest")

        raise TrackNotFoundError(f"Audio track {track_index} of video {record.id} is not available")

    async def resolve_hls_file(
        self, record: VideoRecord, relative_path: str, range_header: Optional[str] = None
    ) -> StreamResolution:
        """Serve one manifest or segment of a video's segmented streams.

        Raises:
            InvalidInputError: If the path escapes the video's directory.
            NotFoundError: If the file exists neither locally nor in the backup.
        """
        video_dir = self.workspace.hls_video_dir(record.id)
        path = resolve_within(video_dir, relative_path)
        content_type = content_type_for(path.name, default="application/octet-stream")

        if path.is_file():
            return self._from_file(path, range_header, content_type)

        key = path.relative_to(video_dir.resolve()).as_posix()
        backup = record.stream_artifacts.segment_backup
        ref = backup.objects.get(key) if backup is not None else None
        if ref is not None:
            resolution = await self._try_cloud(
                SingleObject(ref=ref), range_header, content_type, video_id=record.id, key=key
            )
            if resolution is not None:
                return resolution

        raise NotFoundError(f"Stream file not found: {relative_path}")

    def capabilities(self, record: VideoRecord) -> Dict[str, object]:
        """Playback capability flags reported next to the processing status."""
        artifacts = record.stream_artifacts
        playable_tracks: List[int] = [
            track.index
            for track in artifacts.audio_tracks
            if track.storage.uploaded
            or self.manifest_available(record, track.playlist)
            or Path(track.path).is_file()
        ]
        local = Path(record.local_path) if record.local_path else None
        return {
            "cloud_backup": record.storage.uploaded,
            "adaptive_streaming": self.main_manifest(record) is not None,
            "quality_switching": len(artifacts.variants) > 1,
            "multi_audio": record.is_multi_audio and bool(artifacts.video_only_manifest),
            "audio_tracks": playable_tracks,
            "direct_stream": record.storage.uploaded or (local is not None and local.is_file()),
            "segment_backup": artifacts.segment_backup is not None and artifacts.segment_backup.uploaded,
        }


# Global resolver instance
_resolver: Optional[PlaybackResolver] = None


def configure_playback_resolver(
    chunked_store: ChunkedObjectStore, workspace: Workspace, config: PlaybackConfig
) -> PlaybackResolver:
    """Configure the global playback resolver."""
    global _resolver
    _resolver = PlaybackResolver(chunked_store, workspace, config)
    return _resolver


def get_playback_resolver() -> PlaybackResolver:
    """Get the global playback resolver.

    Raises:
        RuntimeError: If the resolver has not been configured.
    """
    if _resolver is None:
        raise RuntimeError("Playback resolver not configured")
    return _resolver
