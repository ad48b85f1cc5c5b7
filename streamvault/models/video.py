"""Video record data models.

A ``VideoRecord`` is created when an upload is accepted and is then mutated
by the processing orchestrator only. Readers receive deep copies from the
video store, never the live record.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from streamvault.models.storage import (
    BulkUploadResult,
    NotUploaded,
    StorageRecord,
    storage_record_from_dict,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class VideoStreamInfo:
    """Summary of the primary video stream."""

    codec: str
    width: int
    height: int
    fps: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"codec": self.codec, "width": self.width, "height": self.height, "fps": self.fps}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoStreamInfo":
        return cls(
            codec=data.get("codec", "unknown"),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            fps=float(data.get("fps", 0.0)),
        )


@dataclass
class AudioStreamInfo:
    """Summary of one audio stream.

    ``index`` is the position among the audio streams (the ``0:a:N`` selector),
    ``stream_index`` the absolute stream index in the container.
    """

    index: int
    codec: str = "unknown"
    channels: int = 0
    sample_rate: int = 0
    language: str = "unknown"
    title: str = ""
    stream_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "codec": self.codec,
            "channels": self.channels,
            "sample_rate": self.sample_rate,
            "language": self.language,
            "title": self.title,
            "stream_index": self.stream_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioStreamInfo":
        return cls(
            index=int(data["index"]),
            codec=data.get("codec", "unknown"),
            channels=int(data.get("channels", 0)),
            sample_rate=int(data.get("sample_rate", 0)),
            language=data.get("language", "unknown"),
            title=data.get("title", ""),
            stream_index=data.get("stream_index"),
        )


@dataclass
class MediaInfo:
    """Container and stream metadata of a source file."""

    duration: float = 0.0
    format_name: str = "unknown"
    size: int = 0
    bit_rate: int = 0
    video: Optional[VideoStreamInfo] = None
    audio_streams: List[AudioStreamInfo] = field(default_factory=list)
    probed: bool = True

    @property
    def has_multiple_audio(self) -> bool:
        return len(self.audio_streams) > 1

    @property
    def resolution(self) -> Optional[str]:
        if self.video is None:
            return None
        return f"{self.video.width}x{self.video.height}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "format_name": self.format_name,
            "size": self.size,
            "bit_rate": self.bit_rate,
            "resolution": self.resolution,
            "video": self.video.to_dict() if self.video else None,
            "audio_streams": [a.to_dict() for a in self.audio_streams],
            "has_multiple_audio": self.has_multiple_audio,
            "probed": self.probed,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MediaInfo":
        if not data:
            return cls(probed=False)
        video = data.get("video")
        return cls(
            duration=float(data.get("duration", 0.0)),
            format_name=data.get("format_name", "unknown"),
            size=int(data.get("size", 0)),
            bit_rate=int(data.get("bit_rate", 0)),
            video=VideoStreamInfo.from_dict(video) if video else None,
            audio_streams=[AudioStreamInfo.from_dict(a) for a in data.get("audio_streams", [])],
            probed=bool(data.get("probed", True)),
        )


@dataclass
class ProcessingStatus:
    """Background processing progress polled by clients.

    Once ``complete`` is True the status is terminal and never changes again.
    """

    stage: str = "queued"
    percent: float = 0.0
    current_quality: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    complete: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "percent": round(self.percent, 1),
            "current_quality": self.current_quality,
            "errors": list(self.errors),
            "complete": self.complete,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProcessingStatus":
        if not data:
            return cls()
        return cls(
            stage=data.get("stage", "queued"),
            percent=float(data.get("percent", 0.0)),
            current_quality=data.get("current_quality"),
            errors=list(data.get("errors", [])),
            complete=bool(data.get("complete", False)),
            started_at=_parse_time(data.get("started_at")),
            completed_at=_parse_time(data.get("completed_at")),
        )


@dataclass
class QualityVariant:
    """One rendition listed in a master manifest.

    ``playlist`` is relative to the video's segment directory.
    """

    label: str
    width: int
    height: int
    bandwidth: int
    playlist: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "width": self.width,
            "height": self.height,
            "bandwidth": self.bandwidth,
            "playlist": self.playlist,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityVariant":
        return cls(
            label=data["label"],
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            bandwidth=int(data.get("bandwidth", 0)),
            playlist=data["playlist"],
        )


@dataclass
class ExtractedAudioTrack:
    """An audio stream demuxed into its own file.

    ``path`` is the extracted file on disk, ``playlist`` its segmented stream
    relative to the video's segment directory once generated.
    """

    index: int
    language: str
    title: str
    path: str
    size: int = 0
    storage: StorageRecord = field(default_factory=NotUploaded)
    playlist: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "language": self.language,
            "title": self.title,
            "path": self.path,
            "size": self.size,
            "storage": self.storage.to_dict(),
            "playlist": self.playlist,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedAudioTrack":
        return cls(
            index=int(data["index"]),
            language=data.get("language", "unknown"),
            title=data.get("title", ""),
            path=data["path"],
            size=int(data.get("size", 0)),
            storage=storage_record_from_dict(data.get("storage")),
            playlist=data.get("playlist"),
        )


@dataclass
class AudioHLSStream:
    """Segmented stream generated for one extracted audio track."""

    index: int
    language: str
    title: str
    playlist: str


@dataclass
class StreamArtifacts:
    """Artifacts produced by processing, appended to as phases complete.

    Manifest paths are relative to the video's segment directory.
    """

    master_manifest: Optional[str] = None
    variants: List[QualityVariant] = field(default_factory=list)
    video_only_manifest: Optional[str] = None
    video_only_variants: List[QualityVariant] = field(default_factory=list)
    audio_tracks: List[ExtractedAudioTrack] = field(default_factory=list)
    segment_backup: Optional[BulkUploadResult] = None
    thumbnail: Optional[str] = None

    def track(self, index: int) -> Optional[ExtractedAudioTrack]:
        for track in self.audio_tracks:
            if track.index == index:
                return track
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "master_manifest": self.master_manifest,
            "variants": [v.to_dict() for v in self.variants],
            "video_only_manifest": self.video_only_manifest,
            "video_only_variants": [v.to_dict() for v in self.video_only_variants],
            "audio_tracks": [t.to_dict() for t in self.audio_tracks],
            "segment_backup": self.segment_backup.to_dict() if self.segment_backup else None,
            "thumbnail": self.thumbnail,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StreamArtifacts":
        if not data:
            return cls()
        return cls(
            master_manifest=data.get("master_manifest"),
            variants=[QualityVariant.from_dict(v) for v in data.get("variants", [])],
            video_only_manifest=data.get("video_only_manifest"),
            video_only_variants=[
                QualityVariant.from_dict(v) for v in data.get("video_only_variants", [])
            ],
            audio_tracks=[ExtractedAudioTrack.from_dict(t) for t in data.get("audio_tracks", [])],
            segment_backup=BulkUploadResult.from_dict(data.get("segment_backup")),
            thumbnail=data.get("thumbnail"),
        )


@dataclass
class ShareLink:
    """Public playback link for a video."""

    share_id: str
    created_at: datetime = field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "share_id": self.share_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShareLink":
        return cls(
            share_id=data["share_id"],
            created_at=_parse_time(data.get("created_at")) or _utcnow(),
            expires_at=_parse_time(data.get("expires_at")),
        )


@dataclass
class VideoRecord:
    """One uploaded source file and everything derived from it."""

    id: str
    original_name: str
    size: int
    local_path: str
    upload_date: datetime = field(default_factory=_utcnow)
    metadata: MediaInfo = field(default_factory=MediaInfo)
    storage: StorageRecord = field(default_factory=NotUploaded)
    processing_status: ProcessingStatus = field(default_factory=ProcessingStatus)
    stream_artifacts: StreamArtifacts = field(default_factory=StreamArtifacts)
    view_count: int = 0
    tags: List[str] = field(default_factory=list)
    category: Optional[str] = None
    favorite: bool = False
    share_links: List[ShareLink] = field(default_factory=list)

    @property
    def is_multi_audio(self) -> bool:
        return self.metadata.has_multiple_audio

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary for persistence and API responses."""
        return {
            "id": self.id,
            "original_name": self.original_name,
            "size": self.size,
            "local_path": self.local_path,
            "upload_date": self.upload_date.isoformat(),
            "metadata": self.metadata.to_dict(),
            "storage": self.storage.to_dict(),
            "processing_status": self.processing_status.to_dict(),
            "stream_artifacts": self.stream_artifacts.to_dict(),
            "view_count": self.view_count,
            "tags": list(self.tags),
            "category": self.category,
            "favorite": self.favorite,
            "share_links": [s.to_dict() for s in self.share_links],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoRecord":
        return cls(
            id=data["id"],
            original_name=data.get("original_name", ""),
            size=int(data.get("size", 0)),
            local_path=data.get("local_path", ""),
            upload_date=_parse_time(data.get("upload_date")) or _utcnow(),
            metadata=MediaInfo.from_dict(data.get("metadata")),
            storage=storage_record_from_dict(data.get("storage")),
            processing_status=ProcessingStatus.from_dict(data.get("processing_status")),
            stream_artifacts=StreamArtifacts.from_dict(data.get("stream_artifacts")),
            view_count=int(data.get("view_count", 0)),
            tags=list(data.get("tags", [])),
            category=data.get("category"),
            favorite=bool(data.get("favorite", False)),
            share_links=[ShareLink.from_dict(s) for s in data.get("share_links", [])],
        )
