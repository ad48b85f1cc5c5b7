"""Request and response schemas for API endpoints.

This module provides Pydantic models for API request validation
and response serialization with OpenAPI examples.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Response for an accepted upload. Processing continues in the background."""

    video_id: str = Field(..., examples=["3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14"])
    stream_url: str = Field(..., examples=["/api/v1/stream/3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14"])
    status_url: str = Field(
        ..., examples=["/api/v1/videos/3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14/status"]
    )
    processing: bool = Field(True, examples=[True])
    original_name: str = Field(..., examples=["holiday.mkv"])
    size: int = Field(..., description="Size in bytes", examples=[104857600])
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Probed container and stream metadata",
        examples=[{"duration": 30.0, "resolution": "1920x1080", "has_multiple_audio": True}],
    )


class ProcessingStatusResponse(BaseModel):
    """Processing status snapshot with playback capability flags."""

    video_id: str = Field(..., examples=["3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14"])
    stage: str = Field(..., examples=["Encoding 720p"])
    percent: float = Field(..., description="Overall progress (0-100)", examples=[42.5])
    current_quality: Optional[str] = Field(None, examples=["720p"])
    errors: List[str] = Field(default_factory=list, examples=[["encode: qualities failed: 1080p"]])
    complete: bool = Field(..., examples=[False])
    started_at: Optional[str] = Field(None, examples=["2025-12-25T10:30:05+00:00"])
    completed_at: Optional[str] = Field(None, examples=["2025-12-25T10:31:00+00:00"])
    capabilities: Dict[str, Any] = Field(
        default_factory=dict,
        examples=[{"adaptive_streaming": True, "multi_audio": False, "cloud_backup": True}],
    )


class AudioTrackResponse(BaseModel):
    """One extracted audio track."""

    index: int = Field(..., examples=[1])
    language: str = Field(..., examples=["eng"])
    title: str = Field(..., examples=["Commentary"])
    size: int = Field(0, examples=[3145728])
    uploaded: bool = Field(False, examples=[True])
    playlist_url: Optional[str] = Field(
        None, examples=["/api/v1/hls/3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14/audio/track_1/playlist.m3u8"]
    )
    stream_url: str = Field(..., examples=["/api/v1/audio/3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14/1"])


class AudioTracksResponse(BaseModel):
    """Audio capability information of a video."""

    video_id: str = Field(..., examples=["3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14"])
    has_multiple_audio: bool = Field(..., examples=[True])
    video_only_manifest_url: Optional[str] = Field(
        None, examples=["/api/v1/hls/3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14/video-only/master.m3u8"]
    )
    master_manifest_url: Optional[str] = Field(
        None, examples=["/api/v1/hls/3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14/master.m3u8"]
    )
    tracks: List[AudioTrackResponse] = Field(default_factory=list)
    original_tracks: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Audio streams found in the source",
        examples=[[{"index": 0, "language": "eng", "title": "Audio Track 1", "codec": "aac"}]],
    )


class VideoSummary(BaseModel):
    """Video list entry."""

    video_id: str = Field(..., examples=["3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14"])
    original_name: str = Field(..., examples=["holiday.mkv"])
    size: int = Field(..., examples=[104857600])
    upload_date: str = Field(..., examples=["2025-12-25T10:30:00+00:00"])
    duration: float = Field(0.0, examples=[30.0])
    complete: bool = Field(..., examples=[True])
    view_count: int = Field(0, examples=[12])


class VideoListResponse(BaseModel):
    """Response for the video list endpoint."""

    videos: List[VideoSummary]
    total: int = Field(..., examples=[1])


class DeleteVideoResponse(BaseModel):
    """Response for a video deletion."""

    video_id: str = Field(..., examples=["3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14"])
    deleted: bool = Field(True, examples=[True])
    local_entries_removed: int = Field(0, examples=[4])
    purged: bool = Field(False, description="Cloud objects were deleted too", examples=[False])
    objects_deleted: int = Field(0, examples=[0])
    objects_failed: int = Field(0, examples=[0])


class ShareRequest(BaseModel):
    """Request body for creating a share link."""

    expires_in_hours: Optional[float] = Field(
        None, gt=0, description="Link lifetime, unlimited when omitted", examples=[24]
    )


class ShareResponse(BaseModel):
    """Created share link."""

    share_id: str = Field(..., examples=["kq3Zb1YxT0w"])
    share_url: str = Field(..., examples=["/share/kq3Zb1YxT0w/stream"])
    expires_at: Optional[str] = Field(None, examples=["2025-12-26T10:30:00+00:00"])


class CleanupResponse(BaseModel):
    """Result of a manual stale file sweep."""

    files_deleted: int = Field(..., examples=[3])
    bytes_reclaimed: int = Field(..., examples=[52428800])
    files_preserved: int = Field(..., examples=[1])
    dry_run: bool = Field(..., examples=[False])
    per_directory: Dict[str, int] = Field(default_factory=dict, examples=[{"uploads": 2, "temp": 1}])


class DestinationHealth(BaseModel):
    """Health of one object store destination."""

    name: str = Field(..., examples=["primary"])
    available: bool = Field(..., examples=[True])
    error: Optional[str] = Field(None, examples=["chat not found"])
    details: Dict[str, Any] = Field(default_factory=dict, examples=[{"role": "primary"}])


class StorageHealthResponse(BaseModel):
    """Object store health report."""

    backend: str = Field(..., examples=["telegram"])
    healthy: bool = Field(..., examples=[True])
    destinations: List[DestinationHealth] = Field(default_factory=list)


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    version: Optional[str] = Field(default=None, examples=["6.1.1"])
    details: Optional[Dict[str, Any]] = Field(default=None, examples=[{"available_gb": 120.5}])


class HealthResponse(BaseModel):
    """Detailed health check response."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    timestamp: str = Field(..., examples=["2025-12-25T10:30:00Z"])
    version: str = Field(..., examples=["1.0.0"])
    uptime_seconds: float = Field(..., examples=[3600.5])
    components: Dict[str, ComponentHealth]


class LivenessResponse(BaseModel):
    """Simple liveness check response for container orchestration."""

    status: Literal["alive"] = Field(..., examples=["alive"])


class ReadinessResponse(BaseModel):
    """Readiness check response for load balancer integration."""

    status: Literal["ready", "not_ready"] = Field(..., examples=["ready"])
    ready: bool = Field(..., examples=[True])
    message: Optional[str] = Field(default=None, examples=["ffmpeg not available"])


class ErrorDetail(BaseModel):
    """Structured error response.

    All API errors follow this format with machine-readable error codes
    and optional suggestions for resolution.
    """

    error_code: str = Field(
        ...,
        description="Machine-readable error code",
        examples=["VIDEO_NOT_FOUND", "UNSUPPORTED_FILE_TYPE", "STREAM_UNAVAILABLE"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Video not found: 3f2b9c0e8a4d4c6f9e1a7b5d2c8e0f14"],
    )
    details: Optional[str] = Field(None, description="Additional error context")
    timestamp: str = Field(..., examples=["2025-12-25T10:30:00Z"])
    request_id: Optional[str] = Field(
        None,
        description="Request ID for tracing",
        examples=["req_550e8400e29b"],
    )
    suggestion: Optional[str] = Field(
        None,
        description="Suggested action to resolve the error",
        examples=["The video ID does not exist or has been deleted"],
    )
