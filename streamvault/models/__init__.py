"""Data models for video records and object store results."""

from streamvault.models.storage import (
    BulkUploadResult,
    ChunkedObject,
    DeleteResult,
    NotUploaded,
    ObjectRef,
    SingleObject,
    StorageRecord,
    storage_record_from_dict,
)
from streamvault.models.video import (
    AudioHLSStream,
    AudioStreamInfo,
    ExtractedAudioTrack,
    MediaInfo,
    ProcessingStatus,
    QualityVariant,
    ShareLink,
    StreamArtifacts,
    VideoRecord,
    VideoStreamInfo,
)

__all__ = [
    # Storage
    "BulkUploadResult",
    "ChunkedObject",
    "DeleteResult",
    "NotUploaded",
    "ObjectRef",
    "SingleObject",
    "StorageRecord",
    "storage_record_from_dict",
    # Video
    "AudioHLSStream",
    "AudioStreamInfo",
    "ExtractedAudioTrack",
    "MediaInfo",
    "ProcessingStatus",
    "QualityVariant",
    "ShareLink",
    "StreamArtifacts",
    "VideoRecord",
    "VideoStreamInfo",
]
