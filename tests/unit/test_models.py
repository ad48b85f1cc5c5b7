"""Tests for the video and storage data models"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from streamvault.models.storage import (
    BulkUploadResult,
    ChunkedObject,
    NotUploaded,
    ObjectRef,
    SingleObject,
    storage_record_from_dict,
)
from streamvault.models.video import (
    AudioStreamInfo,
    ExtractedAudioTrack,
    MediaInfo,
    QualityVariant,
    ShareLink,
    StreamArtifacts,
    VideoRecord,
    VideoStreamInfo,
)


def _ref(object_id: str, size: int, part: Optional[int] = None) -> ObjectRef:
    return ObjectRef(object_id=object_id, size=size, destination="primary", part=part)


class TestStorageRecords:
    """Tests for the storage record variants"""

    def test_not_uploaded(self) -> None:
        record = NotUploaded("object store disabled")
        assert record.uploaded is False
        assert record.refs() == []
        assert record.to_dict() == {
            "method": "none",
            "uploaded": False,
            "reason": "object store disabled",
        }

    def test_single_object(self) -> None:
        record = SingleObject(ref=_ref("a", 10))
        assert record.uploaded is True
        assert record.total_size == 10
        assert record.to_dict()["method"] == "single"

    def test_chunked_parts_are_ordered(self) -> None:
        record = ChunkedObject(parts=[_ref("b", 5, part=2), _ref("a", 10, part=1)])
        assert [p.object_id for p in record.ordered_parts()] == ["a", "b"]
        assert record.total_size == 15
        assert record.to_dict()["total_size"] == 15

    def test_restore_from_dict(self) -> None:
        original = ChunkedObject(parts=[_ref("a", 10, part=1), _ref("b", 5, part=2)])
        restored = storage_record_from_dict(original.to_dict())

        assert isinstance(restored, ChunkedObject)
        assert restored.parts == original.parts
        assert restored.uploaded_at == original.uploaded_at

    def test_restore_missing_is_not_uploaded(self) -> None:
        assert isinstance(storage_record_from_dict(None), NotUploaded)
        assert storage_record_from_dict({"method": "none", "reason": "x"}).reason == "x"

    def test_bulk_result_total(self) -> None:
        result = BulkUploadResult(objects={"master.m3u8": _ref("m", 1)}, failed=["720p/seg.ts"])
        assert result.total == 2
        assert BulkUploadResult.from_dict(None) is None


class TestVideoModels:
    """Tests for the video record models"""

    def test_media_info_multi_audio(self) -> None:
        info = MediaInfo(
            video=VideoStreamInfo(codec="h264", width=1920, height=1080),
            audio_streams=[AudioStreamInfo(index=0), AudioStreamInfo(index=1)],
        )
        assert info.has_multiple_audio is True
        assert info.resolution == "1920x1080"

    def test_media_info_without_video(self) -> None:
        assert MediaInfo().resolution is None
        assert MediaInfo.from_dict(None).probed is False

    def test_share_link_expiry(self) -> None:
        now = datetime.now(timezone.utc)
        assert ShareLink("a").is_expired() is False
        assert ShareLink("b", expires_at=now - timedelta(seconds=1)).is_expired() is True
        assert ShareLink("c", expires_at=now + timedelta(hours=1)).is_expired(now) is False

    def test_artifacts_track_lookup(self) -> None:
        artifacts = StreamArtifacts(
            audio_tracks=[
                ExtractedAudioTrack(index=1, language="spa", title="", path="/a/1.m4a"),
            ]
        )
        assert artifacts.track(1) is not None
        assert artifacts.track(0) is None

    def test_record_restores_nested_state(self) -> None:
        record = VideoRecord(
            id="v1",
            original_name="movie.mkv",
            size=2048,
            local_path="/uploads/v1/original.mkv",
            storage=SingleObject(ref=_ref("obj", 2048)),
            stream_artifacts=StreamArtifacts(
                master_manifest="master.m3u8",
                variants=[QualityVariant("720p", 1280, 720, 3000000, "720p/playlist.m3u8")],
                audio_tracks=[
                    ExtractedAudioTrack(
                        index=0,
                        language="eng",
                        title="English",
                        path="/audio/v1/track_0.m4a",
                        storage=NotUploaded("timed out"),
                        playlist="audio_0/playlist.m3u8",
                    )
                ],
            ),
            share_links=[ShareLink("s1")],
        )

        restored = VideoRecord.from_dict(record.to_dict())

        assert restored.storage.uploaded is True
        assert restored.stream_artifacts.variants[0].label == "720p"
        assert restored.stream_artifacts.audio_tracks[0].storage.reason == "timed out"
        assert restored.share_links[0].share_id == "s1"
        assert restored.to_dict() == record.to_dict()
