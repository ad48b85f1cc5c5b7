"""Video API endpoints.

- GET /api/v1/videos, GET /api/v1/videos/{video_id}
- DELETE /api/v1/videos/{video_id} (optionally purging cloud objects)
- GET /api/v1/videos/{video_id}/status
- GET /api/v1/videos/{video_id}/audio-tracks
- GET /api/v1/videos/{video_id}/thumbnail
- POST /api/v1/videos/{video_id}/share
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse

from streamvault.api.schemas import (
    AudioTrackResponse,
    AudioTracksResponse,
    DeleteVideoResponse,
    ProcessingStatusResponse,
    ShareRequest,
    ShareResponse,
    VideoListResponse,
    VideoSummary,
)
from streamvault.core.exceptions import NotFoundError
from streamvault.models.video import ShareLink
from streamvault.services.playback import PlaybackResolver
from streamvault.services.video_store import VideoStore
from streamvault.services.workspace import Workspace
from streamvault.storage.chunked import ChunkedObjectStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/videos", tags=["videos"])


# Dependency placeholders (to be configured in main app)
async def get_video_store() -> VideoStore:
    """Get video store instance."""
    raise NotImplementedError("Video store dependency not configured")


async def get_chunked_store() -> ChunkedObjectStore:
    """Get chunked object store instance."""
    raise NotImplementedError("Chunked object store dependency not configured")


async def get_workspace() -> Workspace:
    """Get workspace instance."""
    raise NotImplementedError("Workspace dependency not configured")


async def get_playback_resolver() -> PlaybackResolver:
    """Get playback resolver instance."""
    raise NotImplementedError("Playback resolver dependency not configured")


@router.get("", response_model=VideoListResponse)
async def list_videos(
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum entries"),  # noqa: B008
    store: VideoStore = Depends(get_video_store),  # noqa: B008
) -> Any:
    """List videos, newest upload first."""
    records = store.list_all(limit=limit)
    return VideoListResponse(
        videos=[
            VideoSummary(
                video_id=r.id,
                original_name=r.original_name,
                size=r.size,
                upload_date=r.upload_date.isoformat(),
                duration=r.metadata.duration,
                complete=r.processing_status.complete,
                view_count=r.view_count,
            )
            for r in records
        ],
        total=store.count(),
    )


@router.get(
    "/{video_id}",
    responses={404: {"description": "Video not found"}},
)
async def get_video(
    video_id: str,
    store: VideoStore = Depends(get_video_store),  # noqa: B008
) -> Any:
    """Get a snapshot of a video record."""
    return store.get_or_raise(video_id).to_dict()


@router.delete(
    "/{video_id}",
    response_model=DeleteVideoResponse,
    responses={404: {"description": "Video not found"}},
)
async def delete_video(
    video_id: str,
    purge: bool = Query(False, description="Also delete the cloud copies"),  # noqa: B008
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    chunked_store: ChunkedObjectStore = Depends(get_chunked_store),  # noqa: B008
    workspace: Workspace = Depends(get_workspace),  # noqa: B008
) -> Any:
    """
    Delete a video.

    Removes the record and its local files. Cloud objects are left in
    place for disaster recovery unless ``purge`` is set.

    Args:
        video_id: Video identifier
        purge: Also delete every stored object of the video
        store: Video store instance
        chunked_store: Chunked object store instance
        workspace: Workspace instance

    Returns:
        Deletion summary
    """
    record = store.delete(video_id)
    removed = workspace.remove_video_files(video_id, record.local_path)

    response = DeleteVideoResponse(video_id=video_id, local_entries_removed=removed)
    if purge:
        outcomes = [await chunked_store.delete_objects(record.storage)]
        for track in record.stream_artifacts.audio_tracks:
            outcomes.append(await chunked_store.delete_objects(track.storage))
        if record.stream_artifacts.segment_backup is not None:
            outcomes.append(await chunked_store.delete_bulk(record.stream_artifacts.segment_backup))

        response.purged = True
        response.objects_deleted = sum(o.deleted for o in outcomes)
        response.objects_failed = sum(o.failed for o in outcomes)

    logger.info(
        "video_deleted",
        video_id=video_id,
        purge=purge,
        local_entries_removed=removed,
        objects_deleted=response.objects_deleted,
        objects_failed=response.objects_failed,
    )
    return response


@router.get(
    "/{video_id}/status",
    response_model=ProcessingStatusResponse,
    responses={404: {"description": "Video not found"}},
)
async def get_status(
    video_id: str,
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    resolver: PlaybackResolver = Depends(get_playback_resolver),  # noqa: B008
) -> Any:
    """
    Get the processing status.

    Clients poll this until ``complete`` is true. Degraded results are
    reported through ``errors`` and the capability flags.
    """
    record = store.get_or_raise(video_id)
    status = record.processing_status.to_dict()
    return ProcessingStatusResponse(
        video_id=video_id,
        capabilities=resolver.capabilities(record),
        **status,
    )


@router.get(
    "/{video_id}/audio-tracks",
    response_model=AudioTracksResponse,
    responses={404: {"description": "Video not found"}},
)
async def get_audio_tracks(
    video_id: str,
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    resolver: PlaybackResolver = Depends(get_playback_resolver),  # noqa: B008
) -> Any:
    """List the audio tracks a player can switch between."""
    record = store.get_or_raise(video_id)
    artifacts = record.stream_artifacts

    def url_for(manifest: Optional[str]) -> Optional[str]:
        if not resolver.manifest_available(record, manifest):
            return None
        return resolver.manifest_url(video_id, manifest)

    return AudioTracksResponse(
        video_id=video_id,
        has_multiple_audio=record.is_multi_audio,
        video_only_manifest_url=url_for(artifacts.video_only_manifest),
        master_manifest_url=url_for(artifacts.master_manifest),
        tracks=[
            AudioTrackResponse(
                index=track.index,
                language=track.language,
                title=track.title,
                size=track.size,
                uploaded=track.storage.uploaded,
                playlist_url=url_for(track.playlist),
                stream_url=f"/api/v1/audio/{video_id}/{track.index}",
            )
            for track in artifacts.audio_tracks
        ],
        original_tracks=[stream.to_dict() for stream in record.metadata.audio_streams],
    )


@router.get(
    "/{video_id}/thumbnail",
    response_class=FileResponse,
    responses={404: {"description": "Video or thumbnail not found"}},
)
async def get_thumbnail(
    video_id: str,
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    workspace: Workspace = Depends(get_workspace),  # noqa: B008
) -> Any:
    """Get the thumbnail JPEG."""
    store.get_or_raise(video_id)
    path = workspace.thumbnail_path(video_id)
    if not path.is_file():
        raise NotFoundError(f"No thumbnail for video {video_id}")
    return FileResponse(path, media_type="image/jpeg")


@router.post(
    "/{video_id}/share",
    response_model=ShareResponse,
    status_code=201,
    responses={404: {"description": "Video not found"}},
)
async def create_share_link(
    video_id: str,
    request: Optional[ShareRequest] = None,
    store: VideoStore = Depends(get_video_store),  # noqa: B008
) -> Any:
    """Create a public playback link, optionally expiring."""
    request = request or ShareRequest()
    expires_at = None
    if request.expires_in_hours:
        expires_at = datetime.now(timezone.utc) + timedelta(hours=request.expires_in_hours)

    link = ShareLink(share_id=secrets.token_urlsafe(8), expires_at=expires_at)
    store.add_share_link(video_id, link)
    logger.info("share_link_created", video_id=video_id, share_id=link.share_id)

    return ShareResponse(
        share_id=link.share_id,
        share_url=f"/share/{link.share_id}/stream",
        expires_at=expires_at.isoformat() if expires_at else None,
    )
