"""Playback API endpoints.

- GET /api/v1/stream/{video_id}: range-aware video playback
- GET /api/v1/audio/{video_id}/{track_index}: one audio track
- GET /api/v1/hls/{video_id}/{path}: manifests and segments
- GET /share/{share_id}/stream: playback through a share link
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import RedirectResponse, Response, StreamingResponse

from streamvault.core.exceptions import ShareLinkNotFoundError
from streamvault.services.playback import PlaybackResolver, StreamResolution
from streamvault.services.video_store import VideoStore

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["stream"])


# Dependency placeholders (to be configured in main app)
async def get_video_store() -> VideoStore:
    """Get video store instance."""
    raise NotImplementedError("Video store dependency not configured")


async def get_playback_resolver() -> PlaybackResolver:
    """Get playback resolver instance."""
    raise NotImplementedError("Playback resolver dependency not configured")


def to_response(resolution: StreamResolution) -> Response:
    """Turn a resolved source into a redirect or a streaming response."""
    if resolution.is_redirect:
        return RedirectResponse(
            resolution.redirect_url,
            status_code=resolution.status_code,
            headers={"X-Stream-Source": resolution.source},
        )
    return StreamingResponse(
        resolution.body,
        status_code=resolution.status_code,
        media_type=resolution.content_type,
        headers=resolution.headers,
    )


def _counts_as_view(range_header: Optional[str]) -> bool:
    # Players issue many ranged requests per view; count only the opening one
    if not range_header:
        return True
    return range_header.replace(" ", "").lower().startswith("bytes=0-")


@router.get(
    "/api/v1/stream/{video_id}",
    responses={
        200: {"description": "Full content"},
        206: {"description": "Partial content"},
        302: {"description": "Redirect to the adaptive stream manifest"},
        404: {"description": "Video not found or not available for streaming"},
    },
)
async def stream_video(
    video_id: str,
    range_header: Optional[str] = Header(None, alias="Range"),  # noqa: B008
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    resolver: PlaybackResolver = Depends(get_playback_resolver),  # noqa: B008
) -> Response:
    """
    Stream a video.

    Serves the cloud copy, the adaptive stream or the local original,
    whichever is available first. Honors single ``Range`` headers.
    """
    record = store.get_or_raise(video_id)
    resolution = await resolver.resolve_stream(record, range_header)
    if _counts_as_view(range_header):
        store.increment_views(video_id)

    logger.info(
        "stream_resolved",
        video_id=video_id,
        source=resolution.source,
        status_code=resolution.status_code,
        range=range_header,
    )
    return to_response(resolution)


@router.get(
    "/api/v1/audio/{video_id}/{track_index}",
    responses={
        200: {"description": "Full content"},
        206: {"description": "Partial content"},
        302: {"description": "Redirect to the track or main manifest"},
        404: {"description": "Video or track not available"},
    },
)
async def stream_audio_track(
    video_id: str,
    track_index: int,
    range_header: Optional[str] = Header(None, alias="Range"),  # noqa: B008
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    resolver: PlaybackResolver = Depends(get_playback_resolver),  # noqa: B008
) -> Response:
    """Stream one extracted audio track, falling back to the main stream."""
    record = store.get_or_raise(video_id)
    resolution = await resolver.resolve_audio(record, track_index, range_header)
    logger.info(
        "audio_stream_resolved",
        video_id=video_id,
        track=track_index,
        source=resolution.source,
    )
    return to_response(resolution)


@router.get(
    "/api/v1/hls/{video_id}/{file_path:path}",
    responses={
        200: {"description": "Manifest or segment"},
        206: {"description": "Partial segment"},
        400: {"description": "Invalid path"},
        404: {"description": "File not found"},
    },
)
async def serve_stream_file(
    video_id: str,
    file_path: str,
    range_header: Optional[str] = Header(None, alias="Range"),  # noqa: B008
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    resolver: PlaybackResolver = Depends(get_playback_resolver),  # noqa: B008
) -> Response:
    """Serve a manifest or segment, from disk or from the segment backup."""
    record = store.get_or_raise(video_id)
    resolution = await resolver.resolve_hls_file(record, file_path, range_header)
    return to_response(resolution)


@router.get(
    "/share/{share_id}/stream",
    responses={404: {"description": "Share link unknown or expired"}},
)
async def stream_shared(
    share_id: str,
    range_header: Optional[str] = Header(None, alias="Range"),  # noqa: B008
    store: VideoStore = Depends(get_video_store),  # noqa: B008
    resolver: PlaybackResolver = Depends(get_playback_resolver),  # noqa: B008
) -> Response:
    """Stream a video through a share link."""
    record = store.find_by_share_id(share_id)
    if record is None:
        raise ShareLinkNotFoundError(f"Share link not found: {share_id}")

    link = next(link for link in record.share_links if link.share_id == share_id)
    if link.is_expired():
        logger.info("share_link_expired", share_id=share_id, video_id=record.id)
        raise ShareLinkNotFoundError(f"Share link has expired: {share_id}")

    resolution = await resolver.resolve_stream(record, range_header)
    if _counts_as_view(range_header):
        store.increment_views(record.id)
    return to_response(resolution)
