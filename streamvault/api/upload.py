"""Upload API endpoint.

- POST /api/v1/upload accepts a multipart video and returns immediately;
  processing continues in the background.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, File, UploadFile, status

from streamvault.api.schemas import UploadResponse
from streamvault.services.ingest import IngestService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["upload"])


# Dependency placeholder (to be configured in main app)
async def get_ingest_service() -> IngestService:
    """Get ingest service instance."""
    raise NotImplementedError("Ingest service dependency not configured")


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        202: {"description": "Upload accepted, processing started"},
        400: {"description": "Unsupported file type"},
        413: {"description": "File too large"},
        500: {"description": "Server error"},
    },
)
async def upload_video(
    video: UploadFile = File(..., description="Video file"),  # noqa: B008
    ingest: IngestService = Depends(get_ingest_service),  # noqa: B008
) -> Any:
    """
    Upload a video.

    The file is validated, stored and probed before the response; the cloud
    archive, encoding and audio extraction run afterwards. Poll the status
    URL for progress. The stream URL plays the original immediately.

    Args:
        video: Multipart video file
        ingest: Ingest service instance

    Returns:
        Identifier and URLs of the new video
    """
    logger.info("upload_requested", filename=video.filename, content_type=video.content_type)

    try:
        record = await ingest.accept(video)
    finally:
        await video.close()

    return UploadResponse(
        video_id=record.id,
        stream_url=f"/api/v1/stream/{record.id}",
        status_url=f"/api/v1/videos/{record.id}/status",
        processing=True,
        original_name=record.original_name,
        size=record.size,
        metadata=record.metadata.to_dict(),
    )
