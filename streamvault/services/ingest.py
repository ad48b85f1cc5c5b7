"""Upload acceptance.

The only path that propagates errors to the caller: an upload is validated,
written to disk, probed and recorded before the response is returned.
Everything heavier runs afterwards in the processing orchestrator.
"""

import os
import uuid
from pathlib import Path
from typing import Optional

import structlog
from fastapi import UploadFile

from streamvault.core.config import StorageConfig
from streamvault.core.exceptions import FileTooLargeError
from streamvault.core.metrics import MetricsCollector
from streamvault.core.validation import validate_extension
from streamvault.media.probe import MediaProbe
from streamvault.models.video import VideoRecord
from streamvault.services.processing import ProcessingOrchestrator
from streamvault.services.video_store import VideoStore
from streamvault.services.workspace import Workspace

logger = structlog.get_logger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024


class IngestService:
    """Accepts uploaded files and hands them to background processing."""

    def __init__(
        self,
        store: VideoStore,
        workspace: Workspace,
        probe: MediaProbe,
        orchestrator: ProcessingOrchestrator,
        config: StorageConfig,
    ) -> None:
        self.store = store
        self.workspace = workspace
        self.probe = probe
        self.orchestrator = orchestrator
        self.config = config

    async def _write_upload(self, upload: UploadFile, dest: Path) -> int:
        """Stream an upload to ``dest``, enforcing the size limit.

        Raises:
            FileTooLargeError: If the upload exceeds ``max_upload_size``.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        try:
            with open(dest, "wb") as out:
                while True:
                    chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.config.max_upload_size:
                        raise FileTooLargeError(
                            f"Upload exceeds the maximum size of {self.config.max_upload_size} bytes"
                        )
                    out.write(chunk)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise
        return written

    async def accept(self, upload: UploadFile, video_id: Optional[str] = None) -> VideoRecord:
        """Validate, store and record an uploaded video, then start processing.

        Args:
            upload: Multipart file from the request.
            video_id: Identifier to use, generated when None.

        Returns:
            The newly created record.

        Raises:
            UnsupportedFileTypeError: If the extension is not allowed.
            FileTooLargeError: If the upload is too large.
        """
        original_name = upload.filename or ""
        extension = validate_extension(original_name, self.config.allowed_extensions)
        video_id = video_id or uuid.uuid4().hex
        log = logger.bind(video_id=video_id, original_name=original_name)

        temp_path = self.workspace.temp_path(video_id, ".upload")
        size = await self._write_upload(upload, temp_path)

        final_path = self.workspace.upload_path(video_id, extension)
        final_path.parent.mkdir(parents=True, exist_ok=True)
        os.replace(temp_path, final_path)
        log.info("upload_received", size=size, path=str(final_path))

        # Full probe: track switching needs every audio stream
        media_info = await self.probe.probe_or_stat(final_path, full=True)

        record = VideoRecord(
            id=video_id,
            original_name=original_name,
            size=size,
            local_path=str(final_path),
            metadata=media_info,
        )
        self.store.put(record)
        MetricsCollector.record_upload(size)

        self.orchestrator.start(video_id)
        log.info(
            "upload_accepted",
            size=size,
            probed=media_info.probed,
            audio_tracks=len(media_info.audio_streams),
        )
        return record


# Global ingest service instance
_ingest_service: Optional[IngestService] = None


def configure_ingest_service(
    store: VideoStore,
    workspace: Workspace,
    probe: MediaProbe,
    orchestrator: ProcessingOrchestrator,
    config: StorageConfig,
) -> IngestService:
    """Configure the global ingest service."""
    global _ingest_service
    _ingest_service = IngestService(store, workspace, probe, orchestrator, config)
    return _ingest_service


def get_ingest_service() -> IngestService:
    """Get the global ingest service.

    Raises:
        RuntimeError: If the service has not been configured.
    """
    if _ingest_service is None:
        raise RuntimeError("Ingest service not configured")
    return _ingest_service
