"""Background processing of uploaded videos.

One run per video, detached from the upload request:

1. archive the original in the object store (non-critical)
2. thumbnail (best-effort)
3. audio extraction, multi-audio sources only (0-20%)
4. video-only ladder, multi-audio sources only (20-60%)
5. standard ladder (0-85%, or 60-85% for multi-audio sources)
6. per-track audio streams (85-95%) and their object store uploads
7. segment backup, only when the original was archived and the ladder exists
8. local cleanup of whatever now has a cloud copy

A failing phase is recorded in ``processing_status.errors`` as
``"<phase>: <message>"`` and never aborts its siblings. ``complete`` is set
at the end of every run.
"""

import asyncio
import shutil
import time
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional, Tuple

import structlog

from streamvault.core.config import Config, TranscodeConfig
from streamvault.core.exceptions import EncodeError, StreamVaultError, VideoNotFoundError
from streamvault.core.logging import bind_video_id, reset_video_id
from streamvault.core.metrics import MetricsCollector
from streamvault.core.progress import ProgressCallback, scaled
from streamvault.media.audio import AudioTrackExtractor
from streamvault.media.ffmpeg import FFmpegRunner
from streamvault.media.hls import AdaptiveStreamEncoder
from streamvault.models.storage import BulkUploadResult, NotUploaded, StorageRecord
from streamvault.models.video import ExtractedAudioTrack, StreamArtifacts, VideoRecord
from streamvault.services.video_store import VideoStore
from streamvault.services.workspace import Workspace
from streamvault.storage.chunked import ChunkedObjectStore

logger = structlog.get_logger(__name__)

# Overall progress windows
EXTRACT_RANGE = (0.0, 20.0)
VIDEO_ONLY_RANGE = (20.0, 60.0)
STANDARD_RANGE_SINGLE = (0.0, 85.0)
STANDARD_RANGE_MULTI = (60.0, 85.0)
AUDIO_HLS_RANGE = (85.0, 95.0)


class ProcessingOrchestrator:
    """Drives the processing phases of every uploaded video.

    The orchestrator is the only writer of a video's processing status,
    storage record and stream artifacts while its run is active.
    """

    def __init__(
        self,
        store: VideoStore,
        chunked_store: ChunkedObjectStore,
        workspace: Workspace,
        encoder: AdaptiveStreamEncoder,
        extractor: AudioTrackExtractor,
        config: TranscodeConfig,
        force_cleanup: bool = False,
    ) -> None:
        self.store = store
        self.chunked_store = chunked_store
        self.workspace = workspace
        self.encoder = encoder
        self.extractor = extractor
        self.config = config
        self.force_cleanup = force_cleanup
        self._tasks: Dict[str, asyncio.Task] = {}

    def start(self, video_id: str) -> bool:
        """Spawn the background run for a video.

        Returns:
            False if a run for this video is already active.
        """
        if self.is_active(video_id):
            logger.warning("processing_already_active", video_id=video_id)
            return False

        task = asyncio.create_task(self.process(video_id))
        self._tasks[video_id] = task
        task.add_done_callback(lambda done: self._forget(video_id, done))
        MetricsCollector.set_active_processing(len(self._tasks))
        logger.info("processing_scheduled", video_id=video_id)
        return True

    def _forget(self, video_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(video_id) is task:
            del self._tasks[video_id]
        MetricsCollector.set_active_processing(len(self._tasks))

    def is_active(self, video_id: str) -> bool:
        task = self._tasks.get(video_id)
        return task is not None and not task.done()

    def holds_local_files(self, video_id: str) -> bool:
        """True while local files of a video must survive the stale file sweep.

        That is while its run is active, or while the original has no cloud copy.
        """
        if self.is_active(video_id):
            return True
        record = self.store.get(video_id)
        return record is not None and not record.storage.uploaded

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def wait(self, video_id: str) -> None:
        """Wait for the run of a video to finish, if one is active."""
        task = self._tasks.get(video_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every active run."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("processing_shutdown", cancelled=len(tasks))

    def _reporter(self, video_id: str) -> ProgressCallback:
        async def report(percent: float, stage: str, quality: Optional[str] = None) -> None:
            self.store.update_status(video_id, stage=stage, percent=percent, current_quality=quality)

        return report

    def _record_error(self, video_id: str, phase: str, message: str) -> None:
        logger.warning("processing_phase_failed", video_id=video_id, phase=phase, error=message)
        self.store.update_status(video_id, error=f"{phase}: {message}")

    async def _run_phase(
        self, video_id: str, phase: str, operation: Awaitable[Any]
    ) -> Tuple[bool, Any]:
        """Await one phase inside its own error boundary.

        Returns:
            (succeeded, result); the result is None when the phase failed.
        """
        started = time.monotonic()
        success = False
        try:
            result = await operation
            success = True
            return True, result
        except VideoNotFoundError:
            raise
        except StreamVaultError as e:
            self._record_error(video_id, phase, str(e))
        except Exception as e:
            logger.error(
                "processing_phase_crashed",
                video_id=video_id,
                phase=phase,
                error=str(e),
                exc_info=True,
            )
            self._record_error(video_id, phase, f"unexpected error: {e}")
        finally:
            MetricsCollector.record_phase(phase, time.monotonic() - started, success)
        return False, None

    async def process(self, video_id: str) -> None:
        """Run every phase for a video and mark its status complete."""
        token = bind_video_id(video_id)
        try:
            await self._process(video_id)
        finally:
            reset_video_id(token)

    async def _process(self, video_id: str) -> None:
        started = time.monotonic()
        log = logger.bind(video_id=video_id)
        try:
            record = self.store.get_or_raise(video_id)
            log.info(
                "processing_started",
                size=record.size,
                audio_tracks=len(record.metadata.audio_streams),
            )
            await self._process_record(record)
        except VideoNotFoundError:
            log.warning("processing_aborted_record_deleted")
            self.workspace.remove_video_files(video_id)
            MetricsCollector.record_processing_outcome("aborted")
            return
        except Exception as e:
            log.error("processing_crashed", error=str(e), exc_info=True)
            self.store.update_status(video_id, error=f"processing: unexpected error: {e}")
        finally:
            log.info("processing_finished", duration_seconds=round(time.monotonic() - started, 2))

        try:
            snapshot = self.store.update_status(video_id, stage="complete", complete=True)
        except VideoNotFoundError:
            return
        outcome = "with_errors" if snapshot.processing_status.errors else "clean"
        MetricsCollector.record_processing_outcome(outcome)
        log.info("processing_completed", outcome=outcome, errors=snapshot.processing_status.errors)

    async def _process_record(self, record: VideoRecord) -> None:
        video_id = record.id
        source = Path(record.local_path)
        report = self._reporter(video_id)
        media_info = record.metadata
        multi_audio = media_info.has_multiple_audio
        artifacts = record.stream_artifacts

        # Original archive: a missing cloud copy is not a processing error
        await report(0.0, "Uploading to cloud storage", None)
        storage = await self.chunked_store.upload(source, name=record.original_name, video_id=video_id)
        self.store.update(video_id, storage=storage)
        if not storage.uploaded:
            logger.info("original_not_archived", video_id=video_id, reason=storage.reason)

        await report(0.0, "Generating thumbnail", None)
        thumbnail = await self._generate_thumbnail(video_id, source, media_info.duration)
        if thumbnail:
            artifacts.thumbnail = thumbnail
            self.store.update(video_id, stream_artifacts=artifacts)

        tracks: List[ExtractedAudioTrack] = []
        if multi_audio:
            ok, extracted = await self._run_phase(
                video_id,
                "audio_extraction",
                self.extractor.extract_tracks(
                    source,
                    video_id,
                    media_info.audio_streams,
                    progress=scaled(report, *EXTRACT_RANGE),
                    duration=media_info.duration,
                ),
            )
            if ok:
                tracks = extracted
                missing = len(media_info.audio_streams) - len(tracks)
                if not tracks:
                    self._record_error(video_id, "audio_extraction", "no audio track could be extracted")
                elif missing:
                    self._record_error(
                        video_id, "audio_extraction", f"{missing} audio track(s) failed to extract"
                    )
            artifacts.audio_tracks = tracks
            self.store.update(video_id, stream_artifacts=artifacts)

            ok, video_only = await self._run_phase(
                video_id,
                "video_only_encode",
                self.encoder.encode(
                    source,
                    video_id,
                    media_info,
                    progress=scaled(report, *VIDEO_ONLY_RANGE),
                    video_only=True,
                ),
            )
            if ok:
                artifacts.video_only_manifest = video_only.master_manifest
                artifacts.video_only_variants = video_only.variants
                self.store.update(video_id, stream_artifacts=artifacts)

        window = STANDARD_RANGE_MULTI if multi_audio else STANDARD_RANGE_SINGLE
        encoded, result = await self._run_phase(
            video_id,
            "encode",
            self.encoder.encode(source, video_id, media_info, progress=scaled(report, *window)),
        )
        if encoded:
            artifacts.master_manifest = result.master_manifest
            artifacts.variants = result.variants
            self.store.update(video_id, stream_artifacts=artifacts)
            if result.failed:
                self._record_error(video_id, "encode", f"qualities failed: {', '.join(result.failed)}")

        if tracks:
            await self._run_phase(
                video_id,
                "audio_hls",
                self.extractor.create_audio_hls_streams(
                    video_id,
                    tracks,
                    progress=scaled(report, *AUDIO_HLS_RANGE),
                    duration=media_info.duration,
                ),
            )
            self.store.update(video_id, stream_artifacts=artifacts)

            if self.chunked_store.enabled:
                await report(95.0, "Uploading audio tracks", None)
                await self._run_phase(video_id, "audio_upload", self._upload_audio_tracks(video_id, tracks))
                self.store.update(video_id, stream_artifacts=artifacts)

        if storage.uploaded and encoded:
            await report(96.0, "Backing up segments", None)
            ok, backup = await self._run_phase(video_id, "segment_backup", self._backup_segments(video_id))
            if ok:
                artifacts.segment_backup = backup
                self.store.update(video_id, stream_artifacts=artifacts)
                if backup.failed:
                    self._record_error(
                        video_id, "segment_backup", f"{len(backup.failed)} segment file(s) failed to upload"
                    )

        await report(99.0, "Cleaning up", None)
        await self._run_phase(video_id, "cleanup", self._cleanup(video_id, source, storage, artifacts))

    async def _generate_thumbnail(self, video_id: str, source: Path, duration: float) -> Optional[str]:
        """Grab one frame, retrying at the start for short sources. Failures are logged only."""
        output = self.workspace.thumbnail_path(video_id)
        offsets = [self.config.thumbnail_offset, 0.0]
        if duration and duration <= self.config.thumbnail_offset:
            offsets = [0.0]

        for offset in offsets:
            try:
                await self.encoder.runner.extract_frame(source, output, offset)
                return str(output)
            except EncodeError as e:
                logger.warning("thumbnail_failed", video_id=video_id, offset=offset, error=str(e))
        return None

    async def _upload_audio_tracks(self, video_id: str, tracks: List[ExtractedAudioTrack]) -> None:
        """Upload every extracted track concurrently.

        Each upload has its own timeout and the group shares an overall one;
        tracks still pending when the group times out are cancelled and
        marked not uploaded.
        """
        per_track = self.config.audio_track_upload_timeout
        tasks: Dict[asyncio.Task, ExtractedAudioTrack] = {}
        for track in tracks:
            upload = self.chunked_store.upload(
                Path(track.path), name=Path(track.path).name, video_id=video_id
            )
            tasks[asyncio.create_task(asyncio.wait_for(upload, timeout=per_track))] = track

        done, pending = await asyncio.wait(
            list(tasks), timeout=self.config.audio_upload_group_timeout
        )

        for task in pending:
            task.cancel()
            tasks[task].storage = NotUploaded(reason="upload group timed out")
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            track = tasks[task]
            error = task.exception()
            if error is None:
                track.storage = task.result()
            elif isinstance(error, asyncio.TimeoutError):
                track.storage = NotUploaded(reason=f"upload timed out after {per_track}s")
            else:
                track.storage = NotUploaded(reason=str(error))

        failed = [t.index for t in tracks if not t.storage.uploaded]
        logger.info(
            "audio_tracks_uploaded",
            video_id=video_id,
            uploaded=len(tracks) - len(failed),
            failed=failed,
        )
        if failed:
            self._record_error(
                video_id,
                "audio_upload",
                f"audio track(s) {', '.join(str(i) for i in failed)} not uploaded",
            )

    async def _backup_segments(self, video_id: str) -> BulkUploadResult:
        video_dir = self.workspace.hls_video_dir(video_id)
        files = sorted(
            (path.relative_to(video_dir).as_posix(), path)
            for path in video_dir.rglob("*")
            if path.is_file()
        )
        result = await self.chunked_store.upload_bulk(files, video_id=video_id)
        if result.skipped_reason:
            logger.info("segment_backup_skipped", video_id=video_id, reason=result.skipped_reason)
        return result

    async def _cleanup(
        self,
        video_id: str,
        source: Path,
        storage: StorageRecord,
        artifacts: StreamArtifacts,
    ) -> None:
        """Delete local artifacts that are no longer the only copy."""
        force = self.force_cleanup
        log = logger.bind(video_id=video_id, force=force)

        if storage.uploaded or force:
            if self.workspace.remove_original(source):
                log.info("original_removed", path=str(source))
        else:
            log.info("original_retained", reason="no cloud copy")

        backup = artifacts.segment_backup
        if (backup is not None and backup.uploaded) or force:
            video_dir = self.workspace.hls_video_dir(video_id)
            if video_dir.exists():
                await asyncio.to_thread(shutil.rmtree, video_dir)
                log.info("segments_removed", path=str(video_dir))
        else:
            log.info("segments_retained", reason="no cloud copy")

        removable = [t for t in artifacts.audio_tracks if t.storage.uploaded or force]
        if removable:
            removed = self.extractor.cleanup_audio_files(removable)
            log.info("audio_files_removed", count=removed)


# Global orchestrator instance
_orchestrator: Optional[ProcessingOrchestrator] = None


def configure_orchestrator(
    config: Config,
    store: VideoStore,
    chunked_store: ChunkedObjectStore,
    workspace: Workspace,
) -> ProcessingOrchestrator:
    """Configure the global processing orchestrator."""
    global _orchestrator
    runner = FFmpegRunner(config.transcode)
    _orchestrator = ProcessingOrchestrator(
        store=store,
        chunked_store=chunked_store,
        workspace=workspace,
        encoder=AdaptiveStreamEncoder(runner, config.transcode, workspace.hls_dir),
        extractor=AudioTrackExtractor(runner, config.transcode, workspace.audio_dir, workspace.hls_dir),
        config=config.transcode,
        force_cleanup=config.storage.force_cleanup,
    )
    return _orchestrator


def get_orchestrator() -> ProcessingOrchestrator:
    """Get the global processing orchestrator.

    Raises:
        RuntimeError: If the orchestrator has not been configured.
    """
    if _orchestrator is None:
        raise RuntimeError("Processing orchestrator not configured")
    return _orchestrator
