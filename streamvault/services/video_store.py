"""Video record store.

In-memory record storage keyed by video id with JSON file persistence.

- Every read returns a deep copy, so callers never hold the live record
- Every mutation is persisted with an atomic temp-file-and-replace write,
  except percent-only progress ticks, which are written at most every
  STATUS_PERSIST_INTERVAL seconds per video
- A complete processing status is terminal and ignores further updates
"""

import copy
import json
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from streamvault.core.exceptions import VideoNotFoundError
from streamvault.models.video import ShareLink, VideoRecord

logger = structlog.get_logger(__name__)

STORE_FILE = "videos.json"

# Minimum seconds between writes caused only by a percent change
STATUS_PERSIST_INTERVAL = 2.0


class VideoStore:
    """Keyed store of ``VideoRecord`` objects.

    The processing orchestrator is the only writer of a video's processing
    status and stream artifacts while it runs.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for ``videos.json``. Nothing is persisted when None.
        """
        self._records: Dict[str, VideoRecord] = {}
        self._status_written_at: Dict[str, float] = {}
        self._path: Optional[Path] = Path(data_dir) / STORE_FILE if data_dir else None
        if self._path is not None:
            self._load(self._path)

        logger.debug(
            "video_store_initialized",
            path=str(self._path) if self._path else None,
            records=len(self._records),
        )

    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("video_store_load_failed", path=str(path), error=str(e))
            return

        interrupted = 0
        for item in raw.get("videos", []):
            try:
                record = VideoRecord.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("video_record_skipped", error=str(e))
                continue
            status = record.processing_status
            if not status.complete:
                # The process that owned this run is gone
                status.errors.append("processing: interrupted by restart")
                status.complete = True
                status.stage = "interrupted"
                status.completed_at = datetime.now(timezone.utc)
                interrupted += 1
            self._records[record.id] = record

        logger.info("video_store_loaded", records=len(self._records), interrupted=interrupted)
        if interrupted:
            self._persist()

    def _persist(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"videos": [record.to_dict() for record in self._records.values()]}
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".videos.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, video_id: str) -> Optional[VideoRecord]:
        """Get a snapshot of a record, None if unknown."""
        record = self._records.get(video_id)
        return copy.deepcopy(record) if record is not None else None

    def get_or_raise(self, video_id: str) -> VideoRecord:
        """Get a snapshot of a record.

        Raises:
            VideoNotFoundError: If the record does not exist.
        """
        record = self.get(video_id)
        if record is None:
            raise VideoNotFoundError(f"Video not found: {video_id}")
        return record

    def exists(self, video_id: str) -> bool:
        return video_id in self._records

    def put(self, record: VideoRecord) -> None:
        """Insert or replace a record."""
        self._records[record.id] = copy.deepcopy(record)
        self._persist()
        logger.info("video_record_stored", video_id=record.id, original_name=record.original_name)

    def update(self, video_id: str, **fields: Any) -> VideoRecord:
        """Replace top-level fields of a record.

        Returns:
            Snapshot of the updated record.

        Raises:
            VideoNotFoundError: If the record does not exist.
        """
        record = self._records.get(video_id)
        if record is None:
            raise VideoNotFoundError(f"Video not found: {video_id}")

        for key, value in fields.items():
            if not hasattr(record, key) or key == "id":
                raise AttributeError(f"VideoRecord has no updatable field '{key}'")
            setattr(record, key, copy.deepcopy(value))

        self._persist()
        return copy.deepcopy(record)

    def update_status(
        self,
        video_id: str,
        stage: Optional[str] = None,
        percent: Optional[float] = None,
        current_quality: Optional[str] = None,
        error: Optional[str] = None,
        complete: bool = False,
    ) -> VideoRecord:
        """Update the processing status of a record.

        Percentages never decrease. Once the status is complete every call is
        a no-op returning the unchanged snapshot.

        Raises:
            VideoNotFoundError: If the record does not exist.
        """
        record = self._records.get(video_id)
        if record is None:
            raise VideoNotFoundError(f"Video not found: {video_id}")

        status = record.processing_status
        if status.complete:
            return copy.deepcopy(record)

        previous = (status.stage, status.current_quality)
        if stage is not None:
            status.stage = stage
        if percent is not None:
            status.percent = max(status.percent, min(100.0, percent))
        status.current_quality = current_quality
        if error:
            status.errors.append(error)
        if status.started_at is None:
            status.started_at = datetime.now(timezone.utc)
        if complete:
            status.complete = True
            status.percent = 100.0
            status.current_quality = None
            status.completed_at = datetime.now(timezone.utc)

        now = time.monotonic()
        last_write = self._status_written_at.get(video_id)
        changed = complete or bool(error) or (status.stage, status.current_quality) != previous
        if changed or last_write is None or now - last_write >= STATUS_PERSIST_INTERVAL:
            self._status_written_at[video_id] = now
            self._persist()
        return copy.deepcopy(record)

    def add_share_link(self, video_id: str, link: ShareLink) -> VideoRecord:
        record = self._records.get(video_id)
        if record is None:
            raise VideoNotFoundError(f"Video not found: {video_id}")
        record.share_links.append(copy.deepcopy(link))
        self._persist()
        return copy.deepcopy(record)

    def increment_views(self, video_id: str) -> None:
        record = self._records.get(video_id)
        if record is not None:
            record.view_count += 1
            self._persist()

    def delete(self, video_id: str) -> VideoRecord:
        """Remove a record.

        Returns:
            The removed record.

        Raises:
            VideoNotFoundError: If the record does not exist.
        """
        record = self._records.pop(video_id, None)
        if record is None:
            raise VideoNotFoundError(f"Video not found: {video_id}")
        self._status_written_at.pop(video_id, None)
        self._persist()
        logger.info("video_record_deleted", video_id=video_id)
        return record

    def list_all(self, limit: Optional[int] = None) -> List[VideoRecord]:
        """List record snapshots, newest upload first."""
        records = sorted(self._records.values(), key=lambda r: r.upload_date, reverse=True)
        if limit is not None:
            records = records[:limit]
        return [copy.deepcopy(r) for r in records]

    def find_by_share_id(self, share_id: str) -> Optional[VideoRecord]:
        """Find the record owning a share link."""
        for record in self._records.values():
            if any(link.share_id == share_id for link in record.share_links):
                return copy.deepcopy(record)
        return None

    def count(self) -> int:
        return len(self._records)


# Global video store instance
_video_store: Optional[VideoStore] = None


def configure_video_store(data_dir: Optional[str]) -> VideoStore:
    """Configure the global video store."""
    global _video_store
    _video_store = VideoStore(data_dir)
    return _video_store


def get_video_store() -> VideoStore:
    """Get the global video store.

    Raises:
        RuntimeError: If the store has not been configured.
    """
    if _video_store is None:
        raise RuntimeError("Video store not configured")
    return _video_store
