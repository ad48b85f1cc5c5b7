"""Local working directories and the stale file sweep.

Every directory is a shared namespace keyed by video id. The sweep removes
entries older than the retention thresholds (uploads 1h, temp 30min) as a
safety net for files orphaned by interrupted runs.
"""

import asyncio
import os
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import structlog

from streamvault.core.config import StorageConfig
from streamvault.core.exceptions import StorageError

logger = structlog.get_logger(__name__)


@dataclass
class CleanupResult:
    """Result of a sweep over the working directories."""

    files_deleted: int = 0
    bytes_reclaimed: int = 0
    files_preserved: int = 0
    dry_run: bool = False
    per_directory: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "files_deleted": self.files_deleted,
            "bytes_reclaimed": self.bytes_reclaimed,
            "files_preserved": self.files_preserved,
            "dry_run": self.dry_run,
            "per_directory": dict(self.per_directory),
        }


def _entry_size(path: Path) -> int:
    if path.is_file():
        return path.stat().st_size
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += (Path(root) / name).stat().st_size
            except OSError:
                continue
    return total


def _newest_mtime(path: Path) -> float:
    """Most recent modification time of an entry or anything inside it."""
    newest = path.stat().st_mtime
    if path.is_dir():
        for root, dirs, files in os.walk(path):
            for name in dirs + files:
                try:
                    newest = max(newest, (Path(root) / name).stat().st_mtime)
                except OSError:
                    continue
    return newest


class Workspace:
    """Owns the on-disk layout of uploads, temp files, audio, segments and thumbnails."""

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.upload_dir = Path(config.upload_dir)
        self.temp_dir = Path(config.temp_dir)
        self.audio_dir = Path(config.audio_dir)
        self.hls_dir = Path(config.hls_dir)
        self.data_dir = Path(config.data_dir)
        self.thumbnail_dir = Path(config.thumbnail_dir)

    @property
    def directories(self) -> List[Path]:
        return [
            self.upload_dir,
            self.temp_dir,
            self.audio_dir,
            self.hls_dir,
            self.data_dir,
            self.thumbnail_dir,
        ]

    def initialize(self) -> None:
        """Create every working directory and verify it is writable.

        Raises:
            StorageError: If a directory cannot be created or written.
        """
        for directory in self.directories:
            try:
                directory.mkdir(parents=True, exist_ok=True)
                test_file = directory / f".write_test_{os.getpid()}_{uuid.uuid4().hex}"
                test_file.touch()
                test_file.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Working directory not writable: {directory}: {e}") from e

        logger.info("workspace_initialized", directories=[str(d) for d in self.directories])

    def check_writable(self) -> Dict[str, bool]:
        return {str(d): d.is_dir() and os.access(d, os.W_OK) for d in self.directories}

    def upload_path(self, video_id: str, extension: str) -> Path:
        return self.upload_dir / video_id / f"original.{extension}"

    def temp_path(self, video_id: str, suffix: str = "") -> Path:
        return self.temp_dir / f"{video_id}{suffix}"

    def hls_video_dir(self, video_id: str) -> Path:
        return self.hls_dir / video_id

    def audio_video_dir(self, video_id: str) -> Path:
        return self.audio_dir / video_id

    def thumbnail_path(self, video_id: str) -> Path:
        return self.thumbnail_dir / f"{video_id}.jpg"

    def remove_original(self, path: Path) -> bool:
        """Delete an uploaded original and its per-video directory when empty."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        parent = path.parent
        if parent != self.upload_dir and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
        return True

    def remove_video_files(self, video_id: str, local_path: Optional[str] = None) -> int:
        """Delete every local artifact of a video.

        Returns:
            Number of entries removed
        """
        removed = 0
        targets = [
            self.upload_dir / video_id,
            self.hls_video_dir(video_id),
            self.audio_video_dir(video_id),
            self.thumbnail_path(video_id),
        ]
        if local_path:
            targets.append(Path(local_path))

        for target in targets:
            try:
                if target.is_dir():
                    shutil.rmtree(target)
                    removed += 1
                elif target.exists():
                    target.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("video_file_cleanup_failed", path=str(target), error=str(e))

        return removed

    def sweep(
        self,
        dry_run: bool = False,
        is_protected: Optional[Callable[[str], bool]] = None,
    ) -> CleanupResult:
        """Remove stale entries from the upload and temp directories.

        An entry is stale when nothing in it changed within the directory's
        retention threshold. Entries whose video id ``is_protected`` reports
        as still needed are preserved regardless of age.

        Args:
            dry_run: Only report what would be deleted.
            is_protected: Receives the video id an entry belongs to.

        Returns:
            CleanupResult with counts per directory.
        """
        result = CleanupResult(dry_run=dry_run)
        log_prefix = "[DRY-RUN] " if dry_run else ""
        now = time.time()

        for directory, max_age in (
            (self.upload_dir, self.config.upload_max_age),
            (self.temp_dir, self.config.temp_max_age),
        ):
            deleted_here = 0
            if not directory.is_dir():
                result.per_directory[str(directory)] = 0
                continue

            for entry in directory.iterdir():
                if entry.name.startswith("."):
                    continue
                try:
                    age = now - _newest_mtime(entry)
                    if age < max_age:
                        continue

                    video_id = entry.name.split(".", 1)[0]
                    if is_protected is not None and is_protected(video_id):
                        result.files_preserved += 1
                        logger.debug(f"{log_prefix}sweep_entry_preserved", path=str(entry))
                        continue

                    size = _entry_size(entry)
                    if not dry_run:
                        if entry.is_dir():
                            shutil.rmtree(entry)
                        else:
                            entry.unlink()

                    deleted_here += 1
                    result.files_deleted += 1
                    result.bytes_reclaimed += size
                    logger.info(
                        f"{log_prefix}sweep_entry_deleted",
                        path=str(entry),
                        size_bytes=size,
                        age_seconds=round(age),
                    )
                except OSError as e:
                    logger.warning("sweep_entry_failed", path=str(entry), error=str(e))

            result.per_directory[str(directory)] = deleted_here

        logger.info(
            f"{log_prefix}sweep_completed",
            files_deleted=result.files_deleted,
            bytes_reclaimed=result.bytes_reclaimed,
            files_preserved=result.files_preserved,
            dry_run=dry_run,
        )
        return result


async def sweep_scheduler(
    workspace: Workspace,
    interval: int = 1800,
    is_protected: Optional[Callable[[str], bool]] = None,
    run_once: bool = False,
) -> Optional[CleanupResult]:
    """Run the stale file sweep periodically.

    Args:
        workspace: Workspace to sweep.
        interval: Seconds between sweeps (default: 30 minutes).
        is_protected: Passed through to ``Workspace.sweep``.
        run_once: If True, run only one cycle (for testing).

    Returns:
        CleanupResult if run_once is True, None otherwise.
    """
    logger.info("sweep_scheduler_started", interval_seconds=interval)

    while True:
        await asyncio.sleep(interval)
        result = workspace.sweep(is_protected=is_protected)
        if run_once:
            return result


# Global workspace instance
_workspace: Optional[Workspace] = None


def configure_workspace(config: StorageConfig) -> Workspace:
    """Configure the global workspace."""
    global _workspace
    _workspace = Workspace(config)
    return _workspace


def get_workspace() -> Workspace:
    """Get the global workspace.

    Raises:
        RuntimeError: If the workspace has not been configured.
    """
    if _workspace is None:
        raise RuntimeError("Workspace not configured")
    return _workspace
