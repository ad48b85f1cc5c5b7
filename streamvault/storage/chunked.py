"""Chunked object store adapter.

Stores files of any size on a backend with a hard per-object ceiling:

- files within the limit become one object with a sha256 checksum
- larger files are split into ordered parts, each within the limit
- every put is retried with a delay of ``retry_delay * attempt``
- after a successful primary upload, copies are replicated to the backup
  destinations in the background
- bulk uploads (stream segments) run in small batches with a pause between
  batches and a long backoff on rate limits
"""

import asyncio
import hashlib
import os
from pathlib import Path
from typing import IO, AsyncIterator, Dict, List, Optional, Set, Tuple

import structlog

from streamvault.core.checks import CheckResult
from streamvault.core.config import Config, ObjectStoreConfig
from streamvault.core.exceptions import (
    ObjectNotFoundError,
    RateLimitedError,
    StorageError,
    StorageUploadError,
)
from streamvault.core.metrics import MetricsCollector
from streamvault.models.storage import (
    BulkUploadResult,
    ChunkedObject,
    DeleteResult,
    NotUploaded,
    ObjectRef,
    SingleObject,
    StorageRecord,
)
from streamvault.storage.base import ObjectStoreBackend
from streamvault.storage.local import LocalObjectStore
from streamvault.storage.telegram import TelegramBackend

logger = structlog.get_logger(__name__)


def _read_chunk(path: Path, offset: int, size: int) -> bytes:
    with open(path, "rb") as f:
        f.seek(offset)
        return f.read(size)


def plan_part_ranges(parts: List[ObjectRef], start: int, end: int) -> List[Tuple[ObjectRef, int, int]]:
    """Map an inclusive byte range of the whole file onto its parts.

    Args:
        parts: Parts in ascending sequence order.
        start: First byte of the requested range.
        end: Last byte of the requested range.

    Returns:
        (part, start within part, end within part) for every intersecting part.
    """
    plan = []
    offset = 0
    for part in parts:
        part_start = offset
        part_end = offset + part.size - 1
        offset += part.size
        if part.size <= 0 or part_end < start:
            continue
        if part_start > end:
            break
        plan.append((part, max(start, part_start) - part_start, min(end, part_end) - part_start))
    return plan


class ChunkedObjectStore:
    """Uploads, reassembles and deletes files on an object store backend.

    When ``backend`` is None the store is disabled: uploads return
    ``NotUploaded`` and reads raise ``StorageError``.
    """

    def __init__(self, backend: Optional[ObjectStoreBackend], config: ObjectStoreConfig) -> None:
        self.backend = backend
        self.config = config
        self.object_limit = config.object_limit
        self.part_size = min(config.part_size, config.object_limit)
        self._background: Set[asyncio.Task] = set()

        logger.debug(
            "chunked_store_initialized",
            backend=backend.name if backend else "disabled",
            object_limit=self.object_limit,
            part_size=self.part_size,
        )

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    @property
    def backend_name(self) -> str:
        return self.backend.name if self.backend else "disabled"

    def _require_backend(self) -> ObjectStoreBackend:
        if self.backend is None:
            raise StorageError("Object store is disabled")
        return self.backend

    async def _put_with_retry(
        self,
        data: bytes,
        name: str,
        metadata: Dict[str, str],
        destination: Optional[str] = None,
    ) -> ObjectRef:
        """Put one object, retrying up to ``retry_attempts`` times.

        Raises:
            StorageUploadError: If every attempt failed.
        """
        backend = self._require_backend()
        attempts = self.config.retry_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                ref = await backend.put_object(data, name, metadata, destination=destination)
                MetricsCollector.record_object_store("put", "success", len(data))
                return ref
            except StorageError as e:
                last_error = e
                MetricsCollector.record_object_store("put", "failed")
                delay = self.config.retry_delay * attempt
                if isinstance(e, RateLimitedError):
                    MetricsCollector.record_rate_limited()
                    delay = max(delay, e.retry_after or 0.0)

                logger.warning(
                    "object_put_failed",
                    name=name,
                    destination=destination,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
                if attempt < attempts:
                    await asyncio.sleep(delay)

        raise StorageUploadError(
            f"Failed to store {name} after {attempts} attempts: {last_error}"
        ) from last_error

    async def upload(
        self,
        file_path: Path,
        name: Optional[str] = None,
        video_id: Optional[str] = None,
    ) -> StorageRecord:
        """Archive a local file in the object store.

        Never raises on backend failure: the outcome is returned as
        ``NotUploaded`` with the reason so callers can proceed without a
        cloud copy.

        Args:
            file_path: File to upload.
            name: Object name, the file name by default.
            video_id: Owning video, attached to the object metadata.

        Returns:
            ``SingleObject``, ``ChunkedObject`` or ``NotUploaded``.
        """
        if self.backend is None:
            return NotUploaded(reason="object store disabled")

        file_path = Path(file_path)
        name = name or file_path.name
        try:
            size = file_path.stat().st_size
        except OSError as e:
            return NotUploaded(reason=f"source unreadable: {e}")

        log = logger.bind(video_id=video_id, name=name, size=size)

        try:
            if size <= self.object_limit:
                record: StorageRecord = await self._upload_single(file_path, name, video_id)
            else:
                record = await self._upload_chunked(file_path, name, size, video_id)
        except StorageUploadError as e:
            log.warning("object_upload_failed", error=str(e))
            return NotUploaded(reason=str(e))
        except OSError as e:
            log.warning("object_upload_read_failed", error=str(e))
            return NotUploaded(reason=f"source unreadable: {e}")

        log.info("object_upload_completed", method=record.method, objects=len(record.refs()))
        self._schedule_replication(file_path, name, record, video_id)
        return record

    async def _upload_single(
        self, file_path: Path, name: str, video_id: Optional[str]
    ) -> SingleObject:
        data = await asyncio.to_thread(file_path.read_bytes)
        checksum = hashlib.sha256(data).hexdigest()
        caption = f"{name}" + (f" [{video_id}]" if video_id else "")
        ref = await self._put_with_retry(
            data, name, {"caption": caption, "video_id": video_id or "", "sha256": checksum}
        )
        return SingleObject(ref=ref, checksum=checksum)

    async def _upload_chunked(
        self, file_path: Path, name: str, size: int, video_id: Optional[str]
    ) -> ChunkedObject:
        total_parts = (size + self.part_size - 1) // self.part_size
        parts: List[ObjectRef] = []

        logger.info(
            "chunked_upload_started",
            video_id=video_id,
            name=name,
            size=size,
            total_parts=total_parts,
            part_size=self.part_size,
        )

        try:
            for number in range(1, total_parts + 1):
                offset = (number - 1) * self.part_size
                data = await asyncio.to_thread(_read_chunk, file_path, offset, self.part_size)
                part_name = f"{name}.part{number:03d}"
                ref = await self._put_with_retry(
                    data,
                    part_name,
                    {
                        "caption": f"{name} Part {number}/{total_parts}",
                        "video_id": video_id or "",
                        "part": str(number),
                        "total_parts": str(total_parts),
                    },
                )
                ref.part = number
                parts.append(ref)
                logger.debug("chunk_uploaded", name=name, part=number, total_parts=total_parts)
        except StorageUploadError:
            if parts:
                await self.delete_objects(ChunkedObject(parts=parts))
            raise

        return ChunkedObject(parts=parts)

    def _schedule_replication(
        self, file_path: Path, name: str, record: StorageRecord, video_id: Optional[str]
    ) -> None:
        """Copy a freshly uploaded file to every backup destination in the background."""
        if self.backend is None:
            return
        backups = self.backend.destinations[1:]
        if not backups:
            return

        try:
            # An open handle keeps the bytes readable if the original is deleted meanwhile
            handle = open(file_path, "rb")
        except OSError as e:
            logger.warning("replication_skipped", video_id=video_id, name=name, error=str(e))
            return

        task = asyncio.create_task(self._replicate(handle, name, record, backups, video_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _replicate(
        self,
        handle: IO[bytes],
        name: str,
        record: StorageRecord,
        destinations: List[str],
        video_id: Optional[str],
    ) -> None:
        try:
            for destination in destinations:
                try:
                    for ref in record.refs():
                        handle.seek(((ref.part or 1) - 1) * self.part_size)
                        data = await asyncio.to_thread(handle.read, ref.size)
                        await self._put_with_retry(
                            data,
                            ref.name or name,
                            {"caption": f"{name} (backup)", "video_id": video_id or ""},
                            destination=destination,
                        )
                    logger.info(
                        "replication_completed",
                        video_id=video_id,
                        name=name,
                        destination=destination,
                    )
                except (StorageError, OSError) as e:
                    logger.warning(
                        "replication_failed",
                        video_id=video_id,
                        name=name,
                        destination=destination,
                        error=str(e),
                    )
        finally:
            handle.close()

    async def upload_bulk(
        self,
        files: List[Tuple[str, Path]],
        video_id: Optional[str] = None,
    ) -> BulkUploadResult:
        """Upload many small objects in rate-limit friendly batches.

        The whole operation is skipped, not attempted, when there are more
        candidates than ``bulk_max_objects``.

        Args:
            files: (relative key, local path) pairs.
            video_id: Owning video, attached to object metadata.

        Returns:
            BulkUploadResult mapping each key to its stored object.
        """
        if self.backend is None:
            return BulkUploadResult(skipped_reason="object store disabled")
        if not files:
            return BulkUploadResult(skipped_reason="no objects to upload")
        if len(files) > self.config.bulk_max_objects:
            logger.warning(
                "bulk_upload_skipped",
                video_id=video_id,
                count=len(files),
                max_objects=self.config.bulk_max_objects,
            )
            return BulkUploadResult(
                skipped_reason=(
                    f"too many objects ({len(files)} > {self.config.bulk_max_objects})"
                )
            )

        result = BulkUploadResult()
        batch_size = max(1, self.config.bulk_batch_size)
        batches = [files[i : i + batch_size] for i in range(0, len(files), batch_size)]

        logger.info(
            "bulk_upload_started", video_id=video_id, count=len(files), batches=len(batches)
        )

        for number, batch in enumerate(batches, start=1):
            outcomes = await asyncio.gather(
                *(self._put_bulk_item(key, path, video_id) for key, path in batch)
            )
            for (key, _), ref in zip(batch, outcomes):
                if ref is None:
                    result.failed.append(key)
                else:
                    result.objects[key] = ref

            if number < len(batches):
                await asyncio.sleep(self.config.bulk_batch_delay)

        result.uploaded = not result.failed
        logger.info(
            "bulk_upload_completed",
            video_id=video_id,
            uploaded=len(result.objects),
            failed=len(result.failed),
        )
        return result

    async def _put_bulk_item(
        self, key: str, path: Path, video_id: Optional[str]
    ) -> Optional[ObjectRef]:
        backend = self._require_backend()
        attempts = self.config.retry_attempts

        for attempt in range(1, attempts + 1):
            try:
                data = await asyncio.to_thread(path.read_bytes)
                if len(data) > self.object_limit:
                    logger.warning("bulk_object_too_large", key=key, size=len(data))
                    return None
                ref = await backend.put_object(
                    data, key.replace("/", "_"), {"caption": key, "video_id": video_id or ""}
                )
                MetricsCollector.record_object_store("put", "success", len(data))
                return ref
            except RateLimitedError as e:
                MetricsCollector.record_rate_limited()
                delay = max(self.config.rate_limit_backoff, e.retry_after or 0.0)
                logger.warning("bulk_rate_limited", key=key, attempt=attempt, backoff=delay)
            except (StorageError, OSError) as e:
                MetricsCollector.record_object_store("put", "failed")
                delay = self.config.retry_delay * attempt
                logger.warning("bulk_object_failed", key=key, attempt=attempt, error=str(e))

            if attempt < attempts:
                await asyncio.sleep(delay)

        return None

    async def download(self, record: StorageRecord, dest_path: Path) -> None:
        """Reassemble a stored file at ``dest_path``.

        Chunked records are concatenated in ascending part order. The file is
        written next to the destination and moved into place when complete.

        Raises:
            StorageError: If the record is not uploaded, a read fails or the
                checksum does not match.
        """
        if not record.uploaded:
            raise StorageError("Record has no stored objects")

        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        partial = dest_path.with_name(dest_path.name + ".partial")
        digest = hashlib.sha256()

        try:
            with open(partial, "wb") as out:
                for ref in record.refs():
                    async for chunk in self._require_backend().get_object_stream(ref):
                        out.write(chunk)
                        digest.update(chunk)
            if isinstance(record, SingleObject) and record.checksum:
                if digest.hexdigest() != record.checksum:
                    raise StorageError("Checksum mismatch after download")
            os.replace(partial, dest_path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        logger.info("object_download_completed", dest=str(dest_path), method=record.method)

    async def open_range(
        self, record: StorageRecord, start: Optional[int] = None, end: Optional[int] = None
    ) -> AsyncIterator[bytes]:
        """Stream a byte range of a stored file, touching only intersecting parts.

        Args:
            record: Uploaded storage record.
            start: First byte, 0 when None.
            end: Last byte inclusive, end of file when None.
        """
        if not record.uploaded:
            raise StorageError("Record has no stored objects")

        backend = self._require_backend()
        refs = record.refs()
        total = sum(ref.size for ref in refs)
        start = 0 if start is None else start
        end = total - 1 if end is None else min(end, total - 1)

        for ref, part_start, part_end in plan_part_ranges(refs, start, end):
            whole = part_start == 0 and part_end == ref.size - 1
            async for chunk in backend.get_object_stream(
                ref, None if whole else (part_start, part_end)
            ):
                yield chunk
        MetricsCollector.record_object_store("get", "success")

    async def delete_objects(self, record: StorageRecord) -> DeleteResult:
        """Delete every object behind a storage record.

        Objects that are already gone count as deleted.
        """
        return await self._delete_refs(record.refs())

    async def delete_bulk(self, result: BulkUploadResult) -> DeleteResult:
        return await self._delete_refs(list(result.objects.values()))

    async def _delete_refs(self, refs: List[ObjectRef]) -> DeleteResult:
        outcome = DeleteResult()
        if not refs:
            return outcome
        backend = self._require_backend()

        for ref in refs:
            try:
                await backend.delete_object(ref)
                outcome.deleted += 1
                MetricsCollector.record_object_store("delete", "success")
            except ObjectNotFoundError:
                outcome.deleted += 1
            except StorageError as e:
                outcome.failed += 1
                outcome.errors.append(f"{ref.object_id}: {e}")
                MetricsCollector.record_object_store("delete", "failed")
                logger.warning("object_delete_failed", object_id=ref.object_id, error=str(e))

        return outcome

    async def check_health(self) -> List[CheckResult]:
        if self.backend is None:
            return [CheckResult(name="object_store", available=False, error="disabled")]
        return await self.backend.check_health()

    async def drain(self) -> None:
        """Wait for pending background replications."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self.backend is not None:
            await self.backend.close()


def build_backend(config: Config) -> Optional[ObjectStoreBackend]:
    """Create the configured object store backend, None when disabled."""
    backend = config.object_store.backend
    if backend == "telegram":
        return TelegramBackend(config.telegram)
    if backend == "local":
        return LocalObjectStore(config.object_store.local_dir)
    return None


# Global store instance
_chunked_store: Optional[ChunkedObjectStore] = None


def configure_chunked_store(config: Config) -> ChunkedObjectStore:
    """Configure the global chunked object store."""
    global _chunked_store
    _chunked_store = ChunkedObjectStore(build_backend(config), config.object_store)
    return _chunked_store


def get_chunked_store() -> ChunkedObjectStore:
    """Get the global chunked object store.

    Raises:
        RuntimeError: If the store has not been configured.
    """
    if _chunked_store is None:
        raise RuntimeError("Chunked object store not configured")
    return _chunked_store
