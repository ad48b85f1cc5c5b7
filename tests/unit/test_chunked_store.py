"""Tests for the chunked object store adapter"""

from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, patch

import pytest

from streamvault.core.config import ObjectStoreConfig
from streamvault.core.exceptions import RateLimitedError, StorageError
from streamvault.models.storage import (
    BulkUploadResult,
    ChunkedObject,
    NotUploaded,
    ObjectRef,
    SingleObject,
)
from streamvault.storage.chunked import ChunkedObjectStore, plan_part_ranges
from streamvault.storage.local import LocalObjectStore


def make_config(**overrides: object) -> ObjectStoreConfig:
    values: Dict[str, object] = {
        "backend": "local",
        "object_limit": 100,
        "part_size": 40,
        "retry_attempts": 3,
        "retry_delay": 0.0,
        "bulk_batch_size": 2,
        "bulk_batch_delay": 0.0,
        "rate_limit_backoff": 0.0,
        "bulk_max_objects": 10,
    }
    values.update(overrides)
    return ObjectStoreConfig(**values)


class FlakyBackend(LocalObjectStore):
    """Local backend that fails selected puts."""

    def __init__(self, root: str, fail_first: int = 0, fail_names: Optional[List[str]] = None):
        super().__init__(root)
        self.fail_first = fail_first
        self.fail_names = fail_names or []
        self.put_calls = 0

    async def put_object(
        self,
        data: bytes,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        destination: Optional[str] = None,
    ) -> ObjectRef:
        self.put_calls += 1
        if self.put_calls <= self.fail_first:
            raise StorageError("temporary failure")
        if name in self.fail_names:
            raise StorageError(f"refused {name}")
        return await super().put_object(data, name, metadata, destination)


def stored_objects(directory: Path) -> List[Path]:
    if not directory.exists():
        return []
    return [p for p in directory.iterdir() if p.suffix != ".json"]


@pytest.fixture
def payload() -> bytes:
    return bytes(range(250))


@pytest.fixture
def source(tmp_path: Path, payload: bytes) -> Path:
    path = tmp_path / "source.bin"
    path.write_bytes(payload)
    return path


class TestPlanPartRanges:
    """Tests for mapping a file range onto parts"""

    def _parts(self) -> List[ObjectRef]:
        return [
            ObjectRef(object_id=str(n), size=40, destination="primary", part=n) for n in (1, 2, 3)
        ]

    def test_range_within_one_part(self) -> None:
        plan = plan_part_ranges(self._parts(), 45, 50)
        assert [(ref.part, s, e) for ref, s, e in plan] == [(2, 5, 10)]

    def test_range_spanning_parts(self) -> None:
        plan = plan_part_ranges(self._parts(), 35, 85)
        assert [(ref.part, s, e) for ref, s, e in plan] == [(1, 35, 39), (2, 0, 39), (3, 0, 5)]

    def test_full_range(self) -> None:
        plan = plan_part_ranges(self._parts(), 0, 119)
        assert [(s, e) for _, s, e in plan] == [(0, 39), (0, 39), (0, 39)]


class TestUpload:
    """Tests for single and chunked uploads"""

    @pytest.mark.asyncio
    async def test_disabled_store(self, source: Path) -> None:
        store = ChunkedObjectStore(None, make_config(backend="disabled"))

        record = await store.upload(source)

        assert isinstance(record, NotUploaded)
        assert record.reason == "object store disabled"
        assert store.enabled is False

    @pytest.mark.asyncio
    async def test_small_file_is_single_object(self, tmp_path: Path) -> None:
        path = tmp_path / "small.bin"
        path.write_bytes(b"x" * 100)
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())

        record = await store.upload(path, video_id="v1")

        assert isinstance(record, SingleObject)
        assert record.total_size == 100
        assert record.checksum is not None

    @pytest.mark.asyncio
    async def test_large_file_is_chunked(
        self, tmp_path: Path, source: Path, payload: bytes
    ) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())

        record = await store.upload(source, name="movie.mp4")

        assert isinstance(record, ChunkedObject)
        assert [p.part for p in record.parts] == [1, 2, 3, 4, 5, 6, 7]
        assert all(p.size <= 100 for p in record.parts)
        assert record.total_size == len(payload)
        assert record.parts[0].name == "movie.mp4.part001"

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, tmp_path: Path) -> None:
        path = tmp_path / "small.bin"
        path.write_bytes(b"abc")
        backend = FlakyBackend(str(tmp_path / "objects"), fail_first=2)
        store = ChunkedObjectStore(backend, make_config())

        record = await store.upload(path)

        assert record.uploaded is True
        assert backend.put_calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_not_uploaded(self, tmp_path: Path) -> None:
        path = tmp_path / "small.bin"
        path.write_bytes(b"abc")
        backend = FlakyBackend(str(tmp_path / "objects"), fail_first=100)
        store = ChunkedObjectStore(backend, make_config())

        record = await store.upload(path)

        assert isinstance(record, NotUploaded)
        assert "after 3 attempts" in record.reason
        assert backend.put_calls == 3

    @pytest.mark.asyncio
    async def test_failed_part_removes_stored_parts(self, tmp_path: Path, source: Path) -> None:
        backend = FlakyBackend(str(tmp_path / "objects"), fail_names=["source.bin.part003"])
        store = ChunkedObjectStore(backend, make_config())

        record = await store.upload(source)

        assert isinstance(record, NotUploaded)
        assert stored_objects(tmp_path / "objects" / "primary") == []

    @pytest.mark.asyncio
    async def test_rate_limit_honors_retry_after(self, tmp_path: Path) -> None:
        path = tmp_path / "small.bin"
        path.write_bytes(b"abc")

        class LimitedOnce(LocalObjectStore):
            calls = 0

            async def put_object(self, data, name, metadata=None, destination=None):  # type: ignore[no-untyped-def]
                LimitedOnce.calls += 1
                if LimitedOnce.calls == 1:
                    raise RateLimitedError("slow down", retry_after=0.0)
                return await super().put_object(data, name, metadata, destination)

        store = ChunkedObjectStore(LimitedOnce(str(tmp_path / "objects")), make_config())

        record = await store.upload(path)

        assert record.uploaded is True

    @pytest.mark.asyncio
    async def test_missing_source(self, tmp_path: Path) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())

        record = await store.upload(tmp_path / "absent.mp4")

        assert isinstance(record, NotUploaded)
        assert "unreadable" in record.reason


class TestReplication:
    """Tests for background copies to backup destinations"""

    @pytest.mark.asyncio
    async def test_copies_to_backups(self, tmp_path: Path, source: Path) -> None:
        backend = LocalObjectStore(str(tmp_path / "objects"), destinations=["primary", "backup"])
        store = ChunkedObjectStore(backend, make_config())

        record = await store.upload(source)
        await store.drain()

        primary = stored_objects(tmp_path / "objects" / "primary")
        backup = stored_objects(tmp_path / "objects" / "backup")
        assert len(primary) == len(record.refs())
        assert len(backup) == len(record.refs())
        assert sorted(p.stat().st_size for p in backup) == sorted(r.size for r in record.refs())

    @pytest.mark.asyncio
    async def test_replication_survives_source_removal(
        self, tmp_path: Path, source: Path
    ) -> None:
        backend = LocalObjectStore(str(tmp_path / "objects"), destinations=["primary", "backup"])
        store = ChunkedObjectStore(backend, make_config())

        await store.upload(source)
        source.unlink()
        await store.drain()

        assert len(stored_objects(tmp_path / "objects" / "backup")) == 7


class TestReads:
    """Tests for download and ranged reads"""

    @pytest.mark.asyncio
    async def test_download_reassembles(
        self, tmp_path: Path, source: Path, payload: bytes
    ) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        record = await store.upload(source)

        dest = tmp_path / "restored" / "movie.bin"
        await store.download(record, dest)

        assert dest.read_bytes() == payload
        assert not dest.with_name("movie.bin.partial").exists()

    @pytest.mark.asyncio
    async def test_download_checksum_mismatch(self, tmp_path: Path) -> None:
        path = tmp_path / "small.bin"
        path.write_bytes(b"original")
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        record = await store.upload(path)

        stored = tmp_path / "objects" / "primary" / record.ref.object_id
        stored.write_bytes(b"tampered")

        dest = tmp_path / "restored.bin"
        with pytest.raises(StorageError, match="Checksum"):
            await store.download(record, dest)
        assert not dest.exists()
        assert not (tmp_path / "restored.bin.partial").exists()

    @pytest.mark.asyncio
    async def test_download_not_uploaded(self, tmp_path: Path) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        with pytest.raises(StorageError):
            await store.download(NotUploaded(), tmp_path / "out.bin")

    @pytest.mark.asyncio
    async def test_open_range_across_parts(
        self, tmp_path: Path, source: Path, payload: bytes
    ) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        record = await store.upload(source)

        data = b"".join([chunk async for chunk in store.open_range(record, 35, 85)])

        assert data == payload[35:86]

    @pytest.mark.asyncio
    async def test_open_range_to_end(
        self, tmp_path: Path, source: Path, payload: bytes
    ) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        record = await store.upload(source)

        data = b"".join([chunk async for chunk in store.open_range(record, 200)])

        assert data == payload[200:]


class TestBulkUpload:
    """Tests for segment bulk uploads"""

    def _segments(self, tmp_path: Path, count: int) -> List:
        files = []
        for n in range(count):
            path = tmp_path / "hls" / f"segment_{n:03d}.ts"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"s" * 10)
            files.append((f"720p/segment_{n:03d}.ts", path))
        return files

    @pytest.mark.asyncio
    async def test_uploads_all(self, tmp_path: Path) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())

        result = await store.upload_bulk(self._segments(tmp_path, 5), video_id="v1")

        assert result.uploaded is True
        assert sorted(result.objects) == [f"720p/segment_{n:03d}.ts" for n in range(5)]
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_too_many_objects_skipped(self, tmp_path: Path) -> None:
        store = ChunkedObjectStore(
            LocalObjectStore(str(tmp_path / "objects")), make_config(bulk_max_objects=3)
        )

        result = await store.upload_bulk(self._segments(tmp_path, 4))

        assert result.uploaded is False
        assert "too many objects" in result.skipped_reason
        assert result.objects == {}

    @pytest.mark.asyncio
    async def test_partial_failure(self, tmp_path: Path) -> None:
        backend = FlakyBackend(str(tmp_path / "objects"), fail_names=["720p_segment_001.ts"])
        store = ChunkedObjectStore(backend, make_config())

        result = await store.upload_bulk(self._segments(tmp_path, 3))

        assert result.uploaded is False
        assert result.failed == ["720p/segment_001.ts"]
        assert len(result.objects) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_backoff_and_batching(self, tmp_path: Path) -> None:
        """Rate limits back off for rate_limit_backoff and batches pause between each other."""
        events: List[tuple] = []

        class RateLimitedOnce(LocalObjectStore):
            limited = False

            async def put_object(
                self,
                data: bytes,
                name: str,
                metadata: Optional[Dict[str, str]] = None,
                destination: Optional[str] = None,
            ) -> ObjectRef:
                if not self.limited:
                    self.limited = True
                    raise RateLimitedError("Too Many Requests")
                events.append(("put", name))
                return await super().put_object(data, name, metadata, destination)

        async def record_sleep(delay: float) -> None:
            events.append(("sleep", delay))

        store = ChunkedObjectStore(
            RateLimitedOnce(str(tmp_path / "objects")),
            make_config(
                bulk_batch_size=3,
                bulk_batch_delay=3.0,
                rate_limit_backoff=45.0,
                retry_delay=5.0,
            ),
        )

        sleep = AsyncMock(side_effect=record_sleep)
        with patch("streamvault.storage.chunked.asyncio.sleep", new=sleep):
            result = await store.upload_bulk(self._segments(tmp_path, 7))

        assert result.uploaded is True
        assert len(result.objects) == 7
        assert [delay for kind, delay in events if kind == "sleep"] == [45.0, 3.0, 3.0]

        batch_sizes = [0]
        for kind, value in events:
            if kind == "sleep" and value == 3.0:
                batch_sizes.append(0)
            elif kind == "put":
                batch_sizes[-1] += 1
        assert batch_sizes == [3, 3, 1]

    @pytest.mark.asyncio
    async def test_disabled_store(self, tmp_path: Path) -> None:
        store = ChunkedObjectStore(None, make_config(backend="disabled"))
        result = await store.upload_bulk(self._segments(tmp_path, 1))
        assert result.skipped_reason == "object store disabled"


class TestDelete:
    """Tests for object deletion"""

    @pytest.mark.asyncio
    async def test_delete_objects(self, tmp_path: Path, source: Path) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        record = await store.upload(source)

        outcome = await store.delete_objects(record)

        assert outcome.deleted == 7
        assert outcome.success is True
        assert stored_objects(tmp_path / "objects" / "primary") == []

    @pytest.mark.asyncio
    async def test_already_deleted_counts_as_deleted(self, tmp_path: Path) -> None:
        path = tmp_path / "small.bin"
        path.write_bytes(b"abc")
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        record = await store.upload(path)
        await store.delete_objects(record)

        outcome = await store.delete_objects(record)

        assert outcome.deleted == 1
        assert outcome.failed == 0

    @pytest.mark.asyncio
    async def test_delete_bulk(self, tmp_path: Path) -> None:
        store = ChunkedObjectStore(LocalObjectStore(str(tmp_path / "objects")), make_config())
        segment = tmp_path / "seg.ts"
        segment.write_bytes(b"s")
        result = await store.upload_bulk([("720p/seg.ts", segment)])

        outcome = await store.delete_bulk(result)

        assert outcome.deleted == 1
        assert (await store.delete_bulk(BulkUploadResult())).deleted == 0


class TestHealth:
    """Tests for destination health"""

    @pytest.mark.asyncio
    async def test_disabled(self) -> None:
        store = ChunkedObjectStore(None, make_config(backend="disabled"))
        results = await store.check_health()
        assert results[0].available is False

    @pytest.mark.asyncio
    async def test_local_destinations(self, tmp_path: Path) -> None:
        backend = LocalObjectStore(str(tmp_path / "objects"), destinations=["primary", "backup"])
        store = ChunkedObjectStore(backend, make_config())

        results = await store.check_health()

        assert [r.name for r in results] == ["primary", "backup"]
        assert all(r.available for r in results)
