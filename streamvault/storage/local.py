"""Directory-backed object store for development and tests."""

import asyncio
import json
import uuid
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import structlog

from streamvault.core.checks import CheckResult
from streamvault.core.exceptions import ObjectNotFoundError, StorageError
from streamvault.models.storage import ObjectRef
from streamvault.storage.base import ObjectRange, ObjectStoreBackend

logger = structlog.get_logger(__name__)

READ_CHUNK_SIZE = 256 * 1024


class LocalObjectStore(ObjectStoreBackend):
    """Stores each object as a file under ``root/<destination>/``.

    A ``.json`` sidecar next to each object keeps its name and metadata.
    """

    name = "local"

    def __init__(self, root: str, destinations: Optional[List[str]] = None) -> None:
        self.root = Path(root)
        self._destinations = destinations or ["primary"]

    @property
    def destinations(self) -> List[str]:
        return list(self._destinations)

    def _object_path(self, destination: str, object_id: str) -> Path:
        return self.root / destination / object_id

    def _write(self, path: Path, data: bytes, sidecar: Dict[str, object]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        path.with_suffix(".json").write_text(json.dumps(sidecar), encoding="utf-8")

    async def put_object(
        self,
        data: bytes,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        destination: Optional[str] = None,
    ) -> ObjectRef:
        destination = destination or self._destinations[0]
        object_id = uuid.uuid4().hex
        path = self._object_path(destination, object_id)
        try:
            await asyncio.to_thread(
                self._write, path, data, {"name": name, "metadata": metadata or {}}
            )
        except OSError as e:
            raise StorageError(f"Failed to write object {name}: {e}") from e

        logger.debug("local_object_stored", object_id=object_id, name=name, size=len(data))
        return ObjectRef(object_id=object_id, size=len(data), destination=destination, name=name)

    async def get_object_stream(
        self, ref: ObjectRef, byte_range: Optional[ObjectRange] = None
    ) -> AsyncIterator[bytes]:
        path = self._object_path(ref.destination, ref.object_id)
        if not path.exists():
            raise ObjectNotFoundError(f"Object {ref.object_id} not found")

        start, end = byte_range if byte_range else (0, path.stat().st_size - 1)
        remaining = end - start + 1
        with open(path, "rb") as f:
            f.seek(start)
            while remaining > 0:
                chunk = f.read(min(READ_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk

    async def delete_object(self, ref: ObjectRef) -> None:
        path = self._object_path(ref.destination, ref.object_id)
        if not path.exists():
            raise ObjectNotFoundError(f"Object {ref.object_id} not found")
        path.unlink()
        path.with_suffix(".json").unlink(missing_ok=True)

    async def check_health(self) -> List[CheckResult]:
        results = []
        for destination in self._destinations:
            directory = self.root / destination
            try:
                directory.mkdir(parents=True, exist_ok=True)
                probe = directory / f".write_test_{uuid.uuid4().hex}"
                probe.touch()
                probe.unlink()
                results.append(
                    CheckResult(name=destination, available=True, details={"path": str(directory)})
                )
            except OSError as e:
                results.append(CheckResult(name=destination, available=False, error=str(e)))
        return results
