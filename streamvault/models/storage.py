"""Object store data models.

A ``StorageRecord`` is the outcome of archiving one local file in the object
store. It is a tagged variant serialized with a ``method`` discriminator:

- ``none``: the file was not uploaded (``NotUploaded``), with a reason
- ``single``: the file fit in one object (``SingleObject``)
- ``chunked``: the file was split into ordered parts (``ChunkedObject``)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union


@dataclass
class ObjectRef:
    """Reference to one stored object.

    Attributes:
        object_id: Backend identifier used to fetch the object.
        size: Object size in bytes.
        destination: Backend destination that holds the object.
        name: Object name given at upload.
        part: 1-based part number for chunked uploads, None for single objects.
        message_id: Backend handle needed for deletion, when distinct from object_id.
    """

    object_id: str
    size: int
    destination: str
    name: str = ""
    part: Optional[int] = None
    message_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "object_id": self.object_id,
            "size": self.size,
            "destination": self.destination,
            "name": self.name,
            "part": self.part,
            "message_id": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectRef":
        return cls(
            object_id=data["object_id"],
            size=int(data.get("size", 0)),
            destination=data.get("destination", ""),
            name=data.get("name", ""),
            part=data.get("part"),
            message_id=data.get("message_id"),
        )


@dataclass
class NotUploaded:
    """The file has no cloud copy."""

    reason: str = "not attempted"
    method: str = field(default="none", init=False)

    @property
    def uploaded(self) -> bool:
        return False

    def refs(self) -> List[ObjectRef]:
        return []

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "uploaded": False, "reason": self.reason}


@dataclass
class SingleObject:
    """The file is stored as one object."""

    ref: ObjectRef
    checksum: Optional[str] = None
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    method: str = field(default="single", init=False)

    @property
    def uploaded(self) -> bool:
        return True

    @property
    def total_size(self) -> int:
        return self.ref.size

    def refs(self) -> List[ObjectRef]:
        return [self.ref]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "uploaded": True,
            "ref": self.ref.to_dict(),
            "checksum": self.checksum,
            "uploaded_at": self.uploaded_at.isoformat(),
        }


@dataclass
class ChunkedObject:
    """The file is stored as ordered parts; concatenating them restores it."""

    parts: List[ObjectRef]
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    method: str = field(default="chunked", init=False)

    @property
    def uploaded(self) -> bool:
        return True

    @property
    def total_size(self) -> int:
        return sum(part.size for part in self.parts)

    def ordered_parts(self) -> List[ObjectRef]:
        """Parts sorted by their 1-based sequence number."""
        return sorted(self.parts, key=lambda p: p.part or 0)

    def refs(self) -> List[ObjectRef]:
        return self.ordered_parts()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "uploaded": True,
            "parts": [part.to_dict() for part in self.parts],
            "total_size": self.total_size,
            "uploaded_at": self.uploaded_at.isoformat(),
        }


StorageRecord = Union[NotUploaded, SingleObject, ChunkedObject]


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(value)


def storage_record_from_dict(data: Optional[Dict[str, Any]]) -> StorageRecord:
    """Rebuild a storage record from its serialized form."""
    if not data:
        return NotUploaded()

    method = data.get("method")
    if method == "single":
        return SingleObject(
            ref=ObjectRef.from_dict(data["ref"]),
            checksum=data.get("checksum"),
            uploaded_at=_parse_time(data.get("uploaded_at")),
        )
    if method == "chunked":
        return ChunkedObject(
            parts=[ObjectRef.from_dict(p) for p in data.get("parts", [])],
            uploaded_at=_parse_time(data.get("uploaded_at")),
        )
    return NotUploaded(reason=data.get("reason", "not attempted"))


@dataclass
class BulkUploadResult:
    """Outcome of uploading a set of small objects (stream segments).

    Attributes:
        uploaded: True when every candidate object was stored.
        skipped_reason: Set when the whole operation was not attempted.
        objects: Relative path to stored object reference.
        failed: Relative paths that could not be stored.
    """

    uploaded: bool = False
    skipped_reason: Optional[str] = None
    objects: Dict[str, ObjectRef] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.objects) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploaded": self.uploaded,
            "skipped_reason": self.skipped_reason,
            "objects": {path: ref.to_dict() for path, ref in self.objects.items()},
            "failed": list(self.failed),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["BulkUploadResult"]:
        if not data:
            return None
        return cls(
            uploaded=bool(data.get("uploaded")),
            skipped_reason=data.get("skipped_reason"),
            objects={
                path: ObjectRef.from_dict(ref) for path, ref in data.get("objects", {}).items()
            },
            failed=list(data.get("failed", [])),
        )


@dataclass
class DeleteResult:
    """Outcome of deleting the objects behind a storage record."""

    deleted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted": self.deleted,
            "failed": self.failed,
            "errors": list(self.errors),
        }
