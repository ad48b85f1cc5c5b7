"""Abstract base class for object store backends."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Optional, Tuple

from streamvault.core.checks import CheckResult
from streamvault.models.storage import ObjectRef

# Inclusive (start, end) byte offsets within one object
ObjectRange = Tuple[int, int]


class ObjectStoreBackend(ABC):
    """Blob storage with a hard per-object size ceiling.

    A backend may expose several destinations: the first is the primary,
    the rest receive replicated copies.
    """

    name: str = "backend"

    @property
    @abstractmethod
    def destinations(self) -> List[str]:
        """Destination identifiers, primary first."""
        pass

    @abstractmethod
    async def put_object(
        self,
        data: bytes,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        destination: Optional[str] = None,
    ) -> ObjectRef:
        """
        Store one object.

        Args:
            data: Object bytes, never larger than the backend's object limit
            name: Object name
            metadata: Free-form metadata (caption) attached to the object
            destination: Target destination, primary when None

        Returns:
            Reference to the stored object

        Raises:
            RateLimitedError: If the backend signals a rate limit
            StorageError: If the object could not be stored
        """
        pass

    @abstractmethod
    def get_object_stream(
        self, ref: ObjectRef, byte_range: Optional[ObjectRange] = None
    ) -> AsyncIterator[bytes]:
        """
        Stream an object's bytes, optionally restricted to a byte range.

        Raises:
            ObjectNotFoundError: If the object no longer exists
            StorageError: If the object could not be read
        """
        pass

    @abstractmethod
    async def delete_object(self, ref: ObjectRef) -> None:
        """
        Delete one object.

        Raises:
            ObjectNotFoundError: If the object no longer exists
        """
        pass

    @abstractmethod
    async def check_health(self) -> List[CheckResult]:
        """Check every destination, one result per destination."""
        pass

    async def close(self) -> None:
        """Release network resources held by the backend."""
        return None
