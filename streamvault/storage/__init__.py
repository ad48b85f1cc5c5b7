"""Object store backends and the chunked upload adapter."""

from streamvault.storage.base import ObjectStoreBackend
from streamvault.storage.chunked import (
    ChunkedObjectStore,
    build_backend,
    configure_chunked_store,
    get_chunked_store,
    plan_part_ranges,
)
from streamvault.storage.local import LocalObjectStore
from streamvault.storage.telegram import TelegramBackend

__all__ = [
    "ChunkedObjectStore",
    "LocalObjectStore",
    "ObjectStoreBackend",
    "TelegramBackend",
    "build_backend",
    "configure_chunked_store",
    "get_chunked_store",
    "plan_part_ranges",
]
