"""API endpoints."""

from streamvault.api import admin, health, metrics, stream, upload, videos

__all__ = [
    "admin",
    "health",
    "metrics",
    "stream",
    "upload",
    "videos",
]
