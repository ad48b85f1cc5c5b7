"""Service layer implementations."""

from streamvault.services.ingest import IngestService, configure_ingest_service, get_ingest_service
from streamvault.services.playback import (
    PlaybackResolver,
    StreamResolution,
    configure_playback_resolver,
    get_playback_resolver,
)
from streamvault.services.processing import (
    ProcessingOrchestrator,
    configure_orchestrator,
    get_orchestrator,
)
from streamvault.services.video_store import VideoStore, configure_video_store, get_video_store
from streamvault.services.workspace import (
    CleanupResult,
    Workspace,
    configure_workspace,
    get_workspace,
    sweep_scheduler,
)

__all__ = [
    # Ingest
    "IngestService",
    "configure_ingest_service",
    "get_ingest_service",
    # Playback
    "PlaybackResolver",
    "StreamResolution",
    "configure_playback_resolver",
    "get_playback_resolver",
    # Processing
    "ProcessingOrchestrator",
    "configure_orchestrator",
    "get_orchestrator",
    # Video store
    "VideoStore",
    "configure_video_store",
    "get_video_store",
    # Workspace
    "CleanupResult",
    "Workspace",
    "configure_workspace",
    "get_workspace",
    "sweep_scheduler",
]
