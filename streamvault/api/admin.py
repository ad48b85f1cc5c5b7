"""Admin API endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query

from streamvault.api.schemas import CleanupResponse, DestinationHealth, StorageHealthResponse
from streamvault.services.processing import ProcessingOrchestrator
from streamvault.services.workspace import Workspace
from streamvault.storage.chunked import ChunkedObjectStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["admin"])


# Dependency placeholders (to be configured in main app)
async def get_workspace() -> Workspace:
    """Get workspace instance."""
    raise NotImplementedError("Workspace dependency not configured")


async def get_orchestrator() -> ProcessingOrchestrator:
    """Get processing orchestrator instance."""
    raise NotImplementedError("Processing orchestrator dependency not configured")


async def get_chunked_store() -> ChunkedObjectStore:
    """Get chunked object store instance."""
    raise NotImplementedError("Chunked object store dependency not configured")


@router.post("/admin/cleanup", response_model=CleanupResponse)
async def run_cleanup(
    dry_run: bool = Query(False, description="Only report what would be deleted"),  # noqa: B008
    workspace: Workspace = Depends(get_workspace),  # noqa: B008
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> Any:
    """
    Run the stale file sweep now.

    Files of videos still being processed, or whose original has no cloud
    copy, are preserved regardless of age.
    """
    logger.info("manual_cleanup_requested", dry_run=dry_run)
    result = workspace.sweep(dry_run=dry_run, is_protected=orchestrator.holds_local_files)
    return CleanupResponse(**result.to_dict())


@router.get("/storage/health", response_model=StorageHealthResponse)
async def storage_health(
    chunked_store: ChunkedObjectStore = Depends(get_chunked_store),  # noqa: B008
) -> Any:
    """Report the health of every object store destination."""
    results = await chunked_store.check_health()
    destinations = [
        DestinationHealth(name=r.name, available=r.available, error=r.error, details=r.details)
        for r in results
    ]
    healthy = chunked_store.enabled and bool(destinations) and destinations[0].available
    logger.info(
        "storage_health_checked",
        backend=chunked_store.backend_name,
        healthy=healthy,
        destinations={d.name: d.available for d in destinations},
    )
    return StorageHealthResponse(
        backend=chunked_store.backend_name,
        healthy=healthy,
        destinations=destinations,
    )
