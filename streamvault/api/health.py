"""Health check endpoints.

- /health: detailed component verification
- /liveness and /readiness: container health probes
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Literal

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from streamvault import __version__
from streamvault.api.schemas import ComponentHealth, HealthResponse, LivenessResponse, ReadinessResponse
from streamvault.core.checks import check_ffmpeg, check_ffprobe
from streamvault.core.config import TranscodeConfig
from streamvault.core.metrics import MetricsCollector
from streamvault.core.resources import get_current_usage

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

# Track application start time for uptime calculation
_start_time: float = time.time()

# Binaries checked by the probes
_binaries: Dict[str, str] = {"ffmpeg": "ffmpeg", "ffprobe": "ffprobe"}


def reset_start_time() -> None:
    """Reset the start time (for testing)."""
    global _start_time
    _start_time = time.time()


def configure_health_checks(config: TranscodeConfig) -> None:
    """Check the configured ffmpeg and ffprobe binaries."""
    _binaries["ffmpeg"] = config.ffmpeg_path
    _binaries["ffprobe"] = config.ffprobe_path


async def _check_ffmpeg() -> ComponentHealth:
    """Check ffmpeg availability and version."""
    result = await check_ffmpeg(_binaries["ffmpeg"])
    if result.available:
        return ComponentHealth(status="healthy", version=result.version)
    return ComponentHealth(
        status="unhealthy",
        details={"error": result.error or "ffmpeg not available"},
    )


async def _check_ffprobe() -> ComponentHealth:
    """Check ffprobe availability and version."""
    result = await check_ffprobe(_binaries["ffprobe"])
    if result.available:
        return ComponentHealth(status="healthy", version=result.version)
    return ComponentHealth(
        status="unhealthy",
        details={"error": result.error or "ffprobe not available"},
    )


def _check_storage() -> ComponentHealth:
    """Check that the working directories exist and are writable."""
    try:
        from streamvault.services.workspace import get_workspace

        workspace = get_workspace()
        writable = workspace.check_writable()
        usage = get_current_usage(str(workspace.upload_dir))
        MetricsCollector.update_storage_metrics(
            used=usage.disk_used_bytes,
            available=usage.disk_available_bytes,
            percent=usage.disk_percent,
        )

        details = {
            "available_gb": round(usage.disk_available_bytes / (1024**3), 2),
            "used_percent": round(usage.disk_percent, 1),
            "memory_percent": usage.memory_percent,
        }
        not_writable = [path for path, ok in writable.items() if not ok]
        if not_writable:
            details["not_writable"] = not_writable
            return ComponentHealth(status="unhealthy", details=details)
        return ComponentHealth(status="healthy", details=details)
    except RuntimeError:
        # Workspace not configured yet
        return ComponentHealth(
            status="unhealthy",
            details={"error": "Workspace not configured"},
        )
    except OSError as e:
        return ComponentHealth(
            status="unhealthy",
            details={"error": str(e)},
        )


async def _check_object_store() -> ComponentHealth:
    """Check the object store destinations.

    A disabled store is reported healthy: uploads are simply not archived.
    """
    try:
        from streamvault.storage.chunked import get_chunked_store

        chunked_store = get_chunked_store()
    except RuntimeError:
        return ComponentHealth(
            status="unhealthy",
            details={"error": "Object store not configured"},
        )

    if not chunked_store.enabled:
        return ComponentHealth(status="healthy", details={"backend": "disabled"})

    results = await chunked_store.check_health()
    destinations = {
        r.name: {"available": r.available, **({"error": r.error} if r.error else {})}
        for r in results
    }
    primary_ok = bool(results) and results[0].available
    return ComponentHealth(
        status="healthy" if primary_ok else "unhealthy",
        details={"backend": chunked_store.backend_name, "destinations": destinations},
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        200: {"description": "All components healthy"},
        503: {"description": "One or more components unhealthy"},
    },
)
async def health_check() -> JSONResponse:
    """
    Detailed health check endpoint.

    Verifies all system components:
    - ffmpeg availability and version
    - ffprobe availability and version
    - Working directories and disk usage
    - Object store destinations

    Returns HTTP 200 if all components are healthy,
    HTTP 503 if any component is unhealthy.
    """
    ffmpeg_health, ffprobe_health, object_store_health = await asyncio.gather(
        _check_ffmpeg(), _check_ffprobe(), _check_object_store()
    )

    # Sync check
    storage_health = _check_storage()

    components = {
        "ffmpeg": ffmpeg_health,
        "ffprobe": ffprobe_health,
        "storage": storage_health,
        "object_store": object_store_health,
    }

    # Determine overall status
    all_healthy = all(c.status == "healthy" for c in components.values())
    overall_status: Literal["healthy", "unhealthy"] = "healthy" if all_healthy else "unhealthy"

    uptime = time.time() - _start_time

    response = HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        uptime_seconds=round(uptime, 2),
        components=components,
    )

    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    logger.info(
        "health_check_completed",
        status=overall_status,
        components={k: v.status for k, v in components.items()},
    )

    return JSONResponse(content=response.model_dump(), status_code=status_code)


@router.get("/liveness", response_model=LivenessResponse)
async def liveness_check() -> LivenessResponse:
    """
    Liveness probe endpoint.

    Returns HTTP 200 if the process is alive.
    """
    return LivenessResponse(status="alive")


@router.get(
    "/readiness",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Service is ready to accept traffic"},
        503: {"description": "Service is not ready"},
    },
)
async def readiness_check() -> JSONResponse:
    """
    Readiness probe endpoint.

    Checks:
    - ffmpeg is available
    - Working directories are writable
    """
    issues = []

    ffmpeg_health = await _check_ffmpeg()
    if ffmpeg_health.status != "healthy":
        issues.append("ffmpeg not available")

    storage_health = _check_storage()
    if storage_health.status != "healthy":
        issues.append("Storage not ready")

    if issues:
        response = ReadinessResponse(
            status="not_ready",
            ready=False,
            message="; ".join(issues),
        )
        return JSONResponse(
            content=response.model_dump(),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return JSONResponse(
        content=ReadinessResponse(status="ready", ready=True).model_dump(),
        status_code=status.HTTP_200_OK,
    )
