"""FastAPI application entry point.

This module assembles all components and creates the main application.
"""

import asyncio
import contextlib
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from streamvault import __version__
from streamvault.api import admin, health, metrics, stream, upload, videos
from streamvault.core.config import Config, ConfigService, MonitoringConfig, ServerConfig
from streamvault.core.errors import APIError, global_exception_handler
from streamvault.core.exceptions import StreamVaultError
from streamvault.core.logging import clear_request_id, configure_logging, set_request_id
from streamvault.core.metrics import MetricsCollector, initialize_metrics
from streamvault.media.probe import MediaProbe
from streamvault.services.ingest import configure_ingest_service, get_ingest_service
from streamvault.services.playback import configure_playback_resolver, get_playback_resolver
from streamvault.services.processing import configure_orchestrator, get_orchestrator
from streamvault.services.video_store import configure_video_store, get_video_store
from streamvault.services.workspace import configure_workspace, get_workspace, sweep_scheduler
from streamvault.storage.chunked import configure_chunked_store, get_chunked_store

logger = structlog.get_logger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics.

    Records request count and duration for all endpoints,
    using FastAPI route templates to normalize paths.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request and record metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Use fixed label for unmatched routes to prevent unbounded cardinality
        route = request.scope.get("route")
        endpoint = route.path if route else "/unmatched"

        MetricsCollector.record_request(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
            duration=duration,
        )

        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request_id to every log line of a request.

    Honors an incoming ``X-Request-ID`` header and echoes the id back.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers["X-Request-ID"] = request_id
        return response


# Global state
_config: Optional[Config] = None
_sweep_task: Optional[asyncio.Task] = None


def get_config() -> Config:
    """Get the loaded application configuration."""
    if _config is None:
        raise RuntimeError("Configuration not loaded")
    return _config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown."""
    global _config, _sweep_task

    logger.info("application_starting", version=__version__)

    # Initialize metrics with application version
    initialize_metrics(__version__)

    # Load configuration
    config_service = ConfigService()
    config = config_service.load()
    config_service.validate()
    _config = config

    # Configure logging
    configure_logging(config.logging.level, config.logging.format)

    logger.info(
        "configuration_loaded",
        server_port=config.server.port,
        upload_dir=config.storage.upload_dir,
        object_store=config.object_store.backend,
    )

    # Working directories and the record store
    workspace = configure_workspace(config.storage)
    workspace.initialize()
    store = configure_video_store(config.storage.data_dir)
    logger.info("video_store_configured", records=store.count())

    # Object store
    chunked_store = configure_chunked_store(config)
    logger.info("object_store_configured", backend=chunked_store.backend_name)

    # Processing and playback
    orchestrator = configure_orchestrator(config, store, chunked_store, workspace)
    configure_playback_resolver(chunked_store, workspace, config.playback)
    configure_ingest_service(
        store=store,
        workspace=workspace,
        probe=MediaProbe(config.transcode.ffprobe_path, config.transcode.probe_timeout),
        orchestrator=orchestrator,
        config=config.storage,
    )
    health.configure_health_checks(config.transcode)
    health.reset_start_time()

    # Start the stale file sweep in background
    _sweep_task = asyncio.create_task(
        sweep_scheduler(
            workspace,
            interval=config.storage.sweep_interval,
            is_protected=orchestrator.holds_local_files,
        )
    )

    logger.info("application_startup_complete", version=__version__)

    yield

    # Shutdown
    logger.info("application_shutting_down")

    if _sweep_task:
        _sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweep_task
        _sweep_task = None

    await orchestrator.shutdown()
    await chunked_store.close()

    logger.info("application_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="StreamVault API",
        description="Video upload, adaptive streaming and chunked cloud archival",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Default ["*"] for development; override via APP_SERVER_CORS_ORIGINS env var
    server_config = ServerConfig()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "X-Request-ID", "X-Stream-Source"],
    )

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Register global exception handlers
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(APIError, global_exception_handler)
    app.add_exception_handler(StreamVaultError, global_exception_handler)
    app.add_exception_handler(RequestValidationError, global_exception_handler)
    app.add_exception_handler(HTTPException, global_exception_handler)

    # Override dependency injection for routers

    # Upload router dependencies
    app.dependency_overrides[upload.get_ingest_service] = get_ingest_service

    # Video router dependencies
    app.dependency_overrides[videos.get_video_store] = get_video_store
    app.dependency_overrides[videos.get_chunked_store] = get_chunked_store
    app.dependency_overrides[videos.get_workspace] = get_workspace
    app.dependency_overrides[videos.get_playback_resolver] = get_playback_resolver

    # Stream router dependencies
    app.dependency_overrides[stream.get_video_store] = get_video_store
    app.dependency_overrides[stream.get_playback_resolver] = get_playback_resolver

    # Admin router dependencies
    app.dependency_overrides[admin.get_workspace] = get_workspace
    app.dependency_overrides[admin.get_orchestrator] = get_orchestrator
    app.dependency_overrides[admin.get_chunked_store] = get_chunked_store

    # Register routers
    app.include_router(health.router)
    app.include_router(upload.router)
    app.include_router(videos.router)
    app.include_router(stream.router)
    app.include_router(admin.router)
    if MonitoringConfig().metrics_enabled:
        app.include_router(metrics.router)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn  # type: ignore[import-not-found]

    _server = ServerConfig()
    uvicorn.run(app, host=_server.host, port=_server.port)  # nosec B104
