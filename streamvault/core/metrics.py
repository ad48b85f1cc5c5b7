"""Prometheus metrics collection for the API.

This module defines and manages Prometheus metrics for monitoring
request rates, uploads, processing phases, object store traffic and storage.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("streamvault", "StreamVault application information")

# HTTP request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Upload metrics
uploads_total = Counter(
    "uploads_total",
    "Total accepted uploads",
)

upload_size_bytes = Histogram(
    "upload_size_bytes",
    "Uploaded file size in bytes",
    buckets=[1e6, 10e6, 50e6, 100e6, 250e6, 500e6, 1e9, 2e9, 5e9, 10e9],
)

# Processing metrics
processing_phase_duration_seconds = Histogram(
    "processing_phase_duration_seconds",
    "Duration of each processing phase in seconds",
    ["phase"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0],
)

processing_phase_errors_total = Counter(
    "processing_phase_errors_total",
    "Total processing phase failures",
    ["phase"],
)

processing_jobs_total = Counter(
    "processing_jobs_total",
    "Total completed processing runs by outcome",
    ["outcome"],
)

active_processing_jobs = Gauge(
    "active_processing_jobs",
    "Number of videos currently being processed",
)

# Object store metrics
object_store_operations_total = Counter(
    "object_store_operations_total",
    "Total object store operations by operation and status",
    ["operation", "status"],
)

object_store_bytes_total = Counter(
    "object_store_bytes_total",
    "Total bytes written to the object store",
)

object_store_rate_limited_total = Counter(
    "object_store_rate_limited_total",
    "Total rate limit responses from the object store",
)

# Playback metrics
playback_requests_total = Counter(
    "playback_requests_total",
    "Playback requests by resolved source",
    ["kind", "source"],
)

# Storage metrics
storage_used_bytes = Gauge(
    "storage_used_bytes",
    "Total storage space used in bytes",
)

storage_available_bytes = Gauge(
    "storage_available_bytes",
    "Available storage space in bytes",
)

storage_percent_used = Gauge(
    "storage_percent_used",
    "Storage usage as a percentage (0-100)",
)

# Error metrics
errors_total = Counter(
    "errors_total",
    "Total errors by error code and endpoint",
    ["error_code", "endpoint"],
)


class MetricsCollector:
    """Centralized metrics collection and update helper.

    Provides static methods for recording various metrics throughout
    the application in a consistent manner.
    """

    @staticmethod
    def record_request(
        method: str,
        endpoint: str,
        status: int,
        duration: float,
    ) -> None:
        """Record HTTP request metrics.

        Args:
            method: HTTP method (GET, POST, etc.).
            endpoint: Normalized endpoint path.
            status: HTTP response status code.
            duration: Request duration in seconds.
        """
        http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint,
        ).observe(duration)

    @staticmethod
    def record_upload(size: int) -> None:
        """Record an accepted upload.

        Args:
            size: Uploaded file size in bytes.
        """
        uploads_total.inc()
        if size > 0:
            upload_size_bytes.observe(size)

    @staticmethod
    def record_phase(phase: str, duration: float, success: bool) -> None:
        """Record a processing phase run.

        Args:
            phase: Phase name (e.g. 'audio_extraction', 'encode').
            duration: Phase duration in seconds.
            success: Whether the phase completed without error.
        """
        processing_phase_duration_seconds.labels(phase=phase).observe(duration)
        if not success:
            processing_phase_errors_total.labels(phase=phase).inc()

    @staticmethod
    def record_processing_outcome(outcome: str) -> None:
        """Record the final outcome of a processing run ('clean' or 'with_errors')."""
        processing_jobs_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_active_processing(count: int) -> None:
        active_processing_jobs.set(count)

    @staticmethod
    def record_object_store(operation: str, status: str, size: int = 0) -> None:
        """Record an object store operation.

        Args:
            operation: Operation name ('put', 'get', 'delete').
            status: 'success' or 'failed'.
            size: Bytes written, for successful puts.
        """
        object_store_operations_total.labels(operation=operation, status=status).inc()
        if size > 0:
            object_store_bytes_total.inc(size)

    @staticmethod
    def record_rate_limited() -> None:
        object_store_rate_limited_total.inc()

    @staticmethod
    def record_playback(kind: str, source: str) -> None:
        """Record which source served a playback request.

        Args:
            kind: 'video' or 'audio'.
            source: Resolved source (e.g. 'cloud', 'manifest', 'local').
        """
        playback_requests_total.labels(kind=kind, source=source).inc()

    @staticmethod
    def update_storage_metrics(
        used: int,
        available: int,
        percent: float,
    ) -> None:
        """Update storage metrics.

        Args:
            used: Storage space used in bytes.
            available: Available storage space in bytes.
            percent: Storage usage percentage (0-100).
        """
        storage_used_bytes.set(used)
        storage_available_bytes.set(available)
        storage_percent_used.set(percent)

    @staticmethod
    def record_error(error_code: str, endpoint: str) -> None:
        """Record an error occurrence.

        Args:
            error_code: Error code from ErrorCode class.
            endpoint: Endpoint where the error occurred.
        """
        errors_total.labels(error_code=error_code, endpoint=endpoint).inc()


def initialize_metrics(version: str) -> None:
    """Initialize application metrics with version information.

    Should be called during application startup.

    Args:
        version: Application version string.
    """
    app_info.info({"version": version})
