"""Unit tests for Prometheus metrics collection and the /metrics endpoint."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from streamvault.api import metrics
from streamvault.core.metrics import (
    MetricsCollector,
    active_processing_jobs,
    errors_total,
    http_request_duration_seconds,
    http_requests_total,
    initialize_metrics,
    object_store_bytes_total,
    object_store_operations_total,
    object_store_rate_limited_total,
    playback_requests_total,
    processing_jobs_total,
    processing_phase_errors_total,
    storage_available_bytes,
    storage_percent_used,
    storage_used_bytes,
    uploads_total,
)


class TestMetricsCollection:
    """Tests for Prometheus metrics collection."""

    def test_record_request_increments_counter(self) -> None:
        """Test HTTP request counter increment."""
        initial = http_requests_total.labels(
            method="GET", endpoint="/test", status="200"
        )._value.get()

        MetricsCollector.record_request(
            method="GET",
            endpoint="/test",
            status=200,
            duration=0.1,
        )

        final = http_requests_total.labels(
            method="GET", endpoint="/test", status="200"
        )._value.get()

        assert final == initial + 1

    def test_record_request_observes_duration(self) -> None:
        """Test request duration histogram observation."""
        MetricsCollector.record_request(
            method="POST",
            endpoint="/api/v1/upload",
            status=202,
            duration=0.5,
        )

        histogram = http_request_duration_seconds.labels(method="POST", endpoint="/api/v1/upload")
        assert histogram._sum.get() > 0

    def test_record_upload(self) -> None:
        initial = uploads_total._value.get()

        MetricsCollector.record_upload(50_000_000)

        assert uploads_total._value.get() == initial + 1

    def test_record_phase_failure_counts_error(self) -> None:
        """Failed phases increment the per-phase error counter."""
        initial = processing_phase_errors_total.labels(phase="encode")._value.get()

        MetricsCollector.record_phase("encode", duration=3.0, success=True)
        MetricsCollector.record_phase("encode", duration=1.0, success=False)

        assert processing_phase_errors_total.labels(phase="encode")._value.get() == initial + 1

    def test_record_processing_outcome(self) -> None:
        initial = processing_jobs_total.labels(outcome="with_errors")._value.get()

        MetricsCollector.record_processing_outcome("with_errors")

        assert processing_jobs_total.labels(outcome="with_errors")._value.get() == initial + 1

    def test_set_active_processing(self) -> None:
        MetricsCollector.set_active_processing(3)

        assert active_processing_jobs._value.get() == 3

    def test_record_object_store_success_counts_bytes(self) -> None:
        initial_ops = object_store_operations_total.labels(
            operation="put", status="success"
        )._value.get()
        initial_bytes = object_store_bytes_total._value.get()

        MetricsCollector.record_object_store("put", "success", size=1024)

        assert (
            object_store_operations_total.labels(operation="put", status="success")._value.get()
            == initial_ops + 1
        )
        assert object_store_bytes_total._value.get() == initial_bytes + 1024

    def test_record_object_store_failure_counts_no_bytes(self) -> None:
        initial_bytes = object_store_bytes_total._value.get()

        MetricsCollector.record_object_store("get", "failed")

        assert object_store_bytes_total._value.get() == initial_bytes

    def test_record_rate_limited(self) -> None:
        initial = object_store_rate_limited_total._value.get()

        MetricsCollector.record_rate_limited()

        assert object_store_rate_limited_total._value.get() == initial + 1

    def test_record_playback(self) -> None:
        initial = playback_requests_total.labels(kind="video", source="cloud")._value.get()

        MetricsCollector.record_playback("video", "cloud")

        assert playback_requests_total.labels(kind="video", source="cloud")._value.get() == initial + 1

    def test_update_storage_metrics(self) -> None:
        """Test storage gauge updates."""
        MetricsCollector.update_storage_metrics(
            used=1_000_000_000,
            available=9_000_000_000,
            percent=10.0,
        )

        assert storage_used_bytes._value.get() == 1_000_000_000
        assert storage_available_bytes._value.get() == 9_000_000_000
        assert storage_percent_used._value.get() == 10.0

    def test_record_error_by_code(self) -> None:
        """Test error counter by code."""
        initial = errors_total.labels(
            error_code="VIDEO_NOT_FOUND", endpoint="/api/v1/videos/{video_id}"
        )._value.get()

        MetricsCollector.record_error(
            error_code="VIDEO_NOT_FOUND",
            endpoint="/api/v1/videos/{video_id}",
        )

        final = errors_total.labels(
            error_code="VIDEO_NOT_FOUND", endpoint="/api/v1/videos/{video_id}"
        )._value.get()

        assert final == initial + 1

    def test_initialize_metrics(self) -> None:
        """Test metrics initialization with version."""
        initialize_metrics("1.0.0-test")
        # If no exception, initialization succeeded


class TestMetricsEndpoint:
    """Tests for /metrics endpoint."""

    @pytest.fixture
    def client(self) -> TestClient:
        app = FastAPI()
        app.include_router(metrics.router)
        return TestClient(app)

    def test_metrics_endpoint_returns_prometheus_format(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]

    def test_metrics_endpoint_contains_application_metrics(self, client: TestClient) -> None:
        MetricsCollector.record_upload(1024)

        response = client.get("/metrics")

        assert "uploads_total" in response.text
        assert "object_store_operations_total" in response.text
