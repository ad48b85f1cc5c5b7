"""Tests for admin API endpoints."""

import os
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from streamvault.api import admin
from streamvault.core.config import ObjectStoreConfig
from streamvault.services.workspace import Workspace
from streamvault.storage.chunked import ChunkedObjectStore
from streamvault.storage.local import LocalObjectStore


@pytest.fixture
def mock_orchestrator():
    """Create mock orchestrator protecting video 'busy'."""
    orchestrator = MagicMock()
    orchestrator.holds_local_files.side_effect = lambda video_id: video_id == "busy"
    return orchestrator


@pytest.fixture
def chunked_store(tmp_path):
    """Local object store with a primary and a backup destination."""
    return ChunkedObjectStore(
        LocalObjectStore(str(tmp_path / "objects"), destinations=["primary", "backup"]),
        ObjectStoreConfig(backend="local"),
    )


@pytest.fixture
def app(workspace, mock_orchestrator, chunked_store):
    """Create FastAPI test app."""
    app = FastAPI()
    app.include_router(admin.router)

    app.dependency_overrides[admin.get_workspace] = lambda: workspace
    app.dependency_overrides[admin.get_orchestrator] = lambda: mock_orchestrator
    app.dependency_overrides[admin.get_chunked_store] = lambda: chunked_store

    return app


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


def make_stale_upload(workspace: Workspace, video_id: str) -> Path:
    path = workspace.upload_path(video_id, "mp4")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * 100)
    old = time.time() - 7200
    os.utime(path, (old, old))
    os.utime(path.parent, (old, old))
    return path


class TestCleanupEndpoint:
    """Test /api/v1/admin/cleanup endpoint."""

    def test_cleanup_removes_stale_entries(self, client, workspace):
        stale = make_stale_upload(workspace, "done")
        busy = make_stale_upload(workspace, "busy")

        response = client.post("/api/v1/admin/cleanup")

        assert response.status_code == 200
        data = response.json()
        assert data["files_deleted"] == 1
        assert data["files_preserved"] == 1
        assert data["bytes_reclaimed"] == 100
        assert data["dry_run"] is False
        assert not stale.exists()
        assert busy.exists()

    def test_cleanup_dry_run(self, client, workspace):
        stale = make_stale_upload(workspace, "done")

        response = client.post("/api/v1/admin/cleanup", params={"dry_run": "true"})

        data = response.json()
        assert data["dry_run"] is True
        assert data["files_deleted"] == 1
        assert stale.exists()


class TestStorageHealthEndpoint:
    """Test /api/v1/storage/health endpoint."""

    def test_all_destinations_available(self, client):
        response = client.get("/api/v1/storage/health")

        assert response.status_code == 200
        data = response.json()
        assert data["backend"] == "local"
        assert data["healthy"] is True
        assert [d["name"] for d in data["destinations"]] == ["primary", "backup"]

    def test_disabled_store(self, app):
        app.dependency_overrides[admin.get_chunked_store] = lambda: ChunkedObjectStore(
            None, ObjectStoreConfig()
        )

        data = TestClient(app).get("/api/v1/storage/health").json()

        assert data["backend"] == "disabled"
        assert data["healthy"] is False
        assert data["destinations"][0]["error"] == "disabled"
