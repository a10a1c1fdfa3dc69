from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from socrata_cache.core.db import get_db
from socrata_cache.main import create_app
from socrata_cache.models.dataset import DatasetStatus


@pytest.fixture
def client(session_factory):
    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: startup (config + scheduler) is not triggered
    return TestClient(app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_list_datasets_empty(client):
    resp = client.get("/api/datasets")
    assert resp.status_code == 200
    assert resp.json() == []


def test_list_datasets_renders_lowercase_status(client, make_dataset):
    older = make_dataset(status=DatasetStatus.DOWNLOADED, created_at=datetime(2025, 1, 1, 8))
    newer = make_dataset("R2", status=DatasetStatus.PENDING, created_at=datetime(2025, 1, 2, 8))

    body = client.get("/api/datasets").json()

    assert [item["datasetId"] for item in body] == [older.dataset_id, newer.dataset_id]
    assert body[0]["status"] == "downloaded"
    assert body[1]["status"] == "pending"
    assert body[1]["resourceId"] == "R2"
    assert body[0]["type"] == "csv"
    assert body[0]["createdAt"] == "2025-01-01T08:00:00"
    assert set(body[0]) == {
        "datasetId", "resourceId", "status", "type", "referenceDate", "createdAt", "updatedAt",
    }


def test_no_mutating_routes(client):
    assert client.post("/api/datasets").status_code == 405
    assert client.delete("/api/datasets").status_code == 405
