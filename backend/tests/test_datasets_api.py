"""Tests for the dataset registry endpoints.

The repository dependency is replaced with a fresh in-memory repository
for every test through FastAPI dependency overrides.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi import testclient

from geolens import main
from geolens.api import datasets
from geolens.db import repository as db_repository

ROADS = {
    "id": "d3",
    "name": "Road Network",
    "type": "vector",
    "format": "Shapefile",
    "versions": ["v1.0"],
    "bbox": [72.9, 33.5, 73.2, 33.8],
}


@pytest.fixture
def client() -> Iterator[testclient.TestClient]:
    repo = db_repository.InMemoryDatasetRepository()
    main.app.dependency_overrides[datasets._get_repo] = lambda: repo
    try:
        yield testclient.TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


def test_create_and_list(client: testclient.TestClient) -> None:
    """Test registering a dataset and listing it back."""
    response = client.post("/api/datasets", json=ROADS)
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "new"
    assert created["visible"] is True
    assert created["crs"] == "EPSG:4326"

    listed = client.get("/api/datasets").json()
    assert [d["id"] for d in listed] == ["d3"]


def test_create_rejects_unknown_type(client: testclient.TestClient) -> None:
    response = client.post("/api/datasets", json={**ROADS, "type": "mesh"})
    assert response.status_code == 422


def test_get_bbox(client: testclient.TestClient) -> None:
    client.post("/api/datasets", json=ROADS)
    response = client.get("/api/datasets/d3/bbox")
    assert response.status_code == 200
    assert response.json() == {"bbox": [72.9, 33.5, 73.2, 33.8]}


def test_get_bbox_unknown(client: testclient.TestClient) -> None:
    response = client.get("/api/datasets/nope/bbox")
    assert response.status_code == 404
    assert response.json()["detail"] == "Dataset not found"


def test_get_bbox_when_missing(client: testclient.TestClient) -> None:
    client.post("/api/datasets", json={**ROADS, "bbox": None})
    assert client.get("/api/datasets/d3/bbox").json() == {"bbox": None}


def test_add_version(client: testclient.TestClient) -> None:
    """Test that a new version marks the dataset modified."""
    client.post("/api/datasets", json=ROADS)
    response = client.post("/api/datasets/d3/versions", json={"tag": "v1.1"})
    assert response.status_code == 200
    body = response.json()
    assert body["versions"] == ["v1.0", "v1.1"]
    assert body["status"] == "modified"


def test_add_version_validation(client: testclient.TestClient) -> None:
    client.post("/api/datasets", json=ROADS)
    assert client.post(
        "/api/datasets/d3/versions", json={"tag": ""}
    ).status_code == 422
    assert client.post(
        "/api/datasets/nope/versions", json={"tag": "v2"}
    ).status_code == 404


def test_set_visibility(client: testclient.TestClient) -> None:
    client.post("/api/datasets", json=ROADS)
    response = client.patch(
        "/api/datasets/d3/visibility", json={"visible": False}
    )
    assert response.status_code == 200
    assert response.json()["visible"] is False
    assert client.patch(
        "/api/datasets/nope/visibility", json={"visible": True}
    ).status_code == 404
