"""Tests for the ingestion endpoints.

The endpoints are exercised through the FastAPI test client with real
payloads: raw GeoJSON, zipped shapefiles and garbage bytes.
"""

from __future__ import annotations

import json

import pytest
from fastapi import testclient

from geolens import main
from geolens.core import config

MIXED_FC = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {},
         "geometry": {"type": "Point", "coordinates": [0, 0]}},
        {"type": "Feature", "properties": {},
         "geometry": {"type": "MultiLineString",
                      "coordinates": [[[0, 0], [1, 1]]]}},
    ],
}


def test_parse_geojson_upload() -> None:
    """Test parsing a raw GeoJSON payload."""
    client = testclient.TestClient(main.app)
    response = client.post(
        "/api/ingest/parse",
        files={"file": ("mixed.geojson", json.dumps(MIXED_FC).encode())},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["format"] == "json"
    assert body["features_count"] == 2
    assert body["consistency"] == {
        "consistent": False,
        "base_types": ["LineString", "Point"],
    }
    assert body["bbox"] == [0, 0, 1, 1]


def test_parse_zipped_shapefile_upload(roads_zip: bytes) -> None:
    """Test parsing a zipped shapefile sent with a misleading name."""
    client = testclient.TestClient(main.app)
    response = client.post(
        "/api/ingest/parse",
        files={"file": ("result.json", roads_zip, "application/json")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["format"] == "zip"
    assert body["features_count"] == 2
    assert body["consistency"]["base_types"] == ["LineString"]
    assert body["bbox"] == pytest.approx([72.9, 33.5, 73.2, 33.8])


def test_parse_unrecognized_payload() -> None:
    client = testclient.TestClient(main.app)
    response = client.post(
        "/api/ingest/parse",
        files={"file": ("blob.bin", b"\x89PNG\r\n\x1a\n")},
    )
    assert response.status_code == 422
    assert "not in a recognized format" in response.json()["detail"]


def test_parse_backend_error_payload() -> None:
    client = testclient.TestClient(main.app)
    response = client.post(
        "/api/ingest/parse",
        files={"file": ("err.json", b'{"error": "Processing failed"}')},
    )
    assert response.status_code == 422
    assert response.json()["detail"] == (
        "Backend returned error: Processing failed"
    )


def test_parse_upload_too_large() -> None:
    """Test that payloads over the size limit are rejected."""
    app = main.create_app()
    app.dependency_overrides[config.get_settings] = lambda: config.Settings(
        max_upload_size_bytes=8
    )
    try:
        client = testclient.TestClient(app)
        response = client.post(
            "/api/ingest/parse",
            files={"file": ("big.geojson", json.dumps(MIXED_FC).encode())},
        )
        assert response.status_code == 413
        assert response.json()["detail"] == "Upload too large"
    finally:
        app.dependency_overrides.clear()


def test_check_collection() -> None:
    client = testclient.TestClient(main.app)
    response = client.post("/api/ingest/check", json=MIXED_FC)
    assert response.status_code == 200
    assert response.json() == {
        "consistent": False,
        "base_types": ["LineString", "Point"],
    }


def test_check_rejects_non_collection() -> None:
    client = testclient.TestClient(main.app)
    response = client.post("/api/ingest/check", json={"type": "Feature"})
    assert response.status_code == 400
