"""Tests for the upload/processing backend client.

Requests are served by ``httpx.MockTransport`` so no network is needed;
coroutines are driven with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from geolens.core import config, errors
from geolens.db import models as db_models
from geolens.services import backend_client

FC = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {},
         "geometry": {"type": "Point", "coordinates": [73.05, 33.68]}},
    ],
}
LINES_FC = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {},
         "geometry": {"type": "LineString",
                      "coordinates": [[0, 0], [1, 1]]}},
    ],
}


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> backend_client.BackendClient:
    settings = config.Settings(api_base_url="http://backend.test")
    return backend_client.BackendClient(
        settings, transport=httpx.MockTransport(handler)
    )


def _upload(
    handler: Callable[[httpx.Request], httpx.Response],
    progress: backend_client.UploadProgress | None = None,
) -> backend_client.UploadResult:
    async def run() -> backend_client.UploadResult:
        async with _client(handler) as client:
            return await client.upload_dataset(
                "p1", "Vector", "wells.geojson", b"{}", progress=progress
            )

    return asyncio.run(run())


def _process(
    handler: Callable[[httpx.Request], httpx.Response],
    collections: dict[str, Any] | None = None,
) -> dict[str, Any]:
    async def run() -> dict[str, Any]:
        async with _client(handler) as client:
            return await client.process_layers(
                "p1",
                [{"id": "v-1", "type": "vector"}],
                "buffer the wells by 1 km",
                collections=collections,
            )

    return asyncio.run(run())


def test_upload_dataset_success() -> None:
    """Test that the upload posts multipart data and parses the answer."""
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.content
        return httpx.Response(200, json={
            "geometry_data": FC,
            "features_count": 1,
            "version_number": "v1.0",
            "version_id": 42,
            "unrelated": "ignored",
        })

    progress = backend_client.UploadProgress(interval=60)
    result = _upload(handler, progress)
    assert seen["path"] == "/api/projects/p1/upload/vector"
    assert b'filename="wells.geojson"' in seen["body"]
    assert result.geometry_data == FC
    assert result.version_id == "42"
    assert progress.value == 100
    assert not progress.running


def test_upload_raster_bounding_box() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "mapbox_url": "http://tiles/{z}/{x}/{y}.png",
            "bounding_box": {"minx": "72.5", "miny": "33.1",
                             "maxx": "73.5", "maxy": "34.0"},
        })

    result = _upload(handler)
    assert result.bounding_box == db_models.BoundingBox(72.5, 33.1, 73.5, 34.0)


def test_upload_error_message_from_json() -> None:
    progress = backend_client.UploadProgress(interval=60)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "Invalid shapefile"})

    with pytest.raises(errors.CollaboratorError) as excinfo:
        _upload(handler, progress)
    assert str(excinfo.value) == "Invalid shapefile"
    assert excinfo.value.status_code == 400
    assert progress.value == 0


def test_upload_error_without_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="<html>oops</html>")

    with pytest.raises(errors.CollaboratorError,
                       match="Server error: 500 Internal Server Error"):
        _upload(handler)


def test_upload_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(errors.CollaboratorError,
                       match="Failed to upload dataset"):
        _upload(handler)


def test_upload_unexpected_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="OK")

    with pytest.raises(errors.CollaboratorError,
                       match="Unexpected upload response"):
        _upload(handler)


def test_process_layers_parses_result() -> None:
    """Test that processing results go through the response parser."""
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json=FC)

    assert _process(handler) == FC
    assert seen["path"] == "/process"
    assert seen["payload"] == {
        "project_id": "p1",
        "file_inputs": [{"id": "v-1", "type": "vector"}],
        "prompt": "buffer the wells by 1 km",
    }


def test_process_layers_zipped_shapefile(roads_zip: bytes) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=roads_zip,
            headers={"content-type": "application/octet-stream"},
        )

    fc = _process(handler)
    assert len(fc["features"]) == 2


def test_process_layers_geometry_mismatch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500,
            text="RuntimeError: Attempt to write non-point (LINESTRING) "
                 "geometry to point shapefile.",
        )

    with pytest.raises(errors.GeometryMismatch, match="Geometry type mismatch"):
        _process(handler)


def test_process_layers_other_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(errors.CollaboratorError) as excinfo:
        _process(handler)
    assert str(excinfo.value) == (
        "Server responded with 500: Internal Server Error. Details: boom"
    )


def test_process_layers_warns_on_mixed_submission(
    caplog: pytest.LogCaptureFixture,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=FC)

    _process(handler, collections={"wells": FC, "canals": LINES_FC})
    assert "mix geometry types" in caplog.text


def test_process_layers_error_payload_in_success() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "Layer v-1 not found"})

    with pytest.raises(errors.BackendErrorPayload, match="Layer v-1"):
        _process(handler)


def test_upload_progress_ticks_to_ceiling() -> None:
    """Test that progress climbs, stalls at the ceiling and completes."""
    values: list[float] = []

    async def run() -> backend_client.UploadProgress:
        progress = backend_client.UploadProgress(
            interval=0.001, step=30, on_change=values.append
        )
        progress.start()
        await asyncio.sleep(0.1)
        assert progress.running
        assert progress.value == 90
        progress.complete()
        return progress

    progress = asyncio.run(run())
    assert values[0] == 0
    assert values[1:4] == [30, 60, 90]
    assert values[-1] == 100
    assert not progress.running


def test_upload_progress_cancel_is_idempotent() -> None:
    async def run() -> backend_client.UploadProgress:
        progress = backend_client.UploadProgress(interval=60)
        progress.start()
        progress.cancel()
        progress.cancel()
        return progress

    progress = asyncio.run(run())
    assert not progress.running
    assert progress.value == 0


def test_upload_progress_default_interval() -> None:
    progress = backend_client.UploadProgress()
    assert progress.interval == config.get_settings().progress_interval_seconds
