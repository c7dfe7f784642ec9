"""Tests for the primary map workspace."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from geolens.core import config, errors
from geolens.db import models as db_models
from geolens.render import paint, renderer, workspace
from geolens.services import backend_client

FC = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {"name": "a"},
         "geometry": {"type": "Polygon",
                      "coordinates": [[[72.0, 33.0], [73.0, 33.0],
                                       [73.0, 34.0], [72.0, 33.0]]]}},
    ],
}
WMS_URL = (
    "http://gs.example.org/geoserver/punjab/wms?service=WMS"
    "&request=GetMap&layers=punjab:canals&bbox=72.0,30.0,75.5,33.0"
    "&srs=EPSG:4326"
)


def _workspace(**settings: object) -> workspace.MapWorkspace:
    ws = workspace.MapWorkspace(
        renderer.InMemoryRenderer, config.Settings(**settings)
    )
    ws.renderer.finish_style_load()
    return ws


def test_add_vector_dataset_draws_and_fits() -> None:
    """Test that a vector upload is stored, drawn and framed."""
    ws = _workspace()
    upload = backend_client.UploadResult(
        geometry_data=FC, version_id="v-1", version_number="v1.0"
    )
    dataset = ws.add_dataset(upload, name="Parcels", type="vector",
                             format="GeoJSON")
    assert ws.repository.get("v-1") is dataset
    assert ws.renderer.get_layer("layer-v-1")["type"] == "fill"
    assert ws.renderer.last_fit is not None
    assert ws.renderer.last_fit["bounds"] == ((72.0, 33.0), (73.0, 34.0))


def test_add_dataset_before_style_load() -> None:
    """Test that drawing and fitting wait for the style."""
    ws = workspace.MapWorkspace(renderer.InMemoryRenderer, config.Settings())
    upload = backend_client.UploadResult(geometry_data=FC, version_id="v-1")
    ws.add_dataset(upload, name="Parcels", type="vector", format="GeoJSON")
    assert ws.renderer.last_fit is None
    ws.renderer.finish_style_load()
    assert ws.renderer.get_layer("layer-v-1") is not None
    assert ws.renderer.last_fit is not None


def test_add_raster_dataset() -> None:
    ws = _workspace()
    upload = backend_client.UploadResult(
        mapbox_url="http://tiles.example.org/{z}/{x}/{y}.png",
        bounding_box={"minx": 72, "miny": 33, "maxx": 74, "maxy": 35},
        version_id="r-1",
    )
    dataset = ws.add_dataset(upload, name="DEM", type="raster",
                             format="GeoTIFF")
    assert dataset.bbox == db_models.BoundingBox(72, 33, 74, 35)
    assert ws.renderer.get_source("raster-source-r-1")["tiles"] == [
        "http://tiles.example.org/{z}/{x}/{y}.png"
    ]
    assert ws.renderer.get_camera().center == (73.0, 34.0)


def test_add_raster_without_tiles() -> None:
    ws = _workspace()
    with pytest.raises(ValueError, match="tile URL"):
        ws.add_dataset(backend_client.UploadResult(), name="DEM",
                       type="raster", format="GeoTIFF")


def test_add_wms_layer_from_prompt() -> None:
    """Test that a WMS URL in free text becomes a raster layer."""
    ws = _workspace()
    dataset = ws.add_wms_layer(f"add this wms please {WMS_URL}")
    assert dataset.id == "wms-canals"
    assert dataset.format == "WMS"
    source = ws.renderer.get_source("raster-source-wms-canals")
    assert source["tiles"][0].endswith("bbox={bbox-epsg-3857}")
    layer = ws.renderer.get_layer("raster-layer-wms-canals")
    assert layer["paint"] == paint.WMS_PAINT
    assert ws.renderer.last_fit["bounds"] == ((72.0, 30.0), (75.5, 33.0))


def test_add_wms_layer_rejects_bad_url() -> None:
    ws = _workspace()
    with pytest.raises(ValueError):
        ws.add_wms_layer("http://gs.example.org/geoserver/wms")


def test_toggle_visibility_updates_repository() -> None:
    ws = _workspace()
    upload = backend_client.UploadResult(geometry_data=FC, version_id="v-1")
    ws.add_dataset(upload, name="Parcels", type="vector", format="GeoJSON")
    assert ws.toggle_visibility("v-1") == ["layer-v-1"]
    assert ws.repository.get("v-1").visible is False
    ws.toggle_visibility("v-1")
    assert ws.repository.get("v-1").visible is True


def test_toggle_recovers_lost_layer() -> None:
    """Test that a toggle on a vanished layer triggers a resync."""
    ws = _workspace()
    upload = backend_client.UploadResult(geometry_data=FC, version_id="v-1")
    ws.add_dataset(upload, name="Parcels", type="vector", format="GeoJSON")
    ws.renderer.remove_layer("layer-v-1")
    assert ws.toggle_visibility("v-1") == []
    assert ws.renderer.get_layer("layer-v-1") is not None


def test_change_basemap_keeps_datasets() -> None:
    ws = _workspace()
    upload = backend_client.UploadResult(geometry_data=FC, version_id="v-1")
    ws.add_dataset(upload, name="Parcels", type="vector", format="GeoJSON")
    snapshot = ws.change_basemap("dark")
    assert list(snapshot.sources) == ["source-v-1"]
    ws.renderer.finish_style_load()
    assert ws.renderer.style_url == "mapbox://styles/mapbox/dark-v11"
    assert ws.renderer.get_layer("layer-v-1") is not None


def test_upload_through_backend() -> None:
    """Test the full upload path with a mocked backend."""
    ws = _workspace()
    updates: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "geometry_data": FC, "version_id": "v-9", "version_number": "v1.0",
        })

    async def run() -> db_models.Dataset:
        settings = config.Settings(api_base_url="http://backend.test")
        async with backend_client.BackendClient(
            settings, transport=httpx.MockTransport(handler)
        ) as client:
            return await ws.upload(
                client, "p1", filename="parcels.geojson", content=b"{}",
                name="Parcels", type="vector", format="GeoJSON",
                on_progress=updates.append,
            )

    dataset = asyncio.run(run())
    assert dataset.id == "v-9"
    assert updates[-1] == 100
    assert ws.renderer.get_layer("layer-v-9") is not None


def test_open_comparison_replaces_previous() -> None:
    ws = _workspace()
    versions = [db_models.VersionEntry(id="a", name="v1.0"),
                db_models.VersionEntry(id="b", name="v1.1")]
    first = ws.open_comparison(versions)
    second = ws.open_comparison(versions, sync_enabled=False)
    assert not first.is_open
    assert second.is_open
    assert ws.comparison is second


def test_close_is_idempotent() -> None:
    """Test that closing tears everything down exactly once."""
    ws = _workspace()
    primary = ws.renderer
    progress = ws.new_progress()
    controller = ws.open_comparison([
        db_models.VersionEntry(id="a", name="v1.0"),
        db_models.VersionEntry(id="b", name="v1.1"),
    ])
    ws.close()
    ws.close()
    assert primary.removed is True
    assert not controller.is_open
    assert not progress.running
    with pytest.raises(errors.RenderOperationFailed):
        _ = ws.renderer


def test_context_manager() -> None:
    with workspace.MapWorkspace(renderer.InMemoryRenderer) as ws:
        primary = ws.renderer
    assert primary.removed is True
