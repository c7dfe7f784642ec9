"""Tests for preserving custom sources and layers across basemap swaps."""

from __future__ import annotations

from typing import Any

import pytest

from geolens.core import config, errors
from geolens.db import models as db_models
from geolens.render import registry, renderer, style_reconciler

FC = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {"class": "canal"},
         "geometry": {"type": "LineString",
                      "coordinates": [[72.0, 31.0], [72.5, 31.5]]}},
    ],
}
DARK = "mapbox://styles/mapbox/dark-v11"


def _renderer_with_custom_layers() -> renderer.InMemoryRenderer:
    r = renderer.InMemoryRenderer()
    r.finish_style_load()
    r.add_source("source-d1", {"type": "geojson", "data": FC})
    r.add_source("raster-source-d2", {"type": "raster",
                                      "tiles": ["http://t/{z}/{x}/{y}.png"],
                                      "tileSize": 256})
    r.add_layer({
        "id": "layer-d1",
        "type": "line",
        "source": "source-d1",
        "paint": {"line-color": "#ff8800", "line-width": 3},
        "layout": {"visibility": "none", "line-cap": "round"},
        "filter": ["==", ["get", "class"], "canal"],
        "minzoom": 4,
    })
    r.add_layer({"id": "raster-layer-d2", "type": "raster",
                 "source": "raster-source-d2",
                 "paint": {"raster-opacity": 0.8}})
    r.add_layer({"id": "layer-d1-labels", "type": "symbol",
                 "source": "source-d1",
                 "layout": {"text-field": ["get", "class"]}})
    return r


def _custom_layers(r: renderer.InMemoryRenderer) -> list[dict[str, Any]]:
    return [
        layer for layer in r.get_style()["layers"]
        if layer.get("source") not in {None, "composite", "mapbox-satellite"}
    ]


def test_capture_skips_base_style() -> None:
    """Test that reserved sources and their layers are not captured."""
    r = _renderer_with_custom_layers()
    reconciler = style_reconciler.StyleTransitionReconciler(r)
    snapshot = reconciler.capture()
    assert list(snapshot.sources) == ["source-d1", "raster-source-d2"]
    assert [layer["id"] for layer in snapshot.layers] == [
        "layer-d1", "raster-layer-d2", "layer-d1-labels",
    ]


def test_capture_copies_only_present_keys() -> None:
    r = _renderer_with_custom_layers()
    snapshot = style_reconciler.StyleTransitionReconciler(r).capture()
    raster_layer = snapshot.layers[1]
    assert set(raster_layer) == {"id", "type", "source", "paint"}


def test_is_reserved() -> None:
    r = renderer.InMemoryRenderer()
    reconciler = style_reconciler.StyleTransitionReconciler(r)
    assert reconciler.is_reserved("composite")
    assert reconciler.is_reserved("mapbox-dem")
    assert not reconciler.is_reserved("source-d1")


def test_registry_sources_are_never_reserved() -> None:
    """Test that dataset sources survive even under a reserved prefix."""
    r = renderer.InMemoryRenderer()
    r.finish_style_load()
    layers = registry.LayerRegistry(r)
    dataset = db_models.Dataset(
        id="x", name="Roads", type="vector", format="GeoJSON"
    )
    layers.add_or_update(dataset, FC)
    settings = config.Settings(reserved_source_prefixes=["mapbox", "source"])
    reconciler = style_reconciler.StyleTransitionReconciler(
        r, settings, registry=layers
    )
    assert not reconciler.is_reserved("source-x")
    assert reconciler.is_reserved("source-other")


def test_style_swap_round_trip_preserves_layers() -> None:
    """Test that paint, layout, filter and order survive a basemap swap."""
    r = _renderer_with_custom_layers()
    before = _custom_layers(r)
    reconciler = style_reconciler.StyleTransitionReconciler(r)

    reconciler.change_style(DARK)
    assert reconciler.state is style_reconciler.ReconcilerState.TRANSITIONING
    assert _custom_layers(r) == []

    r.finish_style_load()
    assert reconciler.state is style_reconciler.ReconcilerState.STABLE
    assert _custom_layers(r) == before
    assert r.get_source("source-d1")["data"] == FC
    assert r.style_url == DARK
    report = reconciler.last_report
    assert report is not None
    assert report.restored_sources == ["source-d1", "raster-source-d2"]
    assert report.failures == []


def test_swap_while_transitioning_keeps_first_snapshot() -> None:
    r = _renderer_with_custom_layers()
    before = _custom_layers(r)
    reconciler = style_reconciler.StyleTransitionReconciler(r)
    reconciler.change_style(DARK)
    snapshot = reconciler.change_style("mapbox://styles/mapbox/streets-v12")
    assert len(snapshot.layers) == 3
    r.finish_style_load()
    assert _custom_layers(r) == before
    assert r.style_url == "mapbox://styles/mapbox/streets-v12"


def test_restore_when_stable_is_noop() -> None:
    r = _renderer_with_custom_layers()
    reconciler = style_reconciler.StyleTransitionReconciler(r)
    report = reconciler.restore()
    assert report == style_reconciler.RestoreReport()


def test_restore_skips_existing_ids() -> None:
    r = _renderer_with_custom_layers()
    reconciler = style_reconciler.StyleTransitionReconciler(r)
    reconciler.change_style(DARK)
    r.on("style.load", lambda: r.add_source(
        "source-d1", {"type": "geojson", "data": FC}
    ))
    r.finish_style_load()
    report = reconciler.last_report
    assert report is not None
    assert "source-d1" in report.skipped
    assert report.restored_layers == [
        "layer-d1", "raster-layer-d2", "layer-d1-labels",
    ]


def test_restore_isolates_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that one rejected layer does not stop the others."""
    r = _renderer_with_custom_layers()
    reconciler = style_reconciler.StyleTransitionReconciler(r)
    reconciler.change_style(DARK)

    original = r.add_layer

    def flaky_add_layer(
        definition: dict[str, Any],
        before_id: str | None = None,
    ) -> None:
        if definition["id"] == "raster-layer-d2":
            raise errors.RenderOperationFailed("tile source unavailable")
        original(definition, before_id)

    monkeypatch.setattr(r, "add_layer", flaky_add_layer)
    r.finish_style_load()
    report = reconciler.last_report
    assert report is not None
    assert report.failures == [("raster-layer-d2", "tile source unavailable")]
    assert report.restored_layers == ["layer-d1", "layer-d1-labels"]
    assert r.get_layer("layer-d1-labels") is not None
