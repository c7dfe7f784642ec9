"""Pytest configuration to expose the geolens package and shared fixtures."""

from __future__ import annotations

import io
import pathlib
import sys
import zipfile
from collections.abc import Iterator

import geopandas as gpd
import pytest
from shapely import geometry

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from geolens.core import config  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Isolate tests from a developer's .env and cached settings."""
    monkeypatch.delenv("AUTO_RESYNC", raising=False)
    monkeypatch.delenv("API_BASE_URL", raising=False)
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


def _zip_shapefile(
    frame: gpd.GeoDataFrame,
    directory: pathlib.Path,
    stem: str,
) -> bytes:
    frame.to_file(directory / f"{stem}.shp")
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for member in sorted(directory.glob(f"{stem}.*")):
            archive.write(member, arcname=member.name)
    return buffer.getvalue()


@pytest.fixture
def roads_zip(tmp_path: pathlib.Path) -> bytes:
    """Zipped shapefile bundle holding two WGS84 road lines."""
    frame = gpd.GeoDataFrame(
        {"name": ["Main Street", "Canal Road"]},
        geometry=[
            geometry.LineString([(72.9, 33.6), (73.1, 33.7)]),
            geometry.LineString([(73.0, 33.5), (73.2, 33.8)]),
        ],
        crs="EPSG:4326",
    )
    return _zip_shapefile(frame, tmp_path, "roads")


@pytest.fixture
def mercator_points_zip(tmp_path: pathlib.Path) -> bytes:
    """Zipped shapefile bundle with points stored in EPSG:3857."""
    frame = gpd.GeoDataFrame(
        {"name": ["origin", "east"]},
        geometry=[geometry.Point(0, 0), geometry.Point(111319.49, 0)],
        crs="EPSG:3857",
    )
    return _zip_shapefile(frame, tmp_path, "cities")
