"""Shapefile bundle to GeoJSON conversion backed by geopandas.

The ingestion pipeline hands this module the members of a zipped shapefile
bundle as an in-memory name to bytes mapping. Members are written into a
private temporary directory (basenames only, so archive paths can never
escape it) and every ``.shp`` is read with geopandas. Frames carrying a CRS
other than EPSG:4326 are reprojected; a bundle without ``.prj`` is assumed
to already be WGS84.
"""

from __future__ import annotations

import json
import logging
import pathlib
import tempfile
from typing import TYPE_CHECKING, Any

import geopandas as gpd

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

TARGET_EPSG = 4326


def to_feature_collection(files: Mapping[str, bytes]) -> dict[str, Any]:
    """Convert shapefile components into one GeoJSON FeatureCollection.

    Args:
        files: Archive member names mapped to their bytes. Must contain at
            least one ``.shp`` member with its ``.shx``/``.dbf`` companions.

    Returns:
        FeatureCollection holding the features of every ``.shp`` member in
        member order, in EPSG:4326.

    Raises:
        ValueError: If no ``.shp`` member is present.
        Exception: Whatever geopandas raises for a corrupt bundle.

    Example:
        >>> with zipfile.ZipFile("roads.zip") as zf:
        ...     files = {n: zf.read(n) for n in zf.namelist()}
        >>> fc = to_feature_collection(files)
        >>> fc["features"][0]["geometry"]["type"]
        'LineString'
    """
    with tempfile.TemporaryDirectory(prefix="geolens-shp-") as tmp:
        workdir = pathlib.Path(tmp)
        shapefiles: list[pathlib.Path] = []
        for name, content in files.items():
            basename = pathlib.PurePosixPath(name).name
            if not basename:
                continue
            target = workdir / basename
            target.write_bytes(content)
            if basename.lower().endswith(".shp") and target not in shapefiles:
                shapefiles.append(target)

        if not shapefiles:
            raise ValueError("no .shp member to convert")

        features: list[dict[str, Any]] = []
        for shp_path in shapefiles:
            frame = gpd.read_file(shp_path)
            if frame.crs is not None and frame.crs.to_epsg() != TARGET_EPSG:
                logger.info(
                    "Reprojecting %s from %s to EPSG:%d",
                    shp_path.name,
                    frame.crs,
                    TARGET_EPSG,
                )
                frame = frame.to_crs(epsg=TARGET_EPSG)
            collection = json.loads(frame.to_json())
            features.extend(collection.get("features", []))

    return {"type": "FeatureCollection", "features": features}
