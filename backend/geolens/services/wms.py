"""WMS GetMap URL handling for raster tile sources.

The renderer fetches raster tiles from a URL template in which it replaces
``{bbox-epsg-3857}`` with each tile's Web Mercator extent. Arbitrary WMS
URLs pasted by users are rewritten into such a template.

Example:
    >>> build_tile_template(
    ...     "http://gs.example.org/geoserver/ows?service=WMS&layers=ws:roads"
    ... )
    'http://gs.example.org/geoserver/wms?service=WMS&request=GetMap&layers=ws:roads&styles=&format=image/png&transparent=true&version=1.1.1&width=256&height=256&srs=EPSG:3857&bbox={bbox-epsg-3857}'
"""

from __future__ import annotations

import re
import urllib.parse

from geolens.db import models as db_models

BBOX_PLACEHOLDER = "bbox={bbox-epsg-3857}"
WORLD_EXTENT = db_models.BoundingBox(-180.0, -85.0, 180.0, 85.0)

_GETMAP_QUERY = (
    "service=WMS&request=GetMap&layers={layers}&styles=&format=image/png"
    "&transparent=true&version=1.1.1&width={size}&height={size}"
    "&srs=EPSG:3857&bbox={{bbox-epsg-3857}}"
)
_URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)


def _query_params(url: str) -> dict[str, str]:
    """Query parameters of a URL with lower-cased names, first value wins."""
    params: dict[str, str] = {}
    query = urllib.parse.urlsplit(url).query
    for name, value in urllib.parse.parse_qsl(query, keep_blank_values=True):
        params.setdefault(name.lower(), value)
    return params


def build_tile_template(url: str, tile_size: int = 256) -> str:
    """Turn a WMS URL into a renderer tile template.

    URLs that already carry the bbox placeholder are returned unchanged.
    Otherwise a GetMap template is rebuilt from the scheme, host, first
    path segment (usually ``geoserver``) and the ``layers`` parameter.

    Args:
        url: WMS endpoint or GetMap URL.
        tile_size: Width and height of requested tiles.

    Returns:
        Tile URL template.

    Raises:
        ValueError: If the URL has no host or no ``layers`` parameter.
    """
    if BBOX_PLACEHOLDER in url:
        return url

    parts = urllib.parse.urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"not an absolute WMS URL: {url!r}")
    layers = _query_params(url).get("layers")
    if not layers:
        raise ValueError(f"WMS URL has no layers parameter: {url!r}")

    segments = [s for s in parts.path.split("/") if s]
    prefix = f"/{segments[0]}" if segments else ""
    query = _GETMAP_QUERY.format(layers=layers, size=tile_size)
    return f"{parts.scheme}://{parts.netloc}{prefix}/wms?{query}"


def extract_bbox(url: str) -> db_models.BoundingBox | None:
    """Read the extent a WMS URL asks for.

    Args:
        url: WMS GetMap URL.

    Returns:
        The bbox when the SRS is EPSG:4326 (the default when no SRS is
        given), the world extent for any other SRS, or None when the URL
        has no numeric four-value bbox.
    """
    params = _query_params(url)
    raw = params.get("bbox")
    if not raw:
        return None
    try:
        values = [float(v) for v in raw.split(",")]
    except ValueError:
        return None
    if len(values) != 4:
        return None
    srs = params.get("srs") or params.get("crs") or "EPSG:4326"
    if "4326" in srs:
        return db_models.BoundingBox(*values)
    return WORLD_EXTENT


def find_wms_url(text: str) -> str | None:
    """Pick the WMS URL out of free text such as an assistant prompt.

    Returns:
        The first http(s) URL when the text mentions WMS, else None.
    """
    if "wms" not in text.lower():
        return None
    match = _URL_PATTERN.search(text)
    return match.group(0) if match else None


def layer_name(url: str) -> str | None:
    """Layer part of the ``layers`` parameter, without a workspace prefix."""
    layers = _query_params(url).get("layers")
    if not layers:
        return None
    return layers.split(":", 1)[-1]
