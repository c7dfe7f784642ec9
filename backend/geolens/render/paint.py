"""Default paint properties for each renderer layer kind."""

from __future__ import annotations

import copy
from typing import Any

PRIMARY_COLOR = "#3b82f6"
OUTLINE_COLOR = "#2563eb"

FILL_PAINT: dict[str, Any] = {
    "fill-color": PRIMARY_COLOR,
    "fill-opacity": 0.6,
    "fill-outline-color": OUTLINE_COLOR,
}
LINE_PAINT: dict[str, Any] = {
    "line-color": PRIMARY_COLOR,
    "line-width": 2,
}
CIRCLE_PAINT: dict[str, Any] = {
    "circle-radius": 6,
    "circle-color": PRIMARY_COLOR,
    "circle-stroke-width": 1,
    "circle-stroke-color": OUTLINE_COLOR,
}
RASTER_PAINT: dict[str, Any] = {
    "raster-opacity": 0.8,
    "raster-fade-duration": 300,
}
WMS_PAINT: dict[str, Any] = {
    "raster-opacity": 0.85,
}

DIFF_LEFT_COLOR = "#ff0000"
DIFF_RIGHT_COLOR = "#00ff00"
DIFF_OPACITY = 0.3

_DEFAULTS = {
    "fill": FILL_PAINT,
    "line": LINE_PAINT,
    "circle": CIRCLE_PAINT,
    "raster": RASTER_PAINT,
}


def default_paint(kind: str) -> dict[str, Any]:
    """Return a fresh copy of the default paint for a layer kind.

    Raises:
        KeyError: If ``kind`` is not fill, line, circle or raster.
    """
    return copy.deepcopy(_DEFAULTS[kind])


def diff_paint(color: str) -> dict[str, Any]:
    return {"fill-color": color, "fill-opacity": DIFF_OPACITY}
