"""Geometry inspection helpers for decoded feature collections.

The consistency check is advisory: the downstream geoprocessing backend is
the party that rejects mixed geometry submissions, so callers use these
reports to warn before submitting rather than to block.

Example:
    >>> from geolens.ingest import geometry
    >>> fc = {"type": "FeatureCollection", "features": [
    ...     {"type": "Feature", "properties": {},
    ...      "geometry": {"type": "Point", "coordinates": [0, 0]}},
    ...     {"type": "Feature", "properties": {},
    ...      "geometry": {"type": "MultiPoint", "coordinates": [[1, 1]]}},
    ... ]}
    >>> geometry.check_consistency(fc)
    ConsistencyReport(consistent=True, base_types=frozenset({'Point'}))
"""

from __future__ import annotations

import dataclasses
import json
from typing import TYPE_CHECKING, Any

from geolens.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

_KIND_BY_BASE_TYPE: dict[str, db_models.GeometryKind] = {
    "Point": "circle",
    "LineString": "line",
    "Polygon": "fill",
}


@dataclasses.dataclass(frozen=True)
class ConsistencyReport:
    """Outcome of a geometry consistency check.

    Attributes:
        consistent: True when at most one base geometry type was seen.
        base_types: Geometry types with any ``Multi`` prefix stripped.
    """

    consistent: bool
    base_types: frozenset[str]


@dataclasses.dataclass(frozen=True)
class SubmissionReport:
    """Consistency of several datasets submitted together.

    Attributes:
        reports: Per-dataset consistency reports keyed by dataset name.
        base_types: Union of the base types of every dataset.
    """

    reports: dict[str, ConsistencyReport]
    base_types: frozenset[str]

    @property
    def consistent(self) -> bool:
        return len(self.base_types) <= 1

    def warning(self) -> str | None:
        """Human-readable pre-flight warning, or None when consistent."""
        if self.consistent:
            return None
        return (
            "Selected datasets mix geometry types "
            f"({', '.join(sorted(self.base_types))}); the backend may reject "
            "them. Select layers with the same geometry type."
        )


def base_type(geometry_type: str) -> str:
    """Strip a leading ``Multi`` from a geometry type name."""
    if geometry_type.startswith("Multi"):
        return geometry_type[len("Multi"):]
    return geometry_type


def check_consistency(fc: Mapping[str, Any]) -> ConsistencyReport:
    """Report whether every geometry in a collection shares one base type.

    Features without a geometry are skipped. An empty collection is
    vacuously consistent.

    Args:
        fc: GeoJSON FeatureCollection.

    Returns:
        ConsistencyReport with the set of base types seen.
    """
    types: set[str] = set()
    for feature in fc.get("features") or []:
        geometry = (feature or {}).get("geometry")
        if not geometry or not geometry.get("type"):
            continue
        types.add(base_type(geometry["type"]))
    return ConsistencyReport(consistent=len(types) <= 1,
                             base_types=frozenset(types))


def check_submission(
    collections: Mapping[str, Mapping[str, Any]],
) -> SubmissionReport:
    """Check several datasets that are about to be submitted together.

    Args:
        collections: Dataset names mapped to their FeatureCollections.

    Returns:
        SubmissionReport combining the per-dataset reports.
    """
    reports = {name: check_consistency(fc) for name, fc in collections.items()}
    union: set[str] = set()
    for report in reports.values():
        union |= report.base_types
    return SubmissionReport(reports=reports, base_types=frozenset(union))


def iter_coordinates(
    geometry: Mapping[str, Any] | None,
) -> Iterator[tuple[float, float]]:
    """Yield every position of a GeoJSON geometry.

    Nested rings, multi-geometries and geometry collections are flattened
    recursively. Extra ordinates beyond longitude/latitude are dropped.
    """
    if not geometry:
        return
    if geometry.get("type") == "GeometryCollection":
        for member in geometry.get("geometries") or []:
            yield from iter_coordinates(member)
        return
    yield from _walk(geometry.get("coordinates"))


def _walk(coords: Any) -> Iterator[tuple[float, float]]:
    if not isinstance(coords, (list, tuple)) or not coords:
        return
    if isinstance(coords[0], (int, float)):
        if len(coords) >= 2:
            yield float(coords[0]), float(coords[1])
        return
    for item in coords:
        yield from _walk(item)


def compute_envelope(fc: Mapping[str, Any]) -> db_models.BoundingBox | None:
    """Compute the envelope of every coordinate in a collection.

    Args:
        fc: GeoJSON FeatureCollection.

    Returns:
        The envelope, or None unless more than one distinct point was seen.
    """
    minx = miny = float("inf")
    maxx = maxy = float("-inf")
    first: tuple[float, float] | None = None
    distinct = False
    for feature in fc.get("features") or []:
        for x, y in iter_coordinates((feature or {}).get("geometry")):
            if first is None:
                first = (x, y)
            elif (x, y) != first:
                distinct = True
            minx, miny = min(minx, x), min(miny, y)
            maxx, maxy = max(maxx, x), max(maxy, y)
    if not distinct:
        return None
    return db_models.BoundingBox(minx, miny, maxx, maxy)


def layer_kind_for(fc: Mapping[str, Any]) -> db_models.GeometryKind:
    """Pick the renderer layer kind for a collection.

    Point data draws as circles, line data as lines and polygon data as
    fills. Mixed or empty collections fall back to ``fill``.
    """
    report = check_consistency(fc)
    if len(report.base_types) != 1:
        return "fill"
    (only,) = report.base_types
    return _KIND_BY_BASE_TYPE.get(only, "fill")


def diff_features(
    left_fc: Mapping[str, Any],
    right_fc: Mapping[str, Any],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split two collections into the features unique to each side.

    Features are compared by geometry and properties; feature ids and key
    order are ignored.

    Args:
        left_fc: Collection shown on the left.
        right_fc: Collection shown on the right.

    Returns:
        Tuple of (features only on the left, features only on the right).
    """
    left = left_fc.get("features") or []
    right = right_fc.get("features") or []
    left_keys = {_feature_key(f) for f in left}
    right_keys = {_feature_key(f) for f in right}
    only_left = [f for f in left if _feature_key(f) not in right_keys]
    only_right = [f for f in right if _feature_key(f) not in left_keys]
    return only_left, only_right


def _feature_key(feature: Mapping[str, Any]) -> str:
    return json.dumps(
        {
            "geometry": feature.get("geometry"),
            "properties": feature.get("properties") or {},
        },
        sort_keys=True,
    )
