"""Data models for datasets, render layers and comparison sessions.

This module defines the core data structures shared by the ingestion
pipeline, the layer registry, the style reconciler and the comparison
view. Feature collections are kept as plain GeoJSON mappings; everything
else is a dataclass.

Example:
    Creating a Dataset for an uploaded shapefile:
        >>> from geolens.db.models import Dataset
        >>> roads = Dataset(
        ...     id="d3",
        ...     name="Road Network",
        ...     type="vector",
        ...     format="Shapefile",
        ...     versions=["v1.0"],
        ... )

    Comparing two versions:
        >>> from geolens.db.models import ComparisonSession
        >>> session = ComparisonSession("v1", "v2")
        >>> session.select_left("v2")
        >>> (session.left_version_id, session.right_version_id)
        ('v2', 'v1')
"""

from __future__ import annotations

import dataclasses
import time
from typing import TYPE_CHECKING, Any, Literal, NamedTuple

if TYPE_CHECKING:
    from geolens.services.backend_client import UploadResult

FeatureCollection = dict[str, Any]
DatasetType = Literal["vector", "raster"]
DatasetStatus = Literal["new", "modified", "unchanged"]
GeometryKind = Literal["fill", "line", "circle", "raster"]

SPLIT_MIN = 10.0
SPLIT_MAX = 90.0


class BoundingBox(NamedTuple):
    """Envelope as (minx, miny, maxx, maxy) in longitude/latitude."""

    minx: float
    miny: float
    maxx: float
    maxy: float

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> BoundingBox:
        """Build a bounding box from ``{minx, miny, maxx, maxy}``.

        The upload endpoints send the values as numeric strings.

        Args:
            raw: Mapping holding the four corner values.

        Returns:
            BoundingBox with float members.

        Raises:
            KeyError: If a corner is missing.
            ValueError: If a corner is not numeric.
        """
        return cls(
            float(raw["minx"]),
            float(raw["miny"]),
            float(raw["maxx"]),
            float(raw["maxy"]),
        )

    def as_bounds(self) -> tuple[tuple[float, float], tuple[float, float]]:
        """Return ``((minx, miny), (maxx, maxy))`` for camera fits."""
        return (self.minx, self.miny), (self.maxx, self.maxy)

    @property
    def is_empty(self) -> bool:
        return self.minx == self.maxx and self.miny == self.maxy


@dataclasses.dataclass
class Dataset:
    """A logical dataset the user can inspect and compare.

    Attributes:
        id: Unique identifier (the backend's version id when uploaded).
        name: Human-readable dataset name.
        type: "vector" or "raster".
        format: Source format ("GeoJSON", "Shapefile", "GeoTIFF", ...).
        crs: Coordinate reference system of the source data.
        status: "new", "modified" or "unchanged".
        visible: Whether the dataset is drawn.
        versions: Ordered version tags, oldest first.
        bbox: Envelope of the dataset when known.
    """

    id: str
    name: str
    type: DatasetType
    format: str
    crs: str = "EPSG:4326"
    status: DatasetStatus = "new"
    visible: bool = True
    versions: list[str] = dataclasses.field(default_factory=list)
    bbox: BoundingBox | None = None

    @classmethod
    def from_upload(
        cls,
        upload: UploadResult,
        *,
        name: str,
        type: DatasetType,
        format: str,
        crs: str = "EPSG:4326",
    ) -> Dataset:
        """Build a freshly uploaded dataset from the upload response.

        Args:
            upload: Parsed response of the upload endpoint.
            name: Name entered by the user.
            type: "vector" or "raster".
            format: Source format of the uploaded file.
            crs: CRS declared by the user.

        Returns:
            Dataset with status "new", visible, holding one version tag.
        """
        dataset_id = upload.version_id or f"d{time.time_ns() // 1_000_000}"
        return cls(
            id=dataset_id,
            name=name,
            type=type,
            format=format,
            crs=crs,
            status="new",
            visible=True,
            versions=[upload.version_number or "v1.0"],
            bbox=upload.bounding_box,
        )


@dataclasses.dataclass
class RenderLayer:
    """The canonical renderer layer that draws one dataset.

    Attributes:
        id: Renderer layer id.
        source_id: Renderer source id the layer reads from.
        geometry_kind: "fill", "line", "circle" or "raster".
        paint: Paint properties the layer was created with.
    """

    id: str
    source_id: str
    geometry_kind: GeometryKind
    paint: dict[str, Any]


@dataclasses.dataclass
class StyleSnapshot:
    """Non-base sources and layers captured before a basemap swap."""

    sources: dict[str, dict[str, Any]] = dataclasses.field(
        default_factory=dict
    )
    layers: list[dict[str, Any]] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class VersionEntry:
    """A dataset version offered by the comparison view.

    Attributes:
        id: Version (commit) identifier.
        name: Label shown in the version pickers.
        style: Basemap style URL the version was authored on.
        layers: Layer definitions captured with the version; each may carry
            a ``sourceData`` source definition for its ``source``.
    """

    id: str
    name: str
    style: str | None = None
    layers: list[dict[str, Any]] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class ComparisonSession:
    """Selection state of the side-by-side comparison view.

    The left and right version ids are never equal: selecting on one side
    the value currently shown on the other side swaps the two instead.

    Attributes:
        left_version_id: Version shown in the left panel.
        right_version_id: Version shown in the right panel.
        split_position: Left panel width in percent.
        sync_enabled: Whether camera moves are mirrored.
        diff_enabled: Whether diff overlays are drawn.
    """

    left_version_id: str
    right_version_id: str
    split_position: float = 50.0
    sync_enabled: bool = True
    diff_enabled: bool = False

    def __post_init__(self) -> None:
        if self.left_version_id == self.right_version_id:
            raise ValueError(
                "left and right versions must differ, "
                f"got {self.left_version_id!r} twice"
            )
        self.split_position = clamp_split(self.split_position)

    def select_left(self, version_id: str) -> None:
        if version_id == self.right_version_id:
            self.right_version_id = self.left_version_id
        self.left_version_id = version_id

    def select_right(self, version_id: str) -> None:
        if version_id == self.left_version_id:
            self.left_version_id = self.right_version_id
        self.right_version_id = version_id

    def swap(self) -> None:
        self.left_version_id, self.right_version_id = (
            self.right_version_id,
            self.left_version_id,
        )

    @property
    def panel_widths(self) -> tuple[float, float]:
        """Left and right panel widths in percent."""
        return self.split_position, 100.0 - self.split_position


def clamp_split(position: float) -> float:
    """Clamp a divider position to the allowed [10, 90] range."""
    return max(SPLIT_MIN, min(SPLIT_MAX, float(position)))
