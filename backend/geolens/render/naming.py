"""Deterministic renderer ids for dataset sources and layers.

Every component that creates renderer state derives ids through
``derive_id`` so a dataset can always be found again by construction.

``legacy_layer_candidates`` exists only for renderer state created before
ids were derived here (bare dataset ids and ``-lines``/``-points``
companions); it is the single place that still guesses.
"""

from __future__ import annotations

VECTOR_SOURCE = "source"
VECTOR_LAYER = "layer"
RASTER_SOURCE = "raster-source"
RASTER_LAYER = "raster-layer"
DIFF_HIGHLIGHT_ID = "diff-highlight"


def derive_id(namespace: str, dataset_id: str, role: str | None = None) -> str:
    """Build a renderer id as ``namespace-dataset_id[-role]``.

    Args:
        namespace: Id family, e.g. ``"layer"`` or ``"raster-source"``.
        dataset_id: Dataset the renderer object belongs to.
        role: Optional suffix for companion objects.

    Returns:
        The derived id.

    Example:
        >>> derive_id("layer", "d3")
        'layer-d3'
        >>> derive_id("layer", "d3", "outline")
        'layer-d3-outline'
    """
    parts = [namespace, dataset_id]
    if role:
        parts.append(role)
    return "-".join(parts)


def source_id(dataset_id: str, raster: bool = False) -> str:
    return derive_id(RASTER_SOURCE if raster else VECTOR_SOURCE, dataset_id)


def layer_id(dataset_id: str, raster: bool = False) -> str:
    return derive_id(RASTER_LAYER if raster else VECTOR_LAYER, dataset_id)


def legacy_layer_candidates(dataset_id: str) -> list[str]:
    """Layer ids a dataset may have been drawn under, in lookup order."""
    return [
        dataset_id,
        f"{dataset_id}-lines",
        f"{dataset_id}-points",
        layer_id(dataset_id),
        layer_id(dataset_id, raster=True),
    ]
