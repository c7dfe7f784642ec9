"""Mapping of logical datasets onto renderer sources and layers.

The registry is the single writer of dataset state into one renderer. It
remembers what it last applied for every dataset so the whole table can be
re-applied after the renderer lost it (``resync``) or diffed against a new
desired state (``reconcile``).

Adding a dataset is idempotent: a second ``add_or_update`` for the same
dataset id refreshes data in place and never creates a second source or
layer. Mutations are gated on the renderer's style being ready; when it is
not, one deferred retry per dataset is queued on ``style.load``.

When a visibility toggle cannot find any rendered layer for a dataset the
registry notifies its subscribers instead of failing: the renderer state
has diverged from the registry's model and only a full re-application can
repair it.

Example:
    >>> from geolens.render import registry, renderer
    >>> r = renderer.InMemoryRenderer()
    >>> r.finish_style_load()
    >>> layers = registry.LayerRegistry(r)
    >>> layers.subscribe(layers.resync)
    >>> layer = layers.add_or_update(roads, roads_fc)
    >>> layer.geometry_kind
    'line'
    >>> layers.toggle_visibility(roads.id)
    ['layer-d3']
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from typing import TYPE_CHECKING, Any

from geolens.core import config, errors
from geolens.db import models as db_models
from geolens.ingest import geometry
from geolens.render import naming, paint

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from geolens.render import renderer as renderer_mod

logger = logging.getLogger(__name__)

VISIBLE = "visible"
HIDDEN = "none"


@dataclasses.dataclass(frozen=True)
class LayerInput:
    """Desired renderer state for one dataset.

    Attributes:
        dataset: The dataset to draw.
        data: FeatureCollection for vector datasets; tile URL template (or a
            raster source definition) for raster datasets.
        paint: Paint override; the kind's default paint when None.
    """

    dataset: db_models.Dataset
    data: Any
    paint: dict[str, Any] | None = None


@dataclasses.dataclass
class ReconcileResult:
    """Dataset ids touched by one ``reconcile`` pass."""

    added: list[str] = dataclasses.field(default_factory=list)
    updated: list[str] = dataclasses.field(default_factory=list)
    removed: list[str] = dataclasses.field(default_factory=list)
    visibility_changed: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class _Applied:
    dataset: db_models.Dataset
    data: Any
    paint: dict[str, Any] | None
    visible: bool


class LayerRegistry:
    """Keeps one canonical source/layer pair per dataset on a renderer.

    Attributes:
        renderer: The renderer this registry writes to.
    """

    def __init__(
        self,
        renderer: renderer_mod.Renderer,
        settings: config.Settings | None = None,
    ) -> None:
        self.renderer = renderer
        self._settings = settings or config.get_settings()
        self._applied: dict[str, _Applied] = {}
        self._layers: dict[str, db_models.RenderLayer] = {}
        self._pending: set[str] = set()
        self._subscribers: list[Callable[[], None]] = []
        self._resyncing = False

    # Bookkeeping views

    def get(self, dataset_id: str) -> db_models.RenderLayer | None:
        return self._layers.get(dataset_id)

    @property
    def dataset_ids(self) -> list[str]:
        return list(self._applied)

    @property
    def custom_source_ids(self) -> set[str]:
        """Renderer source ids owned by registered datasets."""
        return {layer.source_id for layer in self._layers.values()}

    @property
    def pending_ids(self) -> set[str]:
        """Datasets waiting for the style to load."""
        return set(self._pending)

    # Observers

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a "layers need resync" observer.

        Args:
            callback: Invoked without arguments whenever renderer state is
                found to diverge from the registry.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _signal_resync(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("Resync subscriber %r failed", callback)
        if self._settings.auto_resync and not self._resyncing:
            self.resync()

    # Mutations

    def add_or_update(
        self,
        dataset: db_models.Dataset,
        data: Any,
        paint_override: dict[str, Any] | None = None,
    ) -> db_models.RenderLayer | None:
        """Draw a dataset, or refresh it if it is already drawn.

        Args:
            dataset: Dataset to draw.
            data: FeatureCollection (vector) or tile template (raster).
            paint_override: Paint to use instead of the kind's default.

        Returns:
            The canonical RenderLayer, or None when the call was deferred
            until the style loads or the renderer rejected it.
        """
        self._applied[dataset.id] = _Applied(
            dataset=dataset,
            data=data,
            paint=paint_override,
            visible=dataset.visible,
        )
        if not self.renderer.is_style_loaded():
            self._defer(dataset.id)
            return None
        return self._apply(dataset.id)

    def _defer(self, dataset_id: str) -> None:
        if dataset_id in self._pending:
            return
        self._pending.add(dataset_id)
        logger.debug("Style not loaded; deferring dataset %s", dataset_id)

        def retry() -> None:
            self._pending.discard(dataset_id)
            if dataset_id in self._applied:
                self._apply(dataset_id)

        self.renderer.once("style.load", retry)

    def _apply(self, dataset_id: str) -> db_models.RenderLayer | None:
        state = self._applied[dataset_id]
        dataset = state.dataset
        raster = dataset.type == "raster"
        source_id = naming.source_id(dataset.id, raster=raster)
        layer_id = naming.layer_id(dataset.id, raster=raster)

        kind: db_models.GeometryKind
        if raster:
            kind = "raster"
            source_def = self._raster_source(state.data)
        else:
            kind = geometry.layer_kind_for(state.data)
            source_def = {"type": "geojson", "data": state.data}
        layer_paint = (
            copy.deepcopy(state.paint)
            if state.paint is not None
            else paint.default_paint(kind)
        )
        visibility = VISIBLE if state.visible else HIDDEN

        # A dataset that changed type keeps its id; drop the other pair.
        self._remove_pair(dataset.id, raster=not raster)
        try:
            self._ensure_source(source_id, source_def, layer_id)
            existing = self.renderer.get_layer(layer_id)
            if existing is not None and (
                existing.get("type") != kind
                or existing.get("paint") != layer_paint
            ):
                logger.info("Replacing layer %s (%s -> %s)",
                            layer_id, existing.get("type"), kind)
                self.renderer.remove_layer(layer_id)
                existing = None
            if existing is None:
                self.renderer.add_layer({
                    "id": layer_id,
                    "type": kind,
                    "source": source_id,
                    "paint": layer_paint,
                    "layout": {"visibility": visibility},
                })
            else:
                self.renderer.set_layout_property(
                    layer_id, "visibility", visibility
                )
        except errors.RenderOperationFailed as e:
            logger.warning("Could not draw dataset %s as %s: %s",
                           dataset.id, layer_id, e)
            self._layers.pop(dataset.id, None)
            self._signal_resync()
            return None

        layer = db_models.RenderLayer(
            id=layer_id,
            source_id=source_id,
            geometry_kind=kind,
            paint=layer_paint,
        )
        self._layers[dataset.id] = layer
        return layer

    def _ensure_source(
        self,
        source_id: str,
        definition: dict[str, Any],
        layer_id: str,
    ) -> None:
        existing = self.renderer.get_source(source_id)
        if existing is None:
            self.renderer.add_source(source_id, definition)
            return
        if existing.get("type") == "geojson" == definition["type"]:
            self.renderer.set_source_data(source_id, definition["data"])
            return
        if existing == definition:
            return
        # Tile sources cannot be updated in place.
        if self.renderer.get_layer(layer_id) is not None:
            self.renderer.remove_layer(layer_id)
        self.renderer.remove_source(source_id)
        self.renderer.add_source(source_id, definition)

    def _raster_source(self, data: Any) -> dict[str, Any]:
        if isinstance(data, str):
            return {
                "type": "raster",
                "tiles": [data],
                "tileSize": self._settings.raster_tile_size,
            }
        source = copy.deepcopy(dict(data))
        source.setdefault("type", "raster")
        source.setdefault("tileSize", self._settings.raster_tile_size)
        return source

    def toggle_visibility(self, dataset_id: str) -> list[str]:
        """Flip the visibility of every layer drawn for a dataset.

        Layer ids are looked up through the legacy naming candidates so
        layers created under older conventions are found too. When none
        exists, subscribers are told to resync.

        Args:
            dataset_id: Dataset to toggle.

        Returns:
            Ids of the layers found, in lookup order. Empty when unresolved.
        """
        found = [
            candidate
            for candidate in naming.legacy_layer_candidates(dataset_id)
            if self.renderer.get_layer(candidate) is not None
        ]
        if not found:
            logger.warning(
                "No rendered layer for dataset %s; requesting resync",
                dataset_id,
            )
            self._signal_resync()
            return []

        first_state: str | None = None
        for layer_id in found:
            try:
                current = (
                    self.renderer.get_layout_property(layer_id, "visibility")
                    or VISIBLE
                )
                new_state = HIDDEN if current == VISIBLE else VISIBLE
                self.renderer.set_layout_property(
                    layer_id, "visibility", new_state
                )
            except errors.RenderOperationFailed as e:
                logger.warning("Could not toggle layer %s: %s", layer_id, e)
                continue
            if first_state is None:
                first_state = new_state

        state = self._applied.get(dataset_id)
        if state is not None and first_state is not None:
            state.visible = first_state == VISIBLE
            state.dataset.visible = state.visible
        return found

    def set_visibility(self, dataset_id: str, visible: bool) -> list[str]:
        """Show or hide every layer drawn for a dataset."""
        target = VISIBLE if visible else HIDDEN
        changed = []
        for candidate in naming.legacy_layer_candidates(dataset_id):
            if self.renderer.get_layer(candidate) is None:
                continue
            try:
                self.renderer.set_layout_property(candidate, "visibility",
                                                  target)
            except errors.RenderOperationFailed as e:
                logger.warning("Could not set visibility of %s: %s",
                               candidate, e)
                continue
            changed.append(candidate)
        state = self._applied.get(dataset_id)
        if state is not None:
            state.visible = visible
            state.dataset.visible = visible
        return changed

    def remove(self, dataset_id: str) -> bool:
        """Remove a dataset's layer and source from the renderer.

        Returns:
            True if the dataset was registered.
        """
        state = self._applied.pop(dataset_id, None)
        self._layers.pop(dataset_id, None)
        self._pending.discard(dataset_id)
        if state is None:
            return False
        self._remove_pair(dataset_id, raster=state.dataset.type == "raster")
        return True

    def _remove_pair(self, dataset_id: str, raster: bool) -> None:
        layer_id = naming.layer_id(dataset_id, raster=raster)
        source_id = naming.source_id(dataset_id, raster=raster)
        try:
            if self.renderer.get_layer(layer_id) is not None:
                self.renderer.remove_layer(layer_id)
        except errors.RenderOperationFailed as e:
            logger.warning("Could not remove layer %s: %s", layer_id, e)
        try:
            if self.renderer.get_source(source_id) is not None:
                self.renderer.remove_source(source_id)
        except errors.RenderOperationFailed as e:
            logger.warning("Could not remove source %s: %s", source_id, e)

    def resync(self) -> list[db_models.RenderLayer]:
        """Re-apply every registered dataset to the renderer.

        Returns:
            The layers applied now; deferred datasets are not included.
        """
        if self._resyncing:
            return []
        self._resyncing = True
        try:
            logger.info("Resyncing %d datasets", len(self._applied))
            applied = []
            for dataset_id in list(self._applied):
                if not self.renderer.is_style_loaded():
                    self._defer(dataset_id)
                    continue
                layer = self._apply(dataset_id)
                if layer is not None:
                    applied.append(layer)
            return applied
        finally:
            self._resyncing = False

    def reconcile(self, inputs: Iterable[LayerInput]) -> ReconcileResult:
        """Drive the renderer to a desired set of datasets.

        Datasets missing from ``inputs`` are removed, new ones added,
        changed data or paint re-applied, and visibility changes applied
        without touching data. Datasets whose layer vanished from the
        renderer are re-applied too.

        Args:
            inputs: Desired state, one entry per dataset.

        Returns:
            ReconcileResult listing what changed.
        """
        desired = {item.dataset.id: item for item in inputs}
        result = ReconcileResult()

        for dataset_id in [d for d in self._applied if d not in desired]:
            self.remove(dataset_id)
            result.removed.append(dataset_id)

        for dataset_id, item in desired.items():
            state = self._applied.get(dataset_id)
            if state is None:
                self.add_or_update(item.dataset, item.data, item.paint)
                result.added.append(dataset_id)
            elif (
                state.data != item.data
                or state.paint != item.paint
                or state.dataset.type != item.dataset.type
                or self._is_missing(dataset_id)
            ):
                self.add_or_update(item.dataset, item.data, item.paint)
                result.updated.append(dataset_id)
            elif state.visible != item.dataset.visible:
                self.set_visibility(dataset_id, item.dataset.visible)
                result.visibility_changed.append(dataset_id)
        return result

    def _is_missing(self, dataset_id: str) -> bool:
        if not self.renderer.is_style_loaded():
            return False
        layer = self._layers.get(dataset_id)
        return layer is None or self.renderer.get_layer(layer.id) is None

    # Camera

    def fit_to_bounds(self, fc: dict[str, Any]) -> bool:
        """Move the camera onto the envelope of a FeatureCollection.

        Returns:
            False, without moving, when the envelope is degenerate.
        """
        bbox = geometry.compute_envelope(fc)
        if bbox is None:
            return False
        return self.fit_to_bounding_box(bbox)

    def fit_to_bounding_box(self, bbox: db_models.BoundingBox) -> bool:
        if bbox.is_empty:
            return False
        self.renderer.fit_bounds(
            bbox.as_bounds(),
            padding=self._settings.fit_padding,
            max_zoom=self._settings.fit_max_zoom,
            duration=self._settings.fit_duration_ms,
        )
        return True
