"""Preservation of user sources and layers across basemap style swaps.

Swapping the basemap replaces the renderer's whole style, dropping every
source and layer the application added. The reconciler snapshots those
before the swap and restores them once the new style reports it has
loaded::

    STABLE --change_style--> TRANSITIONING --style.load--> STABLE

Sources owned by the base style (the ``composite`` source and vendor
prefixed ids) are never snapshotted; layers are kept only when they draw
from a snapshotted source. Restoring re-adds sources, then layers, in
capture order so stacking is preserved, skipping anything that already
exists. Each add is isolated: one rejected layer is logged and the rest are
still restored.
"""

from __future__ import annotations

import copy
import dataclasses
import enum
import logging
from typing import TYPE_CHECKING, Any

from geolens.core import config, errors
from geolens.db import models as db_models

if TYPE_CHECKING:
    from geolens.render import registry as registry_mod
    from geolens.render import renderer as renderer_mod

logger = logging.getLogger(__name__)

# Layer keys copied into a snapshot, only when present on the layer.
_LAYER_KEYS = ("id", "type", "source", "source-layer", "minzoom", "maxzoom",
               "metadata", "paint", "layout", "filter")


class ReconcilerState(enum.Enum):
    STABLE = "stable"
    TRANSITIONING = "transitioning"


@dataclasses.dataclass
class RestoreReport:
    """What a restore put back.

    Attributes:
        restored_sources: Source ids re-added, in order.
        restored_layers: Layer ids re-added, in order.
        skipped: Ids that already existed and were left alone.
        failures: (id, error message) for every rejected add.
    """

    restored_sources: list[str] = dataclasses.field(default_factory=list)
    restored_layers: list[str] = dataclasses.field(default_factory=list)
    skipped: list[str] = dataclasses.field(default_factory=list)
    failures: list[tuple[str, str]] = dataclasses.field(default_factory=list)


class StyleTransitionReconciler:
    """Carries custom renderer state across basemap changes.

    Attributes:
        renderer: Renderer whose style is being swapped.
        state: Current ReconcilerState.
    """

    def __init__(
        self,
        renderer: renderer_mod.Renderer,
        settings: config.Settings | None = None,
        registry: registry_mod.LayerRegistry | None = None,
    ) -> None:
        self.renderer = renderer
        self.state = ReconcilerState.STABLE
        self._settings = settings or config.get_settings()
        self._registry = registry
        self._snapshot: db_models.StyleSnapshot | None = None
        self._listening = False
        self.last_report: RestoreReport | None = None

    @property
    def snapshot(self) -> db_models.StyleSnapshot | None:
        """The snapshot awaiting restoration, if any."""
        return self._snapshot

    def is_reserved(self, source_id: str) -> bool:
        """Whether a source id belongs to the base style."""
        if self._registry is not None and (
            source_id in self._registry.custom_source_ids
        ):
            return False
        if source_id in self._settings.reserved_source_ids:
            return True
        return any(
            source_id.startswith(prefix)
            for prefix in self._settings.reserved_source_prefixes
        )

    def capture(self) -> db_models.StyleSnapshot:
        """Snapshot the renderer's non-base sources and their layers.

        Returns:
            A fresh StyleSnapshot; the renderer is not modified.
        """
        style = self.renderer.get_style()
        sources = {
            source_id: copy.deepcopy(definition)
            for source_id, definition in (style.get("sources") or {}).items()
            if not self.is_reserved(source_id)
        }
        layers: list[dict[str, Any]] = []
        for layer in style.get("layers") or []:
            if layer.get("source") not in sources:
                continue
            layers.append({
                key: copy.deepcopy(layer[key])
                for key in _LAYER_KEYS
                if key in layer
            })
        logger.debug("Captured %d sources and %d layers",
                     len(sources), len(layers))
        return db_models.StyleSnapshot(sources=sources, layers=layers)

    def change_style(self, style_url: str) -> db_models.StyleSnapshot:
        """Swap the basemap, keeping custom sources and layers.

        A swap requested while a previous one is still loading keeps the
        snapshot taken before the first swap, since the half-loaded style
        holds nothing worth capturing.

        Args:
            style_url: URL of the new basemap style.

        Returns:
            The snapshot that will be restored.
        """
        if self.state is ReconcilerState.STABLE or self._snapshot is None:
            self._snapshot = self.capture()
            self.state = ReconcilerState.TRANSITIONING
        else:
            logger.info("Style swap to %s while transitioning; keeping "
                        "pending snapshot", style_url)
        if not self._listening:
            self._listening = True
            self.renderer.once("style.load", self._on_style_load)
        self.renderer.set_style(style_url)
        return self._snapshot

    def _on_style_load(self) -> None:
        self._listening = False
        self.restore()

    def restore(self) -> RestoreReport:
        """Re-add the pending snapshot to the freshly loaded style.

        Calling this while stable is a no-op, which makes repeated ready
        notifications harmless.

        Returns:
            RestoreReport describing the restore.
        """
        report = RestoreReport()
        if self.state is ReconcilerState.STABLE or self._snapshot is None:
            return report

        snapshot, self._snapshot = self._snapshot, None
        self.state = ReconcilerState.STABLE

        for source_id, definition in snapshot.sources.items():
            if self.renderer.get_source(source_id) is not None:
                report.skipped.append(source_id)
                continue
            try:
                self.renderer.add_source(source_id, definition)
            except errors.RenderOperationFailed as e:
                logger.warning("Could not restore source %s: %s",
                               source_id, e)
                report.failures.append((source_id, str(e)))
                continue
            report.restored_sources.append(source_id)

        for layer in snapshot.layers:
            layer_id = layer["id"]
            if self.renderer.get_layer(layer_id) is not None:
                report.skipped.append(layer_id)
                continue
            try:
                self.renderer.add_layer(layer)
            except errors.RenderOperationFailed as e:
                logger.warning("Could not restore layer %s: %s", layer_id, e)
                report.failures.append((layer_id, str(e)))
                continue
            report.restored_layers.append(layer_id)

        logger.info(
            "Restored %d sources and %d layers after style change "
            "(%d failures)",
            len(report.restored_sources),
            len(report.restored_layers),
            len(report.failures),
        )
        self.last_report = report
        return report
