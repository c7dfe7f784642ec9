"""Side-by-side comparison of two dataset versions.

The comparison view owns two renderers, one per side. Each side shows the
layers captured with its version, or a copy of the primary workspace's
layers when the version carries none. Cameras can be linked, a diff
overlay can mark features that exist on one side only, and a divider
splits the width between the two panels.

Camera linking is a small state machine. A move on one side is mirrored on
the other only while the sync is ``IDLE``; the mirrored move fires a move
event on the target which then finds the sync busy and is ignored, so the
two renderers never chase each other::

    IDLE --left moved--> PROPAGATING_FROM_LEFT --jump done--> IDLE
    IDLE --right moved--> PROPAGATING_FROM_RIGHT --jump done--> IDLE

Example:
    >>> controller = ComparisonController(
    ...     versions, InMemoryRenderer, primary=workspace_renderer
    ... ).open()
    >>> controller.select_left(versions[1].id)  # sides swap
    >>> controller.nudge_split(+10)
    (60.0, 40.0)
    >>> controller.close()
"""

from __future__ import annotations

import copy
import enum
import logging
from typing import TYPE_CHECKING, Any, Literal

from geolens.core import config, errors
from geolens.db import models as db_models
from geolens.ingest import geometry
from geolens.render import naming, paint, renderer as renderer_mod
from geolens.render import style_reconciler

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

Side = Literal["left", "right"]
LEFT: Side = "left"
RIGHT: Side = "right"
SIDES: tuple[Side, Side] = (LEFT, RIGHT)

EMPTY_COLLECTION: dict[str, Any] = {"type": "FeatureCollection", "features": []}


class SyncState(enum.Enum):
    IDLE = "idle"
    PROPAGATING_FROM_LEFT = "propagating_from_left"
    PROPAGATING_FROM_RIGHT = "propagating_from_right"


class CameraSync:
    """Mirrors camera moves between two renderers without feedback loops.

    Attributes:
        enabled: Whether moves are mirrored at all.
        state: Current SyncState.
    """

    def __init__(
        self,
        left: renderer_mod.Renderer,
        right: renderer_mod.Renderer,
        enabled: bool = True,
    ) -> None:
        self._renderers = {LEFT: left, RIGHT: right}
        self.enabled = enabled
        self.state = SyncState.IDLE
        self._attached = False

    def attach(self) -> None:
        if self._attached:
            return
        self._renderers[LEFT].on("move", self._left_moved)
        self._renderers[RIGHT].on("move", self._right_moved)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._renderers[LEFT].off("move", self._left_moved)
        self._renderers[RIGHT].off("move", self._right_moved)
        self._attached = False

    def _left_moved(self) -> None:
        self.handle_move(LEFT)

    def _right_moved(self) -> None:
        self.handle_move(RIGHT)

    def handle_move(self, origin: Side) -> bool:
        """Mirror the camera of ``origin`` onto the other side.

        Args:
            origin: Side whose camera moved.

        Returns:
            True if the move was propagated, False if sync is disabled or
            a propagation is already under way.
        """
        if not self.enabled or self.state is not SyncState.IDLE:
            return False
        source = self._renderers[origin]
        target = self._renderers[RIGHT if origin == LEFT else LEFT]
        self.state = (
            SyncState.PROPAGATING_FROM_LEFT
            if origin == LEFT
            else SyncState.PROPAGATING_FROM_RIGHT
        )
        try:
            camera = source.get_camera()
            target.jump_to(
                center=camera.center,
                zoom=camera.zoom,
                bearing=camera.bearing,
                pitch=camera.pitch,
            )
        finally:
            self.state = SyncState.IDLE
        return True


class ComparisonController:
    """Drives the two renderers of the comparison view.

    Attributes:
        session: Selection state (versions, split, sync and diff flags).
        sync: Camera sync between the two sides, once opened.
    """

    def __init__(
        self,
        versions: Sequence[db_models.VersionEntry],
        renderer_factory: Callable[[str], renderer_mod.Renderer],
        *,
        primary: renderer_mod.Renderer | None = None,
        version_data: Mapping[str, dict[str, Any]] | None = None,
        left_version_id: str | None = None,
        right_version_id: str | None = None,
        sync_enabled: bool = True,
        diff_enabled: bool = False,
        settings: config.Settings | None = None,
    ) -> None:
        if len(versions) < 2:
            raise ValueError("comparison needs at least two versions")
        self._settings = settings or config.get_settings()
        self._versions = {entry.id: entry for entry in versions}
        self._factory = renderer_factory
        self._primary = primary
        self._version_data = dict(version_data or {})
        self._shared_style = self._settings.default_style_url
        self.session = db_models.ComparisonSession(
            left_version_id=left_version_id or versions[0].id,
            right_version_id=right_version_id or versions[1].id,
            sync_enabled=sync_enabled,
            diff_enabled=diff_enabled,
        )
        self.sync: CameraSync | None = None
        self._handles: dict[Side, renderer_mod.RendererHandle] = {}
        self._reconcilers: dict[
            Side, style_reconciler.StyleTransitionReconciler
        ] = {}
        self._closed = False

    # Lifecycle

    @property
    def is_open(self) -> bool:
        return bool(self._handles) and not self._closed

    def open(self) -> ComparisonController:
        """Create both renderers and start populating them.

        Each side is filled as soon as its style is ready.

        Returns:
            The controller, for chaining.
        """
        if self._closed:
            raise errors.RenderOperationFailed("Comparison view was closed.")
        if self._handles:
            return self
        for side in SIDES:
            style_url = self.style_for(self._version_id(side))
            handle = renderer_mod.RendererHandle(
                lambda url=style_url: self._factory(url)
            )
            side_renderer = handle.renderer
            self._handles[side] = handle
            self._reconcilers[side] = (
                style_reconciler.StyleTransitionReconciler(
                    side_renderer, self._settings
                )
            )
            self._populate_when_ready(side)

        self.sync = CameraSync(
            self.renderer(LEFT),
            self.renderer(RIGHT),
            enabled=self.session.sync_enabled,
        )
        self.sync.attach()
        self._resize()
        return self

    def close(self) -> None:
        """Release both renderers. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        if self.sync is not None:
            try:
                self.sync.detach()
            except Exception:
                logger.warning("Error detaching camera sync", exc_info=True)
        for handle in self._handles.values():
            handle.release()

    def __enter__(self) -> ComparisonController:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def renderer(self, side: Side) -> renderer_mod.Renderer:
        return self._handles[side].renderer

    # Versions

    def style_for(self, version_id: str) -> str:
        entry = self._versions.get(version_id)
        return (entry.style if entry and entry.style else
                self._shared_style)

    def _version_id(self, side: Side) -> str:
        if side == LEFT:
            return self.session.left_version_id
        return self.session.right_version_id

    def _require_version(self, version_id: str) -> None:
        if version_id not in self._versions:
            raise ValueError(f"unknown version {version_id!r}")

    def select_left(self, version_id: str) -> None:
        """Show a version on the left; the sides swap on collision."""
        self._require_version(version_id)
        before = (self.session.left_version_id, self.session.right_version_id)
        self.session.select_left(version_id)
        self._reload_changed(before)

    def select_right(self, version_id: str) -> None:
        """Show a version on the right; the sides swap on collision."""
        self._require_version(version_id)
        before = (self.session.left_version_id, self.session.right_version_id)
        self.session.select_right(version_id)
        self._reload_changed(before)

    def swap(self) -> None:
        before = (self.session.left_version_id, self.session.right_version_id)
        self.session.swap()
        self._reload_changed(before)

    def _reload_changed(self, before: tuple[str, str]) -> None:
        after = (self.session.left_version_id, self.session.right_version_id)
        if before == after:
            return
        for side, old, new in zip(SIDES, before, after):
            if old != new:
                self._reload_side(side)
            elif (
                self.is_open
                and self.session.diff_enabled
                and self.renderer(side).is_style_loaded()
            ):
                # The overlay depends on both versions.
                self.apply_diff(side)

    def _reload_side(self, side: Side) -> None:
        if not self.is_open:
            return
        side_renderer = self.renderer(side)
        side_renderer.set_style(self.style_for(self._version_id(side)))
        self._populate_when_ready(side)

    def _populate_when_ready(self, side: Side) -> None:
        side_renderer = self.renderer(side)
        if side_renderer.is_style_loaded():
            self._populate(side)
        else:
            side_renderer.once("style.load", lambda: self._populate(side))

    def _populate(self, side: Side) -> None:
        if not self.is_open:
            return
        self.apply_version_layers(side)
        if self.session.diff_enabled:
            self.apply_diff(side)

    def apply_version_layers(self, side: Side) -> list[str]:
        """Fill one side with its version's layers.

        Versions carrying layer snapshots get exactly those layers (an
        existing layer with the same id is replaced); otherwise the primary
        renderer's sources and layers are copied, skipping ids that exist.

        Returns:
            Ids of the layers added.
        """
        side_renderer = self.renderer(side)
        entry = self._versions.get(self._version_id(side))
        if entry is not None and entry.layers:
            return self._apply_snapshot_layers(side_renderer, entry.layers)
        if self._primary is not None:
            return copy_renderer_state(self._primary, side_renderer)
        return []

    def _apply_snapshot_layers(
        self,
        side_renderer: renderer_mod.Renderer,
        layers: Sequence[dict[str, Any]],
    ) -> list[str]:
        added = []
        for layer in layers:
            definition = {k: copy.deepcopy(v) for k, v in layer.items()
                          if k != "sourceData"}
            layer_id = definition.get("id")
            source_id = definition.get("source")
            try:
                if side_renderer.get_layer(layer_id) is not None:
                    side_renderer.remove_layer(layer_id)
                if source_id and side_renderer.get_source(source_id) is None:
                    side_renderer.add_source(
                        source_id,
                        copy.deepcopy(
                            layer.get("sourceData")
                            or {"type": "geojson", "data": EMPTY_COLLECTION}
                        ),
                    )
                side_renderer.add_layer(definition)
            except errors.RenderOperationFailed as e:
                logger.warning("Error adding version layer %s: %s",
                               layer_id, e)
                continue
            added.append(layer_id)
        return added

    # Diff overlay

    def data_for(self, version_id: str) -> dict[str, Any]:
        """Features of a version, as used by the diff overlay.

        Explicit version data wins; otherwise the GeoJSON carried by the
        version's layer snapshots is merged.
        """
        if version_id in self._version_data:
            return self._version_data[version_id]
        features: list[dict[str, Any]] = []
        entry = self._versions.get(version_id)
        for layer in entry.layers if entry else []:
            data = (layer.get("sourceData") or {}).get("data")
            if isinstance(data, dict):
                features.extend(data.get("features") or [])
        return {"type": "FeatureCollection", "features": features}

    def diff_collections(self) -> dict[Side, dict[str, Any]]:
        only_left, only_right = geometry.diff_features(
            self.data_for(self.session.left_version_id),
            self.data_for(self.session.right_version_id),
        )
        return {
            LEFT: {"type": "FeatureCollection", "features": only_left},
            RIGHT: {"type": "FeatureCollection", "features": only_right},
        }

    def apply_diff(self, side: Side) -> bool:
        """(Re)draw the diff overlay of one side.

        Returns:
            True if the overlay was added.
        """
        side_renderer = self.renderer(side)
        self.remove_diff(side)
        color = paint.DIFF_LEFT_COLOR if side == LEFT else paint.DIFF_RIGHT_COLOR
        try:
            side_renderer.add_source(
                naming.DIFF_HIGHLIGHT_ID,
                {"type": "geojson", "data": self.diff_collections()[side]},
            )
            side_renderer.add_layer({
                "id": naming.DIFF_HIGHLIGHT_ID,
                "type": "fill",
                "source": naming.DIFF_HIGHLIGHT_ID,
                "layout": {},
                "paint": paint.diff_paint(color),
            })
        except errors.RenderOperationFailed as e:
            logger.warning("Error adding diff overlay on %s: %s", side, e)
            return False
        return True

    def remove_diff(self, side: Side) -> None:
        side_renderer = self.renderer(side)
        try:
            if side_renderer.get_layer(naming.DIFF_HIGHLIGHT_ID) is not None:
                side_renderer.remove_layer(naming.DIFF_HIGHLIGHT_ID)
            if side_renderer.get_source(naming.DIFF_HIGHLIGHT_ID) is not None:
                side_renderer.remove_source(naming.DIFF_HIGHLIGHT_ID)
        except errors.RenderOperationFailed as e:
            logger.warning("Error removing diff overlay on %s: %s", side, e)

    def set_diff_enabled(self, enabled: bool) -> None:
        self.session.diff_enabled = enabled
        if not self.is_open:
            return
        for side in SIDES:
            if not self.renderer(side).is_style_loaded():
                continue
            if enabled:
                self.apply_diff(side)
            else:
                self.remove_diff(side)

    # Camera, style and layout

    def set_sync_enabled(self, enabled: bool) -> None:
        self.session.sync_enabled = enabled
        if self.sync is not None:
            self.sync.enabled = enabled

    def set_style(self, style_url: str) -> None:
        """Swap the basemap of both sides, keeping their layers."""
        self._shared_style = self._settings.resolve_style(style_url)
        if not self.is_open:
            return
        for side in SIDES:
            self._reconcilers[side].change_style(self._shared_style)

    def set_split(self, position: float) -> tuple[float, float]:
        """Move the divider and resize both renderers.

        Returns:
            The resulting (left, right) panel widths in percent.
        """
        self.session.split_position = db_models.clamp_split(position)
        self._resize()
        return self.panel_widths

    def nudge_split(self, delta: float) -> tuple[float, float]:
        return self.set_split(self.session.split_position + delta)

    @property
    def panel_widths(self) -> tuple[float, float]:
        return self.session.panel_widths

    def _resize(self) -> None:
        if not self.is_open:
            return
        for side in SIDES:
            try:
                self.renderer(side).resize()
            except Exception:
                logger.warning("Error resizing %s renderer", side,
                               exc_info=True)


def copy_renderer_state(
    source: renderer_mod.Renderer,
    target: renderer_mod.Renderer,
) -> list[str]:
    """Copy sources and layers between renderers, skipping existing ids.

    Args:
        source: Renderer to read from.
        target: Renderer to write to; must have its style loaded.

    Returns:
        Ids of the layers added to ``target``.
    """
    style = source.get_style()
    for source_id, definition in (style.get("sources") or {}).items():
        if target.get_source(source_id) is not None:
            continue
        try:
            target.add_source(source_id, definition)
        except errors.RenderOperationFailed as e:
            logger.warning("Error adding source %s: %s", source_id, e)

    added = []
    for layer in style.get("layers") or []:
        if target.get_layer(layer["id"]) is not None:
            continue
        try:
            target.add_layer(layer)
        except errors.RenderOperationFailed as e:
            logger.warning("Error adding layer %s: %s", layer["id"], e)
            continue
        added.append(layer["id"])
    return added
