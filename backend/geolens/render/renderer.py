"""Renderer boundary: protocol, headless renderer and ownership handle.

The map renderer is an external, mutable collaborator. Everything in
``geolens.render`` talks to it through the narrow ``Renderer`` protocol
below, which mirrors the subset of the vector-tile renderer API the engine
needs (source and layer tables, layout properties, style lifecycle events
and the camera).

``InMemoryRenderer`` is a headless implementation used by the service and
the tests. It reproduces the behavior the engine has to cope with: styles
load asynchronously (``finish_style_load`` completes a load), a style swap
wipes every source and layer that is not part of the new base style, and
duplicate ids, dangling sources or mutations before the style is ready are
rejected.

Example:
    >>> from geolens.render import renderer
    >>> r = renderer.InMemoryRenderer()
    >>> r.finish_style_load()
    >>> r.add_source("source-d1", {"type": "geojson", "data": fc})
    >>> r.add_layer({"id": "layer-d1", "type": "line", "source": "source-d1"})
"""

from __future__ import annotations

import collections
import copy
import dataclasses
import logging
import math
from collections.abc import Callable
from typing import Any, Protocol

from geolens.core import config, errors

logger = logging.getLogger(__name__)

Listener = Callable[[], None]
Bounds = tuple[tuple[float, float], tuple[float, float]]

DEFAULT_CENTER = (70.0, 30.0)
DEFAULT_ZOOM = 5.5

_SOURCE_LAYER_TYPES = {"fill", "line", "circle", "symbol", "raster",
                       "heatmap", "fill-extrusion", "hillshade"}


@dataclasses.dataclass(frozen=True)
class Camera:
    """Camera position of a renderer.

    Attributes:
        center: (longitude, latitude) of the view center.
        zoom: Zoom level.
        bearing: Rotation in degrees.
        pitch: Tilt in degrees.
    """

    center: tuple[float, float] = DEFAULT_CENTER
    zoom: float = DEFAULT_ZOOM
    bearing: float = 0.0
    pitch: float = 0.0


class Renderer(Protocol):
    """Operations the engine performs on a map renderer."""

    def get_style(self) -> dict[str, Any]: ...

    def get_source(self, source_id: str) -> dict[str, Any] | None: ...

    def add_source(self, source_id: str, definition: dict[str, Any]) -> None: ...

    def set_source_data(self, source_id: str, data: dict[str, Any]) -> None: ...

    def remove_source(self, source_id: str) -> None: ...

    def get_layer(self, layer_id: str) -> dict[str, Any] | None: ...

    def add_layer(
        self,
        definition: dict[str, Any],
        before_id: str | None = None,
    ) -> None: ...

    def remove_layer(self, layer_id: str) -> None: ...

    def get_layout_property(self, layer_id: str, name: str) -> Any: ...

    def set_layout_property(self, layer_id: str, name: str, value: Any) -> None: ...

    def is_style_loaded(self) -> bool: ...

    def set_style(self, style_url: str) -> None: ...

    def on(self, event: str, listener: Listener) -> None: ...

    def once(self, event: str, listener: Listener) -> None: ...

    def off(self, event: str, listener: Listener) -> None: ...

    def fit_bounds(
        self,
        bounds: Bounds,
        *,
        padding: int,
        max_zoom: float,
        duration: int,
    ) -> None: ...

    def get_camera(self) -> Camera: ...

    def jump_to(
        self,
        *,
        center: tuple[float, float] | None = None,
        zoom: float | None = None,
        bearing: float | None = None,
        pitch: float | None = None,
    ) -> None: ...

    def resize(self) -> None: ...

    def remove(self) -> None: ...


def base_style_for(style_url: str) -> dict[str, Any]:
    """Build the base style a renderer installs for a basemap URL.

    Every basemap carries the vendor ``composite`` source, a terrain source
    and a handful of reference layers. Satellite basemaps add imagery.
    """
    sources: dict[str, dict[str, Any]] = {
        "composite": {
            "type": "vector",
            "url": "mapbox://mapbox.mapbox-streets-v8",
        },
        "mapbox-dem": {
            "type": "raster-dem",
            "url": "mapbox://mapbox.mapbox-terrain-dem-v1",
            "tileSize": 512,
        },
    }
    layers: list[dict[str, Any]] = [
        {"id": "background", "type": "background",
         "paint": {"background-color": "#f8f4f0"}},
    ]
    if "satellite" in style_url:
        sources["mapbox-satellite"] = {
            "type": "raster",
            "url": "mapbox://mapbox.satellite",
            "tileSize": 256,
        }
        layers.append({"id": "satellite", "type": "raster",
                       "source": "mapbox-satellite"})
    layers.extend([
        {"id": "water", "type": "fill", "source": "composite",
         "source-layer": "water", "paint": {"fill-color": "#a0c8f0"}},
        {"id": "road", "type": "line", "source": "composite",
         "source-layer": "road", "paint": {"line-color": "#ffffff"}},
        {"id": "place-label", "type": "symbol", "source": "composite",
         "source-layer": "place_label", "layout": {"text-field": "{name}"}},
    ])
    return {"version": 8, "name": style_url, "sources": sources,
            "layers": layers}


class InMemoryRenderer(Renderer):
    """Headless renderer keeping its style tables in memory.

    A new renderer starts loading ``style_url``; call ``finish_style_load``
    to complete the load, as the network would.

    Attributes:
        style_url: URL of the current (possibly still loading) style.
        resize_count: Number of ``resize`` calls received.
        last_fit: Arguments of the latest ``fit_bounds`` call.
        removed: Whether ``remove`` has been called.
    """

    def __init__(
        self,
        style_url: str | None = None,
        camera: Camera | None = None,
    ) -> None:
        self.style_url = style_url or config.get_settings().default_style_url
        self.resize_count = 0
        self.last_fit: dict[str, Any] | None = None
        self.removed = False
        self._camera = camera or Camera()
        self._sources: dict[str, dict[str, Any]] = {}
        self._layers: list[dict[str, Any]] = []
        self._style_loaded = False
        self._ever_loaded = False
        self._listeners: dict[str, list[Listener]] = collections.defaultdict(
            list
        )
        self._once: dict[str, list[Listener]] = collections.defaultdict(list)

    # Style lifecycle

    def is_style_loaded(self) -> bool:
        return self._style_loaded

    def set_style(self, style_url: str) -> None:
        self._ensure_alive()
        self.style_url = style_url
        self._sources = {}
        self._layers = []
        self._style_loaded = False

    def finish_style_load(self) -> None:
        """Install the pending base style and announce it.

        Emits ``style.load`` on every call, and ``load`` after the first.
        """
        self._ensure_alive()
        style = base_style_for(self.style_url)
        self._sources = style["sources"]
        self._layers = style["layers"]
        self._style_loaded = True
        self.fire("style.load")
        if not self._ever_loaded:
            self._ever_loaded = True
            self.fire("load")

    def get_style(self) -> dict[str, Any]:
        return {
            "version": 8,
            "name": self.style_url,
            "sources": copy.deepcopy(self._sources),
            "layers": copy.deepcopy(self._layers),
        }

    # Sources

    def get_source(self, source_id: str) -> dict[str, Any] | None:
        source = self._sources.get(source_id)
        return copy.deepcopy(source) if source is not None else None

    def add_source(self, source_id: str, definition: dict[str, Any]) -> None:
        self._ensure_ready()
        if source_id in self._sources:
            raise errors.RenderOperationFailed(
                f'There is already a source with ID "{source_id}".'
            )
        if not isinstance(definition, dict) or "type" not in definition:
            raise errors.RenderOperationFailed(
                f'Source "{source_id}" is missing a "type".'
            )
        self._sources[source_id] = copy.deepcopy(definition)

    def set_source_data(self, source_id: str, data: dict[str, Any]) -> None:
        source = self._sources.get(source_id)
        if source is None or source.get("type") != "geojson":
            raise errors.RenderOperationFailed(
                f'There is no GeoJSON source with ID "{source_id}".'
            )
        source["data"] = copy.deepcopy(data)

    def remove_source(self, source_id: str) -> None:
        self._ensure_alive()
        if source_id not in self._sources:
            raise errors.RenderOperationFailed(
                f'There is no source with ID "{source_id}".'
            )
        users = [lyr["id"] for lyr in self._layers
                 if lyr.get("source") == source_id]
        if users:
            raise errors.RenderOperationFailed(
                f'Source "{source_id}" cannot be removed while layer '
                f'"{users[0]}" is using it.'
            )
        del self._sources[source_id]

    # Layers

    def get_layer(self, layer_id: str) -> dict[str, Any] | None:
        for layer in self._layers:
            if layer["id"] == layer_id:
                return copy.deepcopy(layer)
        return None

    def add_layer(
        self,
        definition: dict[str, Any],
        before_id: str | None = None,
    ) -> None:
        self._ensure_ready()
        layer_id = definition.get("id")
        layer_type = definition.get("type")
        if not layer_id or not layer_type:
            raise errors.RenderOperationFailed(
                "Layers require both an id and a type."
            )
        if self._index_of(layer_id) is not None:
            raise errors.RenderOperationFailed(
                f'Layer with id "{layer_id}" already exists on this map.'
            )
        if layer_type in _SOURCE_LAYER_TYPES:
            source_id = definition.get("source")
            if source_id not in self._sources:
                raise errors.RenderOperationFailed(
                    f'Source "{source_id}" not found for layer "{layer_id}".'
                )
        for key in ("paint", "layout"):
            if key in definition and not isinstance(definition[key], dict):
                raise errors.RenderOperationFailed(
                    f'Layer "{layer_id}": {key} must be an object.'
                )
        if "filter" in definition and not (
            isinstance(definition["filter"], list) and definition["filter"]
        ):
            raise errors.RenderOperationFailed(
                f'Layer "{layer_id}": filter must be a non-empty expression.'
            )

        stored = copy.deepcopy(definition)
        if before_id is None:
            self._layers.append(stored)
            return
        index = self._index_of(before_id)
        if index is None:
            raise errors.RenderOperationFailed(
                f'Cannot add layer "{layer_id}" before non-existing layer '
                f'"{before_id}".'
            )
        self._layers.insert(index, stored)

    def remove_layer(self, layer_id: str) -> None:
        self._ensure_alive()
        index = self._index_of(layer_id)
        if index is None:
            raise errors.RenderOperationFailed(
                f'Cannot remove non-existing layer "{layer_id}".'
            )
        del self._layers[index]

    def get_layout_property(self, layer_id: str, name: str) -> Any:
        index = self._index_of(layer_id)
        if index is None:
            raise errors.RenderOperationFailed(
                f'The layer "{layer_id}" does not exist in the map\'s style.'
            )
        return self._layers[index].get("layout", {}).get(name)

    def set_layout_property(self, layer_id: str, name: str, value: Any) -> None:
        index = self._index_of(layer_id)
        if index is None:
            raise errors.RenderOperationFailed(
                f'The layer "{layer_id}" does not exist in the map\'s style.'
            )
        self._layers[index].setdefault("layout", {})[name] = value

    # Events

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def once(self, event: str, listener: Listener) -> None:
        self._once[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        for table in (self._listeners, self._once):
            if listener in table[event]:
                table[event].remove(listener)

    def fire(self, event: str) -> None:
        """Invoke the listeners registered for ``event``.

        One-shot listeners are detached before any listener runs.
        """
        pending_once = self._once.pop(event, [])
        for listener in [*self._listeners[event], *pending_once]:
            listener()

    # Camera

    def fit_bounds(
        self,
        bounds: Bounds,
        *,
        padding: int,
        max_zoom: float,
        duration: int,
    ) -> None:
        (minx, miny), (maxx, maxy) = bounds
        span = max(maxx - minx, maxy - miny)
        zoom = max_zoom if span <= 0 else min(max_zoom, math.log2(360 / span))
        self.last_fit = {
            "bounds": bounds,
            "padding": padding,
            "max_zoom": max_zoom,
            "duration": duration,
        }
        self.jump_to(center=((minx + maxx) / 2, (miny + maxy) / 2), zoom=zoom)

    def get_camera(self) -> Camera:
        return self._camera

    def jump_to(
        self,
        *,
        center: tuple[float, float] | None = None,
        zoom: float | None = None,
        bearing: float | None = None,
        pitch: float | None = None,
    ) -> None:
        current = self._camera
        self._camera = Camera(
            center=current.center if center is None else tuple(center),
            zoom=current.zoom if zoom is None else zoom,
            bearing=current.bearing if bearing is None else bearing,
            pitch=current.pitch if pitch is None else pitch,
        )
        self.fire("move")

    def resize(self) -> None:
        self.resize_count += 1

    def remove(self) -> None:
        if self.removed:
            raise errors.RenderOperationFailed("Map has already been removed.")
        self.removed = True
        self._listeners.clear()
        self._once.clear()
        self._sources = {}
        self._layers = []

    # Helpers

    def _index_of(self, layer_id: str) -> int | None:
        for index, layer in enumerate(self._layers):
            if layer["id"] == layer_id:
                return index
        return None

    def _ensure_alive(self) -> None:
        if self.removed:
            raise errors.RenderOperationFailed("Map has been removed.")

    def _ensure_ready(self) -> None:
        self._ensure_alive()
        if not self._style_loaded:
            raise errors.RenderOperationFailed("Style is not done loading.")


class RendererHandle:
    """Exclusive owner of one renderer instance.

    The renderer is created on first access and released exactly once;
    teardown paths may race, so releasing twice is a no-op and a failure
    while removing the renderer is logged rather than raised.

    Example:
        >>> with RendererHandle(InMemoryRenderer) as handle:
        ...     handle.renderer.finish_style_load()
    """

    def __init__(self, factory: Callable[[], Renderer]) -> None:
        self._factory = factory
        self._renderer: Renderer | None = None
        self._released = False

    @property
    def renderer(self) -> Renderer:
        if self._released:
            raise errors.RenderOperationFailed("Renderer handle was released.")
        if self._renderer is None:
            self._renderer = self._factory()
        return self._renderer

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Remove the owned renderer.

        Returns:
            True if this call released the renderer, False if it had
            already been released.
        """
        if self._released:
            return False
        self._released = True
        renderer, self._renderer = self._renderer, None
        if renderer is None:
            return True
        try:
            renderer.remove()
        except Exception:
            logger.warning("Error removing renderer", exc_info=True)
        return True

    def __enter__(self) -> RendererHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
