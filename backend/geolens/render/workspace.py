"""The primary map workspace.

``MapWorkspace`` owns the main renderer and composes the pieces that act on
it: the layer registry (subscribed to its own resync signal, so renderer
state that diverged from the registry is re-applied), the style reconciler
used for basemap changes, and at most one comparison view. Closing the
workspace cancels pending upload progress tickers, closes the comparison
view and releases the renderer, once.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from geolens.core import config
from geolens.db import models as db_models
from geolens.db import repository as db_repository
from geolens.render import comparison, paint, registry, style_reconciler
from geolens.render import renderer as renderer_mod
from geolens.services import backend_client, wms

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

EMPTY_COLLECTION: dict[str, Any] = {"type": "FeatureCollection", "features": []}


class MapWorkspace:
    """Primary map view with its datasets.

    Args:
        renderer_factory: Creates a renderer for a style URL.
        settings: Application settings.
        repository: Dataset store; a fresh in-memory one by default.
    """

    def __init__(
        self,
        renderer_factory: Callable[[str], renderer_mod.Renderer],
        settings: config.Settings | None = None,
        repository: db_repository.DatasetRepositoryProtocol | None = None,
    ) -> None:
        self._settings = settings or config.get_settings()
        self._factory = renderer_factory
        self.handle = renderer_mod.RendererHandle(
            lambda: renderer_factory(self._settings.default_style_url)
        )
        self.registry = registry.LayerRegistry(
            self.handle.renderer, self._settings
        )
        self.reconciler = style_reconciler.StyleTransitionReconciler(
            self.handle.renderer, self._settings, self.registry
        )
        self.repository = (
            repository or db_repository.InMemoryDatasetRepository()
        )
        self.comparison: comparison.ComparisonController | None = None
        self._progress: list[backend_client.UploadProgress] = []
        self._unsubscribe: Callable[[], None] | None = None
        if not self._settings.auto_resync:
            self._unsubscribe = self.registry.subscribe(self.registry.resync)
        self._closed = False

    @property
    def renderer(self) -> renderer_mod.Renderer:
        return self.handle.renderer

    # Datasets

    def add_dataset(
        self,
        upload: backend_client.UploadResult,
        *,
        name: str,
        type: db_models.DatasetType,
        format: str,
        crs: str = "EPSG:4326",
    ) -> db_models.Dataset:
        """Register an uploaded dataset and draw it.

        Vector uploads are drawn from ``geometry_data`` and the camera fits
        their features; raster uploads are drawn from ``mapbox_url`` and
        the camera fits ``bounding_box``.

        Returns:
            The new Dataset.

        Raises:
            ValueError: If a raster upload carries no tile URL.
        """
        dataset = db_models.Dataset.from_upload(
            upload, name=name, type=type, format=format, crs=crs
        )
        if type == "raster":
            if not upload.mapbox_url:
                raise ValueError("raster upload returned no tile URL")
            self.repository.add(dataset)
            self.registry.add_or_update(dataset, upload.mapbox_url)
            if upload.bounding_box is not None:
                bbox = upload.bounding_box
                self._when_ready(
                    lambda: self.registry.fit_to_bounding_box(bbox)
                )
        else:
            data = upload.geometry_data or EMPTY_COLLECTION
            self.repository.add(dataset)
            self.registry.add_or_update(dataset, data)
            self._when_ready(lambda: self.registry.fit_to_bounds(data))
        logger.info("Added %s dataset %s (%s)", type, dataset.id, name)
        return dataset

    def add_wms_layer(self, text: str) -> db_models.Dataset:
        """Draw a WMS layer from a URL or from text containing one.

        Args:
            text: A WMS URL, or a prompt mentioning WMS and holding a URL.

        Returns:
            The Dataset registered for the WMS layer.

        Raises:
            ValueError: If no usable WMS URL is found.
        """
        url = wms.find_wms_url(text) or text.strip()
        template = wms.build_tile_template(
            url, self._settings.raster_tile_size
        )
        layer_name = wms.layer_name(url) or "layer"
        dataset = db_models.Dataset(
            id=f"wms-{layer_name}",
            name=layer_name,
            type="raster",
            format="WMS",
            crs="EPSG:3857",
            versions=["v1.0"],
            bbox=wms.extract_bbox(url),
        )
        self.repository.add(dataset)
        self.registry.add_or_update(
            dataset, template, paint_override=paint.WMS_PAINT
        )
        if dataset.bbox is not None:
            bbox = dataset.bbox
            self._when_ready(lambda: self.registry.fit_to_bounding_box(bbox))
        return dataset

    def toggle_visibility(self, dataset_id: str) -> list[str]:
        """Toggle a dataset on the map and record its new visibility."""
        toggled = self.registry.toggle_visibility(dataset_id)
        if toggled:
            visible = (
                self.renderer.get_layout_property(toggled[0], "visibility")
                != registry.HIDDEN
            )
            self.repository.set_visible(dataset_id, visible)
        return toggled

    def change_basemap(self, name_or_url: str) -> db_models.StyleSnapshot:
        """Swap the basemap of the primary map, keeping dataset layers."""
        return self.reconciler.change_style(
            self._settings.resolve_style(name_or_url)
        )

    def _when_ready(self, action: Callable[[], object]) -> None:
        if self.renderer.is_style_loaded():
            action()
        else:
            self.renderer.once("style.load", action)

    # Uploads

    def new_progress(
        self,
        on_change: Callable[[float], None] | None = None,
    ) -> backend_client.UploadProgress:
        """Create an upload progress ticker cancelled when closing."""
        progress = backend_client.UploadProgress(
            self._settings.progress_interval_seconds, on_change=on_change
        )
        self._progress.append(progress)
        return progress

    async def upload(
        self,
        client: backend_client.BackendClient,
        project_id: str,
        *,
        filename: str,
        content: bytes,
        name: str,
        type: db_models.DatasetType,
        format: str,
        crs: str = "EPSG:4326",
        on_progress: Callable[[float], None] | None = None,
    ) -> db_models.Dataset:
        """Upload a file through the backend and add the result."""
        progress = self.new_progress(on_progress)
        try:
            result = await client.upload_dataset(
                project_id, type, filename, content, progress=progress
            )
        finally:
            if progress in self._progress:
                self._progress.remove(progress)
        return self.add_dataset(
            result, name=name, type=type, format=format, crs=crs
        )

    # Comparison

    def open_comparison(
        self,
        versions: Sequence[db_models.VersionEntry],
        version_data: Mapping[str, dict[str, Any]] | None = None,
        **options: Any,
    ) -> comparison.ComparisonController:
        """Open the comparison view, closing any previous one."""
        self.close_comparison()
        self.comparison = comparison.ComparisonController(
            versions,
            self._factory,
            primary=self.renderer,
            version_data=version_data,
            settings=self._settings,
            **options,
        ).open()
        return self.comparison

    def close_comparison(self) -> None:
        if self.comparison is not None:
            self.comparison.close()
            self.comparison = None

    # Teardown

    def close(self) -> None:
        """Cancel timers, close the comparison and release the renderer."""
        if self._closed:
            return
        self._closed = True
        for progress in self._progress:
            progress.cancel()
        self._progress.clear()
        self.close_comparison()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.handle.release()

    def __enter__(self) -> MapWorkspace:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
