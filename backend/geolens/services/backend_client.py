"""Async client for the upload and processing backend.

The backend owns dataset versioning and server-side geoprocessing. This
module posts files and processing requests to it and turns its answers into
engine types: upload responses become ``UploadResult`` models, processing
responses go through ``response_parser.parse`` like any other opaque
payload.

Example:
    >>> async with BackendClient() as client:
    ...     result = await client.upload_dataset(
    ...         "p1", "vector", "roads.zip", zipped_bytes
    ...     )
    ...     dataset = Dataset.from_upload(
    ...         result, name="Roads", type="vector", format="Shapefile"
    ...     )
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

import httpx
import pydantic

from geolens.core import config, errors
from geolens.db import models as db_models
from geolens.ingest import geometry, response_parser

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

PROCESS_PATH = "/process"
MISMATCH_MARKERS = ("Attempt to write non-point", "to point shapefile")
MISMATCH_MESSAGE = (
    "Geometry type mismatch: The backend cannot process mixed geometry "
    "types. Please select layers with the same geometry type (all points, "
    "all lines, or all polygons)."
)


class UploadResult(pydantic.BaseModel):
    """Fields of an upload response used by the engine.

    Attributes:
        geometry_data: FeatureCollection of a vector upload.
        features_count: Number of features the backend stored.
        mapbox_url: Tile URL template of a raster upload.
        bounding_box: Extent of a raster upload.
        version_number: Version tag assigned by the backend.
        version_id: Identifier of the created version.
    """

    model_config = pydantic.ConfigDict(extra="ignore")

    geometry_data: dict[str, Any] | None = None
    features_count: int | None = None
    mapbox_url: str | None = None
    bounding_box: db_models.BoundingBox | None = None
    version_number: str | None = None
    version_id: str | None = None

    @pydantic.field_validator("bounding_box", mode="before")
    @classmethod
    def _parse_bounding_box(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return db_models.BoundingBox.from_mapping(value)
        return value

    @pydantic.field_validator("version_number", "version_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class UploadProgress:
    """Simulated upload progress ticking while a request is in flight.

    The value climbs by ``step`` every ``interval`` seconds and stalls at
    ``ceiling`` until ``complete`` sets it to 100.

    Attributes:
        value: Current progress in percent.
    """

    def __init__(
        self,
        interval: float | None = None,
        step: float = 10.0,
        ceiling: float = 90.0,
        on_change: Callable[[float], None] | None = None,
    ) -> None:
        self.interval = (
            interval
            if interval is not None
            else config.get_settings().progress_interval_seconds
        )
        self.step = step
        self.ceiling = ceiling
        self.value = 0.0
        self._on_change = on_change
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self.running:
            return
        self._set(0.0)
        self._task = asyncio.get_running_loop().create_task(self._tick())

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._set(min(self.ceiling, self.value + self.step))

    def cancel(self) -> None:
        """Stop ticking. Safe to call any number of times."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def complete(self) -> None:
        self.cancel()
        self._set(100.0)

    def reset(self) -> None:
        self.cancel()
        self._set(0.0)

    def _set(self, value: float) -> None:
        self.value = value
        if self._on_change is not None:
            self._on_change(value)


class BackendClient:
    """HTTP client for the upload and processing endpoints.

    Args:
        settings: Settings providing the base URL and timeout.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: config.Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or config.get_settings()
        self._client = httpx.AsyncClient(
            base_url=str(self._settings.api_base_url),
            timeout=self._settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def upload_dataset(
        self,
        project_id: str,
        kind: str,
        filename: str,
        content: bytes,
        progress: UploadProgress | None = None,
    ) -> UploadResult:
        """Upload a dataset file to a project.

        Args:
            project_id: Target project.
            kind: "vector" or "raster".
            filename: Name of the uploaded file.
            content: File bytes.
            progress: Optional progress ticker driven during the request.

        Returns:
            The parsed upload response.

        Raises:
            CollaboratorError: If the backend answers with an error status
                or cannot be reached.
        """
        path = f"/api/projects/{project_id}/upload/{kind.lower()}"
        if progress is not None:
            progress.start()
        try:
            response = await self._client.post(
                path, files={"file": (filename, content)}
            )
            if response.is_error:
                raise errors.CollaboratorError(
                    _upload_error_message(response), response.status_code
                )
            result = UploadResult.model_validate(response.json())
        except httpx.HTTPError as e:
            if progress is not None:
                progress.reset()
            raise errors.CollaboratorError(
                f"Failed to upload dataset: {e}"
            ) from e
        except errors.CollaboratorError:
            if progress is not None:
                progress.reset()
            raise
        except ValueError as e:
            if progress is not None:
                progress.reset()
            raise errors.CollaboratorError(
                f"Unexpected upload response: {e}"
            ) from e

        if progress is not None:
            progress.complete()
        logger.info(
            "Uploaded %s to project %s as version %s",
            filename,
            project_id,
            result.version_id,
        )
        return result

    async def process_layers(
        self,
        project_id: str,
        inputs: Sequence[Mapping[str, str]],
        prompt: str,
        collections: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Ask the backend to process datasets and decode the result.

        Args:
            project_id: Project the datasets belong to.
            inputs: ``{"id": ..., "type": ...}`` entries for the datasets.
            prompt: Processing instruction.
            collections: Feature collections of the inputs, keyed by name;
                when given, a mixed-geometry submission is logged before the
                request is sent.

        Returns:
            The FeatureCollection produced by the backend.

        Raises:
            GeometryMismatch: The backend rejected mixed geometry types.
            CollaboratorError: Any other error status.
            IngestionError: The response body could not be decoded.
        """
        if collections:
            warning = geometry.check_submission(collections).warning()
            if warning:
                logger.warning(warning)

        payload = {
            "project_id": project_id,
            "file_inputs": [
                {"id": item["id"], "type": item["type"]} for item in inputs
            ],
            "prompt": prompt,
        }
        try:
            response = await self._client.post(PROCESS_PATH, json=payload)
        except httpx.HTTPError as e:
            raise errors.CollaboratorError(
                f"Failed to reach processing backend: {e}"
            ) from e

        if response.is_error:
            text = response.text
            if all(marker in text for marker in MISMATCH_MARKERS):
                raise errors.GeometryMismatch(MISMATCH_MESSAGE)
            raise errors.CollaboratorError(
                f"Server responded with {response.status_code}: "
                f"{response.reason_phrase}. Details: {text}",
                response.status_code,
            )
        return response_parser.parse(response.content)


def _upload_error_message(response: httpx.Response) -> str:
    with contextlib.suppress(ValueError):
        body = response.json()
        if isinstance(body, dict):
            return str(
                body.get("error")
                or body.get("message")
                or "Failed to upload dataset"
            )
    return f"Server error: {response.status_code} {response.reason_phrase}"
