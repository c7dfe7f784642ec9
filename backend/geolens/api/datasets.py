"""Dataset registry API endpoints.

Datasets are the logical layers of a workspace. These endpoints list and
register them, expose their envelope for camera fits, append version tags
and record visibility.

Example:
    Register a dataset and add a version:
        >>> client.post("/api/datasets", json={
        ...     "id": "d3", "name": "Road Network", "type": "vector",
        ...     "format": "Shapefile", "versions": ["v1.0"],
        ... })
        >>> client.post("/api/datasets/d3/versions", json={"tag": "v1.1"})
        >>> # Returns the dataset with status "modified"
"""

from __future__ import annotations

import dataclasses
from typing import Any

import fastapi
import pydantic

from geolens.core import config
from geolens.db import models as db_models
from geolens.db import repository as db_repository

router = fastapi.APIRouter(prefix="/api/datasets", tags=["datasets"])


class DatasetCreate(pydantic.BaseModel):
    id: str
    name: str
    type: db_models.DatasetType
    format: str
    crs: str = "EPSG:4326"
    status: db_models.DatasetStatus = "new"
    visible: bool = True
    versions: list[str] = pydantic.Field(default_factory=list)
    bbox: tuple[float, float, float, float] | None = None


class VersionCreate(pydantic.BaseModel):
    tag: str = pydantic.Field(min_length=1)


class VisibilityUpdate(pydantic.BaseModel):
    visible: bool


def _get_repo(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> db_repository.DatasetRepositoryProtocol:
    """Resolve the dataset repository dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        DatasetRepositoryProtocol implementation.
    """
    return db_repository.get_dataset_repository(settings)


def _serialize(dataset: db_models.Dataset) -> dict[str, Any]:
    result = dataclasses.asdict(dataset)
    if result.get("bbox") is not None:
        result["bbox"] = list(result["bbox"])
    return result


def _not_found() -> fastapi.HTTPException:
    return fastapi.HTTPException(status_code=404, detail="Dataset not found")


@router.get("")
async def list_datasets(
    repo: db_repository.DatasetRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> list[dict[str, Any]]:
    """List all registered datasets in registration order."""
    return [_serialize(dataset) for dataset in repo.all()]


@router.post("", status_code=201)
async def create_dataset(
    body: DatasetCreate,
    repo: db_repository.DatasetRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Register a dataset, replacing any dataset with the same id.

    Args:
        body: Dataset fields.
        repo: Dataset repository (injected via FastAPI Depends).

    Returns:
        The stored dataset.
    """
    fields = body.model_dump()
    bbox = fields.pop("bbox")
    dataset = db_models.Dataset(
        **fields,
        bbox=db_models.BoundingBox(*bbox) if bbox is not None else None,
    )
    return _serialize(repo.add(dataset))


@router.get("/{dataset_id}/bbox")
async def get_dataset_bbox(
    dataset_id: str,
    repo: db_repository.DatasetRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, list[float] | None]:
    """Get the envelope of a dataset as [minx, miny, maxx, maxy].

    Raises:
        HTTPException: If the dataset is not found (404 status code).

    Example:
        Use the bbox to fit the map:
            >>> bbox = client.get("/api/datasets/d3/bbox").json()["bbox"]
            >>> map.fitBounds([[bbox[0], bbox[1]], [bbox[2], bbox[3]]])
    """
    dataset = repo.get(dataset_id)
    if dataset is None:
        raise _not_found()
    return {"bbox": list(dataset.bbox) if dataset.bbox is not None else None}


@router.post("/{dataset_id}/versions")
async def add_dataset_version(
    dataset_id: str,
    body: VersionCreate,
    repo: db_repository.DatasetRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Append a version tag; the dataset becomes "modified"."""
    dataset = repo.add_version(dataset_id, body.tag)
    if dataset is None:
        raise _not_found()
    return _serialize(dataset)


@router.patch("/{dataset_id}/visibility")
async def set_dataset_visibility(
    dataset_id: str,
    body: VisibilityUpdate,
    repo: db_repository.DatasetRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    dataset = repo.set_visible(dataset_id, body.visible)
    if dataset is None:
        raise _not_found()
    return _serialize(dataset)
