"""Ingestion API endpoints.

This module exposes the response parser and the geometry consistency
checker over HTTP. Uploaded payloads are sniffed by content, not by their
declared content type, so the same endpoint accepts raw GeoJSON, zipped
shapefiles and zipped GeoJSON.

Example:
    Decode a zipped shapefile:
        >>> response = client.post(
        ...     "/api/ingest/parse",
        ...     files={"file": ("roads.zip", open("roads.zip", "rb"))},
        ... )
        >>> response.json()["consistency"]
        {'consistent': True, 'base_types': ['LineString']}

    Check a collection before submitting it for processing:
        >>> response = client.post("/api/ingest/check", json=collection)
        >>> response.json()["consistent"]
        False
"""

from __future__ import annotations

from typing import Any

import fastapi

from geolens.core import config
from geolens.ingest import geometry, response_parser

router = fastapi.APIRouter(prefix="/api/ingest", tags=["ingest"])

_CHUNK_SIZE = 1024 * 1024


def _read_upload(file: fastapi.UploadFile, max_size: int) -> bytes:
    """Read an uploaded file into memory with size validation.

    Args:
        file: FastAPI UploadFile object containing the file data.
        max_size: Maximum allowed file size in bytes.

    Returns:
        The file content.

    Raises:
        HTTPException: If the file exceeds the maximum size limit.
    """
    chunks = []
    size = 0
    for chunk in iter(lambda: file.file.read(_CHUNK_SIZE), b""):
        size += len(chunk)
        if size > max_size:
            raise fastapi.HTTPException(
                status_code=413,
                detail="Upload too large",
            )
        chunks.append(chunk)
    return b"".join(chunks)


def _consistency_dict(report: geometry.ConsistencyReport) -> dict[str, Any]:
    return {
        "consistent": report.consistent,
        "base_types": sorted(report.base_types),
    }


@router.post("/parse")
async def parse_payload(
    file: fastapi.UploadFile,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """Decode an uploaded backend payload into a FeatureCollection.

    Args:
        file: Payload from multipart form data.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Dictionary with the decoded feature collection, its feature count,
        the detected container format, a consistency report and the
        envelope as [minx, miny, maxx, maxy] (None when degenerate).

    Raises:
        HTTPException: If the payload exceeds the upload limit.
        IngestionError: If the payload cannot be decoded (mapped to 422).
    """
    content = _read_upload(file, settings.max_upload_size_bytes)
    fc = response_parser.parse(content)
    bbox = geometry.compute_envelope(fc)
    return {
        "feature_collection": fc,
        "features_count": len(fc["features"]),
        "format": "zip" if response_parser.is_zip(content) else "json",
        "consistency": _consistency_dict(geometry.check_consistency(fc)),
        "bbox": list(bbox) if bbox is not None else None,
    }


@router.post("/check")
async def check_collection(
    collection: dict[str, Any] = fastapi.Body(...),  # noqa: B008
) -> dict[str, Any]:
    """Report whether a FeatureCollection mixes geometry base types.

    Args:
        collection: GeoJSON FeatureCollection.

    Returns:
        Dictionary with ``consistent`` and the sorted ``base_types``.
    """
    if not isinstance(collection.get("features"), list):
        raise fastapi.HTTPException(
            status_code=400,
            detail="Body must be a FeatureCollection",
        )
    return _consistency_dict(geometry.check_consistency(collection))
