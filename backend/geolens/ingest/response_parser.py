"""Format-adaptive decoding of backend responses into feature collections.

Backend responses arrive as opaque bytes whose declared content type cannot
be trusted: the same endpoint may answer with raw GeoJSON, a zipped
shapefile bundle, a zip holding a GeoJSON file, or a textual error. The
format is detected from the payload itself:

1. UTF-8 JSON carrying ``features`` is accepted as is. JSON mentioning an
   error or exception is an explicit backend failure and is never treated
   as binary data.
2. Otherwise the first four bytes must carry a ZIP signature.
3. Inside an archive the first ``.geojson``/``.json`` member wins; failing
   that, the shapefile members are converted through the shapefile codec.
4. A result without features is rejected.

``parse`` keeps no state and may be called concurrently.

Example:
    >>> from geolens.ingest import response_parser
    >>> fc = response_parser.parse(
    ...     b'{"type": "FeatureCollection", "features": [{"type": "Feature",'
    ...     b' "geometry": {"type": "Point", "coordinates": [1, 2]},'
    ...     b' "properties": {}}]}'
    ... )
    >>> len(fc["features"])
    1
"""

from __future__ import annotations

import io
import json
import logging
import re
import zipfile
from typing import Any

from geolens.core import errors
from geolens.ingest import shapefile_codec

logger = logging.getLogger(__name__)

ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
GEOJSON_SUFFIXES = (".geojson", ".json")
SHAPEFILE_SUFFIX = ".shp"

_ERROR_TEXT = re.compile(r"error|exception", re.IGNORECASE)
_ERROR_KEYS = ("error", "message", "detail")
_NOT_JSON = object()


def parse(data: bytes) -> dict[str, Any]:
    """Decode a backend response into a FeatureCollection.

    Args:
        data: Raw response body.

    Returns:
        The decoded FeatureCollection with at least one feature.

    Raises:
        BackendErrorPayload: The payload is an explicit textual error.
        UnrecognizedFormat: The payload is neither JSON nor a ZIP archive.
        ArchiveError: The archive holds no usable member or cannot be read.
        EmptyPayload: The decoded collection has no features.
    """
    if not data:
        raise errors.EmptyPayload("No valid features found in response")

    text = _decode(data)
    document: Any = _NOT_JSON
    if text is not None:
        try:
            document = json.loads(text)
        except json.JSONDecodeError:
            document = _NOT_JSON

    if document is not _NOT_JSON:
        if isinstance(document, dict) and "features" in document:
            return _require_features(document)
        if text is not None and _ERROR_TEXT.search(text):
            raise _backend_error(document, text)
        raise errors.EmptyPayload("No valid features found in response")

    if data[:4] in ZIP_SIGNATURES:
        return _require_features(_parse_archive(data))

    if text is not None and _ERROR_TEXT.search(text):
        raise _backend_error(None, text)

    logger.info(
        "Response is neither JSON nor ZIP (signature %s)", data[:4].hex()
    )
    raise errors.UnrecognizedFormat(
        "Response is not in a recognized format (not JSON, not ZIP)"
    )


def is_zip(data: bytes) -> bool:
    """Return True when the buffer starts with a ZIP signature."""
    return data[:4] in ZIP_SIGNATURES


def _decode(data: bytes) -> str | None:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _backend_error(document: Any, text: str) -> errors.BackendErrorPayload:
    message = text.strip()
    if isinstance(document, dict):
        for key in _ERROR_KEYS:
            value = document.get(key)
            if isinstance(value, str) and value:
                message = value
                break
    logger.info("Backend returned error payload: %s", message)
    return errors.BackendErrorPayload(f"Backend returned error: {message}")


def _require_features(document: dict[str, Any]) -> dict[str, Any]:
    features = document.get("features")
    if not isinstance(features, list) or not features:
        logger.info("Decoded response holds no features")
        raise errors.EmptyPayload("No valid features found in response")
    return document


def _usable_members(archive: zipfile.ZipFile) -> list[str]:
    """List file members, skipping directories and macOS resource forks."""
    return [
        info.filename
        for info in archive.infolist()
        if not info.is_dir() and not info.filename.startswith("__MACOSX/")
    ]


def _parse_archive(data: bytes) -> dict[str, Any]:
    """Extract a FeatureCollection from a ZIP payload.

    Args:
        data: Raw ZIP bytes.

    Returns:
        FeatureCollection read from the first GeoJSON member or converted
        from the shapefile members.

    Raises:
        ArchiveError: If the archive is corrupt, holds neither GeoJSON nor a
            shapefile, or its content cannot be decoded.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            members = _usable_members(archive)
            logger.debug("ZIP contents: %s", members)

            geojson_member = next(
                (m for m in members if m.lower().endswith(GEOJSON_SUFFIXES)),
                None,
            )
            if geojson_member is not None:
                try:
                    document = json.loads(
                        archive.read(geojson_member).decode("utf-8")
                    )
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    raise errors.ArchiveError(
                        f"Failed to process ZIP file: {geojson_member} "
                        f"is not valid GeoJSON ({e})"
                    ) from e
                if not isinstance(document, dict):
                    raise errors.ArchiveError(
                        f"Failed to process ZIP file: {geojson_member} "
                        "is not a FeatureCollection"
                    )
                return document

            if not any(m.lower().endswith(SHAPEFILE_SUFFIX) for m in members):
                raise errors.ArchiveError("no shapefile component")

            files = {name: archive.read(name) for name in members}
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as e:
        logger.info("Could not open ZIP payload: %s", e)
        raise errors.ArchiveError(f"Failed to process ZIP file: {e}") from e

    try:
        return shapefile_codec.to_feature_collection(files)
    except Exception as e:
        logger.info("Shapefile conversion failed: %s", e)
        raise errors.ArchiveError(f"Failed to process ZIP file: {e}") from e
