"""Exception taxonomy for ingestion, collaborator calls and rendering.

Parse-time errors (``IngestionError`` subclasses) are fatal to a single
ingestion and carry a human-readable message for the initiating caller.
``RenderOperationFailed`` is raised by renderers when a source or layer
operation is rejected; bookkeeping code catches it per item, logs it and
moves on.

Example:
    Surface an ingestion failure to a user:
        >>> from geolens.core import errors
        >>> from geolens.ingest import response_parser
        >>> try:
        ...     response_parser.parse(b"\\x00\\x01")
        ... except errors.IngestionError as e:
        ...     print(f"Could not read dataset: {e}")
"""


class GeoLensError(RuntimeError):
    """Base class for every error raised by GeoLens."""


class IngestionError(GeoLensError):
    """A backend response could not be turned into a feature collection."""


class EmptyPayload(IngestionError):
    """The payload decoded but yielded zero features."""


class UnrecognizedFormat(IngestionError):
    """The payload is neither valid JSON nor a ZIP archive."""


class ArchiveError(IngestionError):
    """A ZIP archive was found but contains no usable member."""


class BackendErrorPayload(IngestionError):
    """The backend answered with an explicit textual error."""


class GeometryMismatch(GeoLensError):
    """Datasets with different base geometry types were submitted together."""


class CollaboratorError(GeoLensError):
    """A collaborator endpoint answered with a non-success status.

    Attributes:
        status_code: HTTP status returned by the collaborator, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RenderOperationFailed(GeoLensError):
    """Adding or removing a renderer source or layer failed."""
