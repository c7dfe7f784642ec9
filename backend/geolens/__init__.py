"""GeoLens: format-adaptive geospatial ingestion and layer reconciliation.

This package contains the engine behind the map workspace and its FastAPI
service:

- Decodes opaque backend responses (GeoJSON, zipped shapefiles, zipped
  GeoJSON, textual errors) into feature collections, sniffing the payload
  instead of trusting its content type
- Reports mixed geometry types before datasets are submitted together
- Keeps one canonical renderer source/layer pair per dataset, idempotently,
  and carries them across basemap style swaps
- Drives a side-by-side version comparison with linked cameras and diff
  overlays

See module sub-docstrings for details on architecture and usage.
"""
