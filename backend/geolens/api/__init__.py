"""API router subpackage for the GeoLens service.

Submodules:
    - ingest: Endpoints decoding payloads and checking geometry consistency.
    - datasets: Endpoints listing datasets, their envelopes, version tags
      and visibility.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
