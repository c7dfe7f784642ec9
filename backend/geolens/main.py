"""FastAPI application entrypoint and configuration.

This module provides the application factory that configures logging, sets
up CORS middleware, includes the ingestion and dataset routers, maps engine
errors to HTTP responses and exposes a health check endpoint.

Example:
    The application can be run with uvicorn:
        $ uvicorn geolens.main:app --reload

    Or imported and used programmatically:
        >>> from geolens.main import create_app
        >>> app = create_app()
"""

import logging

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from geolens.api import datasets, ingest
from geolens.core import config, errors, logs

logger = logging.getLogger(__name__)


async def _unprocessable(
    request: fastapi.Request,
    exc: Exception,
) -> responses.JSONResponse:
    """Render ingestion and geometry errors as 422 responses."""
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return responses.JSONResponse(status_code=422, content={"detail": str(exc)})


async def _bad_gateway(
    request: fastapi.Request,
    exc: Exception,
) -> responses.JSONResponse:
    """Render collaborator failures as 502 responses."""
    logger.warning("Collaborator failure on %s: %s", request.url.path, exc)
    return responses.JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging from settings, includes the API routers, registers
    the error handlers and adds a health check endpoint. CORS origins are
    configured from settings.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    logs.configure_logging(settings)
    app = fastapi.FastAPI(title="GeoLens", version="0.1.0")

    app.include_router(ingest.router)
    app.include_router(datasets.router)

    app.add_exception_handler(errors.IngestionError, _unprocessable)
    app.add_exception_handler(errors.GeometryMismatch, _unprocessable)
    app.add_exception_handler(errors.CollaboratorError, _bad_gateway)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
