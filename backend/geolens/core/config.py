"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings include
the collaborator backend URL, upload limits, the basemap catalogue, the
identifiers reserved by base styles, and the camera-fit constants used by
the layer registry.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from geolens.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.api_base_url)

    Environment variables can override defaults:
        >>> API_BASE_URL=http://10.0.0.5:5000
        >>> FIT_MAX_ZOOM=17
        >>> AUTO_RESYNC=true
"""

import functools

import pydantic
import pydantic_settings

DEFAULT_BASEMAP_STYLES: dict[str, str] = {
    "light": "mapbox://styles/mapbox/light-v11",
    "dark": "mapbox://styles/mapbox/dark-v11",
    "satellite": "mapbox://styles/mapbox/satellite-streets-v12",
    "streets": "mapbox://styles/mapbox/streets-v12",
}


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via environment variables or .env file.

    Attributes:
        api_base_url: Base URL of the backend that owns upload and
            processing endpoints.
        request_timeout_seconds: Timeout applied to collaborator requests.
        allow_origins: List of allowed CORS origins (["*"] allows all).
        max_upload_size_bytes: Maximum file upload size (default 512MB).
        default_style_url: Basemap style used for new renderers.
        basemap_styles: Named basemaps offered by the map toolbar.
        reserved_source_ids: Source ids owned by the base style.
        reserved_source_prefixes: Vendor prefixes owned by the base style.
        fit_padding: Padding in pixels applied to camera fits.
        fit_max_zoom: Zoom ceiling applied to camera fits.
        fit_duration_ms: Camera animation duration for fits.
        raster_tile_size: Tile size for raster and WMS sources.
        auto_resync: Whether the layer registry re-applies every dataset
            itself when a visibility toggle cannot be resolved.
        progress_interval_seconds: Tick period of upload progress.
        log_level: Root logging level.

    Example:
        Create settings with custom values:
            >>> settings = Settings(
            ...     api_base_url="http://geo-backend:5000",
            ...     fit_max_zoom=17,
            ... )

        Or use environment variables:
            >>> export API_BASE_URL=http://geo-backend:5000
            >>> settings = Settings()  # Loads from environment
    """

    api_base_url: pydantic.AnyHttpUrl | str = "http://localhost:5000"
    request_timeout_seconds: float = 60.0
    allow_origins: list[str] = ["*"]
    max_upload_size_bytes: int = 512 * 1024 * 1024
    default_style_url: str = DEFAULT_BASEMAP_STYLES["light"]
    basemap_styles: dict[str, str] = dict(DEFAULT_BASEMAP_STYLES)
    reserved_source_ids: list[str] = ["composite"]
    reserved_source_prefixes: list[str] = ["mapbox"]
    fit_padding: int = 50
    fit_max_zoom: float = 15
    fit_duration_ms: int = 1000
    raster_tile_size: int = 256
    auto_resync: bool = False
    progress_interval_seconds: float = 0.3
    log_level: str = "INFO"

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def resolve_style(self, name_or_url: str) -> str:
        """Map a basemap name to its style URL.

        Unknown names are assumed to already be style URLs.

        Args:
            name_or_url: Basemap name ("light", "dark", ...) or style URL.

        Returns:
            The style URL to hand to the renderer.
        """
        return self.basemap_styles.get(name_or_url, name_or_url)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. Subsequent calls return the same
    cached instance.

    Returns:
        Settings instance with all configuration values populated.

    Example:
        The settings are cached, so multiple calls return the same instance:
            >>> settings1 = get_settings()
            >>> settings2 = get_settings()
            >>> assert settings1 is settings2  # Same instance
    """
    return Settings()
