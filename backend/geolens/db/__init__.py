"""Data models and dataset repositories.

Example:
    Use in a service or FastAPI dependency:
        >>> from geolens.db import repository
        >>> repo = repository.get_dataset_repository(settings)
"""
