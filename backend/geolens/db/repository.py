"""Dataset repositories used by the API and the map workspace."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Protocol

from geolens.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

    from geolens.core import config


class DatasetRepositoryProtocol(Protocol):
    """Protocol interface for storing and retrieving datasets.

    Implementations keep the logical datasets of one workspace. Datasets are
    never deleted here; deletion belongs to project management.
    """

    def add(self, dataset: db_models.Dataset) -> db_models.Dataset: ...

    def get(self, dataset_id: str) -> db_models.Dataset | None: ...

    def all(self) -> Iterable[db_models.Dataset]: ...

    def add_version(
        self,
        dataset_id: str,
        tag: str,
    ) -> db_models.Dataset | None: ...

    def set_visible(
        self,
        dataset_id: str,
        visible: bool,
    ) -> db_models.Dataset | None: ...


class InMemoryDatasetRepository(DatasetRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Stores datasets in insertion order. Data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._store: dict[str, db_models.Dataset] = {}

    def add(self, dataset: db_models.Dataset) -> db_models.Dataset:
        """Add or replace a dataset.

        Args:
            dataset: Dataset to store.

        Returns:
            The stored dataset.
        """
        self._store[dataset.id] = dataset
        return dataset

    def get(self, dataset_id: str) -> db_models.Dataset | None:
        return self._store.get(dataset_id)

    def all(self) -> Iterable[db_models.Dataset]:
        return list(self._store.values())

    def add_version(
        self,
        dataset_id: str,
        tag: str,
    ) -> db_models.Dataset | None:
        """Append a version tag and mark the dataset as modified.

        Adding a tag the dataset already carries leaves the history alone.

        Args:
            dataset_id: Dataset to update.
            tag: Version tag, e.g. "v1.1".

        Returns:
            The updated dataset, or None if the id is unknown.
        """
        dataset = self._store.get(dataset_id)
        if dataset is None:
            return None

        versions = list(dataset.versions)
        if tag not in versions:
            versions.append(tag)
        updated = dataclasses.replace(
            dataset, versions=versions, status="modified"
        )
        self._store[dataset_id] = updated
        return updated

    def set_visible(
        self,
        dataset_id: str,
        visible: bool,
    ) -> db_models.Dataset | None:
        dataset = self._store.get(dataset_id)
        if dataset is None:
            return None

        dataset.visible = visible
        return dataset


_repository: InMemoryDatasetRepository | None = None


def get_dataset_repository(
    settings: config.Settings,
) -> DatasetRepositoryProtocol:
    """Factory function returning the process-wide dataset repository.

    Args:
        settings: Application settings (unused by the in-memory store).

    Returns:
        The shared InMemoryDatasetRepository instance.
    """
    global _repository
    if _repository is None:
        _repository = InMemoryDatasetRepository()
    return _repository
