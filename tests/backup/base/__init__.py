"""Shared fakes, fixtures and contract suites for backup engine tests."""

from .fakes import FakeClock, InMemoryStorageAdapter
from .fixtures import (
    ENCRYPTION_KEY,
    build_engine_config,
    populate_live_stores,
    read_rows,
    read_tree,
)
from .storage_suite import BaseStorageAdapterTestSuite
from .catalog_suite import BaseCatalogTestSuite

__all__ = [
    "FakeClock",
    "InMemoryStorageAdapter",
    "ENCRYPTION_KEY",
    "build_engine_config",
    "populate_live_stores",
    "read_rows",
    "read_tree",
    "BaseStorageAdapterTestSuite",
    "BaseCatalogTestSuite",
]
