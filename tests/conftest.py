"""Global pytest configuration and fixtures."""

import pytest
import pytest_asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pacta_backup.backup import BackupManager
from pacta_backup.backup.catalog import JsonBackupCatalog
from tests.backup.base import (
    FakeClock,
    InMemoryStorageAdapter,
    build_engine_config,
    populate_live_stores,
)


@pytest.fixture
def engine_config(tmp_path):
    """Engine config rooted in the test's temp dir."""
    return build_engine_config(tmp_path)


@pytest.fixture
def live_stores(engine_config):
    """Populated contract database and documents directory.

    Returns:
        (database path, documents dir)
    """
    database_path = Path(engine_config.store.database_path)
    documents_dir = Path(engine_config.store.documents_dir)
    populate_live_stores(database_path, documents_dir)
    return database_path, documents_dir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_storage():
    return InMemoryStorageAdapter()


@pytest.fixture
def json_catalog(engine_config):
    return JsonBackupCatalog(engine_config.catalog.path)


@pytest_asyncio.fixture
async def manager(engine_config, live_stores, json_catalog, memory_storage, clock):
    """Backup manager over populated live stores, in-memory storage and a fake clock."""
    backup_manager = BackupManager(engine_config, json_catalog, memory_storage, clock)
    yield backup_manager
    await backup_manager.close()
