"""Base test suite for artifact storage adapters."""

import pytest
from abc import ABC, abstractmethod
from typing import Any

from pacta_backup.backup.storage import ArtifactNotFoundError, StorageError


class BaseStorageAdapterTestSuite(ABC):
    """Abstract test suite all storage adapters must pass."""

    @pytest.fixture
    @abstractmethod
    async def storage(self) -> Any:
        """Provide storage adapter instance for testing."""
        pass

    @pytest.mark.asyncio
    async def test_write_then_read(self, storage):
        await storage.write("manual/20240101T000000Z_a.pbak", b"artifact bytes")

        assert await storage.read("manual/20240101T000000Z_a.pbak") == b"artifact bytes"

    @pytest.mark.asyncio
    async def test_write_replaces_existing(self, storage):
        await storage.write("manual/a.pbak", b"first")
        await storage.write("manual/a.pbak", b"second")

        assert await storage.read("manual/a.pbak") == b"second"

    @pytest.mark.asyncio
    async def test_binary_content_preserved(self, storage):
        data = bytes(range(256)) * 64
        await storage.write("automatic/binary.pbak", data)

        assert await storage.read("automatic/binary.pbak") == data

    @pytest.mark.asyncio
    async def test_read_missing(self, storage):
        with pytest.raises(ArtifactNotFoundError):
            await storage.read("manual/missing.pbak")

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        await storage.write("manual/a.pbak", b"data")

        assert await storage.delete("manual/a.pbak") is True
        assert await storage.exists("manual/a.pbak") is False
        # Deleting again reports nothing was there
        assert await storage.delete("manual/a.pbak") is False

    @pytest.mark.asyncio
    async def test_list_with_prefix(self, storage):
        await storage.write("manual/b.pbak", b"1")
        await storage.write("manual/a.pbak", b"2")
        await storage.write("automatic/c.pbak", b"3")
        await storage.write("_safety/d.pbak", b"4")

        assert await storage.list() == [
            "_safety/d.pbak", "automatic/c.pbak", "manual/a.pbak", "manual/b.pbak"
        ]
        assert await storage.list("manual/") == ["manual/a.pbak", "manual/b.pbak"]
        assert await storage.list("nothing/") == []

    @pytest.mark.asyncio
    async def test_exists(self, storage):
        assert await storage.exists("manual/a.pbak") is False
        await storage.write("manual/a.pbak", b"data")
        assert await storage.exists("manual/a.pbak") is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "/abs.pbak", "../escape.pbak", "manual/../../x", "a//b", "a\\b"])
    async def test_invalid_keys_rejected(self, storage, key):
        with pytest.raises(StorageError):
            await storage.write(key, b"data")
