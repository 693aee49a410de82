"""Contract-based tests for artifact storage adapters."""

import os
import stat

import pytest
import pytest_asyncio
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError
from tenacity import wait_none

from pacta_backup.backup.storage import (
    InvalidKeyError,
    LocalStorageAdapter,
    S3StorageAdapter,
    StorageError,
    create_storage_adapter,
)
from pacta_backup.config import StorageConfig
from tests.backup.base import BaseStorageAdapterTestSuite, InMemoryStorageAdapter


class TestLocalStorageContract(BaseStorageAdapterTestSuite):
    """Local directory storage contract tests."""

    @pytest_asyncio.fixture
    async def storage(self, tmp_path):
        yield LocalStorageAdapter(str(tmp_path / "backups"))

    @pytest.mark.asyncio
    async def test_directory_is_private(self, storage):
        mode = stat.S_IMODE(os.stat(storage.base_dir).st_mode)
        assert mode == 0o700

    @pytest.mark.asyncio
    async def test_artifacts_are_private(self, storage):
        await storage.write("manual/a.pbak", b"secret")

        mode = stat.S_IMODE(os.stat(storage.base_dir / "manual" / "a.pbak").st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_symlink_escape_rejected(self, storage, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (storage.base_dir / "link").symlink_to(outside, target_is_directory=True)

        with pytest.raises(InvalidKeyError):
            await storage.write("link/evil.pbak", b"data")
        assert not (outside / "evil.pbak").exists()

    @pytest.mark.asyncio
    async def test_temp_files_not_listed(self, storage):
        await storage.write("manual/a.pbak", b"data")
        (storage.base_dir / "manual" / ".a.pbak.tmp").write_bytes(b"partial")

        assert await storage.list() == ["manual/a.pbak"]


class TestInMemoryStorageContract(BaseStorageAdapterTestSuite):
    """The in-memory test double must honour the same contract."""

    @pytest_asyncio.fixture
    async def storage(self):
        yield InMemoryStorageAdapter()


class FakeBody:
    def __init__(self, data: bytes):
        self.data = data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def read(self) -> bytes:
        return self.data


class FakePaginator:
    def __init__(self, objects):
        self.objects = objects

    def paginate(self, Bucket, Prefix):
        objects = self.objects

        async def pages():
            keys = sorted(k for k in objects if k.startswith(Prefix))
            # Two pages to exercise pagination
            middle = len(keys) // 2
            for chunk in (keys[:middle], keys[middle:]):
                yield {"Contents": [{"Key": k} for k in chunk]} if chunk else {}

        return pages()


class FakeS3Client:
    """Dict-backed stand-in for an aioboto3 S3 client."""

    def __init__(self):
        self.objects = {}
        self.put_calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @staticmethod
    def _missing(operation):
        return ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, operation)

    async def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._missing("GetObject")
        return {"Body": FakeBody(self.objects[Key])}

    async def put_object(self, Bucket, Key, Body, ServerSideEncryption=None):
        self.put_calls.append({"Bucket": Bucket, "Key": Key, "ServerSideEncryption": ServerSideEncryption})
        self.objects[Key] = bytes(Body)

    async def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    async def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self.objects)


class TestS3StorageContract(BaseStorageAdapterTestSuite):
    """S3 storage contract tests with a mocked client."""

    @pytest.fixture
    def s3_client(self):
        return FakeS3Client()

    @pytest_asyncio.fixture
    async def storage(self, s3_client):
        with patch("aioboto3.Session") as session_cls:
            session = MagicMock()
            session.client.return_value = s3_client
            session_cls.return_value = session

            yield S3StorageAdapter(bucket="pacta-backups", prefix="prod", region="eu-west-1")

    @pytest.mark.asyncio
    async def test_objects_written_under_prefix_with_sse(self, storage, s3_client):
        await storage.write("manual/a.pbak", b"data")

        assert list(s3_client.objects) == ["prod/manual/a.pbak"]
        assert s3_client.put_calls[0]["Bucket"] == "pacta-backups"
        assert s3_client.put_calls[0]["ServerSideEncryption"] == "AES256"

    @pytest.mark.asyncio
    async def test_client_errors_wrapped(self, storage, s3_client):
        async def denied(**kwargs):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject")

        s3_client.get_object = denied
        # Transient errors are retried; skip the backoff waits
        with patch.object(S3StorageAdapter.read.retry, "wait", wait_none()):
            with pytest.raises(StorageError, match="S3 read failed"):
                await storage.read("manual/a.pbak")


def test_create_storage_adapter_local(tmp_path):
    adapter = create_storage_adapter(StorageConfig(local_dir=str(tmp_path / "b")))
    assert isinstance(adapter, LocalStorageAdapter)


def test_create_storage_adapter_s3():
    with patch("aioboto3.Session"):
        adapter = create_storage_adapter(StorageConfig(backend="s3", s3_bucket="bucket", s3_prefix="x/"))
    assert isinstance(adapter, S3StorageAdapter)
    assert adapter.prefix == "x/"


def test_s3_backend_requires_bucket():
    with pytest.raises(ValueError):
        StorageConfig(backend="s3")
