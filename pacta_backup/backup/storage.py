"""Storage adapters holding backup artifacts.

The engine only ever talks to ``StorageAdapter``; keys are opaque
forward-slash paths such as ``manual/20240101T000000Z_<id>.pbak``.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .._utils import atomic_write_bytes, logger


class StorageError(Exception):
    """Storage backend failed."""


class ArtifactNotFoundError(StorageError):
    """No artifact stored under the requested key."""


class InvalidKeyError(StorageError):
    """Key is malformed or points outside the storage root."""


class StorageAdapter(ABC):
    """Narrow interface over wherever artifacts live."""

    @abstractmethod
    async def read(self, key: str) -> bytes:
        """Return the bytes stored at ``key``; ArtifactNotFoundError if absent."""

    @abstractmethod
    async def write(self, key: str, data: bytes) -> None:
        """Store ``data`` at ``key``, replacing any existing artifact."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns False if nothing was stored there."""

    @abstractmethod
    async def list(self, prefix: str = "") -> List[str]:
        """Keys starting with ``prefix``, sorted."""

    async def exists(self, key: str) -> bool:
        return key in await self.list(key)


def _validate_key(key: str) -> str:
    if not key or key.startswith("/") or "\\" in key:
        raise InvalidKeyError(f"Invalid storage key: {key!r}")
    if any(part in ("", ".", "..") for part in key.split("/")):
        raise InvalidKeyError(f"Invalid storage key: {key!r}")
    return key


class LocalStorageAdapter(StorageAdapter):
    """Artifacts as files under a private backup directory."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.base_dir, 0o700)
        except OSError as e:
            logger.error(f"Could not set permissions on backup directory {self.base_dir}: {e}")

    def _path(self, key: str) -> Path:
        path = (self.base_dir / _validate_key(key)).resolve()
        # Reject anything that escapes the backup directory (symlinks included)
        if self.base_dir not in path.parents:
            raise InvalidKeyError(f"Storage key escapes backup directory: {key!r}")
        return path

    async def read(self, key: str) -> bytes:
        path = self._path(key)

        def _read() -> bytes:
            try:
                return path.read_bytes()
            except FileNotFoundError as e:
                raise ArtifactNotFoundError(f"Artifact not found: {key}") from e

        return await asyncio.to_thread(_read)

    async def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        await asyncio.to_thread(atomic_write_bytes, path, data, 0o600)
        logger.debug(f"Wrote artifact {key} ({len(data):,} bytes)")

    async def delete(self, key: str) -> bool:
        path = self._path(key)

        def _delete() -> bool:
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False

        return await asyncio.to_thread(_delete)

    async def list(self, prefix: str = "") -> List[str]:
        def _list() -> List[str]:
            keys = []
            for file_path in self.base_dir.rglob("*"):
                if not file_path.is_file() or file_path.name.startswith("."):
                    continue
                key = file_path.relative_to(self.base_dir).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
            return sorted(keys)

        return await asyncio.to_thread(_list)

    async def exists(self, key: str) -> bool:
        path = self._path(key)
        return await asyncio.to_thread(path.is_file)


_s3_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(
        lambda e: isinstance(e, StorageError) and not isinstance(e, (ArtifactNotFoundError, InvalidKeyError))
    ),
    reraise=True,
)


class S3StorageAdapter(StorageAdapter):
    """Artifacts as objects in an S3 (or S3-compatible) bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "backups/",
        region: str = "eu-west-1",
        endpoint_url: Optional[str] = None,
    ):
        import aioboto3

        self.bucket = bucket
        self.prefix = prefix if not prefix or prefix.endswith("/") else f"{prefix}/"
        self.region = region
        self.endpoint_url = endpoint_url
        self.session = aioboto3.Session()

    def _client(self):
        return self.session.client("s3", region_name=self.region, endpoint_url=self.endpoint_url)

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{_validate_key(key)}"

    @staticmethod
    def _is_missing(error: Exception) -> bool:
        code = getattr(error, "response", {}).get("Error", {}).get("Code")
        return code in ("NoSuchKey", "404", "NotFound")

    @_s3_retry
    async def read(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        async with self._client() as s3:
            try:
                response = await s3.get_object(Bucket=self.bucket, Key=self._object_key(key))
                async with response["Body"] as stream:
                    return await stream.read()
            except ClientError as e:
                if self._is_missing(e):
                    raise ArtifactNotFoundError(f"Artifact not found: {key}") from e
                raise StorageError(f"S3 read failed for {key}: {e}") from e
            except BotoCoreError as e:
                raise StorageError(f"S3 read failed for {key}: {e}") from e

    @_s3_retry
    async def write(self, key: str, data: bytes) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        async with self._client() as s3:
            try:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=self._object_key(key),
                    Body=data,
                    ServerSideEncryption="AES256",
                )
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"S3 write failed for {key}: {e}") from e
        logger.debug(f"Uploaded artifact s3://{self.bucket}/{self._object_key(key)} ({len(data):,} bytes)")

    @_s3_retry
    async def delete(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        async with self._client() as s3:
            try:
                await s3.head_object(Bucket=self.bucket, Key=self._object_key(key))
            except ClientError as e:
                if self._is_missing(e):
                    return False
                raise StorageError(f"S3 delete failed for {key}: {e}") from e
            try:
                await s3.delete_object(Bucket=self.bucket, Key=self._object_key(key))
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"S3 delete failed for {key}: {e}") from e
        return True

    @_s3_retry
    async def list(self, prefix: str = "") -> List[str]:
        from botocore.exceptions import BotoCoreError, ClientError

        keys = []
        async with self._client() as s3:
            try:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{self.prefix}{prefix}"):
                    for obj in page.get("Contents", []):
                        keys.append(obj["Key"][len(self.prefix):])
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"S3 list failed for prefix {prefix!r}: {e}") from e
        return sorted(keys)


def create_storage_adapter(config) -> StorageAdapter:
    """Build the adapter selected by a ``StorageConfig``."""
    if config.backend == "s3":
        return S3StorageAdapter(
            bucket=config.s3_bucket,
            prefix=config.s3_prefix,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
        )
    return LocalStorageAdapter(config.local_dir)
