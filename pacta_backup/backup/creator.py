"""Backup creation: snapshot live stores into a stored, checksummed artifact."""

import asyncio
from datetime import timedelta
from typing import Dict, Optional

from .._utils import logger
from .catalog import BackupCatalog
from .clock import Clock, SystemClock
from .codec import ArtifactCodec
from .errors import ExecutionError, IntegrityError, QuotaExceededError
from .exporters import FilesExporter, SqliteExporter
from .integrity import compute_checksum
from .lock import OperationLock
from .models import (
    BackupManifest,
    BackupOptions,
    BackupRecord,
    BackupStatus,
    BackupType,
    CompressionOptions,
)
from .storage import StorageAdapter
from .utils import build_component, generate_storage_key, pack_payload
from .validation import validate_create_request

DATABASE_COMPONENT = "database"
FILES_COMPONENT = "files"
DATABASE_FILENAME = "database/pacta.sqlite"
FILES_FILENAME = "files/documents.tar"


class BackupCreator:
    """Runs one backup from lock acquisition to a completed or failed record.

    ``begin`` validates, takes the operation lock and inserts the record;
    ``execute`` does the slow work and always releases the lock. ``create``
    chains both for callers that want to await the whole run.
    """

    def __init__(
        self,
        catalog: BackupCatalog,
        storage: StorageAdapter,
        codec: ArtifactCodec,
        lock: OperationLock,
        database: SqliteExporter,
        files: FilesExporter,
        default_compression_level: int = 6,
        max_manual_backups_per_day: int = 0,
        clock: Optional[Clock] = None,
    ):
        self.catalog = catalog
        self.storage = storage
        self.codec = codec
        self.lock = lock
        self.database = database
        self.files = files
        self.default_compression_level = default_compression_level
        self.max_manual_backups_per_day = max_manual_backups_per_day
        self.clock = clock or SystemClock()

    def default_options(self) -> BackupOptions:
        return BackupOptions(compression=CompressionOptions(level=self.default_compression_level))

    async def create(
        self,
        backup_type: BackupType = BackupType.MANUAL,
        description: Optional[str] = None,
        options: Optional[BackupOptions] = None,
    ) -> BackupRecord:
        record = await self.begin(backup_type, description, options)
        return await self.execute(record)

    async def begin(
        self,
        backup_type: BackupType = BackupType.MANUAL,
        description: Optional[str] = None,
        options: Optional[BackupOptions] = None,
    ) -> BackupRecord:
        """Validate, acquire the lock and insert an ``in_progress`` record.

        Raises:
            ValidationError: Malformed request; nothing persisted
            QuotaExceededError: Daily manual limit reached
            BusyError: Another backup or restore is running
        """
        options = options or self.default_options()
        validate_create_request(
            backup_type, description, options, self.codec.encryption_available
        ).raise_for_errors("Invalid backup request")

        record = BackupRecord(
            type=backup_type, description=description, options=options, created_at=self.clock.now()
        )
        self.lock.try_acquire("backup", record.id)
        try:
            if backup_type == BackupType.MANUAL:
                await self._check_daily_quota()
            record.transition(BackupStatus.IN_PROGRESS)
            record.storage_path = generate_storage_key(record.type, record.id, record.created_at)
            await self.catalog.insert(record)
        except BaseException:
            self.lock.release()
            raise

        logger.info(f"Starting {record.type.value} backup: {record.id}")
        return record

    async def _check_daily_quota(self) -> None:
        if not self.max_manual_backups_per_day:
            return
        since = self.clock.now() - timedelta(days=1)
        recent = [
            r for r in await self.catalog.all()
            if r.type == BackupType.MANUAL
            and r.status != BackupStatus.FAILED
            and r.created_at >= since
        ]
        if len(recent) >= self.max_manual_backups_per_day:
            raise QuotaExceededError(
                f"Daily limit of {self.max_manual_backups_per_day} manual backups reached"
            )

    async def execute(self, record: BackupRecord) -> BackupRecord:
        """Produce, store and checksum the artifact for a record from ``begin``.

        Raises:
            ExecutionError: Any step failed; the record is ``failed`` and no
                artifact is left behind
        """
        try:
            artifact = await self._build_artifact(record)
            checksum = compute_checksum(artifact)

            await self.storage.write(record.storage_path, artifact)
            stored = await self.storage.read(record.storage_path)
            if compute_checksum(stored) != checksum:
                raise IntegrityError("Stored artifact does not match written bytes", backup_id=record.id)

            finished = record.model_copy(deep=True)
            finished.size_bytes = len(artifact)
            finished.checksum = checksum
            finished.completed_at = self.clock.now()
            finished.transition(BackupStatus.COMPLETED)
            await self.catalog.update(finished)

            logger.info(f"Backup complete: {record.id} ({finished.size_bytes:,} bytes, {checksum})")
            return finished

        except asyncio.CancelledError:
            await self._fail(record, "Backup cancelled")
            raise
        except Exception as e:
            await self._fail(record, str(e) or type(e).__name__)
            raise ExecutionError(f"Backup {record.id} failed: {e}", backup_id=record.id) from e
        finally:
            self.lock.release()

    async def _build_artifact(self, record: BackupRecord) -> bytes:
        components: Dict[str, bytes] = {}
        manifest_components = []

        if record.options.include_database:
            data = await self.database.export()
            tables = await self.database.get_statistics(data)
            components[DATABASE_FILENAME] = data
            manifest_components.append(
                build_component(DATABASE_COMPONENT, DATABASE_FILENAME, data, {"tables": tables})
            )

        if record.options.include_files:
            data = await self.files.export()
            stats = await self.files.get_statistics(data)
            components[FILES_FILENAME] = data
            manifest_components.append(
                build_component(
                    FILES_COMPONENT, FILES_FILENAME, data, {"root_exists": self.files.exists(), **stats}
                )
            )

        manifest = BackupManifest(
            backup_id=record.id,
            created_at=record.created_at,
            engine_version=self._get_version(),
            options=record.options,
            components=manifest_components,
        )

        payload = await asyncio.to_thread(pack_payload, manifest, components)
        return await asyncio.to_thread(self.codec.encode, payload, record.options)

    async def _fail(self, record: BackupRecord, message: str) -> None:
        logger.error(f"Backup failed: {record.id}: {message}")

        if record.storage_path:
            try:
                await self.storage.delete(record.storage_path)
            except Exception as e:
                logger.error(f"Could not remove partial artifact {record.storage_path}: {e}")

        record.error_message = message
        record.transition(BackupStatus.FAILED)
        try:
            await self.catalog.update(record)
        except Exception as e:
            logger.error(f"Could not mark backup {record.id} as failed: {e}")

    def _get_version(self) -> str:
        """Get pacta-backup version."""
        from .. import __version__
        return __version__

