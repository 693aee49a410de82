"""Backup and restore facade wiring every engine component together."""

import asyncio
from collections import Counter
from datetime import timedelta
from typing import Dict, Optional

from .._utils import logger
from ..config import BackupEngineConfig
from .catalog import BackupCatalog, create_catalog
from .clock import Clock, SystemClock
from .codec import ArtifactCodec
from .creator import BackupCreator
from .errors import (
    BackupEngineError,
    BusyError,
    DeletionBlockedError,
    ExecutionError,
    NotFoundError,
    ValidationError,
)
from .export import ExportedArtifact, ExportService
from .exporters import FilesExporter, SqliteExporter
from .integrity import IntegrityValidator
from .lock import OperationLock
from .models import (
    BackupListQuery,
    BackupOptions,
    BackupPage,
    BackupRecord,
    BackupStatistics,
    BackupStatus,
    BackupType,
    ExportOptions,
    IntegrityReport,
    RestoreRequest,
    RestoreResult,
    RetentionResult,
    ScheduleConfig,
)
from .restore import RestoreOrchestrator
from .retention import RetentionManager, remove_backup
from .scheduler import BackupScheduler
from .storage import StorageAdapter, create_storage_adapter
from .utils import SAFETY_PREFIX
from .validation import validate_schedule_config


class BackupManager:
    """Single entry point for backup, restore, retention, scheduling and export.

    Components are built once here and shared; the operation lock is the one
    instance that serializes creations and restores in this process.
    """

    def __init__(
        self,
        config: BackupEngineConfig,
        catalog: BackupCatalog,
        storage: StorageAdapter,
        clock: Optional[Clock] = None,
    ):
        """Initialize backup manager.

        Args:
            config: Engine configuration
            catalog: Backup record persistence
            storage: Artifact storage
            clock: Time source for the scheduler and deletion guard
        """
        self.config = config
        self.catalog = catalog
        self.storage = storage
        self.clock = clock or SystemClock()

        self.lock = OperationLock()
        self.codec = ArtifactCodec(config.encryption)
        self.validator = IntegrityValidator(storage)
        database = SqliteExporter(config.store.database_path)
        files = FilesExporter(config.store.documents_dir)

        self.creator = BackupCreator(
            catalog, storage, self.codec, self.lock, database, files,
            default_compression_level=config.default_compression_level,
            max_manual_backups_per_day=config.max_manual_backups_per_day,
            clock=self.clock,
        )
        self.restorer = RestoreOrchestrator(
            catalog, storage, self.codec, self.lock, self.validator, database, files, clock=self.clock
        )
        self.retention = RetentionManager(catalog, storage, self.lock, config.retention)
        self.scheduler = BackupScheduler(self.creator, self.retention, clock=self.clock)
        self.exporter = ExportService(catalog, storage, self.codec, self.validator)

        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(cls, config: Optional[BackupEngineConfig] = None, clock: Optional[Clock] = None) -> "BackupManager":
        config = config or BackupEngineConfig.from_env()
        return cls(config, create_catalog(config.catalog), create_storage_adapter(config.storage), clock)

    async def start(self) -> None:
        """Recover interrupted records, load the persisted schedule and start the scheduler."""
        await self._fail_interrupted()
        self.scheduler.reschedule(await self.catalog.load_schedule_config())
        if self.config.scheduler_enabled:
            self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        for task in list(self._tasks.values()):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        await self.catalog.close()

    async def _fail_interrupted(self) -> None:
        # Nothing can legitimately be in progress before this process took the lock
        for record in await self.catalog.all():
            if record.status in (BackupStatus.PENDING, BackupStatus.IN_PROGRESS):
                record.error_message = "Interrupted before completion"
                record.transition(BackupStatus.FAILED)
                await self.catalog.update(record)
                if record.storage_path:
                    await self.storage.delete(record.storage_path)
                logger.warning(f"Marked interrupted backup {record.id} as failed")

    # Backups

    async def submit_backup(
        self,
        backup_type: BackupType = BackupType.MANUAL,
        description: Optional[str] = None,
        options: Optional[BackupOptions] = None,
    ) -> BackupRecord:
        """Start a backup in the background and return its ``in_progress`` record."""
        record = await self.creator.begin(backup_type, description, options)
        snapshot = record.model_copy(deep=True)
        self._tasks[record.id] = asyncio.create_task(self._run_backup(record))
        return snapshot

    async def _run_backup(self, record: BackupRecord) -> None:
        try:
            await self.creator.execute(record)
        except ExecutionError as e:
            logger.error(f"Background backup {record.id} failed: {e}")
        finally:
            self._tasks.pop(record.id, None)

    async def create_backup(
        self,
        backup_type: BackupType = BackupType.MANUAL,
        description: Optional[str] = None,
        options: Optional[BackupOptions] = None,
    ) -> BackupRecord:
        """Run a backup to completion."""
        return await self.creator.create(backup_type, description, options)

    async def wait_for_backup(self, backup_id: str) -> BackupRecord:
        """Await a background backup (if still running) and return its final record."""
        task = self._tasks.get(backup_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.get_backup(backup_id)

    async def cancel_backup(self, backup_id: str) -> BackupRecord:
        """Cancel a running background backup; the record ends up ``failed``."""
        record = await self.get_backup(backup_id)
        task = self._tasks.get(backup_id)
        if task is None or record.status != BackupStatus.IN_PROGRESS:
            raise ValidationError(f"Backup {backup_id} is not running (status: {record.status.value})")

        # A task cancelled before its first step never reaches the creator cleanup
        await asyncio.sleep(0)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info(f"Cancelled backup {backup_id}")
        return await self.get_backup(backup_id)

    async def get_backup(self, backup_id: str) -> BackupRecord:
        record = await self.catalog.get(backup_id)
        if record is None:
            raise NotFoundError(f"Backup not found: {backup_id}")
        return record

    async def list_backups(self, query: Optional[BackupListQuery] = None) -> BackupPage:
        return await self.catalog.list(query)

    async def delete_backup(self, backup_id: str) -> None:
        """Delete catalog entry and artifact together.

        Raises:
            NotFoundError: Unknown backup id
            BusyError: The backup is being created or restored from
            DeletionBlockedError: Automatic backup younger than the protection window
        """
        record = await self.get_backup(backup_id)

        if record.status in (BackupStatus.PENDING, BackupStatus.IN_PROGRESS) or (
            self.lock.locked and self.lock.record_id == backup_id
        ):
            raise BusyError(self.lock.holder)

        protect_days = self.config.retention.protect_recent_automatic_days
        if (
            record.type == BackupType.AUTOMATIC
            and record.status == BackupStatus.COMPLETED
            and protect_days
            and record.created_at > self.clock.now() - timedelta(days=protect_days)
        ):
            raise DeletionBlockedError(
                f"Automatic backup {backup_id} is younger than {protect_days} days and cannot be deleted"
            )

        await remove_backup(self.catalog, self.storage, record)
        logger.info(f"Deleted backup: {backup_id}")

    async def verify_backup(self, backup_id: str) -> IntegrityReport:
        return await self.validator.check(await self.get_backup(backup_id))

    # Restores

    @staticmethod
    def _require_confirmation(confirm: bool) -> None:
        if confirm is not True:
            raise ValidationError("Restore must be explicitly confirmed (confirm=true)")

    async def submit_restore(self, request: RestoreRequest, confirm: bool = False) -> RestoreResult:
        """Start a restore in the background; poll ``get_restore`` for progress."""
        self._require_confirmation(confirm)
        result, record = await self.restorer.begin(request)
        snapshot = result.model_copy(deep=True)
        self._tasks[result.restore_id] = asyncio.create_task(self._run_restore(result, record))
        return snapshot

    async def _run_restore(self, result: RestoreResult, record: BackupRecord) -> None:
        try:
            await self.restorer.execute(result, record)
        except BackupEngineError as e:
            logger.error(f"Background restore {result.restore_id} ended in {result.state.value}: {e}")
        finally:
            self._tasks.pop(result.restore_id, None)

    async def restore_backup(self, request: RestoreRequest, confirm: bool = False) -> RestoreResult:
        """Run a restore to completion."""
        self._require_confirmation(confirm)
        return await self.restorer.restore(request)

    async def wait_for_restore(self, restore_id: str) -> RestoreResult:
        task = self._tasks.get(restore_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get_restore(restore_id)

    def get_restore(self, restore_id: str) -> RestoreResult:
        result = self.restorer.get_result(restore_id)
        if result is None:
            raise NotFoundError(f"Restore not found: {restore_id}")
        return result

    # Schedule and retention

    async def get_schedule_config(self) -> ScheduleConfig:
        return await self.catalog.load_schedule_config()

    async def update_schedule_config(self, config: ScheduleConfig) -> ScheduleConfig:
        """Validate, persist, then reschedule; an invalid config changes nothing."""
        validate_schedule_config(config).raise_for_errors("Invalid schedule config")
        await self.catalog.save_schedule_config(config)
        self.scheduler.reschedule(config)
        return config

    async def run_retention(self) -> RetentionResult:
        return await self.retention.sweep(await self.catalog.load_schedule_config(), self.clock.now())

    # Export and statistics

    async def export_backup(self, backup_id: str, options: Optional[ExportOptions] = None) -> ExportedArtifact:
        return await self.exporter.export(backup_id, options or ExportOptions())

    async def get_statistics(self) -> BackupStatistics:
        records = await self.catalog.all()
        completed = [r for r in records if r.status == BackupStatus.COMPLETED]
        last = max(completed, key=lambda r: r.completed_at or r.created_at, default=None)
        artifacts = [key for key in await self.storage.list() if not key.startswith(SAFETY_PREFIX)]

        return BackupStatistics(
            total_backups=len(records),
            by_status=dict(Counter(r.status.value for r in records)),
            by_type=dict(Counter(r.type.value for r in records)),
            total_size_bytes=sum(r.size_bytes or 0 for r in completed),
            stored_artifacts=len(artifacts),
            last_completed_at=last.completed_at if last else None,
            last_completed_id=last.id if last else None,
        )
