"""Retention sweeps: prune completed backups older than the configured window."""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .._utils import logger, utc_now
from ..config import RetentionPolicyConfig
from .catalog import BackupCatalog
from .errors import RetentionError
from .lock import OperationLock
from .models import BackupRecord, BackupStatus, BackupType, RetentionResult, ScheduleConfig
from .storage import StorageAdapter


async def remove_backup(catalog: BackupCatalog, storage: StorageAdapter, record: BackupRecord) -> None:
    """Delete catalog entry and artifact as a pair.

    The entry goes first so no reader ever sees a record whose artifact is
    gone; if the artifact delete fails the entry is put back.
    """
    await catalog.delete(record.id)
    if not record.storage_path:
        return
    try:
        await storage.delete(record.storage_path)
    except Exception:
        await catalog.insert(record)
        raise


class RetentionManager:
    """Selects and deletes expired backups."""

    def __init__(
        self,
        catalog: BackupCatalog,
        storage: StorageAdapter,
        lock: OperationLock,
        policy: Optional[RetentionPolicyConfig] = None,
    ):
        self.catalog = catalog
        self.storage = storage
        self.lock = lock
        self.policy = policy or RetentionPolicyConfig()

    def _scopes(self, records: List[BackupRecord]) -> Dict[str, List[BackupRecord]]:
        completed = [r for r in records if r.status == BackupStatus.COMPLETED]
        if self.policy.scope == "per_type":
            groups = defaultdict(list)
            for record in completed:
                groups[record.type.value].append(record)
            return dict(groups)
        return {"global": completed}

    async def select_expired(self, config: ScheduleConfig, now: Optional[datetime] = None) -> List[BackupRecord]:
        """Completed records older than ``retention_days``, never the newest of a scope."""
        cutoff = (now or utc_now()) - timedelta(days=config.retention_days)
        busy_id = self.lock.record_id if self.lock.locked else None

        expired = []
        for group in self._scopes(await self.catalog.all()).values():
            if not group:
                continue
            newest = max(group, key=lambda r: r.created_at)
            for record in group:
                if record.id == newest.id or record.id == busy_id:
                    continue
                if self.policy.automatic_only and record.type != BackupType.AUTOMATIC:
                    continue
                if record.created_at < cutoff:
                    expired.append(record)

        return sorted(expired, key=lambda r: r.created_at)

    async def sweep(self, config: ScheduleConfig, now: Optional[datetime] = None) -> RetentionResult:
        """Delete expired backups; per-record failures are collected, not raised."""
        result = RetentionResult()
        expired = await self.select_expired(config, now)

        for record in expired:
            try:
                await remove_backup(self.catalog, self.storage, record)
                result.deleted.append(record.id)
                logger.info(f"Retention deleted backup {record.id} (created {record.created_at.isoformat()})")
            except Exception as e:
                error = RetentionError(f"Failed to delete backup {record.id}: {e}", backup_id=record.id)
                logger.error(str(error))
                result.failed[record.id] = str(error)

        logger.info(
            f"Retention sweep complete: {len(result.deleted)} deleted, {len(result.failed)} failed "
            f"(retention {config.retention_days} days, scope {self.policy.scope})"
        )
        return result
