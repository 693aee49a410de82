"""Checksum verification of stored artifacts."""

from .._utils import logger, sha256_bytes
from .errors import IntegrityError
from .models import BackupRecord, BackupStatus, IntegrityReport
from .storage import ArtifactNotFoundError, StorageAdapter


def compute_checksum(data: bytes) -> str:
    """Checksum of artifact bytes exactly as stored."""
    return sha256_bytes(data)


class IntegrityValidator:
    """Compares stored artifact bytes against the catalog checksum.

    The check runs over the bytes as stored (compressed and/or encrypted), so
    it needs no key material and detects storage corruption or tampering.
    """

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    async def verify(self, record: BackupRecord) -> None:
        """Raise IntegrityError unless the artifact matches ``record.checksum``."""
        report = await self.check(record)
        if not report.valid:
            raise IntegrityError(report.error, backup_id=record.id)
        logger.info(f"Artifact checksum verified for backup {record.id}: {report.actual_checksum}")

    async def check(self, record: BackupRecord) -> IntegrityReport:
        if record.status != BackupStatus.COMPLETED:
            return IntegrityReport(
                backup_id=record.id,
                valid=False,
                error=f"Backup {record.id} is not completed (status: {record.status.value})",
            )
        if not record.storage_path or not record.checksum:
            return IntegrityReport(
                backup_id=record.id,
                valid=False,
                error=f"Backup {record.id} has no artifact reference",
            )

        try:
            data = await self.storage.read(record.storage_path)
        except ArtifactNotFoundError:
            logger.warning(f"Artifact missing for backup {record.id}: {record.storage_path}")
            return IntegrityReport(
                backup_id=record.id,
                valid=False,
                expected_checksum=record.checksum,
                error=f"Artifact missing for backup {record.id}",
            )

        actual = compute_checksum(data)
        if actual != record.checksum:
            logger.warning(
                f"Checksum mismatch for backup {record.id}! Expected: {record.checksum}, Got: {actual}"
            )
            return IntegrityReport(
                backup_id=record.id,
                valid=False,
                expected_checksum=record.checksum,
                actual_checksum=actual,
                error=f"Checksum mismatch for backup {record.id}",
            )

        return IntegrityReport(
            backup_id=record.id,
            valid=True,
            expected_checksum=record.checksum,
            actual_checksum=actual,
        )
