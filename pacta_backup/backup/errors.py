"""Exceptions raised by the backup engine."""

from typing import List, Optional


class BackupEngineError(Exception):
    """Base class for all backup engine errors."""


class ValidationError(BackupEngineError):
    """Malformed options or configuration, rejected before any I/O."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class QuotaExceededError(ValidationError):
    """Daily limit of manual backups reached."""


class BusyError(BackupEngineError):
    """Another backup or restore holds the operation lock."""

    def __init__(self, holder: Optional[str] = None):
        message = "Another backup or restore operation is in progress"
        if holder:
            message = f"{message} ({holder})"
        super().__init__(message)
        self.holder = holder


class NotFoundError(BackupEngineError):
    """Unknown backup or restore id."""


class DeletionBlockedError(BackupEngineError):
    """Explicit delete refused by policy."""


class ExecutionError(BackupEngineError):
    """Backup creation failed; the record is marked failed."""

    def __init__(self, message: str, backup_id: Optional[str] = None):
        super().__init__(message)
        self.backup_id = backup_id


class IntegrityError(BackupEngineError):
    """Artifact bytes do not match the catalog checksum or manifest."""

    def __init__(self, message: str, backup_id: Optional[str] = None):
        super().__init__(message)
        self.backup_id = backup_id


class RestoreConflictError(BackupEngineError):
    """Merge restore found data that differs from the backup."""


class RestoreError(BackupEngineError):
    """Restore failed while applying.

    ``state`` is ``rolled_back`` when live data was returned to its
    pre-restore state, or ``partial_failure`` when it was not and an operator
    has to intervene.
    """

    def __init__(self, message: str, state: str, restore_id: Optional[str] = None):
        super().__init__(message)
        self.state = state
        self.restore_id = restore_id

    @property
    def inconsistent(self) -> bool:
        return self.state == "partial_failure"


class RetentionError(BackupEngineError):
    """Deleting one record during a retention sweep failed."""

    def __init__(self, message: str, backup_id: str):
        super().__init__(message)
        self.backup_id = backup_id
