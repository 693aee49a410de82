"""Backup and restore engine for the Pacta contract store."""

from .errors import (
    BackupEngineError,
    BusyError,
    DeletionBlockedError,
    ExecutionError,
    IntegrityError,
    NotFoundError,
    QuotaExceededError,
    RestoreConflictError,
    RestoreError,
    RetentionError,
    ValidationError,
)
from .handlers import BackupCommand, CommandDispatcher
from .manager import BackupManager
from .models import (
    BackupListQuery,
    BackupOptions,
    BackupRecord,
    BackupStatus,
    BackupType,
    ExportFormat,
    ExportOptions,
    RestoreOptions,
    RestoreRequest,
    RestoreResult,
    RestoreState,
    ScheduleConfig,
)

__all__ = [
    "BackupManager",
    "BackupCommand",
    "CommandDispatcher",
    "BackupEngineError",
    "BusyError",
    "DeletionBlockedError",
    "ExecutionError",
    "IntegrityError",
    "NotFoundError",
    "QuotaExceededError",
    "RestoreConflictError",
    "RestoreError",
    "RetentionError",
    "ValidationError",
    "BackupListQuery",
    "BackupOptions",
    "BackupRecord",
    "BackupStatus",
    "BackupType",
    "ExportFormat",
    "ExportOptions",
    "RestoreOptions",
    "RestoreRequest",
    "RestoreResult",
    "RestoreState",
    "ScheduleConfig",
]
