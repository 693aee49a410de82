"""Data models for backup/restore operations."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from .._utils import format_file_size, utc_now


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input, serializes camelCase with by_alias."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BackupType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class BackupStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


_STATUS_TRANSITIONS = {
    BackupStatus.PENDING: {BackupStatus.IN_PROGRESS, BackupStatus.FAILED},
    BackupStatus.IN_PROGRESS: {BackupStatus.COMPLETED, BackupStatus.FAILED},
    BackupStatus.COMPLETED: set(),
    BackupStatus.FAILED: set(),
}


class CompressionOptions(CamelModel):
    enabled: bool = True
    level: int = 6


class EncryptionOptions(CamelModel):
    enabled: bool = False
    algorithm: str = "aes-256-cbc"


class BackupOptions(CamelModel):
    """Which components go into a backup and how the artifact is encoded."""

    include_database: bool = True
    include_files: bool = True
    compression: CompressionOptions = Field(default_factory=CompressionOptions)
    encryption: EncryptionOptions = Field(default_factory=EncryptionOptions)


class BackupRecord(CamelModel):
    """Catalog entry describing one backup."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: BackupType = BackupType.MANUAL
    description: Optional[str] = None
    status: BackupStatus = BackupStatus.PENDING
    options: BackupOptions = Field(default_factory=BackupOptions)
    size_bytes: Optional[int] = None
    checksum: Optional[str] = None
    storage_path: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @computed_field
    @property
    def size_human(self) -> Optional[str]:
        if self.size_bytes is None:
            return None
        return format_file_size(self.size_bytes)

    def transition(self, status: BackupStatus) -> None:
        """Move to ``status``; statuses only ever move forward."""
        if status not in _STATUS_TRANSITIONS[self.status]:
            raise ValueError(f"Invalid status transition: {self.status.value} -> {status.value}")
        self.status = status


class ScheduleConfig(CamelModel):
    """Process-wide automatic backup schedule."""

    cron_expression: str = "0 0 * * *"
    retention_days: int = 7
    enabled: bool = True


class RestoreOptions(CamelModel):
    include_database: bool = True
    include_files: bool = True
    overwrite: bool = False
    validate_integrity: bool = True
    rollback_on_error: bool = True


class RestoreRequest(CamelModel):
    backup_id: str
    options: RestoreOptions = Field(default_factory=RestoreOptions)


class RestoreState(str, Enum):
    VALIDATING = "validating"
    PREPARING = "preparing"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in {
            RestoreState.COMMITTED,
            RestoreState.ROLLED_BACK,
            RestoreState.PARTIAL_FAILURE,
            RestoreState.ABORTED,
        }


class RestoreResult(CamelModel):
    """Progress and outcome of one restore operation."""

    restore_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    backup_id: str
    state: RestoreState = RestoreState.VALIDATING
    options: RestoreOptions = Field(default_factory=RestoreOptions)
    components: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    inconsistent: bool = False
    safety_snapshot_path: Optional[str] = None


class ManifestComponent(BaseModel):
    """One component stored inside an artifact."""

    name: str  # "database" or "files"
    filename: str
    checksum: str
    size_bytes: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BackupManifest(BaseModel):
    """Manifest embedded in every artifact payload."""

    format_version: int = 1
    backup_id: str
    created_at: datetime
    engine_version: str
    options: BackupOptions
    components: List[ManifestComponent] = Field(default_factory=list)

    def component(self, name: str) -> Optional[ManifestComponent]:
        for component in self.components:
            if component.name == name:
                return component
        return None


class BackupListQuery(CamelModel):
    """Filters, pagination and sort for catalog listing."""

    type: Optional[BackupType] = None
    status: Optional[BackupStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    page: int = 1
    limit: int = 20
    sort_by: str = "created_at"
    sort_order: str = "desc"


class BackupPage(CamelModel):
    items: List[BackupRecord]
    total: int
    page: int
    limit: int
    pages: int


class RetentionResult(CamelModel):
    deleted: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)


class IntegrityReport(CamelModel):
    backup_id: str
    valid: bool
    expected_checksum: Optional[str] = None
    actual_checksum: Optional[str] = None
    error: Optional[str] = None


class ExportFormat(str, Enum):
    ZIP = "zip"
    TAR = "tar"
    ENCRYPTED = "encrypted"


class ExportEncryptionOptions(CamelModel):
    enabled: bool = False
    password: Optional[str] = None


class ExportOptions(CamelModel):
    format: ExportFormat = ExportFormat.ZIP
    compression: CompressionOptions = Field(default_factory=CompressionOptions)
    encryption: ExportEncryptionOptions = Field(default_factory=ExportEncryptionOptions)


class BackupStatistics(CamelModel):
    total_backups: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    total_size_bytes: int = 0
    stored_artifacts: int = 0
    last_completed_at: Optional[datetime] = None
    last_completed_id: Optional[str] = None
