"""Pure validation of backup options, restore options and schedule config.

Every function returns a ``ValidationResult`` instead of raising, so callers
decide when to turn a failure into ``ValidationError``. None of them touch
storage or the live stores.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger

from .errors import ValidationError
from .models import (
    BackupOptions,
    BackupType,
    ExportFormat,
    ExportOptions,
    RestoreOptions,
    ScheduleConfig,
)

SUPPORTED_ENCRYPTION_ALGORITHMS = ("aes-256-cbc",)
MAX_DESCRIPTION_LENGTH = 200


@dataclass(frozen=True)
class ValidationResult:
    """Tagged outcome: ``ok`` with no errors, or not ok with the reasons."""
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls()

    @classmethod
    def failure(cls, *errors: str) -> "ValidationResult":
        return cls(errors=list(errors))

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(errors=self.errors + other.errors)

    def raise_for_errors(self, context: str) -> None:
        if self.errors:
            raise ValidationError(f"{context}: {'; '.join(self.errors)}", self.errors)


def validate_cron_expression(expression: str) -> ValidationResult:
    """Check five-field crontab syntax with APScheduler's parser."""
    if not isinstance(expression, str) or not expression.strip():
        return ValidationResult.failure("cron_expression must be a non-empty string")
    if len(expression.split()) != 5:
        return ValidationResult.failure(
            f"cron_expression must have 5 fields (minute hour day month weekday), got '{expression}'"
        )
    try:
        CronTrigger.from_crontab(expression)
    except ValueError as e:
        return ValidationResult.failure(f"invalid cron_expression '{expression}': {e}")
    return ValidationResult.success()


def validate_schedule_config(config: ScheduleConfig) -> ValidationResult:
    result = validate_cron_expression(config.cron_expression)
    if config.retention_days < 1:
        result = result.merge(
            ValidationResult.failure(f"retention_days must be >= 1, got {config.retention_days}")
        )
    return result


def validate_backup_options(
    options: BackupOptions,
    encryption_key_configured: bool = True,
) -> ValidationResult:
    errors = []

    if not options.include_database and not options.include_files:
        errors.append("at least one of include_database or include_files must be enabled")

    if options.compression.enabled and not 1 <= options.compression.level <= 9:
        errors.append(f"compression level must be between 1 and 9, got {options.compression.level}")

    if options.encryption.enabled:
        if options.encryption.algorithm not in SUPPORTED_ENCRYPTION_ALGORITHMS:
            errors.append(
                f"unsupported encryption algorithm '{options.encryption.algorithm}', "
                f"expected one of {SUPPORTED_ENCRYPTION_ALGORITHMS}"
            )
        if not encryption_key_configured:
            errors.append("encryption requested but no encryption key is configured")

    return ValidationResult(errors=errors)


def validate_create_request(
    backup_type: BackupType,
    description: Optional[str],
    options: BackupOptions,
    encryption_key_configured: bool = True,
) -> ValidationResult:
    errors = []
    if not isinstance(backup_type, BackupType):
        errors.append(f"unknown backup type: {backup_type}")
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return ValidationResult(errors=errors).merge(
        validate_backup_options(options, encryption_key_configured)
    )


def validate_restore_options(options: RestoreOptions) -> ValidationResult:
    if not options.include_database and not options.include_files:
        return ValidationResult.failure(
            "at least one of include_database or include_files must be enabled"
        )
    return ValidationResult.success()


def validate_export_options(options: ExportOptions) -> ValidationResult:
    errors = []
    if options.compression.enabled and not 1 <= options.compression.level <= 9:
        errors.append(f"compression level must be between 1 and 9, got {options.compression.level}")
    needs_password = options.format == ExportFormat.ENCRYPTED or options.encryption.enabled
    if needs_password and not options.encryption.password:
        errors.append("a password is required for encrypted exports")
    if options.encryption.enabled and options.format != ExportFormat.ENCRYPTED:
        errors.append(f"encryption is only available with the '{ExportFormat.ENCRYPTED.value}' format")
    return ValidationResult(errors=errors)


def validate_pagination(page: int, limit: int, sort_by: str, sort_order: str, sortable: tuple) -> ValidationResult:
    errors = []
    if page < 1:
        errors.append(f"page must be >= 1, got {page}")
    if not 1 <= limit <= 500:
        errors.append(f"limit must be between 1 and 500, got {limit}")
    if sort_by not in sortable:
        errors.append(f"cannot sort by '{sort_by}', expected one of {sortable}")
    if sort_order not in ("asc", "desc"):
        errors.append(f"sort_order must be 'asc' or 'desc', got '{sort_order}'")
    return ValidationResult(errors=errors)
