"""Tests for option and schedule validation."""

import pytest

from pacta_backup.backup.errors import ValidationError
from pacta_backup.backup.models import (
    BackupOptions,
    BackupType,
    CompressionOptions,
    EncryptionOptions,
    ExportEncryptionOptions,
    ExportFormat,
    ExportOptions,
    RestoreOptions,
    ScheduleConfig,
)
from pacta_backup.backup.validation import (
    ValidationResult,
    validate_backup_options,
    validate_create_request,
    validate_cron_expression,
    validate_export_options,
    validate_restore_options,
    validate_schedule_config,
)


@pytest.mark.parametrize("expression", ["0 0 * * *", "*/15 * * * *", "30 2 * * 1-5", "0 3 1 * *"])
def test_valid_cron_expressions(expression):
    assert validate_cron_expression(expression).ok


@pytest.mark.parametrize("expression", ["", "   ", "0 0 * *", "0 0 * * * *", "61 0 * * *", "0 25 * * *", "foo bar * * *"])
def test_invalid_cron_expressions(expression):
    result = validate_cron_expression(expression)
    assert not result.ok
    assert len(result.errors) == 1


def test_schedule_collects_all_errors():
    result = validate_schedule_config(ScheduleConfig(cron_expression="bad", retention_days=0))

    assert len(result.errors) == 2
    with pytest.raises(ValidationError) as exc_info:
        result.raise_for_errors("Invalid schedule config")
    assert exc_info.value.errors == result.errors


def test_backup_options_need_a_component():
    result = validate_backup_options(BackupOptions(include_database=False, include_files=False))
    assert not result.ok


def test_backup_options_compression_level():
    bad = BackupOptions(compression=CompressionOptions(level=12))
    ignored = BackupOptions(compression=CompressionOptions(enabled=False, level=12))

    assert not validate_backup_options(bad).ok
    assert validate_backup_options(ignored).ok


def test_encryption_requires_key_and_known_algorithm():
    options = BackupOptions(encryption=EncryptionOptions(enabled=True, algorithm="rot13"))

    result = validate_backup_options(options, encryption_key_configured=False)

    assert len(result.errors) == 2


def test_create_request_description_length():
    result = validate_create_request(BackupType.MANUAL, "x" * 201, BackupOptions())
    assert not result.ok
    assert validate_create_request(BackupType.AUTOMATIC, "nightly", BackupOptions()).ok


def test_restore_options_need_a_component():
    assert not validate_restore_options(RestoreOptions(include_database=False, include_files=False)).ok
    assert validate_restore_options(RestoreOptions(include_files=False)).ok


def test_export_options():
    assert validate_export_options(ExportOptions()).ok
    assert not validate_export_options(ExportOptions(format=ExportFormat.ENCRYPTED)).ok
    assert validate_export_options(
        ExportOptions(format=ExportFormat.ENCRYPTED, encryption=ExportEncryptionOptions(password="pw"))
    ).ok
    # Encryption is only offered through the encrypted format
    assert not validate_export_options(
        ExportOptions(format=ExportFormat.ZIP, encryption=ExportEncryptionOptions(enabled=True, password="pw"))
    ).ok


def test_validation_result_merge():
    merged = ValidationResult.failure("a").merge(ValidationResult.success()).merge(ValidationResult.failure("b"))

    assert merged.errors == ["a", "b"]
    ValidationResult.success().raise_for_errors("never raised")
