"""Live store exporters for backup/restore operations."""

from .sqlite_exporter import SqliteExporter
from .files_exporter import FilesExporter, IGNORED_PATTERNS

__all__ = ["SqliteExporter", "FilesExporter", "IGNORED_PATTERNS"]
