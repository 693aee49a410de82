"""Shared helpers for the backup engine."""

import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger("pacta-backup")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 of an in-memory buffer.

    Returns:
        Checksum as hex string with 'sha256:' prefix
    """
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def format_file_size(size_bytes: int) -> str:
    """Human readable size, e.g. '1.5 MB'."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    if size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"


def atomic_write_bytes(path: Path, data: bytes, mode: int = 0o600) -> None:
    """Write file through a temp sibling and os.replace so readers never see partial content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.chmod(tmp_path, mode)
    os.replace(tmp_path, path)
