"""Live store fixtures: a small contracts database and documents tree."""

import sqlite3
from pathlib import Path
from typing import Dict, List, Tuple

from pacta_backup.config import (
    BackupEngineConfig,
    CatalogConfig,
    EncryptionConfig,
    StorageConfig,
    StoreConfig,
)

ENCRYPTION_KEY = "0f" * 32

CONTRACTS = [
    (1, "Office lease", "ACME Properties", 12000.0),
    (2, "Cleaning services", "Sparkle Ltd", 2400.5),
    (3, "Software license", "Initech", 990.0),
]
USERS = [
    (1, "ana@example.com", "admin"),
    (2, "ben@example.com", "editor"),
]
DOCUMENTS = {
    "contracts/1/lease.pdf": b"%PDF-1.4 office lease",
    "contracts/2/cleaning.docx": b"PK\x03\x04 cleaning services",
    "contracts/3/license.pdf": b"%PDF-1.7 software license " * 50,
    "notes.txt": b"renewal reminders",
}
JUNK = {
    "contracts/1/~draft.tmp": b"scratch",
    "Thumbs.db": b"\x00\x01",
    "contracts/.DS_Store": b"\x00",
    "upload.temp": b"partial",
}


def populate_live_stores(database_path: Path, documents_dir: Path) -> None:
    database_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(database_path)
    try:
        conn.execute(
            "CREATE TABLE contracts (id INTEGER PRIMARY KEY, title TEXT NOT NULL, "
            "counterparty TEXT, value REAL)"
        )
        conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT UNIQUE, role TEXT)")
        conn.executemany("INSERT INTO contracts VALUES (?, ?, ?, ?)", CONTRACTS)
        conn.executemany("INSERT INTO users VALUES (?, ?, ?)", USERS)
        conn.commit()
    finally:
        conn.close()

    for rel_path, content in {**DOCUMENTS, **JUNK}.items():
        path = documents_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


def read_rows(database_path: Path) -> Dict[str, List[Tuple]]:
    """Every row of every table, sorted, for exact comparisons."""
    conn = sqlite3.connect(database_path)
    try:
        tables = [
            row[0] for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
        ]
        return {table: sorted(conn.execute(f'SELECT * FROM "{table}"').fetchall()) for table in tables}
    finally:
        conn.close()


def read_tree(directory: Path) -> Dict[str, bytes]:
    if not directory.exists():
        return {}
    return {
        path.relative_to(directory).as_posix(): path.read_bytes()
        for path in sorted(directory.rglob("*"))
        if path.is_file()
    }


def build_engine_config(root: Path, **overrides) -> BackupEngineConfig:
    """Engine config rooted in a temp dir, with a fast KDF and no daily limit."""
    values = dict(
        store=StoreConfig(
            database_path=str(root / "data" / "pacta.db"),
            documents_dir=str(root / "data" / "documents"),
        ),
        storage=StorageConfig(local_dir=str(root / "backups")),
        catalog=CatalogConfig(path=str(root / "data" / "backup_catalog.json")),
        encryption=EncryptionConfig(key=ENCRYPTION_KEY, kdf_iterations=1000),
        max_manual_backups_per_day=0,
        scheduler_enabled=False,
    )
    values.update(overrides)
    return BackupEngineConfig(**values)
