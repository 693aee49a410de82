"""Tests for the database and documents exporters."""

import io
import sqlite3
import tarfile

import pytest

from pacta_backup.backup.errors import RestoreConflictError
from pacta_backup.backup.exporters import FilesExporter, SqliteExporter
from pacta_backup.backup.exporters.files_exporter import is_ignored
from tests.backup.base import read_rows, read_tree
from tests.backup.base.fixtures import CONTRACTS, DOCUMENTS


@pytest.fixture
def database(live_stores):
    return SqliteExporter(str(live_stores[0]))


@pytest.fixture
def documents(live_stores):
    return FilesExporter(str(live_stores[1]))


def _execute(db_path, sql, params=()):
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(sql, params)
        conn.commit()
    finally:
        conn.close()


# Database


@pytest.mark.asyncio
async def test_database_export_statistics(database):
    data = await database.export()

    assert data.startswith(b"SQLite format 3\x00")
    assert await database.get_statistics(data) == {"contracts": 3, "users": 2}


@pytest.mark.asyncio
async def test_database_export_missing(tmp_path):
    exporter = SqliteExporter(str(tmp_path / "absent.db"))

    assert exporter.exists() is False
    with pytest.raises(FileNotFoundError):
        await exporter.export()
    assert not (tmp_path / "absent.db").exists()


@pytest.mark.asyncio
async def test_database_replace_restores_exact_rows(database):
    before = read_rows(database.database_path)
    data = await database.export()

    _execute(database.database_path, "DELETE FROM contracts WHERE id = 1")
    _execute(database.database_path, "INSERT INTO users VALUES (3, 'eve@example.com', 'viewer')")
    _execute(database.database_path, "CREATE TABLE scratch (x)")

    stats = await database.restore(data, overwrite=True)

    assert stats == {"tables": 2}
    assert read_rows(database.database_path) == before


@pytest.mark.asyncio
async def test_database_replace_into_missing_file(database, tmp_path):
    data = await database.export()
    target = SqliteExporter(str(tmp_path / "fresh" / "pacta.db"))

    await target.restore(data, overwrite=True)

    assert read_rows(target.database_path) == read_rows(database.database_path)


@pytest.mark.asyncio
async def test_database_merge_inserts_missing_rows(database):
    data = await database.export()
    _execute(database.database_path, "DELETE FROM contracts WHERE id IN (2, 3)")
    _execute(database.database_path, "INSERT INTO contracts VALUES (4, 'Catering', 'Foodies', 300.0)")

    stats = await database.restore(data, overwrite=False)

    assert stats == {"inserted": 2, "skipped": 3}
    rows = read_rows(database.database_path)["contracts"]
    assert rows == sorted(CONTRACTS + [(4, "Catering", "Foodies", 300.0)])


@pytest.mark.asyncio
async def test_database_merge_conflict_rolls_back(database):
    data = await database.export()
    _execute(database.database_path, "DELETE FROM users")
    _execute(database.database_path, "UPDATE contracts SET value = 1.0 WHERE id = 3")
    before = read_rows(database.database_path)

    with pytest.raises(RestoreConflictError, match="contracts"):
        await database.restore(data, overwrite=False)

    # Nothing from the merge was kept, not even rows of other tables
    assert read_rows(database.database_path) == before


@pytest.mark.asyncio
async def test_database_merge_creates_missing_table(database):
    data = await database.export()
    _execute(database.database_path, "DROP TABLE users")

    stats = await database.restore(data, overwrite=False)

    assert stats == {"inserted": 2, "skipped": 3}
    assert len(read_rows(database.database_path)["users"]) == 2


@pytest.mark.asyncio
async def test_database_merge_schema_mismatch(database):
    data = await database.export()
    _execute(database.database_path, "ALTER TABLE users ADD COLUMN phone TEXT")

    with pytest.raises(RestoreConflictError, match="schema"):
        await database.restore(data, overwrite=False)


@pytest.mark.asyncio
async def test_database_remove(database):
    await database.remove()

    assert database.exists() is False


# Documents


def test_ignored_patterns():
    assert is_ignored("draft.tmp")
    assert is_ignored("upload.temp")
    assert is_ignored("Thumbs.db")
    assert is_ignored(".DS_Store")
    assert not is_ignored("lease.pdf")


@pytest.mark.asyncio
async def test_documents_export_skips_junk(documents):
    data = await documents.export()

    assert documents.read_archive(data) == DOCUMENTS
    assert await documents.get_statistics(data) == {
        "files": len(DOCUMENTS),
        "bytes": sum(len(v) for v in DOCUMENTS.values()),
    }


@pytest.mark.asyncio
async def test_documents_export_skips_symlinks(documents, tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_bytes(b"outside")
    (documents.documents_dir / "link.txt").symlink_to(secret)

    data = await documents.export()

    assert "link.txt" not in documents.read_archive(data)


@pytest.mark.asyncio
async def test_documents_export_missing_dir(tmp_path):
    exporter = FilesExporter(str(tmp_path / "nope"))

    data = await exporter.export()

    assert exporter.read_archive(data) == {}


@pytest.mark.asyncio
async def test_documents_replace(documents):
    data = await documents.export()
    root = documents.documents_dir
    (root / "contracts" / "1" / "lease.pdf").write_bytes(b"edited")
    (root / "new.txt").write_bytes(b"added after backup")

    stats = await documents.restore(data, overwrite=True)

    assert stats == {"written": len(DOCUMENTS), "skipped": 0}
    assert read_tree(root) == DOCUMENTS
    # No staging directories left next to the live tree
    assert sorted(p.name for p in root.parent.iterdir()) == ["documents", "pacta.db"]


@pytest.mark.asyncio
async def test_documents_merge_adds_missing(documents):
    data = await documents.export()
    root = documents.documents_dir
    (root / "notes.txt").unlink()
    (root / "extra.txt").write_bytes(b"kept")

    stats = await documents.restore(data, overwrite=False)

    assert stats == {"written": 1, "skipped": len(DOCUMENTS) - 1}
    tree = read_tree(root)
    assert tree["notes.txt"] == DOCUMENTS["notes.txt"]
    assert tree["extra.txt"] == b"kept"


@pytest.mark.asyncio
async def test_documents_merge_conflict_writes_nothing(documents):
    data = await documents.export()
    root = documents.documents_dir
    (root / "notes.txt").unlink()
    (root / "contracts" / "2" / "cleaning.docx").write_bytes(b"changed")
    before = read_tree(root)

    with pytest.raises(RestoreConflictError, match="cleaning.docx"):
        await documents.restore(data, overwrite=False)

    assert read_tree(root) == before


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["../escape.txt", "/etc/passwd", "a/../../b"])
async def test_documents_rejects_unsafe_paths(documents, name):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(name)
        info.size = 4
        tar.addfile(info, io.BytesIO(b"evil"))

    with pytest.raises(ValueError, match="Unsafe path"):
        await documents.restore(buffer.getvalue(), overwrite=True)


@pytest.mark.asyncio
async def test_documents_rejects_links(documents):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo("link")
        info.type = tarfile.SYMTYPE
        info.linkname = "/etc/passwd"
        tar.addfile(info)

    with pytest.raises(ValueError, match="Unsupported entry"):
        await documents.restore(buffer.getvalue(), overwrite=False)


@pytest.mark.asyncio
async def test_documents_remove(documents):
    await documents.remove()

    assert documents.exists() is False
    # Removing again is a no-op
    await documents.remove()
