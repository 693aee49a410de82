"""Relational store backup/restore exporter using SQLite's online backup API."""

import asyncio
import os
import sqlite3
import tempfile
from pathlib import Path
from typing import Dict, List, Tuple

from ..._utils import logger
from ..errors import RestoreConflictError


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class SqliteExporter:
    """Export and restore the contract database.

    Export copies pages through ``sqlite3.Connection.backup``, which yields a
    consistent snapshot even while the application keeps writing.
    """

    def __init__(self, database_path: str):
        """Initialize exporter.

        Args:
            database_path: Path to the live SQLite database file
        """
        self.database_path = Path(database_path)

    def exists(self) -> bool:
        return self.database_path.is_file()

    async def export(self) -> bytes:
        """Dump the live database to bytes of a standalone SQLite file.

        Raises:
            FileNotFoundError: If the database file does not exist
        """
        data = await asyncio.to_thread(self._dump)
        logger.info(f"Database export complete: {self.database_path} ({len(data):,} bytes)")
        return data

    async def snapshot(self) -> bytes:
        """Same as ``export``; the dump already holds the whole database."""
        return await self.export()

    def _dump(self) -> bytes:
        if not self.exists():
            raise FileNotFoundError(f"Database not found: {self.database_path}")

        with tempfile.TemporaryDirectory(prefix="pacta-dump-") as tmp:
            dump_path = Path(tmp) / "database.sqlite"
            source = sqlite3.connect(f"file:{self.database_path}?mode=ro", uri=True)
            try:
                target = sqlite3.connect(dump_path)
                try:
                    source.backup(target)
                finally:
                    target.close()
            finally:
                source.close()
            return dump_path.read_bytes()

    async def restore(self, data: bytes, overwrite: bool) -> Dict[str, int]:
        """Apply a database dump to the live database.

        Args:
            data: Bytes produced by ``export``
            overwrite: Replace contents entirely, or merge rows and abort on
                the first conflicting row

        Returns:
            Row counts: ``inserted`` and ``skipped`` (merge), or ``tables`` (overwrite)
        """
        if overwrite:
            stats = await asyncio.to_thread(self._replace, data)
        else:
            stats = await asyncio.to_thread(self._merge, data)
        logger.info(f"Database restore complete ({'overwrite' if overwrite else 'merge'}): {stats}")
        return stats

    def _open_dump(self, data: bytes, tmp: str) -> sqlite3.Connection:
        dump_path = Path(tmp) / "restore.sqlite"
        dump_path.write_bytes(data)
        return sqlite3.connect(dump_path)

    def _replace(self, data: bytes) -> Dict[str, int]:
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="pacta-restore-") as tmp:
            source = self._open_dump(data, tmp)
            try:
                tables = len(self._tables(source))
                live = sqlite3.connect(self.database_path)
                try:
                    source.backup(live)
                finally:
                    live.close()
            finally:
                source.close()
        return {"tables": tables}

    def _merge(self, data: bytes) -> Dict[str, int]:
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        inserted = skipped = 0

        with tempfile.TemporaryDirectory(prefix="pacta-restore-") as tmp:
            source = self._open_dump(data, tmp)
            live = sqlite3.connect(self.database_path, isolation_level=None)
            try:
                live.execute("BEGIN IMMEDIATE")
                try:
                    for table, create_sql in self._tables(source):
                        if not self._table_exists(live, table):
                            live.execute(create_sql)
                        table_inserted, table_skipped = self._merge_table(source, live, table)
                        inserted += table_inserted
                        skipped += table_skipped
                except Exception:
                    live.execute("ROLLBACK")
                    raise
                live.execute("COMMIT")
            finally:
                live.close()
                source.close()

        return {"inserted": inserted, "skipped": skipped}

    def _merge_table(self, source: sqlite3.Connection, live: sqlite3.Connection, table: str) -> Tuple[int, int]:
        columns, pk_columns = self._columns(source, table)
        live_columns, _ = self._columns(live, table)
        if set(columns) != set(live_columns):
            raise RestoreConflictError(f"Table {table} has a different schema in the live database")

        column_sql = ", ".join(_quote(c) for c in columns)
        key_columns = pk_columns or columns
        key_index = [columns.index(c) for c in key_columns]
        where_sql = " AND ".join(f"{_quote(c)} IS ?" for c in key_columns)
        placeholders = ", ".join("?" for _ in columns)

        inserted = skipped = 0
        for row in source.execute(f"SELECT {column_sql} FROM {_quote(table)}"):
            key = [row[i] for i in key_index]
            existing = live.execute(
                f"SELECT {column_sql} FROM {_quote(table)} WHERE {where_sql}", key
            ).fetchone()

            if existing is None:
                live.execute(f"INSERT INTO {_quote(table)} ({column_sql}) VALUES ({placeholders})", row)
                inserted += 1
            elif tuple(existing) == tuple(row):
                skipped += 1
            else:
                raise RestoreConflictError(
                    f"Conflicting row in table {table} for key "
                    f"{dict(zip(key_columns, key))}"
                )

        logger.debug(f"Merged table {table}: {inserted} inserted, {skipped} identical")
        return inserted, skipped

    @staticmethod
    def _tables(conn: sqlite3.Connection) -> List[Tuple[str, str]]:
        return conn.execute(
            "SELECT name, sql FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()

    @staticmethod
    def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        return row is not None

    @staticmethod
    def _columns(conn: sqlite3.Connection, table: str) -> Tuple[List[str], List[str]]:
        info = conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
        columns = [row[1] for row in info]
        pk_columns = [row[1] for row in sorted(info, key=lambda r: r[5]) if row[5] > 0]
        return columns, pk_columns

    async def remove(self) -> None:
        """Delete the live database file (rollback of a restore onto a missing store)."""
        def _remove():
            for suffix in ("", "-wal", "-shm", "-journal"):
                path = Path(f"{self.database_path}{suffix}")
                if path.exists():
                    os.remove(path)

        await asyncio.to_thread(_remove)

    async def get_statistics(self, data: bytes) -> Dict[str, int]:
        """Row counts per table of a dump.

        Returns:
            Dictionary mapping table name to row count
        """
        def _count() -> Dict[str, int]:
            with tempfile.TemporaryDirectory(prefix="pacta-stats-") as tmp:
                conn = self._open_dump(data, tmp)
                try:
                    return {
                        table: conn.execute(f"SELECT COUNT(*) FROM {_quote(table)}").fetchone()[0]
                        for table, _ in self._tables(conn)
                    }
                finally:
                    conn.close()

        return await asyncio.to_thread(_count)
