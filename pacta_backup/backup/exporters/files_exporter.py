"""Document store backup/restore exporter (directory tree of uploaded files)."""

import asyncio
import fnmatch
import hashlib
import io
import shutil
import tarfile
import uuid
from pathlib import Path, PurePosixPath
from typing import Dict, List, Tuple

from ..._utils import atomic_write_bytes, logger
from ..errors import RestoreConflictError

IGNORED_PATTERNS = ("*.tmp", "*.temp", "Thumbs.db", ".DS_Store")


def is_ignored(name: str) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in IGNORED_PATTERNS)


def _safe_member_path(name: str) -> PurePosixPath:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise ValueError(f"Unsafe path in document archive: {name!r}")
    return path


class FilesExporter:
    """Export and restore the documents directory as a single tar stream."""

    def __init__(self, documents_dir: str):
        self.documents_dir = Path(documents_dir)

    def exists(self) -> bool:
        return self.documents_dir.is_dir()

    def _iter_files(self, include_ignored: bool = False) -> List[Tuple[str, Path]]:
        files = []
        if not self.exists():
            return files
        for path in sorted(self.documents_dir.rglob("*")):
            if not path.is_file() or path.is_symlink():
                continue
            if not include_ignored and is_ignored(path.name):
                continue
            files.append((path.relative_to(self.documents_dir).as_posix(), path))
        return files

    async def export(self) -> bytes:
        """Archive the documents directory.

        A missing directory exports as an empty archive.
        """
        data, count = await asyncio.to_thread(self._archive)
        logger.info(f"Documents export complete: {count} files ({len(data):,} bytes)")
        return data

    async def snapshot(self) -> bytes:
        """Archive every regular file, ignored ones included, for rollback."""
        data, _ = await asyncio.to_thread(self._archive, True)
        return data

    def _archive(self, include_ignored: bool = False) -> Tuple[bytes, int]:
        buffer = io.BytesIO()
        files = self._iter_files(include_ignored)
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            for rel_path, path in files:
                content = path.read_bytes()
                info = tarfile.TarInfo(name=rel_path)
                info.size = len(content)
                info.mtime = int(path.stat().st_mtime)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(content))
        return buffer.getvalue(), len(files)

    @staticmethod
    def read_archive(data: bytes) -> Dict[str, bytes]:
        """Archive members as ``{relative_path: content}``; rejects unsafe entries."""
        contents = {}
        with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
            for member in tar.getmembers():
                if member.isdir():
                    continue
                if not member.isfile():
                    raise ValueError(f"Unsupported entry in document archive: {member.name!r}")
                path = _safe_member_path(member.name)
                contents[path.as_posix()] = tar.extractfile(member).read()
        return contents

    async def restore(self, data: bytes, overwrite: bool) -> Dict[str, int]:
        """Apply a documents archive to the live directory.

        Args:
            data: Bytes produced by ``export``
            overwrite: Replace the directory tree, or add missing files only

        Returns:
            Counts of ``written`` and ``skipped`` files
        """
        contents = await asyncio.to_thread(self.read_archive, data)
        if overwrite:
            stats = await asyncio.to_thread(self._replace, contents)
        else:
            stats = await asyncio.to_thread(self._merge, contents)
        logger.info(f"Documents restore complete ({'overwrite' if overwrite else 'merge'}): {stats}")
        return stats

    def _replace(self, contents: Dict[str, bytes]) -> Dict[str, int]:
        parent = self.documents_dir.parent
        parent.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex[:8]
        staging = parent / f".{self.documents_dir.name}.restore-{token}"
        previous = parent / f".{self.documents_dir.name}.previous-{token}"

        try:
            staging.mkdir()
            for rel_path, content in contents.items():
                target = staging / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)
        except OSError:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        # Swap the staged tree in; the old tree is only dropped once the new one is in place
        if self.documents_dir.exists():
            self.documents_dir.rename(previous)
        staging.rename(self.documents_dir)
        if previous.exists():
            shutil.rmtree(previous)

        return {"written": len(contents), "skipped": 0}

    def _merge(self, contents: Dict[str, bytes]) -> Dict[str, int]:
        to_write = {}
        skipped = 0

        # Pre-scan: any differing file aborts before anything is written
        for rel_path, content in contents.items():
            target = self.documents_dir / rel_path
            if not target.exists():
                to_write[rel_path] = content
                continue
            if not target.is_file():
                raise RestoreConflictError(f"Document path is not a file: {rel_path}")
            live_digest = hashlib.sha256(target.read_bytes()).digest()
            if live_digest != hashlib.sha256(content).digest():
                raise RestoreConflictError(f"Document differs from backup: {rel_path}")
            skipped += 1

        for rel_path, content in to_write.items():
            atomic_write_bytes(self.documents_dir / rel_path, content, 0o644)

        return {"written": len(to_write), "skipped": skipped}

    async def remove(self) -> None:
        """Delete the live documents directory."""
        if self.exists():
            await asyncio.to_thread(shutil.rmtree, self.documents_dir)

    async def get_statistics(self, data: bytes) -> Dict[str, int]:
        contents = await asyncio.to_thread(self.read_archive, data)
        return {
            "files": len(contents),
            "bytes": sum(len(content) for content in contents.values()),
        }
