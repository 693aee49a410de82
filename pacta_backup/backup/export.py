"""Export a stored backup as a portable, downloadable archive.

Exports are read-only: they never create catalog entries or touch the live
stores. Layouts:

- ``zip``: manifest.json plus component files, deflated when compression is on
- ``tar``: same members as a tar, gzipped when compression is on
- ``encrypted``: the tar(.gz) export, AES-256-CBC encrypted with a key
  stretched from the export password::

      b"PBAKEXP1" | 16-byte salt | b"PBAKENC1" | IV | ciphertext
"""

import asyncio
import io
import os
import tarfile
import zipfile
from dataclasses import dataclass
from typing import Dict

from .._utils import logger
from .catalog import BackupCatalog
from .codec import ArtifactCodec, CodecError, compress, encrypt, stretch_passphrase
from .creator import DATABASE_COMPONENT, DATABASE_FILENAME, FILES_COMPONENT, FILES_FILENAME
from .errors import IntegrityError, NotFoundError, ValidationError
from .integrity import IntegrityValidator
from .models import BackupManifest, BackupStatus, ExportFormat, ExportOptions
from .storage import ArtifactNotFoundError, StorageAdapter
from .utils import MANIFEST_NAME, dump_manifest, unpack_payload
from .validation import validate_export_options

EXPORT_MAGIC = b"PBAKEXP1"
SALT_SIZE = 16
EXPORT_KDF_ITERATIONS = 200_000

_FILENAMES = {DATABASE_COMPONENT: DATABASE_FILENAME, FILES_COMPONENT: FILES_FILENAME}


@dataclass(frozen=True)
class ExportedArtifact:
    filename: str
    content_type: str
    data: bytes


def encrypt_with_password(data: bytes, password: str) -> bytes:
    salt = os.urandom(SALT_SIZE)
    key = stretch_passphrase(password, salt, EXPORT_KDF_ITERATIONS)
    return EXPORT_MAGIC + salt + encrypt(data, key)


def _build_zip(members: Dict[str, bytes], compression: bool, level: int) -> bytes:
    buffer = io.BytesIO()
    mode = zipfile.ZIP_DEFLATED if compression else zipfile.ZIP_STORED
    kwargs = {"compresslevel": level} if compression else {}
    with zipfile.ZipFile(buffer, "w", compression=mode, **kwargs) as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def _build_tar(members: Dict[str, bytes], compression: bool, level: int) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o600
            tar.addfile(info, io.BytesIO(data))
    data = buffer.getvalue()
    return compress(data, level) if compression else data


class ExportService:
    """Builds export archives from completed backups."""

    def __init__(
        self,
        catalog: BackupCatalog,
        storage: StorageAdapter,
        codec: ArtifactCodec,
        validator: IntegrityValidator,
    ):
        self.catalog = catalog
        self.storage = storage
        self.codec = codec
        self.validator = validator

    async def export(self, backup_id: str, options: ExportOptions) -> ExportedArtifact:
        """Export a backup in the requested format.

        Raises:
            ValidationError: Invalid options or backup not completed
            NotFoundError: Unknown backup id
            IntegrityError: Stored artifact failed verification
        """
        validate_export_options(options).raise_for_errors("Invalid export request")

        record = await self.catalog.get(backup_id)
        if record is None:
            raise NotFoundError(f"Backup not found: {backup_id}")
        if record.status != BackupStatus.COMPLETED:
            raise ValidationError(f"Backup {backup_id} is not exportable (status: {record.status.value})")

        await self.validator.verify(record)
        try:
            artifact = await self.storage.read(record.storage_path)
        except ArtifactNotFoundError as e:
            raise IntegrityError(f"Artifact for backup {backup_id} is missing: {e}", backup_id) from e
        try:
            payload = await asyncio.to_thread(self.codec.decode, artifact, record.options)
        except CodecError as e:
            raise IntegrityError(f"Artifact for backup {backup_id} could not be decoded: {e}", backup_id) from e
        manifest, contents = await asyncio.to_thread(unpack_payload, payload)

        exported = await asyncio.to_thread(self._build, manifest, contents, options)
        logger.info(
            f"Exported backup {backup_id} as {options.format.value}: "
            f"{exported.filename} ({len(exported.data):,} bytes)"
        )
        return exported

    def _build(self, manifest: BackupManifest, contents: Dict[str, bytes], options: ExportOptions) -> ExportedArtifact:
        members = {MANIFEST_NAME: dump_manifest(manifest).encode("utf-8")}
        for name, data in contents.items():
            members[_FILENAMES.get(name, name)] = data

        base = f"pacta-backup-{manifest.backup_id}"
        compression = options.compression.enabled
        level = options.compression.level

        if options.format == ExportFormat.ZIP:
            return ExportedArtifact(f"{base}.zip", "application/zip", _build_zip(members, compression, level))

        archive = _build_tar(members, compression, level)
        filename = f"{base}.tar.gz" if compression else f"{base}.tar"

        if options.format == ExportFormat.TAR:
            content_type = "application/gzip" if compression else "application/x-tar"
            return ExportedArtifact(filename, content_type, archive)

        return ExportedArtifact(
            f"{filename}.enc",
            "application/octet-stream",
            encrypt_with_password(archive, options.encryption.password),
        )
