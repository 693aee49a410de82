"""Utility functions for backup/restore operations."""

import io
import json
import tarfile
from datetime import datetime
from typing import Dict, Optional, Tuple

from pydantic import ValidationError as ModelValidationError

from .._utils import logger, sha256_bytes
from .errors import IntegrityError
from .models import BackupManifest, BackupType, ManifestComponent

MANIFEST_NAME = "manifest.json"
ARTIFACT_SUFFIX = ".pbak"
SAFETY_PREFIX = "_safety/"


def generate_storage_key(backup_type: BackupType, backup_id: str, created_at: datetime) -> str:
    """Storage key for a new artifact.

    Returns:
        Key in format: <type>/YYYYMMDDTHHMMSSZ_<id>.pbak
    """
    timestamp = created_at.strftime("%Y%m%dT%H%M%SZ")
    return f"{backup_type.value}/{timestamp}_{backup_id}{ARTIFACT_SUFFIX}"


def generate_safety_key(restore_id: str, created_at: datetime) -> str:
    timestamp = created_at.strftime("%Y%m%dT%H%M%SZ")
    return f"{SAFETY_PREFIX}{timestamp}_{restore_id}{ARTIFACT_SUFFIX}"


def build_component(name: str, filename: str, data: bytes, metadata: Optional[dict] = None) -> ManifestComponent:
    return ManifestComponent(
        name=name,
        filename=filename,
        checksum=sha256_bytes(data),
        size_bytes=len(data),
        metadata=metadata or {},
    )


def _add_member(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mtime = 0
    info.mode = 0o600
    tar.addfile(info, io.BytesIO(data))


def pack_payload(manifest: BackupManifest, components: Dict[str, bytes]) -> bytes:
    """Create the uncompressed tar payload of an artifact.

    Args:
        manifest: Manifest describing every component
        components: Mapping of component filename to its bytes

    Returns:
        Tar bytes with manifest.json first, then components in manifest order
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        _add_member(tar, MANIFEST_NAME, manifest.model_dump_json(indent=2).encode("utf-8"))
        for component in manifest.components:
            _add_member(tar, component.filename, components[component.filename])

    payload = buffer.getvalue()
    logger.debug(f"Packed payload for {manifest.backup_id}: {len(payload):,} bytes")
    return payload


def unpack_payload(payload: bytes, verify: bool = True) -> Tuple[BackupManifest, Dict[str, bytes]]:
    """Read manifest and components back from a payload.

    Args:
        payload: Tar bytes produced by ``pack_payload``
        verify: Check every component against its manifest checksum

    Returns:
        (manifest, {component name: bytes})

    Raises:
        IntegrityError: Payload unreadable, manifest missing or a component
            does not match its checksum
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(payload), mode="r") as tar:
            members = {m.name: m for m in tar.getmembers() if m.isfile()}
            if MANIFEST_NAME not in members:
                raise IntegrityError("Artifact payload has no manifest")
            manifest = BackupManifest.model_validate_json(tar.extractfile(members[MANIFEST_NAME]).read())

            components = {}
            for component in manifest.components:
                member = members.get(component.filename)
                if member is None:
                    raise IntegrityError(
                        f"Component {component.name} missing from artifact", backup_id=manifest.backup_id
                    )
                components[component.name] = tar.extractfile(member).read()
    except (tarfile.TarError, ModelValidationError) as e:
        raise IntegrityError(f"Artifact payload is not a readable archive: {e}") from e

    if verify:
        for component in manifest.components:
            actual = sha256_bytes(components[component.name])
            if actual != component.checksum:
                raise IntegrityError(
                    f"Checksum mismatch for component {component.name}: "
                    f"expected {component.checksum}, got {actual}",
                    backup_id=manifest.backup_id,
                )
        logger.debug(f"Verified {len(manifest.components)} component checksums for {manifest.backup_id}")

    return manifest, components


def dump_manifest(manifest: BackupManifest) -> str:
    """Manifest as pretty JSON, as written into exports."""
    return json.dumps(manifest.model_dump(mode="json"), indent=2)
