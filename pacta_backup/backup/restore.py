"""Restore orchestration with safety snapshots and rollback on failure."""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

from .._utils import logger
from .catalog import BackupCatalog
from .clock import Clock, SystemClock
from .codec import ArtifactCodec, CodecError
from .creator import DATABASE_COMPONENT, FILES_COMPONENT
from .errors import IntegrityError, NotFoundError, RestoreError, ValidationError
from .exporters import FilesExporter, SqliteExporter
from .integrity import IntegrityValidator
from .lock import OperationLock
from .models import (
    BackupManifest,
    BackupOptions,
    BackupRecord,
    BackupStatus,
    EncryptionOptions,
    RestoreRequest,
    RestoreResult,
    RestoreState,
)
from .storage import ArtifactNotFoundError, StorageAdapter
from .utils import build_component, generate_safety_key, pack_payload, unpack_payload
from .validation import validate_restore_options

# Finished restores kept for polling; the oldest finished ones are dropped first
MAX_RESTORE_RESULTS = 100


@dataclass
class SafetySnapshot:
    """Where the pre-restore copy of the live stores was written."""
    key: str
    options: BackupOptions
    components: List[str]


class RestoreOrchestrator:
    """Drives a restore through validating -> preparing -> applying -> terminal state.

    Nothing in the live stores changes before ``applying``, and ``applying``
    starts only after the safety snapshot (when requested) is stored.
    """

    def __init__(
        self,
        catalog: BackupCatalog,
        storage: StorageAdapter,
        codec: ArtifactCodec,
        lock: OperationLock,
        validator: IntegrityValidator,
        database: SqliteExporter,
        files: FilesExporter,
        clock: Optional[Clock] = None,
        max_results: int = MAX_RESTORE_RESULTS,
    ):
        self.catalog = catalog
        self.storage = storage
        self.codec = codec
        self.lock = lock
        self.validator = validator
        self.exporters = {DATABASE_COMPONENT: database, FILES_COMPONENT: files}
        self.clock = clock or SystemClock()
        self.max_results = max_results
        self._results: Dict[str, RestoreResult] = {}

    def get_result(self, restore_id: str) -> Optional[RestoreResult]:
        return self._results.get(restore_id)

    def _remember(self, result: RestoreResult) -> None:
        self._results[result.restore_id] = result
        finished = [rid for rid, r in self._results.items() if r.state.terminal]
        excess = len(self._results) - self.max_results
        for restore_id in finished[:max(excess, 0)]:
            del self._results[restore_id]

    async def restore(self, request: RestoreRequest) -> RestoreResult:
        result, record = await self.begin(request)
        return await self.execute(result, record)

    async def begin(self, request: RestoreRequest):
        """Validate the request and take the operation lock.

        Returns:
            (RestoreResult in state ``validating``, the BackupRecord to restore)
        """
        validate_restore_options(request.options).raise_for_errors("Invalid restore request")

        self.lock.try_acquire("restore", request.backup_id)
        try:
            record = await self.catalog.get(request.backup_id)
            if record is None:
                raise NotFoundError(f"Backup not found: {request.backup_id}")
            if record.status != BackupStatus.COMPLETED:
                raise ValidationError(
                    f"Backup {record.id} is not restorable (status: {record.status.value})"
                )
        except BaseException:
            self.lock.release()
            raise

        result = RestoreResult(backup_id=record.id, options=request.options, started_at=self.clock.now())
        self._remember(result)
        logger.info(f"Starting restore {result.restore_id} from backup {record.id}")
        return result, record

    async def execute(self, result: RestoreResult, record: BackupRecord) -> RestoreResult:
        """Run a restore obtained from ``begin``; the lock is released in every outcome.

        Raises:
            IntegrityError: Artifact failed verification; state ``aborted``
            RestoreError: Applying failed; state ``rolled_back`` or ``partial_failure``
        """
        try:
            try:
                components = await self._prepare(result, record)
                snapshot = None
                if result.options.rollback_on_error:
                    snapshot = await self._write_safety_snapshot(result, list(components))
            except asyncio.CancelledError:
                self._finish(result, RestoreState.ABORTED, "Restore cancelled")
                logger.error(f"Restore {result.restore_id} cancelled before applying")
                raise
            except Exception as e:
                self._finish(result, RestoreState.ABORTED, str(e))
                logger.error(f"Restore {result.restore_id} aborted: {e}")
                raise

            await self._apply(result, components, snapshot)
            return result
        finally:
            self.lock.release()

    async def _prepare(self, result: RestoreResult, record: BackupRecord) -> Dict[str, bytes]:
        if result.options.validate_integrity:
            await self.validator.verify(record)

        result.state = RestoreState.PREPARING
        try:
            artifact = await self.storage.read(record.storage_path)
        except ArtifactNotFoundError as e:
            raise IntegrityError(f"Artifact for backup {record.id} is missing: {e}", record.id) from e
        try:
            payload = await asyncio.to_thread(self.codec.decode, artifact, record.options)
        except CodecError as e:
            raise IntegrityError(f"Artifact for backup {record.id} could not be decoded: {e}", record.id) from e
        manifest, contents = await asyncio.to_thread(unpack_payload, payload)

        if manifest.backup_id != record.id:
            raise IntegrityError(
                f"Artifact manifest belongs to backup {manifest.backup_id}, expected {record.id}", record.id
            )

        wanted = []
        if result.options.include_database:
            wanted.append(DATABASE_COMPONENT)
        if result.options.include_files:
            wanted.append(FILES_COMPONENT)

        selected = {}
        for name in wanted:
            if name not in contents:
                logger.warning(f"Backup {record.id} has no {name} component, skipping")
                continue
            selected[name] = contents[name]

        if not selected:
            raise ValidationError(f"Backup {record.id} contains none of the requested components")
        return selected

    async def _write_safety_snapshot(self, result: RestoreResult, names: List[str]) -> SafetySnapshot:
        components = {}
        manifest_components = []
        for name in names:
            exporter = self.exporters[name]
            existed = exporter.exists()
            data = await exporter.snapshot() if existed else b""
            filename = f"{name}.snapshot"
            components[filename] = data
            manifest_components.append(build_component(name, filename, data, {"existed": existed}))

        options = BackupOptions(encryption=EncryptionOptions(enabled=self.codec.encryption_available))
        manifest = BackupManifest(
            backup_id=result.restore_id,
            created_at=self.clock.now(),
            engine_version=self._get_version(),
            options=options,
            components=manifest_components,
        )
        payload = await asyncio.to_thread(pack_payload, manifest, components)
        artifact = await asyncio.to_thread(self.codec.encode, payload, options)

        key = generate_safety_key(result.restore_id, manifest.created_at)
        await self.storage.write(key, artifact)
        result.safety_snapshot_path = key
        logger.info(f"Safety snapshot written for restore {result.restore_id}: {key}")
        return SafetySnapshot(key=key, options=options, components=names)

    async def _apply(
        self,
        result: RestoreResult,
        components: Dict[str, bytes],
        snapshot: Optional[SafetySnapshot],
    ) -> None:
        result.state = RestoreState.APPLYING
        overwrite = result.options.overwrite
        try:
            for name, data in components.items():
                await self._apply_component(name, data, overwrite)
                result.components.append(name)
        except asyncio.CancelledError:
            logger.error(f"Restore {result.restore_id} cancelled while applying")
            await self._recover(result, snapshot, "Restore cancelled")
            raise
        except Exception as e:
            logger.error(f"Restore {result.restore_id} failed while applying: {e}")
            state = await self._recover(result, snapshot, str(e))
            if snapshot is None:
                message = f"Restore failed without rollback: {e}"
            elif state == RestoreState.PARTIAL_FAILURE:
                message = f"Restore failed and rollback failed: {result.error_message}"
            else:
                message = f"Restore failed and was rolled back: {e}"
            raise RestoreError(message, state.value, result.restore_id) from e

        self._finish(result, RestoreState.COMMITTED)
        if snapshot is not None:
            await self._discard_snapshot(result, snapshot)
        logger.info(f"Restore {result.restore_id} committed: {', '.join(result.components)}")

    async def _apply_component(self, name: str, data: bytes, overwrite: bool) -> None:
        step = asyncio.ensure_future(self.exporters[name].restore(data, overwrite=overwrite))
        try:
            await asyncio.shield(step)
        except asyncio.CancelledError:
            # The exporter keeps writing in its worker thread; let it settle before any rollback
            await asyncio.gather(step, return_exceptions=True)
            raise

    async def _recover(
        self,
        result: RestoreResult,
        snapshot: Optional[SafetySnapshot],
        reason: str,
    ) -> RestoreState:
        """Put the live stores back after an interrupted apply and record the terminal state.

        Without a snapshot, or when the rollback itself fails, the restore ends
        ``partial_failure`` and the snapshot (if any) is kept for the operator.
        """
        if snapshot is None:
            self._finish(result, RestoreState.PARTIAL_FAILURE, reason)
            return result.state

        try:
            await self._rollback(snapshot)
        except Exception as rollback_error:
            logger.error(
                f"Rollback of restore {result.restore_id} failed, "
                f"safety snapshot kept at {snapshot.key}: {rollback_error}"
            )
            self._finish(result, RestoreState.PARTIAL_FAILURE, f"{reason}; rollback failed: {rollback_error}")
            return result.state

        self._finish(result, RestoreState.ROLLED_BACK, reason)
        await self._discard_snapshot(result, snapshot)
        return result.state

    async def _rollback(self, snapshot: SafetySnapshot) -> None:
        artifact = await self.storage.read(snapshot.key)
        payload = await asyncio.to_thread(self.codec.decode, artifact, snapshot.options)
        manifest, contents = await asyncio.to_thread(unpack_payload, payload)

        for component in manifest.components:
            exporter = self.exporters[component.name]
            if component.metadata.get("existed"):
                await exporter.restore(contents[component.name], overwrite=True)
            else:
                await exporter.remove()
        logger.info(f"Rolled back live stores from safety snapshot {snapshot.key}")

    async def _discard_snapshot(self, result: RestoreResult, snapshot: SafetySnapshot) -> None:
        try:
            await self.storage.delete(snapshot.key)
            result.safety_snapshot_path = None
        except Exception as e:
            logger.warning(f"Could not delete safety snapshot {snapshot.key}: {e}")

    def _finish(self, result: RestoreResult, state: RestoreState, error: Optional[str] = None) -> None:
        result.state = state
        result.error_message = error
        result.inconsistent = state == RestoreState.PARTIAL_FAILURE
        result.completed_at = self.clock.now()

    def _get_version(self) -> str:
        from .. import __version__
        return __version__
