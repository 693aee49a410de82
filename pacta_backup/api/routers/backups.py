"""Backup and restore API endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from starlette.status import HTTP_202_ACCEPTED

from pacta_backup.backup.handlers import (
    BackupCommand,
    BackupIdCommand,
    CommandDispatcher,
    CreateBackupCommand,
    EmptyCommand,
    ExportBackupCommand,
    RestoreBackupCommand,
    RestoreIdCommand,
)
from pacta_backup.backup.models import (
    BackupListQuery,
    BackupPage,
    BackupRecord,
    BackupStatistics,
    BackupStatus,
    BackupType,
    ExportOptions,
    IntegrityReport,
    RestoreResult,
    RetentionResult,
    ScheduleConfig,
)

from ..dependencies import get_dispatcher
from ..models import MessageResponse, RestoreBody

router = APIRouter(prefix="/backups", tags=["backups"])


@router.post("", response_model=BackupRecord, status_code=HTTP_202_ACCEPTED)
async def create_backup(
    request: CreateBackupCommand,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> BackupRecord:
    """Start a backup in the background.

    Returns the ``in_progress`` record; poll ``GET /backups/{id}`` for completion.
    """
    return await dispatcher.dispatch(BackupCommand.CREATE_BACKUP, request)


@router.get("", response_model=BackupPage)
async def list_backups(
    type: Optional[BackupType] = None,
    status: Optional[BackupStatus] = None,
    from_date: Optional[datetime] = Query(None, alias="fromDate"),
    to_date: Optional[datetime] = Query(None, alias="toDate"),
    page: int = 1,
    limit: int = 20,
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> BackupPage:
    """List backups with filters, pagination and sorting."""
    query = BackupListQuery(
        type=type,
        status=status,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return await dispatcher.dispatch(BackupCommand.LIST_BACKUPS, query)


@router.get("/statistics", response_model=BackupStatistics)
async def get_statistics(dispatcher: CommandDispatcher = Depends(get_dispatcher)) -> BackupStatistics:
    return await dispatcher.dispatch(BackupCommand.GET_STATISTICS, EmptyCommand())


@router.get("/schedule", response_model=ScheduleConfig)
async def get_schedule(dispatcher: CommandDispatcher = Depends(get_dispatcher)) -> ScheduleConfig:
    return await dispatcher.dispatch(BackupCommand.GET_SCHEDULE, EmptyCommand())


@router.put("/schedule", response_model=ScheduleConfig)
async def update_schedule(
    config: ScheduleConfig,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> ScheduleConfig:
    """Validate, persist and apply a new automatic backup schedule."""
    return await dispatcher.dispatch(BackupCommand.UPDATE_SCHEDULE, config)


@router.post("/retention", response_model=RetentionResult)
async def run_retention(dispatcher: CommandDispatcher = Depends(get_dispatcher)) -> RetentionResult:
    """Run a retention sweep now with the persisted schedule's retention window."""
    return await dispatcher.dispatch(BackupCommand.RUN_RETENTION, EmptyCommand())


@router.get("/restores/{restore_id}", response_model=RestoreResult)
async def get_restore(
    restore_id: str,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> RestoreResult:
    return await dispatcher.dispatch(BackupCommand.GET_RESTORE, RestoreIdCommand(restore_id=restore_id))


@router.get("/{backup_id}", response_model=BackupRecord)
async def get_backup(
    backup_id: str,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> BackupRecord:
    return await dispatcher.dispatch(BackupCommand.GET_BACKUP, BackupIdCommand(backup_id=backup_id))


@router.delete("/{backup_id}", response_model=MessageResponse)
async def delete_backup(
    backup_id: str,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> MessageResponse:
    """Delete a backup's catalog entry and artifact."""
    await dispatcher.dispatch(BackupCommand.DELETE_BACKUP, BackupIdCommand(backup_id=backup_id))
    return MessageResponse(message=f"Backup deleted: {backup_id}")


@router.post("/{backup_id}/cancel", response_model=BackupRecord)
async def cancel_backup(
    backup_id: str,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> BackupRecord:
    return await dispatcher.dispatch(BackupCommand.CANCEL_BACKUP, BackupIdCommand(backup_id=backup_id))


@router.post("/{backup_id}/verify", response_model=IntegrityReport)
async def verify_backup(
    backup_id: str,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> IntegrityReport:
    """Recompute the artifact checksum and compare it with the catalog."""
    return await dispatcher.dispatch(BackupCommand.VERIFY_BACKUP, BackupIdCommand(backup_id=backup_id))


@router.post("/{backup_id}/restore", response_model=RestoreResult, status_code=HTTP_202_ACCEPTED)
async def restore_backup(
    backup_id: str,
    body: RestoreBody,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> RestoreResult:
    """Start a restore in the background.

    ``confirm`` must be true. Poll ``GET /backups/restores/{restore_id}``.
    """
    request = RestoreBackupCommand(backup_id=backup_id, options=body.options, confirm=body.confirm)
    return await dispatcher.dispatch(BackupCommand.RESTORE_BACKUP, request)


@router.post("/{backup_id}/export")
async def export_backup(
    backup_id: str,
    options: ExportOptions,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
) -> Response:
    """Download a backup as a zip, tar or password-encrypted archive."""
    exported = await dispatcher.dispatch(
        BackupCommand.EXPORT_BACKUP, ExportBackupCommand(backup_id=backup_id, options=options)
    )
    return Response(
        content=exported.data,
        media_type=exported.content_type,
        headers={"Content-Disposition": f"attachment; filename={exported.filename}"},
    )
