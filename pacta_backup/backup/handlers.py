"""Typed command surface over ``BackupManager``.

Each ``BackupCommand`` has exactly one request model and one handler. The
table is explicit so a missing or mistyped command fails loudly instead of
falling through a string switch.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from .._utils import logger
from .errors import ValidationError
from .manager import BackupManager
from .models import (
    BackupListQuery,
    BackupOptions,
    BackupType,
    CamelModel,
    ExportOptions,
    RestoreOptions,
    RestoreRequest,
    ScheduleConfig,
)


class BackupCommand(str, Enum):
    CREATE_BACKUP = "create_backup"
    CANCEL_BACKUP = "cancel_backup"
    RESTORE_BACKUP = "restore_backup"
    GET_RESTORE = "get_restore"
    DELETE_BACKUP = "delete_backup"
    LIST_BACKUPS = "list_backups"
    GET_BACKUP = "get_backup"
    VERIFY_BACKUP = "verify_backup"
    GET_SCHEDULE = "get_schedule"
    UPDATE_SCHEDULE = "update_schedule"
    RUN_RETENTION = "run_retention"
    EXPORT_BACKUP = "export_backup"
    GET_STATISTICS = "get_statistics"


class CreateBackupCommand(CamelModel):
    type: BackupType = BackupType.MANUAL
    description: Optional[str] = None
    options: Optional[BackupOptions] = None


class RestoreBackupCommand(CamelModel):
    backup_id: str
    options: RestoreOptions = Field(default_factory=RestoreOptions)
    confirm: bool = False


class BackupIdCommand(CamelModel):
    backup_id: str


class RestoreIdCommand(CamelModel):
    restore_id: str


class ExportBackupCommand(CamelModel):
    backup_id: str
    options: ExportOptions = Field(default_factory=ExportOptions)


class EmptyCommand(CamelModel):
    pass


Handler = Callable[[Any], Awaitable[Any]]


class CommandDispatcher:
    """Routes typed command requests to ``BackupManager`` operations."""

    def __init__(self, manager: BackupManager):
        self.manager = manager
        self._handlers: Dict[BackupCommand, Tuple[Type[BaseModel], Handler]] = {
            BackupCommand.CREATE_BACKUP: (CreateBackupCommand, self._create_backup),
            BackupCommand.CANCEL_BACKUP: (BackupIdCommand, self._cancel_backup),
            BackupCommand.RESTORE_BACKUP: (RestoreBackupCommand, self._restore_backup),
            BackupCommand.GET_RESTORE: (RestoreIdCommand, self._get_restore),
            BackupCommand.DELETE_BACKUP: (BackupIdCommand, self._delete_backup),
            BackupCommand.LIST_BACKUPS: (BackupListQuery, self.manager.list_backups),
            BackupCommand.GET_BACKUP: (BackupIdCommand, self._get_backup),
            BackupCommand.VERIFY_BACKUP: (BackupIdCommand, self._verify_backup),
            BackupCommand.GET_SCHEDULE: (EmptyCommand, self._get_schedule),
            BackupCommand.UPDATE_SCHEDULE: (ScheduleConfig, self.manager.update_schedule_config),
            BackupCommand.RUN_RETENTION: (EmptyCommand, self._run_retention),
            BackupCommand.EXPORT_BACKUP: (ExportBackupCommand, self._export_backup),
            BackupCommand.GET_STATISTICS: (EmptyCommand, self._get_statistics),
        }
        missing = set(BackupCommand) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler registered for commands: {sorted(c.value for c in missing)}")

    def request_type(self, command: BackupCommand) -> Type[BaseModel]:
        return self._handlers[command][0]

    async def dispatch(self, command: BackupCommand, request: Optional[BaseModel] = None) -> Any:
        """Run ``command`` with an already typed request."""
        command = BackupCommand(command)
        request_type, handler = self._handlers[command]
        if request is None:
            request = self.parse(command, {})
        if not isinstance(request, request_type):
            raise ValidationError(
                f"{command.value} expects {request_type.__name__}, got {type(request).__name__}"
            )
        logger.debug(f"Dispatching {command.value}")
        return await handler(request)

    def parse(self, command: BackupCommand, payload: Dict[str, Any]) -> BaseModel:
        """Build the request model for ``command`` from plain data."""
        command = BackupCommand(command)
        request_type = self.request_type(command)
        try:
            return request_type.model_validate(payload)
        except ModelValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ValidationError(f"Invalid {command.value} request", errors) from e

    async def dispatch_payload(self, command: BackupCommand, payload: Dict[str, Any]) -> Any:
        return await self.dispatch(command, self.parse(command, payload))

    async def _create_backup(self, request: CreateBackupCommand):
        return await self.manager.submit_backup(request.type, request.description, request.options)

    async def _cancel_backup(self, request: BackupIdCommand):
        return await self.manager.cancel_backup(request.backup_id)

    async def _restore_backup(self, request: RestoreBackupCommand):
        return await self.manager.submit_restore(
            RestoreRequest(backup_id=request.backup_id, options=request.options),
            confirm=request.confirm,
        )

    async def _get_restore(self, request: RestoreIdCommand):
        return self.manager.get_restore(request.restore_id)

    async def _delete_backup(self, request: BackupIdCommand):
        await self.manager.delete_backup(request.backup_id)

    async def _get_backup(self, request: BackupIdCommand):
        return await self.manager.get_backup(request.backup_id)

    async def _verify_backup(self, request: BackupIdCommand):
        return await self.manager.verify_backup(request.backup_id)

    async def _get_schedule(self, request: EmptyCommand):
        return await self.manager.get_schedule_config()

    async def _run_retention(self, request: EmptyCommand):
        return await self.manager.run_retention()

    async def _export_backup(self, request: ExportBackupCommand):
        return await self.manager.export_backup(request.backup_id, request.options)

    async def _get_statistics(self, request: EmptyCommand):
        return await self.manager.get_statistics()
