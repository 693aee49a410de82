"""Dependency injection for FastAPI."""

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from pacta_backup.backup import BackupManager, CommandDispatcher


async def get_backup_manager(request: Request) -> "BackupManager":
    """Get BackupManager instance from app state."""
    return request.app.state.backup_manager


async def get_dispatcher(request: Request) -> "CommandDispatcher":
    """Get command dispatcher from app state."""
    return request.app.state.dispatcher
