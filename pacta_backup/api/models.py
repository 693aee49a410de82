"""API request/response models."""

from typing import Optional

from pydantic import BaseModel, Field

from ..backup.models import CamelModel, RestoreOptions


class RestoreBody(CamelModel):
    """Body of ``POST /backups/{backup_id}/restore``."""
    options: RestoreOptions = Field(default_factory=RestoreOptions)
    confirm: bool = False


class MessageResponse(BaseModel):
    message: str


class HealthStatus(BaseModel):
    status: str  # healthy, degraded, unhealthy
    catalog: bool
    storage: bool
    scheduler_running: bool
    next_scheduled_run: Optional[str] = None
    operation_in_progress: Optional[str] = None
