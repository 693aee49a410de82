"""Health check endpoints."""

import asyncio
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from pacta_backup.backup import BackupManager

from ..dependencies import get_backup_manager
from ..models import HealthStatus

router = APIRouter(prefix="/health", tags=["health"])


async def check_catalog(manager: BackupManager) -> bool:
    """Check that backup records can be read."""
    await manager.catalog.all()
    return True


async def check_storage(manager: BackupManager) -> bool:
    """Check that the artifact store can be listed."""
    await manager.storage.list()
    return True


@router.get("", response_model=HealthStatus)
async def health_check(manager: BackupManager = Depends(get_backup_manager)) -> HealthStatus:
    """Catalog, storage and scheduler status."""
    catalog_health, storage_health = await asyncio.gather(
        check_catalog(manager),
        check_storage(manager),
        return_exceptions=True
    )

    # Handle exceptions from gather
    catalog_ok = catalog_health is True
    storage_ok = storage_health is True

    if catalog_ok and storage_ok:
        status = "healthy"
    elif not catalog_ok and not storage_ok:
        status = "unhealthy"
    else:
        status = "degraded"

    next_run = manager.scheduler.next_run
    return HealthStatus(
        status=status,
        catalog=catalog_ok,
        storage=storage_ok,
        scheduler_running=manager.scheduler.is_running,
        next_scheduled_run=next_run.isoformat() if next_run else None,
        operation_in_progress=manager.lock.holder,
    )


@router.get("/ready")
async def readiness_probe(manager: BackupManager = Depends(get_backup_manager)) -> Dict[str, str]:
    """Kubernetes readiness probe."""
    health = await health_check(manager)
    if health.status == "unhealthy":
        raise HTTPException(status_code=503, detail="Service not ready")
    return {"status": "ready"}


@router.get("/live")
async def liveness_probe() -> Dict[str, str]:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
