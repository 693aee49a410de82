"""Tests for the cron backup scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pacta_backup.backup.errors import ValidationError
from pacta_backup.backup.models import BackupStatus, BackupType, ScheduleConfig
from tests.backup.base.catalog_suite import make_record

MIDNIGHT = datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler(manager):
    return manager.scheduler


def test_next_run_from_clock(scheduler):
    # Default schedule is daily at midnight; the fake clock starts at noon
    assert scheduler.next_run == MIDNIGHT
    assert not scheduler.is_running


def test_reschedule(scheduler):
    scheduler.reschedule(ScheduleConfig(cron_expression="30 14 * * *", retention_days=3))
    assert scheduler.next_run == datetime(2024, 1, 1, 14, 30, tzinfo=timezone.utc)
    assert scheduler.config.retention_days == 3

    scheduler.reschedule(ScheduleConfig(enabled=False))
    assert scheduler.next_run is None


def test_invalid_cron_leaves_schedule_unchanged(scheduler):
    before = scheduler.config

    with pytest.raises(ValidationError):
        scheduler.reschedule(ScheduleConfig(cron_expression="every day at noon"))

    assert scheduler.config is before
    assert scheduler.next_run == MIDNIGHT


@pytest.mark.asyncio
async def test_update_schedule_invalid_is_not_persisted(manager):
    with pytest.raises(ValidationError):
        await manager.update_schedule_config(ScheduleConfig(cron_expression="0 0 * *", retention_days=0))

    assert await manager.get_schedule_config() == ScheduleConfig()
    assert manager.scheduler.next_run == MIDNIGHT


@pytest.mark.asyncio
async def test_update_schedule_persists_and_reschedules(manager):
    config = ScheduleConfig(cron_expression="0 */6 * * *", retention_days=14)

    assert await manager.update_schedule_config(config) == config

    assert await manager.get_schedule_config() == config
    assert manager.scheduler.next_run == datetime(2024, 1, 1, 18, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_not_due_does_nothing(manager, scheduler):
    assert await scheduler.run_pending() is None
    assert await manager.catalog.all() == []


@pytest.mark.asyncio
async def test_due_tick_creates_automatic_backup_and_sweeps(manager, scheduler, clock):
    old = make_record(1, created_at=clock.now() - timedelta(days=30), storage_path="manual/old.pbak")
    await manager.catalog.insert(old)
    await manager.storage.write(old.storage_path, b"old artifact")
    clock.set(MIDNIGHT)

    record = await scheduler.run_pending()

    assert record.type == BackupType.AUTOMATIC
    assert record.status == BackupStatus.COMPLETED
    assert record.description == "Scheduled backup"
    assert scheduler.next_run == MIDNIGHT + timedelta(days=1)
    # The 30 day old backup is past the default 7 day window
    assert await manager.catalog.get(old.id) is None
    assert [r.id for r in await manager.catalog.all()] == [record.id]


@pytest.mark.asyncio
async def test_tick_skipped_while_busy(manager, scheduler, clock):
    clock.set(MIDNIGHT + timedelta(seconds=5))
    manager.lock.try_acquire("restore", "other")
    try:
        assert await scheduler.run_pending() is None
    finally:
        manager.lock.release()

    assert await manager.catalog.all() == []
    # Skipped, not queued: the next attempt is the following tick
    assert scheduler.next_run == MIDNIGHT + timedelta(days=1)
    assert await scheduler.run_pending() is None


@pytest.mark.asyncio
async def test_missed_ticks_not_replayed(manager, scheduler, clock):
    clock.set(MIDNIGHT + timedelta(days=3, hours=5))

    assert await scheduler.run_pending() is not None
    assert scheduler.next_run == MIDNIGHT + timedelta(days=4)
    assert await scheduler.run_pending() is None
    assert len(await manager.catalog.all()) == 1


@pytest.mark.asyncio
async def test_failed_tick_is_logged_not_raised(manager, scheduler, clock, memory_storage):
    memory_storage.fail_all_writes = True
    clock.set(MIDNIGHT)

    assert await scheduler.run_pending() is None

    [record] = await manager.catalog.all()
    assert record.status == BackupStatus.FAILED
    assert not manager.lock.locked


@pytest.mark.asyncio
async def test_disabled_schedule_never_fires(manager, scheduler, clock):
    scheduler.reschedule(ScheduleConfig(enabled=False))
    clock.advance(days=10)

    assert await scheduler.run_pending() is None


@pytest.mark.asyncio
async def test_background_loop(manager, scheduler, clock):
    clock.set(MIDNIGHT - timedelta(seconds=30))
    scheduler.start()
    assert scheduler.is_running

    async def first_automatic():
        while True:
            records = await manager.catalog.all()
            if any(r.type == BackupType.AUTOMATIC and r.status == BackupStatus.COMPLETED for r in records):
                return
            await asyncio.sleep(0.01)

    try:
        await asyncio.wait_for(first_automatic(), timeout=10)
    finally:
        await scheduler.stop()

    assert not scheduler.is_running
    assert clock.sleeps[0] == 30
