"""Automatic backups on a cron schedule, followed by a retention sweep."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from .._utils import logger
from .clock import Clock, SystemClock
from .creator import BackupCreator
from .errors import BusyError, ExecutionError
from .models import BackupRecord, BackupType, ScheduleConfig
from .retention import RetentionManager
from .validation import validate_schedule_config


class BackupScheduler:
    """Fires the creator on each due cron tick.

    Time comes from the injected ``Clock``; ``run_pending`` performs at most
    one tick and can be driven directly in tests. A tick that finds the
    operation lock held is skipped, not queued, and missed ticks are not
    replayed.
    """

    MAX_SLEEP_SECONDS = 60.0

    def __init__(
        self,
        creator: BackupCreator,
        retention: RetentionManager,
        config: Optional[ScheduleConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.creator = creator
        self.retention = retention
        self.clock = clock or SystemClock()
        self._config = ScheduleConfig()
        self._trigger: Optional[CronTrigger] = None
        self._next_run: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self.reschedule(config or ScheduleConfig())

    @property
    def config(self) -> ScheduleConfig:
        return self._config

    @property
    def next_run(self) -> Optional[datetime]:
        """Next fire time, or None when the schedule is disabled."""
        return self._next_run

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def reschedule(self, config: ScheduleConfig) -> None:
        """Switch to ``config``; raises ValidationError for an invalid cron expression."""
        validate_schedule_config(config).raise_for_errors("Invalid schedule config")
        self._config = config
        self._trigger = CronTrigger.from_crontab(config.cron_expression, timezone=timezone.utc)
        self._next_run = self._compute_next(self.clock.now()) if config.enabled else None
        logger.info(
            f"Backup schedule set to '{config.cron_expression}' "
            f"(enabled={config.enabled}, retention={config.retention_days} days, next run: {self._next_run})"
        )

    def _compute_next(self, now: datetime) -> Optional[datetime]:
        # Strictly after ``now`` so a tick never fires twice
        return self._trigger.get_next_fire_time(None, now + timedelta(microseconds=1))

    async def run_pending(self) -> Optional[BackupRecord]:
        """Run the tick if one is due.

        Returns:
            The completed automatic backup, or None if nothing ran or the
            tick was skipped or failed
        """
        now = self.clock.now()
        if self._next_run is None or now < self._next_run:
            return None

        scheduled_for = self._next_run
        self._next_run = self._compute_next(now)
        logger.info(f"Scheduled backup due (scheduled for {scheduled_for.isoformat()})")

        try:
            record = await self.creator.create(BackupType.AUTOMATIC, description="Scheduled backup")
        except BusyError as e:
            logger.warning(f"Skipping scheduled backup, operation lock held: {e}")
            return None
        except ExecutionError as e:
            logger.error(f"Scheduled backup failed: {e}")
            return None

        result = await self.retention.sweep(self._config, now)
        if result.failed:
            logger.warning(f"Retention after scheduled backup left {len(result.failed)} backups undeleted")
        return record

    async def _run_loop(self) -> None:
        while True:
            if self._next_run is None:
                delay = self.MAX_SLEEP_SECONDS
            else:
                remaining = (self._next_run - self.clock.now()).total_seconds()
                delay = min(max(remaining, 0.0), self.MAX_SLEEP_SECONDS)
            await self.clock.sleep(delay)

            try:
                await self.run_pending()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")

    def start(self) -> None:
        if self.is_running:
            logger.warning("Backup scheduler already running")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Backup scheduler started, next run: {self._next_run}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Backup scheduler stopped")
