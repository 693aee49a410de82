"""Time source for the scheduler."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime

from .._utils import utc_now


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Wait for ``seconds``."""


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return utc_now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
