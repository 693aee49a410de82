"""Process-wide lock shared by backup creation and restore."""

import threading
from typing import Optional

from .._utils import logger
from .errors import BusyError


class OperationLock:
    """Non-blocking mutual exclusion between creations and restores.

    Acquisition never waits: a held lock raises ``BusyError`` so callers can
    report or skip instead of queueing. The holder is described by the
    operation name and the record (or restore) id it works on.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._operation: Optional[str] = None
        self._record_id: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @property
    def holder(self) -> Optional[str]:
        if self._operation is None:
            return None
        return f"{self._operation} {self._record_id}" if self._record_id else self._operation

    @property
    def record_id(self) -> Optional[str]:
        return self._record_id

    def try_acquire(self, operation: str, record_id: Optional[str] = None) -> None:
        if not self._lock.acquire(blocking=False):
            raise BusyError(self.holder)
        self._operation = operation
        self._record_id = record_id
        logger.debug(f"Operation lock acquired by {self.holder}")

    def set_record(self, record_id: str) -> None:
        """Attach the id of the record the holder works on once it is known."""
        self._record_id = record_id

    def release(self) -> None:
        if not self._lock.locked():
            raise RuntimeError("Operation lock released while not held")
        logger.debug(f"Operation lock released by {self.holder}")
        self._operation = None
        self._record_id = None
        self._lock.release()
