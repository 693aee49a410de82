"""Backup catalog: persisted BackupRecord metadata plus the schedule config.

The catalog is independent of where artifacts live. Each record has a single
writer at a time (creator, restore bookkeeping or retention), so backends
only need to serialize their own file/connection access.
"""

import asyncio
import json
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .._utils import atomic_write_bytes, logger
from .errors import NotFoundError
from .models import BackupListQuery, BackupPage, BackupRecord, ScheduleConfig
from .validation import validate_pagination

SORTABLE_FIELDS = ("created_at", "completed_at", "size_bytes", "type", "status")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _sort_key(record: BackupRecord, sort_by: str):
    value = getattr(record, sort_by)
    if isinstance(value, datetime):
        return _as_utc(value).timestamp()
    if hasattr(value, "value"):
        return value.value
    return value


def query_records(records: List[BackupRecord], query: BackupListQuery) -> BackupPage:
    """Filter, sort and paginate ``records`` according to ``query``."""
    validate_pagination(
        query.page, query.limit, query.sort_by, query.sort_order, SORTABLE_FIELDS
    ).raise_for_errors("Invalid list query")

    matches = []
    for record in records:
        if query.type is not None and record.type != query.type:
            continue
        if query.status is not None and record.status != query.status:
            continue
        created_at = _as_utc(record.created_at)
        if query.from_date is not None and created_at < _as_utc(query.from_date):
            continue
        if query.to_date is not None and created_at > _as_utc(query.to_date):
            continue
        matches.append(record)

    # Records without a value for the sort field always go last
    present = [r for r in matches if getattr(r, query.sort_by) is not None]
    missing = [r for r in matches if getattr(r, query.sort_by) is None]
    present.sort(key=lambda r: _sort_key(r, query.sort_by), reverse=query.sort_order == "desc")
    ordered = present + missing

    total = len(ordered)
    start = (query.page - 1) * query.limit
    return BackupPage(
        items=ordered[start:start + query.limit],
        total=total,
        page=query.page,
        limit=query.limit,
        pages=math.ceil(total / query.limit) if total else 0,
    )


class BackupCatalog(ABC):
    """Persistence contract for backup records and the schedule singleton."""

    @abstractmethod
    async def insert(self, record: BackupRecord) -> None:
        """Add a new record; ValueError if the id exists."""

    @abstractmethod
    async def update(self, record: BackupRecord) -> None:
        """Replace an existing record; NotFoundError if unknown."""

    @abstractmethod
    async def get(self, backup_id: str) -> Optional[BackupRecord]:
        """Return the record or None."""

    @abstractmethod
    async def delete(self, backup_id: str) -> bool:
        """Remove the record. Returns False if it did not exist."""

    @abstractmethod
    async def all(self) -> List[BackupRecord]:
        """Every record, unordered."""

    @abstractmethod
    async def load_schedule_config(self) -> ScheduleConfig:
        """Persisted schedule, or the defaults if none was saved yet."""

    @abstractmethod
    async def save_schedule_config(self, config: ScheduleConfig) -> None:
        """Persist the schedule singleton."""

    async def list(self, query: Optional[BackupListQuery] = None) -> BackupPage:
        return query_records(await self.all(), query or BackupListQuery())

    async def close(self) -> None:
        """Release backend resources."""


class JsonBackupCatalog(BackupCatalog):
    """Catalog kept in a single JSON file, rewritten atomically on every change."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._records: Dict[str, BackupRecord] = {}
        self._schedule: Optional[ScheduleConfig] = None
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info(f"Catalog file not found, starting empty: {self.path}")
            return

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        for record_id, record_data in data.get("records", {}).items():
            self._records[record_id] = BackupRecord.model_validate(record_data)
        if data.get("schedule"):
            self._schedule = ScheduleConfig.model_validate(data["schedule"])

        logger.debug(f"Loaded catalog {self.path} with {len(self._records)} records")

    async def _persist(self, records: Dict[str, BackupRecord], schedule: Optional[ScheduleConfig]) -> None:
        """Write ``records`` and ``schedule`` to disk, then make them the in-memory state."""
        data = {
            "records": {
                record_id: record.model_dump(mode="json", exclude={"size_human"})
                for record_id, record in records.items()
            },
            "schedule": schedule.model_dump(mode="json") if schedule else None,
        }
        payload = json.dumps(data, indent=2).encode("utf-8")
        await asyncio.to_thread(atomic_write_bytes, self.path, payload, 0o600)
        self._records = records
        self._schedule = schedule

    async def insert(self, record: BackupRecord) -> None:
        async with self._lock:
            if record.id in self._records:
                raise ValueError(f"Backup record already exists: {record.id}")
            records = {**self._records, record.id: record.model_copy(deep=True)}
            await self._persist(records, self._schedule)

    async def update(self, record: BackupRecord) -> None:
        async with self._lock:
            if record.id not in self._records:
                raise NotFoundError(f"Backup not found: {record.id}")
            records = {**self._records, record.id: record.model_copy(deep=True)}
            await self._persist(records, self._schedule)

    async def get(self, backup_id: str) -> Optional[BackupRecord]:
        record = self._records.get(backup_id)
        return record.model_copy(deep=True) if record else None

    async def delete(self, backup_id: str) -> bool:
        async with self._lock:
            if backup_id not in self._records:
                return False
            records = {k: v for k, v in self._records.items() if k != backup_id}
            await self._persist(records, self._schedule)
            return True

    async def all(self) -> List[BackupRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]

    async def load_schedule_config(self) -> ScheduleConfig:
        return self._schedule.model_copy() if self._schedule else ScheduleConfig()

    async def save_schedule_config(self, config: ScheduleConfig) -> None:
        async with self._lock:
            await self._persist(self._records, config.model_copy())


class RedisBackupCatalog(BackupCatalog):
    """Catalog stored in Redis: one key per record plus an id index set."""

    def __init__(self, redis_url: str, password: Optional[str] = None, prefix: str = "pacta_backup:"):
        self.redis_url = redis_url
        self.redis_password = password
        self._prefix = prefix
        self._redis_client = None
        self._initialized = False

    async def _ensure_initialized(self):
        if self._initialized:
            return

        import redis.asyncio as aioredis
        from redis.backoff import ExponentialBackoff
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import RedisError
        from redis.retry import Retry

        retry = Retry(
            ExponentialBackoff(cap=10, base=1),
            retries=3,
            supported_errors=(RedisConnectionError, TimeoutError, ConnectionError)
        )
        self._redis_client = aioredis.from_url(
            self.redis_url,
            password=self.redis_password,
            decode_responses=True,
            retry=retry,
        )

        try:
            await self._redis_client.ping()
            logger.info("Connected to Redis for backup catalog")
        except RedisError as e:
            logger.error(f"Redis connection failed: {e}")
            raise

        self._initialized = True

    def _record_key(self, backup_id: str) -> str:
        return f"{self._prefix}record:{backup_id}"

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}records"

    @property
    def _schedule_key(self) -> str:
        return f"{self._prefix}schedule"

    @staticmethod
    def _serialize(record: BackupRecord) -> str:
        return record.model_dump_json(exclude={"size_human"})

    async def insert(self, record: BackupRecord) -> None:
        await self._ensure_initialized()
        created = await self._redis_client.set(
            self._record_key(record.id), self._serialize(record), nx=True
        )
        if not created:
            raise ValueError(f"Backup record already exists: {record.id}")
        await self._redis_client.sadd(self._index_key, record.id)

    async def update(self, record: BackupRecord) -> None:
        await self._ensure_initialized()
        updated = await self._redis_client.set(
            self._record_key(record.id), self._serialize(record), xx=True
        )
        if not updated:
            raise NotFoundError(f"Backup not found: {record.id}")

    async def get(self, backup_id: str) -> Optional[BackupRecord]:
        await self._ensure_initialized()
        data = await self._redis_client.get(self._record_key(backup_id))
        return BackupRecord.model_validate_json(data) if data else None

    async def delete(self, backup_id: str) -> bool:
        await self._ensure_initialized()
        async with self._redis_client.pipeline(transaction=True) as pipe:
            pipe.delete(self._record_key(backup_id))
            pipe.srem(self._index_key, backup_id)
            deleted, _ = await pipe.execute()
        return bool(deleted)

    async def all(self) -> List[BackupRecord]:
        await self._ensure_initialized()
        ids = sorted(await self._redis_client.smembers(self._index_key))
        if not ids:
            return []

        async with self._redis_client.pipeline() as pipe:
            for backup_id in ids:
                pipe.get(self._record_key(backup_id))
            results = await pipe.execute()

        records = []
        for backup_id, data in zip(ids, results):
            if data is None:
                logger.warning(f"Catalog index references missing record: {backup_id}")
                continue
            records.append(BackupRecord.model_validate_json(data))
        return records

    async def load_schedule_config(self) -> ScheduleConfig:
        await self._ensure_initialized()
        data = await self._redis_client.get(self._schedule_key)
        return ScheduleConfig.model_validate_json(data) if data else ScheduleConfig()

    async def save_schedule_config(self, config: ScheduleConfig) -> None:
        await self._ensure_initialized()
        await self._redis_client.set(self._schedule_key, config.model_dump_json())

    async def close(self) -> None:
        if self._redis_client is not None:
            await self._redis_client.aclose()
            self._redis_client = None
            self._initialized = False


def create_catalog(config) -> BackupCatalog:
    """Build the catalog selected by a ``CatalogConfig``."""
    if config.backend == "redis":
        return RedisBackupCatalog(config.redis_url, config.redis_password, config.redis_prefix)
    return JsonBackupCatalog(config.path)
