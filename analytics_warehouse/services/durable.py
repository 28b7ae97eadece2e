"""Durable raw-sample stores.

The warehouse appends every ingested sample here and reads the samples back
only for backup and restore. Query serving never touches these stores.
"""

import json
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiosqlite
import structlog

from ..models.aggregates import MetricSample
from ..models.errors import BackupNotFoundError
from ..models.metrics import BackupInfo

logger = structlog.get_logger(__name__)

SCHEMA_SQL = """
-- Append-only raw samples
CREATE TABLE IF NOT EXISTS raw_samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    metric TEXT NOT NULL,
    value REAL NOT NULL,
    dimensions TEXT NOT NULL DEFAULT '{}',
    aggregation_kind TEXT NOT NULL,
    data_type TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Backup catalogue
CREATE TABLE IF NOT EXISTS backups (
    backup_id TEXT PRIMARY KEY,
    sample_count INTEGER NOT NULL,
    size INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

-- Frozen copies of raw_samples taken at backup time
CREATE TABLE IF NOT EXISTS backup_samples (
    backup_id TEXT NOT NULL,
    sample_id INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    metric TEXT NOT NULL,
    value REAL NOT NULL,
    dimensions TEXT NOT NULL,
    aggregation_kind TEXT NOT NULL,
    data_type TEXT,
    PRIMARY KEY (backup_id, sample_id)
);

CREATE INDEX IF NOT EXISTS idx_raw_samples_metric ON raw_samples(metric);
CREATE INDEX IF NOT EXISTS idx_backup_samples_backup ON backup_samples(backup_id);
"""

_SAMPLE_COLUMNS = "timestamp, metric, value, dimensions, aggregation_kind, data_type"


def _new_backup_id() -> str:
    return f"backup_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def _sample_params(sample: MetricSample) -> Tuple:
    return (
        sample.timestamp.isoformat(),
        sample.metric,
        float(sample.value),
        json.dumps(sample.dimensions.to_dict(), sort_keys=True),
        sample.aggregation_kind.value,
        sample.data_type,
    )


def _sample_from_row(row) -> MetricSample:
    return MetricSample.from_dict(
        {
            "timestamp": row["timestamp"],
            "metric": row["metric"],
            "value": row["value"],
            "dimensions": json.loads(row["dimensions"]),
            "aggregation_kind": row["aggregation_kind"],
            "data_type": row["data_type"],
        }
    )


class DurableSampleStore:
    """Interface of the external durable store.

    Implementations provide an append-only write and a bulk read. Backups
    are point-in-time copies of everything appended so far.
    """

    async def start(self) -> None:
        """Open connections. Default is a no-op."""

    async def append(self, sample: MetricSample) -> None:
        raise NotImplementedError

    async def read_all(self) -> List[MetricSample]:
        raise NotImplementedError

    async def create_backup(self) -> BackupInfo:
        raise NotImplementedError

    async def read_backup(self, backup_id: str) -> List[MetricSample]:
        raise NotImplementedError

    async def list_backups(self) -> List[BackupInfo]:
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections. Default is a no-op."""


class InMemorySampleStore(DurableSampleStore):
    """Process-local store used when SQLite persistence is disabled."""

    def __init__(self):
        self._samples: List[MetricSample] = []
        self._backups: Dict[str, Tuple[BackupInfo, List[MetricSample]]] = {}

    async def append(self, sample: MetricSample) -> None:
        self._samples.append(sample)

    async def read_all(self) -> List[MetricSample]:
        return list(self._samples)

    async def create_backup(self) -> BackupInfo:
        samples = list(self._samples)
        info = BackupInfo(
            backup_id=_new_backup_id(),
            size=sum(len(json.dumps(s.to_dict())) for s in samples),
            sample_count=len(samples),
        )
        self._backups[info.backup_id] = (info, samples)
        return info

    async def read_backup(self, backup_id: str) -> List[MetricSample]:
        if backup_id not in self._backups:
            raise BackupNotFoundError(backup_id)
        return list(self._backups[backup_id][1])

    async def list_backups(self) -> List[BackupInfo]:
        return [info for info, _ in self._backups.values()]


class SQLiteSampleStore(DurableSampleStore):
    """Raw samples persisted to SQLite through aiosqlite (WAL journal)."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def start(self) -> None:
        if self._db is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

        logger.info("SQLite sample store opened", db_path=self.db_path)

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.start()
        return self._db

    async def append(self, sample: MetricSample) -> None:
        db = await self._connection()
        await db.execute(
            f"INSERT INTO raw_samples ({_SAMPLE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            _sample_params(sample),
        )
        await db.commit()

    async def read_all(self) -> List[MetricSample]:
        db = await self._connection()
        cursor = await db.execute(
            f"SELECT {_SAMPLE_COLUMNS} FROM raw_samples ORDER BY id"
        )
        return [_sample_from_row(row) async for row in cursor]

    async def create_backup(self) -> BackupInfo:
        db = await self._connection()
        backup_id = _new_backup_id()
        created_at = datetime.now(timezone.utc)

        await db.execute(
            f"""
            INSERT INTO backup_samples (backup_id, sample_id, {_SAMPLE_COLUMNS})
            SELECT ?, id, {_SAMPLE_COLUMNS} FROM raw_samples
            """,
            (backup_id,),
        )
        cursor = await db.execute(
            """
            SELECT
                COUNT(*) as sample_count,
                COALESCE(SUM(LENGTH(timestamp) + LENGTH(metric) + LENGTH(dimensions)
                    + LENGTH(aggregation_kind) + 8), 0) as size
            FROM backup_samples
            WHERE backup_id = ?
            """,
            (backup_id,),
        )
        row = await cursor.fetchone()
        info = BackupInfo(
            backup_id=backup_id,
            size=row["size"],
            sample_count=row["sample_count"],
            created_at=created_at,
        )
        await db.execute(
            "INSERT INTO backups (backup_id, sample_count, size, created_at) "
            "VALUES (?, ?, ?, ?)",
            (info.backup_id, info.sample_count, info.size, created_at.isoformat()),
        )
        await db.commit()

        logger.info(
            "Backup created", backup_id=backup_id, sample_count=info.sample_count
        )
        return info

    async def read_backup(self, backup_id: str) -> List[MetricSample]:
        db = await self._connection()
        cursor = await db.execute(
            "SELECT backup_id FROM backups WHERE backup_id = ?", (backup_id,)
        )
        if await cursor.fetchone() is None:
            raise BackupNotFoundError(backup_id)

        cursor = await db.execute(
            f"""
            SELECT {_SAMPLE_COLUMNS} FROM backup_samples
            WHERE backup_id = ?
            ORDER BY sample_id
            """,
            (backup_id,),
        )
        return [_sample_from_row(row) async for row in cursor]

    async def list_backups(self) -> List[BackupInfo]:
        db = await self._connection()
        cursor = await db.execute(
            "SELECT backup_id, sample_count, size, created_at FROM backups "
            "ORDER BY created_at DESC"
        )
        return [
            BackupInfo(
                backup_id=row["backup_id"],
                size=row["size"],
                sample_count=row["sample_count"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            async for row in cursor
        ]

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("SQLite sample store closed")
