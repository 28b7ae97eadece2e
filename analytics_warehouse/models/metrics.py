"""Query performance, warehouse status and administrative result models."""

import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .aggregates import Granularity


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class QueryExecutionRecord:
    """Execution metadata captured for every query call.

    ``rows_scanned`` is the size of the (metric, granularity) partition before
    filtering, ``rows_in_range`` the rows left after the time-range filter.
    Both feed query-pattern classification in the optimizer.
    """

    metric: str
    granularity: Granularity
    start: datetime
    end: datetime
    execution_duration_ms: float
    rows_scanned: int
    rows_returned: int
    rows_in_range: int = 0
    dimension_filter_keys: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    query_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "query_id": self.query_id,
            "metric": self.metric,
            "granularity": self.granularity.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "execution_duration_ms": self.execution_duration_ms,
            "rows_scanned": self.rows_scanned,
            "rows_returned": self.rows_returned,
            "rows_in_range": self.rows_in_range,
            "dimension_filter_keys": list(self.dimension_filter_keys),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class WarehouseMetrics:
    """Process-wide operational counters."""

    total_rows: int = 0
    estimated_byte_size: int = 0
    query_count: int = 0
    average_query_duration_ms: float = 0.0
    index_efficiency_percent: float = 95.0
    compression_ratio: float = 1.0
    last_optimization_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["last_optimization_at"] = _iso(self.last_optimization_at)
        return d


@dataclass
class OptimizationSummary:
    indexes_created: int = 0
    queries_optimized: int = 0
    performance_improvement: float = 0.0
    index_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BackupInfo:
    """Backup handle returned by the durable store."""

    backup_id: str
    size: int
    sample_count: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        return d


@dataclass
class RestoreResult:
    success: bool
    records_restored: int
    duration_ms: float
    samples_replayed: int = 0
    # Every bucket of the sample was already purged by its policy
    samples_expired: int = 0
    # Invalid, or aggregated differently from an earlier sample
    samples_rejected: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
