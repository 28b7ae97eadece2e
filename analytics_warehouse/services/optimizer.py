"""Query performance log and the self-optimization cycle.

The log keeps the most recent query execution records. The optimizer reads
them to find frequent access patterns, records an index for each one, prunes
stale aggregate rows and reports how much the mean query latency moved.
None of this changes what a query returns.
"""

import asyncio
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple

import structlog

from ..config import Settings
from ..core.clock import Clock
from ..models.errors import OptimizationInProgressError
from ..models.metrics import OptimizationSummary, QueryExecutionRecord
from .store import AggregateStore

logger = structlog.get_logger(__name__)

PATTERN_METRIC_ONLY = "metric-only"
PATTERN_TIMESTAMP_RANGE = "timestamp-range"
PATTERN_DIMENSION_FILTERED = "dimension-filtered"


class QueryPerformanceLog:
    """Bounded ring of query execution records; the oldest are evicted."""

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self._records: Deque[QueryExecutionRecord] = deque(maxlen=capacity)
        self.total_recorded = 0

    def record(self, record: QueryExecutionRecord) -> None:
        self._records.append(record)
        self.total_recorded += 1

    def snapshot(self) -> List[QueryExecutionRecord]:
        return list(self._records)

    def average_duration_ms(self) -> float:
        if not self._records:
            return 0.0
        return sum(r.execution_duration_ms for r in self._records) / len(self._records)

    def slow_queries(self, threshold_ms: float) -> List[QueryExecutionRecord]:
        return [r for r in self._records if r.execution_duration_ms > threshold_ms]

    def __len__(self) -> int:
        return len(self._records)


@dataclass(frozen=True)
class QueryPattern:
    """Coarse access pattern of a query and the fields an index would cover."""

    label: str
    fields: Tuple[str, ...]

    @property
    def index_name(self) -> str:
        return "idx_" + "_".join(self.fields)


def classify(record: QueryExecutionRecord) -> QueryPattern:
    """Map a query execution record to its access pattern."""
    if record.dimension_filter_keys:
        return QueryPattern(
            PATTERN_DIMENSION_FILTERED,
            ("metric", "granularity")
            + tuple(f"dim_{key}" for key in sorted(record.dimension_filter_keys)),
        )
    if record.rows_in_range < record.rows_scanned:
        return QueryPattern(
            PATTERN_TIMESTAMP_RANGE, ("metric", "granularity", "bucket_start")
        )
    return QueryPattern(PATTERN_METRIC_ONLY, ("metric", "granularity"))


def performance_improvement(records: List[QueryExecutionRecord], window: int) -> float:
    """Percentage drop in mean duration between the last two windows.

    Returns 0.0 when the older window is empty or its mean is zero.
    """
    recent = records[-window:]
    older = records[-2 * window : -window] if len(records) > window else []
    if not older:
        return 0.0

    recent_avg = sum(r.execution_duration_ms for r in recent) / len(recent)
    older_avg = sum(r.execution_duration_ms for r in older) / len(older)
    if older_avg == 0:
        return 0.0
    return ((older_avg - recent_avg) / older_avg) * 100


class QueryOptimizer:
    """Runs optimization cycles; only one cycle may be in flight."""

    def __init__(
        self,
        store: AggregateStore,
        query_log: QueryPerformanceLog,
        settings: Settings,
        clock: Clock,
        is_prunable: Optional[Callable[[str], bool]] = None,
    ):
        self.store = store
        self.query_log = query_log
        self.clock = clock
        self.config = settings.optimization
        self.is_prunable = is_prunable or (lambda metric: True)

        self.index_efficiency = self.config.initial_index_efficiency
        self.last_optimization_at: Optional[datetime] = None
        self.applied_indexes: Dict[str, QueryPattern] = {}
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def analyze_patterns(self, records: List[QueryExecutionRecord]) -> List[QueryPattern]:
        """Patterns seen more often than the configured threshold."""
        counts = Counter(classify(record) for record in records)
        return [
            pattern
            for pattern, count in counts.items()
            if count > self.config.optimization_pattern_threshold
        ]

    def _apply_indexes(self, proposed: List[QueryPattern]) -> List[str]:
        created = []
        for pattern in proposed:
            if pattern.index_name in self.applied_indexes:
                continue
            self.applied_indexes[pattern.index_name] = pattern
            if pattern.label == PATTERN_TIMESTAMP_RANGE:
                self.store.enable_range_index()
            created.append(pattern.index_name)
            logger.info("Created index", index=pattern.index_name, pattern=pattern.label)
        return created

    async def _prune_stale(self, cancel: Optional[asyncio.Event]) -> int:
        cutoff = self.clock.now() - timedelta(
            days=self.config.optimization_prune_horizon_days
        )
        optimized = 0
        for metric, granularity in self.store.partition_keys():
            if cancel is not None and cancel.is_set():
                logger.info("Optimization prune pass cancelled")
                break
            if not self.is_prunable(metric):
                continue
            if self.store.prune(metric, granularity, cutoff) > 0:
                optimized += 1
            await asyncio.sleep(0)
        return optimized

    async def run_cycle(
        self, cancel: Optional[asyncio.Event] = None
    ) -> OptimizationSummary:
        """Run one optimization cycle.

        Raises:
            OptimizationInProgressError: another cycle has not finished yet
        """
        if self._in_progress:
            raise OptimizationInProgressError()

        self._in_progress = True
        try:
            records = self.query_log.snapshot()
            created = self._apply_indexes(self.analyze_patterns(records))
            # in-progress flag is visible to other callers from this point
            await asyncio.sleep(0)
            optimized = await self._prune_stale(cancel)
            improvement = performance_improvement(
                self.query_log.snapshot(), self.config.optimization_window
            )

            self.last_optimization_at = self.clock.now()
            self.index_efficiency = min(
                100.0, self.index_efficiency + self.config.optimization_efficiency_step
            )

            summary = OptimizationSummary(
                indexes_created=len(created),
                queries_optimized=optimized,
                performance_improvement=improvement,
                index_names=created,
            )
            logger.info(
                "Optimization cycle completed",
                indexes_created=summary.indexes_created,
                queries_optimized=optimized,
                performance_improvement=round(improvement, 2),
                index_efficiency=self.index_efficiency,
            )
            return summary
        finally:
            self._in_progress = False
