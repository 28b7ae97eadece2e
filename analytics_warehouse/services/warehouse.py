"""Analytics warehouse engine.

One AnalyticsWarehouse object is constructed per process. It owns the
aggregate store, the retention policy table, the query performance log and
the warehouse metrics. The clock and the durable raw-sample store are
injected so the whole engine can be driven deterministically in tests.

Usage:
    warehouse = AnalyticsWarehouse(settings, clock=SystemClock())
    await warehouse.start()
    await warehouse.ingest(sample)
    rows = warehouse.query("revenue", "day", start, end, {"region": "US"})
    await warehouse.stop()
"""

import math
import time
from dataclasses import replace
from datetime import datetime
from numbers import Real
from typing import Any, Dict, Iterable, List, Mapping, Optional

import structlog

from ..config import Settings, settings as default_settings
from ..core.buckets import bucket_starts, normalize
from ..core.clock import Clock, SystemClock
from ..models.aggregates import AggregateRow, AggregationKind, Granularity, MetricSample
from ..models.dimensions import DimensionSet
from ..models.errors import (
    InvalidAggregationError,
    InvalidRangeError,
    OptimizationInProgressError,
    StoreWriteError,
    UnknownDataTypeError,
    UnknownMetricError,
    ValidationError,
)
from ..models.metrics import (
    BackupInfo,
    OptimizationSummary,
    QueryExecutionRecord,
    RestoreResult,
    WarehouseMetrics,
)
from ..models.retention import RetentionPolicy, SweepSummary
from .durable import DurableSampleStore, InMemorySampleStore, SQLiteSampleStore
from .optimizer import QueryOptimizer, QueryPerformanceLog
from .retention import RetentionManager
from .scheduler import MaintenanceScheduler
from .store import AggregateStore

logger = structlog.get_logger(__name__)

# Series read by the storefront dashboards
DASHBOARD_SERIES = (
    ("revenue", Granularity.DAY),
    ("order_count", Granularity.DAY),
    ("unique_customers", Granularity.DAY),
    ("product_views", Granularity.DAY),
    ("page_load_time", Granularity.HOUR),
)


def create_durable_store(settings: Settings) -> DurableSampleStore:
    """Durable store selected by the storage settings."""
    if settings.storage.sqlite_store_enabled:
        return SQLiteSampleStore(settings.storage.sqlite_store_path)
    return InMemorySampleStore()


class AnalyticsWarehouse:
    """Ingestion, query, lifecycle and optimization over in-memory aggregates."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        durable_store: Optional[DurableSampleStore] = None,
        policies: Optional[Iterable[Dict[str, Any]]] = None,
    ):
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.tz = self.settings.get_timezone()

        self.store = AggregateStore()
        self.durable_store = durable_store or create_durable_store(self.settings)
        self.query_log = QueryPerformanceLog(self.settings.query_log_capacity)
        self.retention = RetentionManager(
            self.store, self.settings, self.clock, policies=policies
        )
        self.optimizer = QueryOptimizer(
            self.store,
            self.query_log,
            self.settings,
            self.clock,
            is_prunable=self.retention.is_active_metric,
        )
        self.scheduler = MaintenanceScheduler(self.clock)
        self._register_tasks()

        self._metrics = self._compute_metrics()
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _register_tasks(self) -> None:
        retention = self.settings.retention
        optimization = self.settings.optimization
        self.scheduler.add(
            "archival", retention.archival_interval_hours * 3600, self.run_archival_sweep
        )
        self.scheduler.add(
            "purge", retention.purge_interval_hours * 3600, self.run_purge_sweep
        )
        self.scheduler.add(
            "compression",
            retention.compression_interval_hours * 3600,
            self.run_compression_sweep,
        )
        self.scheduler.add(
            "optimization",
            optimization.optimization_interval_minutes * 60,
            self._scheduled_optimization,
        )
        self.scheduler.add(
            "monitor",
            self.settings.monitor_interval_minutes * 60,
            self._scheduled_monitor,
        )

    async def start(self) -> None:
        """Open the durable store and start background maintenance."""
        if self._running:
            return

        await self.durable_store.start()
        if self.settings.background_tasks_enabled:
            self.scheduler.start()
        self._running = True

        logger.info(
            "Analytics warehouse started",
            timezone=self.settings.warehouse_timezone,
            durable_store=type(self.durable_store).__name__,
            background_tasks=self.settings.background_tasks_enabled,
            retention_policies=len(self.retention.policies()),
        )

    async def stop(self) -> None:
        """Stop background tasks and close the durable store."""
        if not self._running:
            return

        self._running = False
        await self.scheduler.stop()
        await self.durable_store.close()
        logger.info("Analytics warehouse stopped")

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _validate_sample(self, sample: MetricSample) -> MetricSample:
        if not isinstance(sample.metric, str) or not sample.metric.strip():
            raise UnknownMetricError(sample.metric)
        if not isinstance(sample.timestamp, datetime):
            raise ValidationError(
                f"Sample timestamp must be a datetime, got {type(sample.timestamp).__name__}"
            )
        value = sample.value
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidAggregationError(
                f"Sample value must be a number, got {type(value).__name__}"
            )
        if not math.isfinite(value):
            raise InvalidAggregationError(f"Sample value must be finite, got {value}")

        return replace(
            sample,
            timestamp=normalize(sample.timestamp, self.tz),
            value=float(value),
            dimensions=DimensionSet.from_mapping(sample.dimensions),
            aggregation_kind=AggregationKind.parse(sample.aggregation_kind),
        )

    def _aggregate(
        self,
        sample: MetricSample,
        store: Optional[AggregateStore] = None,
        purge_before: Optional[datetime] = None,
    ) -> int:
        """Fold a validated sample into every granularity's bucket.

        Buckets starting at or before ``purge_before`` are left out. Returns
        the number of granularities updated.
        """
        if store is None:
            store = self.store
        starts = bucket_starts(sample.timestamp, self.tz)
        if purge_before is not None:
            starts = {g: b for g, b in starts.items() if b > purge_before}

        # Kind is fixed per row; reject before touching any granularity
        for granularity, bucket_start in starts.items():
            store.check_kind(
                sample.metric,
                granularity,
                bucket_start,
                sample.dimensions,
                sample.aggregation_kind,
            )
        self.retention.check_hint(sample.data_type)

        for granularity, bucket_start in starts.items():
            store.upsert(
                sample.metric,
                granularity,
                bucket_start,
                sample.dimensions,
                sample.value,
                sample.aggregation_kind,
            )
        self.retention.register_hint(sample.metric, sample.data_type)
        return len(starts)

    async def ingest(self, sample: MetricSample) -> None:
        """Aggregate one sample and append it to the durable store.

        Raises:
            ValidationError: malformed sample, nothing was mutated
            StoreWriteError: the durable append failed; aggregates kept the update
        """
        sample = self._validate_sample(sample)
        self._aggregate(sample)
        self._refresh_metrics()

        try:
            await self.durable_store.append(sample)
        except Exception as e:
            logger.error(
                "raw_sample_write_failed",
                metric=sample.metric,
                timestamp=sample.timestamp.isoformat(),
                error=str(e),
            )
            raise StoreWriteError(sample.metric, str(e)) from e

    async def ingest_many(self, samples: Iterable[MetricSample]) -> int:
        """Ingest samples in order; returns how many were ingested."""
        count = 0
        for sample in samples:
            await self.ingest(sample)
            count += 1
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(
        self,
        metric: str,
        granularity: Any,
        start: datetime,
        end: datetime,
        dimension_filter: Optional[Mapping[str, Any]] = None,
    ) -> List[AggregateRow]:
        """Rows of one partition in ``[start, end]`` matching the filter.

        An unknown metric returns an empty list. Every call is recorded in
        the query performance log.
        """
        if not isinstance(metric, str) or not metric.strip():
            raise UnknownMetricError(metric)
        granularity = Granularity.parse(granularity)
        start = normalize(start, self.tz)
        end = normalize(end, self.tz)
        if start > end:
            raise InvalidRangeError(start.isoformat(), end.isoformat())
        dimension_filter = DimensionSet.from_mapping(dimension_filter)

        started = time.perf_counter()
        result = self.store.scan_detailed(
            metric, granularity, start, end, dimension_filter
        )
        duration_ms = (time.perf_counter() - started) * 1000

        self._track_query(
            QueryExecutionRecord(
                metric=metric,
                granularity=granularity,
                start=start,
                end=end,
                execution_duration_ms=duration_ms,
                rows_scanned=result.rows_scanned,
                rows_returned=len(result.rows),
                rows_in_range=result.rows_in_range,
                dimension_filter_keys=dimension_filter.keys(),
                timestamp=self.clock.now(),
            )
        )
        return result.rows

    def _track_query(self, record: QueryExecutionRecord) -> None:
        self.query_log.record(record)
        if record.execution_duration_ms > self.settings.slow_query_threshold_ms:
            logger.warning(
                "slow_query_detected",
                query_id=record.query_id,
                metric=record.metric,
                granularity=record.granularity.value,
                duration_ms=round(record.execution_duration_ms, 2),
                rows_scanned=record.rows_scanned,
            )
        self._refresh_metrics()

    def get_dashboard_metrics(
        self, start: datetime, end: datetime
    ) -> Dict[str, List[AggregateRow]]:
        """The series the storefront dashboards read, one query each."""
        return {
            metric: self.query(metric, granularity, start, end)
            for metric, granularity in DASHBOARD_SERIES
        }

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _compute_metrics(self) -> WarehouseMetrics:
        total_rows = self.store.row_count()
        return WarehouseMetrics(
            total_rows=total_rows,
            estimated_byte_size=total_rows * self.settings.bytes_per_row_estimate,
            query_count=self.query_log.total_recorded,
            average_query_duration_ms=self.query_log.average_duration_ms(),
            index_efficiency_percent=self.optimizer.index_efficiency,
            compression_ratio=self.retention.compression_ratio,
            last_optimization_at=self.optimizer.last_optimization_at,
        )

    def _refresh_metrics(self) -> WarehouseMetrics:
        self._metrics = self._compute_metrics()
        return self._metrics

    @property
    def metrics(self) -> WarehouseMetrics:
        """Metrics as of the last ingestion, query or maintenance run."""
        return self._metrics

    def get_warehouse_status(self) -> WarehouseMetrics:
        """Freshly computed operational counters."""
        return self._compute_metrics()

    def get_status_report(self) -> Dict[str, Any]:
        """Warehouse metrics plus policies, query statistics and indexes."""
        slow_threshold = self.settings.status_slow_query_ms
        return {
            "metrics": self.get_warehouse_status().to_dict(),
            "retention_policies": [p.to_dict() for p in self.retention.policies()],
            "query_performance": {
                "total_queries": len(self.query_log),
                "average_time_ms": self.query_log.average_duration_ms(),
                "slow_queries": len(self.query_log.slow_queries(slow_threshold)),
                "slow_query_threshold_ms": slow_threshold,
            },
            "applied_indexes": sorted(self.optimizer.applied_indexes),
            "range_index_enabled": self.store.range_index_enabled,
            "tier_counts": {k: dict(v) for k, v in self.retention.tier_counts.items()},
            "background_tasks": self.scheduler.status(),
        }

    def monitor_performance(self) -> WarehouseMetrics:
        """Recompute metrics and warn on degraded latency or indexing."""
        metrics = self._refresh_metrics()
        if metrics.average_query_duration_ms > self.settings.slow_query_threshold_ms:
            logger.warning(
                "High average query time detected",
                average_query_duration_ms=round(metrics.average_query_duration_ms, 2),
            )
        if metrics.index_efficiency_percent < self.settings.index_efficiency_floor:
            logger.warning(
                "Low index efficiency detected",
                index_efficiency_percent=metrics.index_efficiency_percent,
            )
        return metrics

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_optimization_cycle(self) -> OptimizationSummary:
        """Run one optimization cycle.

        Raises:
            OptimizationInProgressError: a cycle is already running
        """
        summary = await self.optimizer.run_cycle(self.scheduler.cancel_event)
        self._refresh_metrics()
        return summary

    async def run_archival_sweep(self) -> SweepSummary:
        summary = await self.retention.archival_sweep(self.scheduler.cancel_event)
        self._refresh_metrics()
        return summary

    async def run_compression_sweep(self) -> SweepSummary:
        summary = await self.retention.compression_sweep(self.scheduler.cancel_event)
        self._refresh_metrics()
        return summary

    async def run_purge_sweep(self) -> SweepSummary:
        summary = await self.retention.purge_sweep(self.scheduler.cancel_event)
        self._refresh_metrics()
        return summary

    async def _scheduled_optimization(self) -> None:
        try:
            await self.run_optimization_cycle()
        except OptimizationInProgressError:
            logger.info("Scheduled optimization skipped, cycle already running")

    async def _scheduled_monitor(self) -> None:
        self.monitor_performance()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def retention_policies(self) -> List[RetentionPolicy]:
        return self.retention.policies()

    def update_policy(self, data_type: str, /, **changes: Any) -> RetentionPolicy:
        return self.retention.update_policy(data_type, **changes)

    def set_policy_active(self, data_type: str, active: bool) -> RetentionPolicy:
        return self.retention.set_policy_active(data_type, active)

    async def create_backup(self) -> BackupInfo:
        info = await self.durable_store.create_backup()
        logger.info(
            "Warehouse backup created",
            backup_id=info.backup_id,
            sample_count=info.sample_count,
            size=info.size,
        )
        return info

    async def list_backups(self) -> List[BackupInfo]:
        return await self.durable_store.list_backups()

    def _replay(self, samples: Iterable[MetricSample]) -> RestoreResult:
        """Rebuild the aggregates from raw samples and swap them in.

        Samples are folded into a fresh store, so the live aggregates are
        untouched until the replay finishes. Buckets the active policy has
        already purged stay purged. Samples that no longer validate or that
        conflict with an earlier sample's aggregation kind are logged and
        skipped.
        """
        started = time.perf_counter()
        rebuilt = AggregateStore()
        result = RestoreResult(success=True, records_restored=0, duration_ms=0.0)

        for raw in samples:
            try:
                sample = self._validate_sample(raw)
                purge_before = self.retention.purge_cutoff(
                    sample.metric, sample.data_type
                )
                if self._aggregate(sample, rebuilt, purge_before):
                    result.samples_replayed += 1
                else:
                    result.samples_expired += 1
            except (ValidationError, UnknownDataTypeError) as e:
                result.samples_rejected += 1
                logger.warning(
                    "replay_sample_skipped",
                    metric=raw.metric,
                    error=e.message,
                )

        self.store.replace_contents(rebuilt)
        self.retention.recompute_compression_ratio()
        self._refresh_metrics()

        result.records_restored = self.store.row_count()
        result.duration_ms = (time.perf_counter() - started) * 1000
        return result

    async def rebuild_from_durable_store(self) -> int:
        """Rebuild the aggregates from every raw sample in the durable store.

        Used by offline tooling that opens the store from a fresh process.
        Returns the number of samples replayed.
        """
        result = self._replay(await self.durable_store.read_all())
        logger.info(
            "Aggregates rebuilt from durable store",
            samples_replayed=result.samples_replayed,
            samples_expired=result.samples_expired,
            samples_rejected=result.samples_rejected,
        )
        return result.samples_replayed

    async def restore_from_backup(self, backup_id: str) -> RestoreResult:
        """Rebuild aggregates from a backup's raw samples.

        The samples are replayed through the aggregation path only; they are
        already in the durable store and are not appended again.

        Raises:
            BackupNotFoundError: no backup with that id
        """
        samples = await self.durable_store.read_backup(backup_id)
        result = self._replay(samples)
        logger.info(
            "Warehouse restored from backup",
            backup_id=backup_id,
            samples_replayed=result.samples_replayed,
            samples_expired=result.samples_expired,
            samples_rejected=result.samples_rejected,
            records_restored=result.records_restored,
        )
        return result
