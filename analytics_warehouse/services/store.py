"""In-memory aggregate store.

Rows are partitioned by (metric, granularity). Inside a partition each
bucket start maps to the rows of that bucket keyed by dimension set, so
at most one row can exist per (metric, granularity, bucket, dimensions).
Bucket starts are also kept in a sorted list for range scans and prunes.

Every partition carries its own lock. The partition map has a separate,
short-held lock used only to create partitions and to snapshot the key
list for cross-partition work.
"""

import bisect
import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

import structlog

from ..models.aggregates import (
    AggregateRow,
    AggregationKind,
    CompressionLevel,
    Granularity,
    StorageTier,
)
from ..models.dimensions import DimensionSet
from ..models.errors import AggregationKindMismatchError

logger = structlog.get_logger(__name__)

PartitionKey = Tuple[str, Granularity]


@dataclass
class ScanResult:
    """Rows returned by a scan plus the counters recorded for the query."""

    rows: List[AggregateRow]
    rows_scanned: int
    rows_in_range: int


@dataclass
class _Partition:
    lock: threading.Lock = field(default_factory=threading.Lock)
    buckets: List[datetime] = field(default_factory=list)
    by_bucket: Dict[datetime, Dict[DimensionSet, AggregateRow]] = field(
        default_factory=dict
    )
    size: int = 0

    def bucket_rows(self) -> Iterator[AggregateRow]:
        for bucket_start in self.buckets:
            yield from self.by_bucket[bucket_start].values()


class AggregateStore:
    """Thread-safe store of aggregate rows."""

    def __init__(self):
        self._partitions: Dict[PartitionKey, _Partition] = {}
        self._partitions_lock = threading.Lock()
        self._range_index = False

    # ------------------------------------------------------------------
    # Partition access
    # ------------------------------------------------------------------

    def _partition(self, metric: str, granularity: Granularity) -> Optional[_Partition]:
        with self._partitions_lock:
            return self._partitions.get((metric, granularity))

    def _partition_or_create(self, metric: str, granularity: Granularity) -> _Partition:
        with self._partitions_lock:
            partition = self._partitions.get((metric, granularity))
            if partition is None:
                partition = _Partition()
                self._partitions[(metric, granularity)] = partition
            return partition

    def partition_keys(self) -> List[PartitionKey]:
        """Consistent snapshot of every (metric, granularity) key."""
        with self._partitions_lock:
            return list(self._partitions.keys())

    def partition_keys_for(self, metric: str) -> List[PartitionKey]:
        return [key for key in self.partition_keys() if key[0] == metric]

    def metrics(self) -> List[str]:
        return sorted({metric for metric, _ in self.partition_keys()})

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def check_kind(
        self,
        metric: str,
        granularity: Granularity,
        bucket_start: datetime,
        dimensions: DimensionSet,
        aggregation_kind: AggregationKind,
    ) -> None:
        """Raise if an existing row for the tuple is aggregated differently."""
        partition = self._partition(metric, granularity)
        if partition is None:
            return
        with partition.lock:
            row = partition.by_bucket.get(bucket_start, {}).get(dimensions)
            if row is not None and row.aggregation_kind != aggregation_kind:
                raise AggregationKindMismatchError(
                    metric, row.aggregation_kind.value, aggregation_kind.value
                )

    def upsert(
        self,
        metric: str,
        granularity: Granularity,
        bucket_start: datetime,
        dimensions: DimensionSet,
        sample_value: float,
        aggregation_kind: AggregationKind,
    ) -> AggregateRow:
        """Fold one sample value into its row, creating the row if needed.

        Returns a snapshot of the row after the update.
        """
        partition = self._partition_or_create(metric, granularity)
        with partition.lock:
            rows = partition.by_bucket.get(bucket_start)
            if rows is None:
                rows = {}
                partition.by_bucket[bucket_start] = rows
                bisect.insort(partition.buckets, bucket_start)

            row = rows.get(dimensions)
            if row is None:
                row = AggregateRow.first(
                    metric,
                    granularity,
                    aggregation_kind,
                    bucket_start,
                    dimensions,
                    sample_value,
                )
                rows[dimensions] = row
                partition.size += 1
            elif row.aggregation_kind != aggregation_kind:
                raise AggregationKindMismatchError(
                    metric, row.aggregation_kind.value, aggregation_kind.value
                )
            else:
                row.fold(sample_value)
            return copy.copy(row)

    def prune(
        self,
        metric: str,
        granularity: Granularity,
        older_than: datetime,
        inclusive: bool = False,
    ) -> int:
        """Remove rows whose bucket starts before ``older_than``.

        With ``inclusive`` a bucket starting exactly at ``older_than`` is
        removed as well. Returns the number of rows removed.
        """
        partition = self._partition(metric, granularity)
        if partition is None:
            return 0
        with partition.lock:
            if inclusive:
                cut = bisect.bisect_right(partition.buckets, older_than)
            else:
                cut = bisect.bisect_left(partition.buckets, older_than)
            if cut == 0:
                return 0
            removed = 0
            for bucket_start in partition.buckets[:cut]:
                removed += len(partition.by_bucket.pop(bucket_start))
            del partition.buckets[:cut]
            partition.size -= removed

        logger.debug(
            "Pruned partition",
            metric=metric,
            granularity=granularity.value,
            older_than=older_than.isoformat(),
            removed=removed,
        )
        return removed

    def demote(
        self,
        metric: str,
        granularity: Granularity,
        archive_before: datetime,
        level: CompressionLevel,
    ) -> int:
        """Place rows into the tier their bucket age calls for.

        Rows starting at or before ``archive_before`` are archived with
        ``level``; younger rows are live. Returns the archived row count.
        """
        partition = self._partition(metric, granularity)
        if partition is None:
            return 0
        with partition.lock:
            cut = bisect.bisect_right(partition.buckets, archive_before)
            archived = 0
            for index, bucket_start in enumerate(partition.buckets):
                for row in partition.by_bucket[bucket_start].values():
                    if index < cut:
                        row.tier = StorageTier.ARCHIVED
                        row.compression_level = level
                        archived += 1
                    else:
                        row.tier = StorageTier.LIVE
                        row.compression_level = CompressionLevel.NONE
            return archived

    def recompress(
        self, metric: str, granularity: Granularity, level: CompressionLevel
    ) -> int:
        """Set ``level`` on archived rows. Returns the number changed."""
        partition = self._partition(metric, granularity)
        if partition is None:
            return 0
        changed = 0
        with partition.lock:
            for row in partition.bucket_rows():
                if row.tier == StorageTier.ARCHIVED and row.compression_level != level:
                    row.compression_level = level
                    changed += 1
        return changed

    def replace_contents(self, other: "AggregateStore") -> None:
        """Adopt every partition of ``other`` in one step.

        Index settings of this store are kept.
        """
        with other._partitions_lock:
            partitions = dict(other._partitions)
        with self._partitions_lock:
            self._partitions = partitions

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def enable_range_index(self) -> None:
        """Serve scans by bisecting the sorted bucket list."""
        self._range_index = True

    @property
    def range_index_enabled(self) -> bool:
        return self._range_index

    def scan_detailed(
        self,
        metric: str,
        granularity: Granularity,
        start: datetime,
        end: datetime,
        dimension_filter: Optional[DimensionSet] = None,
    ) -> ScanResult:
        """Rows with ``start <= bucket_start <= end`` matching the filter.

        Rows come back in ascending bucket order as snapshots.
        """
        partition = self._partition(metric, granularity)
        if partition is None:
            return ScanResult(rows=[], rows_scanned=0, rows_in_range=0)

        with partition.lock:
            scanned = partition.size
            if self._range_index:
                low = bisect.bisect_left(partition.buckets, start)
                high = bisect.bisect_right(partition.buckets, end)
                candidate_buckets = partition.buckets[low:high]
            else:
                candidate_buckets = [
                    bucket_start
                    for bucket_start in partition.buckets
                    if start <= bucket_start <= end
                ]

            in_range = 0
            rows = []
            for bucket_start in candidate_buckets:
                for row in partition.by_bucket[bucket_start].values():
                    in_range += 1
                    if row.dimensions.matches(dimension_filter):
                        rows.append(copy.copy(row))

        return ScanResult(rows=rows, rows_scanned=scanned, rows_in_range=in_range)

    def scan(
        self,
        metric: str,
        granularity: Granularity,
        start: datetime,
        end: datetime,
        dimension_filter: Optional[DimensionSet] = None,
    ) -> List[AggregateRow]:
        return self.scan_detailed(
            metric, granularity, start, end, dimension_filter
        ).rows

    def partition_size(self, metric: str, granularity: Granularity) -> int:
        partition = self._partition(metric, granularity)
        if partition is None:
            return 0
        with partition.lock:
            return partition.size

    def row_count(self) -> int:
        """Sum of row counts across a snapshot of all partitions."""
        return sum(self.partition_size(*key) for key in self.partition_keys())

    def rows(self, metric: Optional[str] = None) -> List[AggregateRow]:
        """Snapshot of every row, optionally limited to one metric."""
        keys = self.partition_keys_for(metric) if metric else self.partition_keys()
        result = []
        for key in keys:
            partition = self._partition(*key)
            if partition is None:
                continue
            with partition.lock:
                result.extend(copy.copy(row) for row in partition.bucket_rows())
        return result

    def storage_profile(self) -> Tuple[int, float]:
        """Row count and the summed per-row storage factors."""
        total = 0
        factor_sum = 0.0
        for key in self.partition_keys():
            partition = self._partition(*key)
            if partition is None:
                continue
            with partition.lock:
                for row in partition.bucket_rows():
                    total += 1
                    factor_sum += row.storage_factor
        return total, factor_sum
