"""Unit tests for the in-memory aggregate store."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from analytics_warehouse.models.aggregates import (
    AggregationKind,
    CompressionLevel,
    Granularity,
    StorageTier,
)
from analytics_warehouse.models.dimensions import DimensionSet, EMPTY_DIMENSIONS
from analytics_warehouse.models.errors import AggregationKindMismatchError
from analytics_warehouse.services.store import AggregateStore

UTC = timezone.utc
DAY = Granularity.DAY
US = DimensionSet.from_mapping({"region": "US", "channel": "web"})
EU = DimensionSet.from_mapping({"region": "EU", "channel": "web"})


def day(n: int) -> datetime:
    return datetime(2024, 5, n, tzinfo=UTC)


@pytest.fixture
def store():
    return AggregateStore()


class TestUpsert:
    """Folding samples into rows."""

    def test_creates_then_updates_one_row(self, store):
        """Repeated upserts to one tuple keep a single row."""
        store.upsert("revenue", DAY, day(1), US, 10.0, AggregationKind.SUM)
        row = store.upsert("revenue", DAY, day(1), US, 5.0, AggregationKind.SUM)

        assert row.value == 15.0
        assert row.sample_count == 2
        assert store.partition_size("revenue", DAY) == 1

    def test_distinct_dimensions_get_distinct_rows(self, store):
        """Different dimension sets in the same bucket are separate rows."""
        store.upsert("revenue", DAY, day(1), US, 10.0, AggregationKind.SUM)
        store.upsert("revenue", DAY, day(1), EU, 20.0, AggregationKind.SUM)

        assert store.partition_size("revenue", DAY) == 2
        assert store.row_count() == 2

    def test_kind_mismatch_leaves_row_unchanged(self, store):
        """A sample of another kind is rejected and the row keeps its value."""
        store.upsert("latency", DAY, day(1), EMPTY_DIMENSIONS, 4.0, AggregationKind.AVG)

        with pytest.raises(AggregationKindMismatchError):
            store.check_kind(
                "latency", DAY, day(1), EMPTY_DIMENSIONS, AggregationKind.MAX
            )
        with pytest.raises(AggregationKindMismatchError):
            store.upsert(
                "latency", DAY, day(1), EMPTY_DIMENSIONS, 100.0, AggregationKind.MAX
            )

        (row,) = store.scan("latency", DAY, day(1), day(1))
        assert row.value == 4.0
        assert row.sample_count == 1
        assert row.aggregation_kind == AggregationKind.AVG

    def test_check_kind_on_missing_row(self, store):
        """No existing row means any kind is accepted."""
        store.check_kind("revenue", DAY, day(1), US, AggregationKind.MIN)

    def test_concurrent_upserts_lose_no_updates(self, store):
        """Upserts from many threads into one row are all applied."""

        def worker(_):
            for _ in range(500):
                store.upsert("clicks", DAY, day(1), US, 1.0, AggregationKind.SUM)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(8)))

        (row,) = store.scan("clicks", DAY, day(1), day(1))
        assert row.value == 4000.0
        assert row.sample_count == 4000


class TestScan:
    """Range scans and dimension filtering."""

    def test_bounds_are_inclusive_and_ordered(self, store):
        """Rows at both bounds are returned in ascending bucket order."""
        for n in (5, 1, 3, 2, 4):
            store.upsert("revenue", DAY, day(n), US, float(n), AggregationKind.SUM)

        rows = store.scan("revenue", DAY, day(2), day(4))

        assert [r.bucket_start for r in rows] == [day(2), day(3), day(4)]

    def test_filter_is_superset_match(self, store):
        """Only rows containing every filter pair are returned."""
        store.upsert("revenue", DAY, day(1), US, 1.0, AggregationKind.SUM)
        store.upsert("revenue", DAY, day(1), EU, 2.0, AggregationKind.SUM)

        rows = store.scan(
            "revenue", DAY, day(1), day(1), DimensionSet.from_mapping({"region": "EU"})
        )

        assert [r.value for r in rows] == [2.0]

    def test_scan_counters(self, store):
        """rows_scanned is the partition size, rows_in_range precedes filtering."""
        for n in (1, 2, 3):
            store.upsert("revenue", DAY, day(n), US, 1.0, AggregationKind.SUM)
            store.upsert("revenue", DAY, day(n), EU, 1.0, AggregationKind.SUM)

        result = store.scan_detailed(
            "revenue", DAY, day(2), day(3), DimensionSet.from_mapping({"region": "US"})
        )

        assert result.rows_scanned == 6
        assert result.rows_in_range == 4
        assert len(result.rows) == 2

    def test_unknown_partition_is_empty(self, store):
        """Scanning a partition that does not exist returns nothing."""
        result = store.scan_detailed("missing", DAY, day(1), day(2))

        assert result.rows == []
        assert result.rows_scanned == 0

    def test_rows_are_snapshots(self, store):
        """Mutating a returned row does not change the stored row."""
        store.upsert("revenue", DAY, day(1), US, 1.0, AggregationKind.SUM)

        (row,) = store.scan("revenue", DAY, day(1), day(1))
        row.value = 999.0

        (fresh,) = store.scan("revenue", DAY, day(1), day(1))
        assert fresh.value == 1.0

    def test_range_index_returns_same_rows(self, store):
        """Enabling the range index does not change scan results."""
        for n in range(1, 20):
            store.upsert("revenue", DAY, day(n), US, float(n), AggregationKind.SUM)
            store.upsert("revenue", DAY, day(n), EU, float(n), AggregationKind.SUM)
        dimension_filter = DimensionSet.from_mapping({"region": "US"})

        before = store.scan_detailed("revenue", DAY, day(4), day(11), dimension_filter)
        store.enable_range_index()
        after = store.scan_detailed("revenue", DAY, day(4), day(11), dimension_filter)

        assert store.range_index_enabled
        assert [(r.bucket_start, r.value) for r in after.rows] == [
            (r.bucket_start, r.value) for r in before.rows
        ]
        assert after.rows_in_range == before.rows_in_range
        assert after.rows_scanned == before.rows_scanned


class TestPrune:
    """Removing rows by bucket age."""

    def test_strict_prune_keeps_boundary(self, store):
        """By default a bucket starting exactly at the cutoff survives."""
        for n in (1, 2, 3):
            store.upsert("revenue", DAY, day(n), US, 1.0, AggregationKind.SUM)

        removed = store.prune("revenue", DAY, day(2))

        assert removed == 1
        assert [r.bucket_start for r in store.scan("revenue", DAY, day(1), day(3))] == [
            day(2),
            day(3),
        ]

    def test_inclusive_prune_removes_boundary(self, store):
        """With inclusive the boundary bucket is removed too."""
        for n in (1, 2, 3):
            store.upsert("revenue", DAY, day(n), US, 1.0, AggregationKind.SUM)
            store.upsert("revenue", DAY, day(n), EU, 1.0, AggregationKind.SUM)

        removed = store.prune("revenue", DAY, day(2), inclusive=True)

        assert removed == 4
        assert store.partition_size("revenue", DAY) == 2

    def test_prune_missing_partition(self, store):
        """Pruning an unknown partition removes nothing."""
        assert store.prune("missing", DAY, day(2)) == 0


class TestTiers:
    """Archival tiers and compression levels."""

    def test_demote_splits_by_age(self, store):
        """Rows at or before the cutoff are archived, the rest stay live."""
        for n in (1, 2, 3):
            store.upsert("revenue", DAY, day(n), US, 1.0, AggregationKind.SUM)

        archived = store.demote("revenue", DAY, day(2), CompressionLevel.MEDIUM)

        rows = store.scan("revenue", DAY, day(1), day(3))
        assert archived == 2
        assert [r.tier for r in rows] == [
            StorageTier.ARCHIVED,
            StorageTier.ARCHIVED,
            StorageTier.LIVE,
        ]
        assert rows[0].compression_level == CompressionLevel.MEDIUM
        assert rows[2].compression_level == CompressionLevel.NONE

    def test_recompress_only_touches_archived_rows(self, store):
        """Live rows keep no compression."""
        for n in (1, 2):
            store.upsert("revenue", DAY, day(n), US, 1.0, AggregationKind.SUM)
        store.demote("revenue", DAY, day(1), CompressionLevel.LOW)

        changed = store.recompress("revenue", DAY, CompressionLevel.HIGH)

        rows = store.scan("revenue", DAY, day(1), day(2))
        assert changed == 1
        assert rows[0].compression_level == CompressionLevel.HIGH
        assert rows[1].compression_level == CompressionLevel.NONE

    def test_storage_profile(self, store):
        """Storage factors sum over live and archived rows."""
        assert store.storage_profile() == (0, 0.0)

        for n in (1, 2):
            store.upsert("revenue", DAY, day(n), US, 1.0, AggregationKind.SUM)
        store.demote("revenue", DAY, day(1), CompressionLevel.HIGH)

        total, factor_sum = store.storage_profile()
        assert total == 2
        assert factor_sum == pytest.approx(1.4)


class TestPartitions:
    def test_keys_and_metrics(self, store):
        """Partition keys are listed per metric and granularity."""
        store.upsert("revenue", DAY, day(1), US, 1.0, AggregationKind.SUM)
        store.upsert("revenue", Granularity.HOUR, day(1), US, 1.0, AggregationKind.SUM)
        store.upsert("clicks", DAY, day(1), US, 1.0, AggregationKind.COUNT)

        assert set(store.partition_keys()) == {
            ("revenue", DAY),
            ("revenue", Granularity.HOUR),
            ("clicks", DAY),
        }
        assert store.metrics() == ["clicks", "revenue"]
        assert len(store.rows("revenue")) == 2
        assert len(store.rows()) == 3

    def test_replace_contents(self, store):
        """The store adopts the other store's partitions and keeps its index."""
        store.upsert("revenue", DAY, day(1), US, 1.0, AggregationKind.SUM)
        store.enable_range_index()
        replacement = AggregateStore()
        replacement.upsert("clicks", DAY, day(2), US, 3.0, AggregationKind.COUNT)

        store.replace_contents(replacement)

        assert store.partition_keys() == [("clicks", DAY)]
        assert store.row_count() == 1
        assert store.range_index_enabled

    def test_replace_contents_with_empty(self, store):
        store.upsert("revenue", DAY, day(1), US, 1.0, AggregationKind.SUM)
        store.replace_contents(AggregateStore())

        assert store.row_count() == 0
        assert store.partition_keys() == []
