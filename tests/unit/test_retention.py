"""Unit tests for retention policies and lifecycle sweeps."""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from analytics_warehouse.models.aggregates import (
    CompressionLevel,
    Granularity,
    StorageTier,
)
from analytics_warehouse.models.errors import InvalidPolicyError, UnknownDataTypeError
from analytics_warehouse.models.retention import RetentionPolicy
from analytics_warehouse.services import retention as retention_module
from analytics_warehouse.services.retention import RetentionManager
from analytics_warehouse.services.store import AggregateStore
from analytics_warehouse.services.warehouse import AnalyticsWarehouse

USER_EVENTS_POLICY = {
    "data_type": "user_events",
    "retention_period_days": 365,
    "archive_after_days": 90,
    "compression_level": "medium",
    "purge_after_days": 365,
    "is_active": True,
}


@pytest_asyncio.fixture
async def single_policy_warehouse(test_settings, clock, durable_store):
    engine = AnalyticsWarehouse(
        test_settings,
        clock=clock,
        durable_store=durable_store,
        policies=[USER_EVENTS_POLICY],
    )
    await engine.start()
    yield engine
    await engine.stop()


def all_rows(warehouse, metric, granularity, now):
    return warehouse.query(metric, granularity, now - timedelta(days=5000), now)


class TestLifecycle:
    """Rows move from live to archived to purged."""

    @pytest.mark.asyncio
    async def test_archive_and_purge(self, single_policy_warehouse, make_sample, now):
        """A 400-day row is purged, a 100-day row is archived."""
        warehouse = single_policy_warehouse
        await warehouse.ingest(make_sample(1, "sessions", timestamp=now - timedelta(days=400)))
        await warehouse.ingest(make_sample(2, "sessions", timestamp=now - timedelta(days=100)))

        purge = await warehouse.run_purge_sweep()
        archival = await warehouse.run_archival_sweep()

        (row,) = all_rows(warehouse, "sessions", Granularity.DAY, now)
        assert row.value == 2
        assert row.tier == StorageTier.ARCHIVED
        assert row.compression_level == CompressionLevel.MEDIUM

        assert purge.processed == ["user_events"]
        assert purge.rows_affected == len(Granularity)
        assert archival.rows_affected == len(Granularity)
        assert warehouse.retention.tier_counts["user_events"] == {
            "live": 0,
            "archived": len(Granularity),
        }
        assert warehouse.metrics.compression_ratio == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_purge_boundary_is_inclusive(
        self, single_policy_warehouse, make_sample, now
    ):
        """A bucket exactly purge_after_days old is purged."""
        warehouse = single_policy_warehouse
        await warehouse.ingest(make_sample(1, "sessions", timestamp=now - timedelta(days=365)))
        await warehouse.ingest(make_sample(2, "sessions", timestamp=now - timedelta(days=364)))

        await warehouse.run_purge_sweep()

        rows = all_rows(warehouse, "sessions", Granularity.MINUTE, now)
        assert [r.value for r in rows] == [2]

    @pytest.mark.asyncio
    async def test_younger_rows_become_live_again(
        self, single_policy_warehouse, make_sample, now
    ):
        """Raising archive_after_days moves rows back to the live tier."""
        warehouse = single_policy_warehouse
        await warehouse.ingest(make_sample(1, "sessions", timestamp=now - timedelta(days=100)))
        await warehouse.run_archival_sweep()

        warehouse.update_policy("user_events", archive_after_days=200)
        await warehouse.run_archival_sweep()

        (row,) = all_rows(warehouse, "sessions", Granularity.DAY, now)
        assert row.tier == StorageTier.LIVE
        assert row.compression_level == CompressionLevel.NONE
        assert warehouse.metrics.compression_ratio == 1.0

    @pytest.mark.asyncio
    async def test_compression_sweep(self, single_policy_warehouse, make_sample, now):
        """The compression sweep re-applies the policy's level."""
        warehouse = single_policy_warehouse
        await warehouse.ingest(make_sample(1, "sessions", timestamp=now - timedelta(days=100)))
        await warehouse.run_archival_sweep()

        warehouse.update_policy("user_events", compression_level="high")
        summary = await warehouse.run_compression_sweep()

        assert summary.rows_affected == len(Granularity)
        assert warehouse.metrics.compression_ratio == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_empty_store_ratio(self, warehouse):
        """With no rows the compression ratio is 1.0."""
        await warehouse.run_archival_sweep()

        assert warehouse.get_warehouse_status().compression_ratio == 1.0

    @pytest.mark.asyncio
    async def test_cancelled_sweep(self, warehouse, make_sample, now):
        """A set cancel event stops the sweep before any data type."""
        await warehouse.ingest(make_sample(1, "api_latency", timestamp=now - timedelta(days=900)))
        cancel = asyncio.Event()
        cancel.set()

        summary = await warehouse.retention.purge_sweep(cancel)

        assert summary.cancelled
        assert summary.processed == []
        assert warehouse.store.row_count() == len(Granularity)


class TestInactivePolicies:
    """Inactive data types are never swept or pruned."""

    @pytest.mark.asyncio
    async def test_inactive_type_never_purged(self, warehouse, make_sample, now):
        """Rows of an inactive type survive purge while others are removed."""
        old = now - timedelta(days=2000)
        await warehouse.ingest(make_sample(1, "session_count", timestamp=old))
        await warehouse.ingest(make_sample(1, "api_latency", timestamp=old))
        warehouse.set_policy_active("user_events", False)

        summary = await warehouse.run_purge_sweep()

        assert "user_events" in summary.skipped
        assert "system_logs" in summary.processed
        assert len(warehouse.store.rows("session_count")) == len(Granularity)
        assert warehouse.store.rows("api_latency") == []

    @pytest.mark.asyncio
    async def test_inactive_type_not_archived(self, warehouse, make_sample, now):
        await warehouse.ingest(
            make_sample(1, "session_count", timestamp=now - timedelta(days=200))
        )
        warehouse.set_policy_active("user_events", False)

        await warehouse.run_archival_sweep()

        assert all(r.tier == StorageTier.LIVE for r in warehouse.store.rows())

    @pytest.mark.asyncio
    async def test_inactive_type_not_pruned_by_optimizer(
        self, warehouse, make_sample, now
    ):
        """The optimization prune pass also leaves inactive types alone."""
        await warehouse.ingest(
            make_sample(1, "session_count", timestamp=now - timedelta(days=200))
        )
        warehouse.set_policy_active("user_events", False)

        summary = await warehouse.run_optimization_cycle()

        assert summary.queries_optimized == 0
        assert warehouse.store.row_count() == len(Granularity)

    @pytest.mark.asyncio
    async def test_reactivation(self, warehouse):
        """set_policy_active toggles the flag both ways."""
        warehouse.set_policy_active("system_logs", False)
        policy = warehouse.set_policy_active("system_logs", True)

        assert policy.is_active


class TestFailureIsolation:
    """A failing data type does not abort the sweep."""

    @pytest.mark.asyncio
    async def test_other_types_still_processed(
        self, warehouse, make_sample, now, monkeypatch
    ):
        """One data type's failure is recorded and the rest proceed."""
        old = now - timedelta(days=5000)
        await warehouse.ingest(make_sample(1, "revenue", timestamp=old))
        await warehouse.ingest(make_sample(1, "api_latency", timestamp=old))

        real_prune = warehouse.store.prune

        def flaky_prune(metric, granularity, older_than, inclusive=False):
            if metric == "revenue":
                raise RuntimeError("partition locked")
            return real_prune(metric, granularity, older_than, inclusive=inclusive)

        fake_logger = MagicMock()
        monkeypatch.setattr(warehouse.store, "prune", flaky_prune)
        monkeypatch.setattr(retention_module, "logger", fake_logger)

        summary = await warehouse.run_purge_sweep()

        assert summary.failed == ["financial_data"]
        assert "system_logs" in summary.processed
        assert warehouse.store.rows("api_latency") == []
        assert len(warehouse.store.rows("revenue")) == len(Granularity)

        error_calls = fake_logger.error.call_args_list
        assert [c.args[0] for c in error_calls] == ["lifecycle_step_failed"]
        assert error_calls[0].kwargs["data_type"] == "financial_data"


class TestPolicyTable:
    """Policy validation and updates."""

    @pytest.mark.asyncio
    async def test_defaults(self, warehouse):
        """Five default data types are configured and active."""
        policies = {p.data_type: p for p in warehouse.retention_policies()}

        assert set(policies) == {
            "user_events",
            "order_data",
            "product_metrics",
            "financial_data",
            "system_logs",
        }
        assert all(p.is_active for p in policies.values())
        assert policies["financial_data"].purge_after_days == 3650
        assert policies["system_logs"].compression_level == CompressionLevel.HIGH

    @pytest.mark.parametrize(
        "changes",
        [
            {"archive_after_days": 1095},
            {"archive_after_days": 2000},
            {"retention_period_days": 5000},
            {"purge_after_days": -1},
            {"compression_level": "ultra"},
            {"retention_days": 10},
            {"data_type": "renamed"},
            {"compression_level": None},
            {"is_active": None},
            {"is_active": "yes"},
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_update_rejected(self, warehouse, changes):
        """Invalid updates raise and leave the policy unchanged."""
        before = warehouse.retention.get_policy("user_events")

        with pytest.raises(InvalidPolicyError):
            warehouse.update_policy("user_events", **changes)

        assert warehouse.retention.get_policy("user_events") == before

    @pytest.mark.asyncio
    async def test_valid_update(self, warehouse):
        updated = warehouse.update_policy(
            "product_metrics", archive_after_days=30, compression_level="low"
        )

        assert updated.archive_after_days == 30
        assert updated.compression_level == CompressionLevel.LOW
        assert warehouse.retention.get_policy("product_metrics") == updated

    @pytest.mark.asyncio
    async def test_unknown_data_type(self, warehouse):
        with pytest.raises(UnknownDataTypeError) as exc_info:
            warehouse.update_policy("unknown_type", archive_after_days=1)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_null_activity_rejected(self, warehouse):
        """A null activity flag never reaches the table, so sweeps keep the type."""
        with pytest.raises(InvalidPolicyError):
            warehouse.set_policy_active("user_events", None)

        assert warehouse.retention.get_policy("user_events").is_active is True

    def test_null_compression_level_rejected(self):
        data = dict(USER_EVENTS_POLICY, compression_level=None)

        with pytest.raises(InvalidPolicyError):
            RetentionPolicy.from_dict(data)

    def test_policy_constructor_validates(self):
        """Policies violating archive < purge cannot be built."""
        with pytest.raises(InvalidPolicyError):
            RetentionPolicy(
                data_type="bad",
                retention_period_days=10,
                archive_after_days=30,
                compression_level=CompressionLevel.LOW,
                purge_after_days=30,
            )


class TestDataTypeResolution:
    @pytest.mark.asyncio
    async def test_configured_mapping(self, warehouse):
        """Known metrics use the configured map, others the default type."""
        assert warehouse.retention.data_type_for("revenue") == "financial_data"
        assert warehouse.retention.data_type_for("brand_new") == "user_events"

    @pytest.mark.asyncio
    async def test_first_hint_wins(self, warehouse, make_sample):
        """A producer hint assigns the data type and later hints are ignored."""
        await warehouse.ingest(make_sample(1, "queue_depth", data_type="system_logs"))
        await warehouse.ingest(make_sample(1, "queue_depth", data_type="order_data"))

        assert warehouse.retention.data_type_for("queue_depth") == "system_logs"
        assert warehouse.retention.metrics_by_data_type()["system_logs"] == [
            "queue_depth"
        ]

    def test_unmapped_data_types_logged(self, test_settings, clock, monkeypatch):
        """Configured types without a policy are reported once at startup."""
        fake_logger = MagicMock()
        monkeypatch.setattr(retention_module, "logger", fake_logger)
        settings = test_settings.model_copy(
            update={
                "metric_data_types": {
                    "revenue": "financial_dta",
                    "clicks": "user_events",
                },
                "default_data_type": "user_events",
            }
        )

        RetentionManager(AggregateStore(), settings, clock)

        fake_logger.warning.assert_called_once()
        call = fake_logger.warning.call_args
        assert call.args[0] == "unmapped_data_types_configured"
        assert call.kwargs["metrics"] == ["revenue"]
        assert call.kwargs["data_types"] == ["financial_dta"]

    def test_default_mapping_is_covered(self, test_settings, clock, monkeypatch):
        fake_logger = MagicMock()
        monkeypatch.setattr(retention_module, "logger", fake_logger)

        RetentionManager(AggregateStore(), test_settings, clock)

        fake_logger.warning.assert_not_called()
