"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio

# Set test environment before importing config
os.environ.setdefault("SQLITE_STORE_ENABLED", "false")
os.environ.setdefault("BACKGROUND_TASKS_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from analytics_warehouse.config import Settings
from analytics_warehouse.core.clock import ManualClock
from analytics_warehouse.models import AggregationKind, MetricSample
from analytics_warehouse.services.durable import InMemorySampleStore
from analytics_warehouse.services.warehouse import AnalyticsWarehouse

# Saturday, mid-month, mid-quarter
NOW = datetime(2024, 5, 18, 12, 0, tzinfo=timezone.utc)


class FailingSampleStore(InMemorySampleStore):
    """Durable store whose appends fail while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = True

    async def append(self, sample: MetricSample) -> None:
        if self.failing:
            raise OSError("disk full")
        await super().append(sample)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with persistence and background tasks off."""
    return Settings(
        sqlite_store_enabled=False,
        background_tasks_enabled=False,
        warehouse_timezone="UTC",
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(NOW)


@pytest.fixture
def durable_store() -> InMemorySampleStore:
    return InMemorySampleStore()


@pytest_asyncio.fixture
async def warehouse(test_settings, clock, durable_store):
    """Started warehouse with a manual clock and an in-memory durable store."""
    engine = AnalyticsWarehouse(test_settings, clock=clock, durable_store=durable_store)
    await engine.start()
    yield engine
    await engine.stop()


@pytest.fixture
def make_sample():
    """Factory for metric samples with sensible defaults."""

    def _make(
        value: float = 1.0,
        metric: str = "revenue",
        timestamp: Optional[datetime] = None,
        dimensions: Optional[Dict[str, Any]] = None,
        kind: AggregationKind = AggregationKind.SUM,
        data_type: Optional[str] = None,
    ) -> MetricSample:
        return MetricSample(
            timestamp=timestamp or NOW,
            metric=metric,
            value=value,
            dimensions=dimensions or {},
            aggregation_kind=kind,
            data_type=data_type,
        )

    return _make


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def failing_store() -> FailingSampleStore:
    return FailingSampleStore()
