"""Warehouse services."""

from .store import AggregateStore, ScanResult
from .durable import DurableSampleStore, InMemorySampleStore, SQLiteSampleStore
from .optimizer import QueryOptimizer, QueryPerformanceLog
from .retention import RetentionManager
from .scheduler import MaintenanceScheduler, PeriodicTask
from .warehouse import AnalyticsWarehouse, create_durable_store

__all__ = [
    "AggregateStore",
    "ScanResult",
    "DurableSampleStore",
    "InMemorySampleStore",
    "SQLiteSampleStore",
    "QueryOptimizer",
    "QueryPerformanceLog",
    "RetentionManager",
    "MaintenanceScheduler",
    "PeriodicTask",
    "AnalyticsWarehouse",
    "create_durable_store",
]
