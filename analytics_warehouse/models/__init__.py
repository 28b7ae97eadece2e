"""Data models for the analytics warehouse."""

from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    WarehouseException,
    ValidationError,
    InvalidRangeError,
    InvalidAggregationError,
    InvalidGranularityError,
    UnknownMetricError,
    InvalidPolicyError,
    AggregationKindMismatchError,
    DurabilityError,
    StoreWriteError,
    ConcurrencyError,
    OptimizationInProgressError,
    LifecycleError,
    NotFoundError,
    UnknownDataTypeError,
    BackupNotFoundError,
)
from .dimensions import DimensionSet, EMPTY_DIMENSIONS
from .aggregates import (
    Granularity,
    AggregationKind,
    CompressionLevel,
    StorageTier,
    MetricSample,
    AggregateRow,
)
from .retention import RetentionPolicy, SweepSummary
from .metrics import (
    QueryExecutionRecord,
    WarehouseMetrics,
    OptimizationSummary,
    BackupInfo,
    RestoreResult,
)

__all__ = [
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "WarehouseException",
    "ValidationError",
    "InvalidRangeError",
    "InvalidAggregationError",
    "InvalidGranularityError",
    "UnknownMetricError",
    "InvalidPolicyError",
    "AggregationKindMismatchError",
    "DurabilityError",
    "StoreWriteError",
    "ConcurrencyError",
    "OptimizationInProgressError",
    "LifecycleError",
    "NotFoundError",
    "UnknownDataTypeError",
    "BackupNotFoundError",
    # Aggregate models
    "DimensionSet",
    "EMPTY_DIMENSIONS",
    "Granularity",
    "AggregationKind",
    "CompressionLevel",
    "StorageTier",
    "MetricSample",
    "AggregateRow",
    # Retention models
    "RetentionPolicy",
    "SweepSummary",
    # Metrics models
    "QueryExecutionRecord",
    "WarehouseMetrics",
    "OptimizationSummary",
    "BackupInfo",
    "RestoreResult",
]
