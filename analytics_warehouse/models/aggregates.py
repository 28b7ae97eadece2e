"""Sample and aggregate row models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .dimensions import DimensionSet, EMPTY_DIMENSIONS
from .errors import InvalidAggregationError, InvalidGranularityError


class Granularity(str, Enum):
    """Bucket width categories, finest first."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    @classmethod
    def parse(cls, value: Any) -> "Granularity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidGranularityError(value) from None


class AggregationKind(str, Enum):
    """How samples are folded into a row's running value."""

    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"

    @classmethod
    def parse(cls, value: Any) -> "AggregationKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidAggregationError(
                f"Unknown aggregation kind: {value}"
            ) from None


class CompressionLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def storage_factor(self) -> float:
        """Fraction of the uncompressed size a row occupies at this level."""
        return _STORAGE_FACTORS[self]


_STORAGE_FACTORS = {
    CompressionLevel.NONE: 1.0,
    CompressionLevel.LOW: 0.8,
    CompressionLevel.MEDIUM: 0.6,
    CompressionLevel.HIGH: 0.4,
}


class StorageTier(str, Enum):
    LIVE = "live"
    ARCHIVED = "archived"


@dataclass
class MetricSample:
    """One observation handed to the ingestion path.

    ``data_type`` optionally names the retention category the metric belongs
    to; the first hint seen for a metric wins.
    """

    timestamp: datetime
    metric: str
    value: float
    dimensions: DimensionSet = EMPTY_DIMENSIONS
    aggregation_kind: AggregationKind = AggregationKind.SUM
    data_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "metric": self.metric,
            "value": self.value,
            "dimensions": self.dimensions.to_dict(),
            "aggregation_kind": self.aggregation_kind.value,
            "data_type": self.data_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricSample":
        """Create from dictionary."""
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)

        return cls(
            timestamp=timestamp,
            metric=data["metric"],
            value=data["value"],
            dimensions=DimensionSet.from_mapping(data.get("dimensions")),
            aggregation_kind=AggregationKind.parse(data.get("aggregation_kind", "sum")),
            data_type=data.get("data_type"),
        )


@dataclass
class AggregateRow:
    """Running aggregate for one (metric, granularity, bucket, dimensions) tuple."""

    metric: str
    granularity: Granularity
    aggregation_kind: AggregationKind
    bucket_start: datetime
    dimensions: DimensionSet
    value: float
    sample_count: int = 1
    tier: StorageTier = StorageTier.LIVE
    compression_level: CompressionLevel = CompressionLevel.NONE
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def first(
        cls,
        metric: str,
        granularity: Granularity,
        aggregation_kind: AggregationKind,
        bucket_start: datetime,
        dimensions: DimensionSet,
        sample_value: float,
    ) -> "AggregateRow":
        """Row created by the first sample of its tuple."""
        value = 1.0 if aggregation_kind == AggregationKind.COUNT else sample_value
        return cls(
            metric=metric,
            granularity=granularity,
            aggregation_kind=aggregation_kind,
            bucket_start=bucket_start,
            dimensions=dimensions,
            value=value,
        )

    def fold(self, sample_value: float) -> None:
        """Apply the incremental update formula for this row's kind."""
        kind = self.aggregation_kind
        if kind == AggregationKind.SUM:
            self.value += sample_value
        elif kind == AggregationKind.AVG:
            self.value = (self.value * self.sample_count + sample_value) / (
                self.sample_count + 1
            )
        elif kind == AggregationKind.COUNT:
            self.value = float(self.sample_count + 1)
        elif kind == AggregationKind.MIN:
            self.value = min(self.value, sample_value)
        elif kind == AggregationKind.MAX:
            self.value = max(self.value, sample_value)
        self.sample_count += 1
        self.updated_at = datetime.now(timezone.utc)

    @property
    def storage_factor(self) -> float:
        if self.tier == StorageTier.LIVE:
            return 1.0
        return self.compression_level.storage_factor

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "metric": self.metric,
            "granularity": self.granularity.value,
            "aggregation_kind": self.aggregation_kind.value,
            "bucket_start": self.bucket_start.isoformat(),
            "dimensions": self.dimensions.to_dict(),
            "value": self.value,
            "sample_count": self.sample_count,
            "tier": self.tier.value,
            "compression_level": self.compression_level.value,
            "updated_at": self.updated_at.isoformat(),
        }
