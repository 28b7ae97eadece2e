"""Producer and consumer endpoints: sample ingestion and aggregate queries."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field
import structlog

from ..dependencies.services import WarehouseDep
from ..models.aggregates import MetricSample
from ..models.errors import ValidationError

logger = structlog.get_logger(__name__)
router = APIRouter()


# --- Models ---


class SampleIn(BaseModel):
    timestamp: datetime
    metric: str = Field(..., min_length=1)
    value: float
    dimensions: Dict[str, Any] = Field(default_factory=dict)
    aggregation_kind: str = Field("sum", description="sum, avg, count, min or max")
    data_type: Optional[str] = Field(
        None, description="Retention category, e.g. financial_data"
    )

    def to_sample(self) -> MetricSample:
        return MetricSample(
            timestamp=self.timestamp,
            metric=self.metric,
            value=self.value,
            dimensions=self.dimensions,
            aggregation_kind=self.aggregation_kind,
            data_type=self.data_type,
        )


class SampleBatchIn(BaseModel):
    samples: List[SampleIn] = Field(..., min_length=1)


def _parse_dimension_filter(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"dimensions must be a JSON object: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ValidationError("dimensions must be a JSON object")
    return parsed


# --- Endpoints ---


@router.post("/samples", status_code=202)
async def ingest_sample(sample: SampleIn, warehouse: WarehouseDep):
    """Aggregate one metric sample."""
    await warehouse.ingest(sample.to_sample())
    return {"ingested": 1}


@router.post("/samples/batch", status_code=202)
async def ingest_samples(batch: SampleBatchIn, warehouse: WarehouseDep):
    """Aggregate samples in order; stops at the first failure."""
    count = await warehouse.ingest_many(s.to_sample() for s in batch.samples)
    return {"ingested": count}


@router.get("/aggregates")
async def query_aggregates(
    warehouse: WarehouseDep,
    metric: str = Query(...),
    granularity: str = Query(..., description="minute, hour, day, week, month, quarter or year"),
    start: datetime = Query(...),
    end: datetime = Query(...),
    dimensions: Optional[str] = Query(
        None, description='JSON object filter, e.g. {"region": "US"}'
    ),
):
    """Aggregate rows for one metric and granularity in [start, end]."""
    rows = warehouse.query(
        metric, granularity, start, end, _parse_dimension_filter(dimensions)
    )
    return {
        "metric": metric,
        "granularity": granularity,
        "count": len(rows),
        "rows": [row.to_dict() for row in rows],
    }


@router.get("/dashboard")
async def dashboard_metrics(
    warehouse: WarehouseDep,
    start: datetime = Query(...),
    end: datetime = Query(...),
):
    """Series bundle read by the storefront dashboards."""
    series = warehouse.get_dashboard_metrics(start, end)
    return {
        metric: [row.to_dict() for row in rows] for metric, rows in series.items()
    }


@router.get("/status")
async def warehouse_status(
    warehouse: WarehouseDep,
    detailed: bool = Query(False, description="Include policies, query stats and indexes"),
):
    """Operational counters of the warehouse."""
    if detailed:
        return warehouse.get_status_report()
    return warehouse.get_warehouse_status().to_dict()
