"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter
import structlog

from ..dependencies.services import WarehouseDep

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/health", summary="Basic health check")
async def basic_health_check(warehouse: WarehouseDep):
    """Liveness plus a few cheap engine counters."""
    metrics = warehouse.metrics
    return {
        "status": "healthy" if warehouse.running else "starting",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "analytics-warehouse",
        "total_rows": metrics.total_rows,
        "query_count": metrics.query_count,
    }
