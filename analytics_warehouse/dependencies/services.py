"""Service dependency injection for the warehouse HTTP surface."""

# Standard library imports
from functools import lru_cache
from typing import Annotated

# Third-party imports
from fastapi import Depends
import structlog

# Local application imports
from ..config import settings
from ..core.clock import SystemClock
from ..services.warehouse import AnalyticsWarehouse

logger = structlog.get_logger(__name__)


@lru_cache()
def get_warehouse() -> AnalyticsWarehouse:
    """Get the process-wide warehouse engine."""
    warehouse = AnalyticsWarehouse(settings, clock=SystemClock())
    logger.info("Analytics warehouse initialized")
    return warehouse


# Type aliases for dependency injection
WarehouseDep = Annotated[AnalyticsWarehouse, Depends(get_warehouse)]
