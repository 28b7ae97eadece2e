"""Main FastAPI application for the analytics warehouse."""

# Standard library imports
from contextlib import asynccontextmanager

# Third-party imports
import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

# Local application imports
from .api import admin, health, warehouse
from .config import settings
from .dependencies.services import get_warehouse
from .models.errors import WarehouseException
from .utils.error_handlers import (
    warehouse_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .utils.logging import setup_logging

# Setup logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting analytics warehouse API", version="1.0.0")

    if settings.api_debug:
        logger.warning("Debug mode is enabled - disable in production")

    engine = get_warehouse()
    await engine.start()
    app.state.warehouse = engine

    logger.info("Analytics warehouse API startup completed")

    yield

    logger.info("Shutting down analytics warehouse API")
    try:
        await engine.stop()
    except Exception as e:
        logger.error("Error stopping analytics warehouse", error=str(e))

    logger.info("Analytics warehouse API shutdown completed")


app = FastAPI(
    title="Analytics Warehouse API",
    description="Multi-granularity metric aggregation with retention and self-optimization",
    version="1.0.0",
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    debug=settings.api_debug,
    lifespan=lifespan,
)

# Register global error handlers
app.add_exception_handler(WarehouseException, warehouse_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(warehouse.router, tags=["warehouse"])
app.include_router(health.router, tags=["health"])
app.include_router(admin.router)


def run_server():
    api_config = settings.api
    logger.info(f"Starting HTTP server on {api_config.api_host}:{api_config.api_port}")
    uvicorn.run(
        "analytics_warehouse.main:app",
        host=api_config.api_host,
        port=api_config.api_port,
        reload=api_config.api_reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
