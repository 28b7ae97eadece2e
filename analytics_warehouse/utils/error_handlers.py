"""Global error handlers for the warehouse HTTP surface."""

# Standard library imports
import traceback
from typing import Union

# Third-party imports
import structlog
from fastapi import Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

# Local application imports
from ..models.errors import (
    WarehouseException,
    ErrorResponse,
    ErrorType,
    ErrorDetail,
)

logger = structlog.get_logger(__name__)


def _client_ip(request: Request) -> str:
    return getattr(request.client, "host", "unknown") if request.client else "unknown"


async def warehouse_exception_handler(
    request: Request, exc: WarehouseException
) -> JSONResponse:
    """Handle WarehouseException instances raised by the engine."""
    log_data = {
        "error_type": exc.error_type.value,
        "status_code": exc.status_code,
        "message": exc.message,
        "path": request.url.path,
        "method": request.method,
        "client_ip": _client_ip(request),
    }

    if exc.details:
        log_data["details"] = [
            {"field": d.field, "message": d.message, "code": d.code}
            for d in exc.details
        ]

    if exc.status_code >= 500:
        logger.error("Server error occurred", **log_data)
    else:
        logger.warning("Client error occurred", **log_data)

    error_response = exc.to_response()
    return JSONResponse(
        status_code=exc.status_code, content=error_response.model_dump()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException instances."""
    error_type_mapping = {
        400: ErrorType.VALIDATION,
        404: ErrorType.RESOURCE_NOT_FOUND,
        409: ErrorType.CONCURRENCY,
        422: ErrorType.VALIDATION,
        503: ErrorType.DURABILITY,
    }
    error_type = error_type_mapping.get(exc.status_code, ErrorType.INTERNAL_SERVER)

    logger.warning(
        "HTTP exception occurred",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
        client_ip=_client_ip(request),
    )

    error_response = ErrorResponse(error=str(exc.detail), error_type=error_type)
    return JSONResponse(
        status_code=exc.status_code, content=error_response.model_dump()
    )


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Handle request validation errors."""
    details = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        details.append(
            ErrorDetail(field=field_path, message=error["msg"], code=error["type"])
        )

    logger.warning(
        "Validation error occurred",
        path=request.url.path,
        method=request.method,
        validation_errors=[
            {"field": d.field, "message": d.message, "code": d.code} for d in details
        ],
        client_ip=_client_ip(request),
    )

    error_response = ErrorResponse(
        error="Request validation failed",
        error_type=ErrorType.VALIDATION,
        details=details,
    )
    return JSONResponse(status_code=422, content=error_response.model_dump())


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "Unexpected exception occurred",
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        traceback=traceback.format_exc(),
        client_ip=_client_ip(request),
    )

    # Internal details are not exposed to clients
    error_response = ErrorResponse(
        error="An unexpected error occurred",
        error_type=ErrorType.INTERNAL_SERVER,
    )
    return JSONResponse(status_code=500, content=error_response.model_dump())
