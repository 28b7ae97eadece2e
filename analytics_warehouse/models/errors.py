"""Error models and exception classes for the analytics warehouse."""

import time
from typing import Optional, List
from pydantic import BaseModel, Field
from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration."""

    VALIDATION = "validation"
    DURABILITY = "durability"
    CONCURRENCY = "concurrency"
    LIFECYCLE = "lifecycle"
    RESOURCE_NOT_FOUND = "resource_not_found"
    INTERNAL_SERVER = "internal_server"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field name for validation errors")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")

    class Config:
        use_enum_values = True


# Custom Exception Classes


class WarehouseException(Exception):
    """Base exception for the analytics warehouse."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: Optional[List[ErrorDetail]] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.details = details or []
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
        )


class ValidationError(WarehouseException):
    """Malformed caller input. Rejected synchronously, never retried."""

    def __init__(self, message: str = "Validation failed", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.VALIDATION, status_code=400, **kwargs
        )


class InvalidRangeError(ValidationError):
    """Query range with start after end."""

    def __init__(self, start, end, **kwargs):
        super().__init__(
            message=f"Invalid time range: start {start} is after end {end}",
            details=[
                ErrorDetail(field="start", message=str(start), code="invalid_range")
            ],
            **kwargs,
        )


class InvalidAggregationError(ValidationError):
    """Unknown aggregation kind or a sample value that cannot be aggregated."""

    def __init__(self, message: str = "Invalid aggregation", **kwargs):
        super().__init__(message=message, **kwargs)


class InvalidGranularityError(ValidationError):
    def __init__(self, granularity, **kwargs):
        super().__init__(message=f"Unknown granularity: {granularity}", **kwargs)


class UnknownMetricError(ValidationError):
    """Metric name is empty or blank."""

    def __init__(self, metric, **kwargs):
        super().__init__(message=f"Malformed metric name: {metric!r}", **kwargs)


class InvalidPolicyError(ValidationError):
    """Retention policy violates its ordering invariants."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, **kwargs)


class AggregationKindMismatchError(ValidationError):
    """Sample kind differs from the kind already fixed on the target row."""

    def __init__(self, metric: str, expected, received, **kwargs):
        super().__init__(
            message=(
                f"Metric '{metric}' bucket is aggregated as {expected}, "
                f"sample requested {received}"
            ),
            **kwargs,
        )


class DurabilityError(WarehouseException):
    """Durable store failures. Aggregate state is unaffected."""

    def __init__(self, message: str = "Durable store unavailable", **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.DURABILITY,
            status_code=503,
            **kwargs,
        )


class StoreWriteError(DurabilityError):
    """Raw sample could not be appended to the durable store."""

    def __init__(self, metric: str, reason: str, **kwargs):
        super().__init__(
            message=f"Raw sample write failed for '{metric}': {reason}", **kwargs
        )


class ConcurrencyError(WarehouseException):
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.CONCURRENCY,
            status_code=409,
            **kwargs,
        )


class OptimizationInProgressError(ConcurrencyError):
    """Raised when an optimization cycle is requested while one is running."""

    def __init__(self, **kwargs):
        super().__init__(message="Optimization already in progress", **kwargs)


class LifecycleError(WarehouseException):
    """A single data type's sweep step failed."""

    def __init__(self, data_type: str, sweep: str, reason: str, **kwargs):
        self.data_type = data_type
        self.sweep = sweep
        super().__init__(
            message=f"{sweep} sweep failed for '{data_type}': {reason}",
            error_type=ErrorType.LIFECYCLE,
            status_code=500,
            **kwargs,
        )


class NotFoundError(WarehouseException):
    """Resource not found errors."""

    def __init__(self, resource: str, resource_id: str = None, **kwargs):
        message = f"{resource} not found"
        if resource_id:
            message += f": {resource_id}"
        super().__init__(
            message=message,
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            status_code=404,
            **kwargs,
        )


class UnknownDataTypeError(NotFoundError):
    def __init__(self, data_type: str, **kwargs):
        super().__init__(resource="Retention policy", resource_id=data_type, **kwargs)


class BackupNotFoundError(NotFoundError):
    def __init__(self, backup_id: str, **kwargs):
        super().__init__(resource="Backup", resource_id=backup_id, **kwargs)
