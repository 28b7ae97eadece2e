"""Configuration management for the analytics warehouse.

This module provides a unified Settings class with flat fields (one per
environment variable) and grouped views over them.

Usage:
    from analytics_warehouse.config import settings

    # Access grouped settings
    settings.retention.purge_interval_hours
    settings.optimization.optimization_pattern_threshold

    # Or the flat fields
    settings.purge_interval_hours
    settings.get_timezone()
"""

from typing import Dict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Import grouped configurations
from .api import APIConfig
from .logging import LoggingConfig
from .optimization import OptimizationConfig
from .retention import (
    DEFAULT_METRIC_DATA_TYPES,
    DEFAULT_RETENTION_POLICIES,
    RetentionConfig,
)
from .storage import StorageConfig


class Settings(BaseSettings):
    """Application settings with environment variable support.

    This class provides both:
    1. Grouped access via nested configs (settings.retention.purge_interval_hours)
    2. Flat access (settings.purge_interval_hours)
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_debug: bool = Field(default=False)
    api_reload: bool = Field(default=False)
    enable_docs: bool = Field(default=True)

    # Bucketing
    warehouse_timezone: str = Field(
        default="UTC",
        description="IANA zone used for day/week/month/quarter/year bucket boundaries",
    )

    # Durable raw-sample store
    sqlite_store_enabled: bool = Field(
        default=True,
        description="Persist raw samples to SQLite; in-memory store otherwise",
    )
    sqlite_store_path: str = Field(default="data/warehouse.db")
    bytes_per_row_estimate: int = Field(default=256, ge=1)

    # Query performance log
    query_log_capacity: int = Field(default=1000, ge=1)
    slow_query_threshold_ms: float = Field(
        default=5000.0, ge=0, description="Queries slower than this are logged"
    )
    status_slow_query_ms: float = Field(
        default=2000.0, ge=0, description="Slow-query cutoff used in status reports"
    )

    # Optimization
    background_tasks_enabled: bool = Field(default=True)
    optimization_interval_minutes: int = Field(default=60, ge=1, le=1440)
    optimization_pattern_threshold: int = Field(default=10, ge=1)
    optimization_prune_horizon_days: int = Field(default=90, ge=1)
    optimization_efficiency_step: float = Field(default=2.0, ge=0)
    optimization_window: int = Field(default=100, ge=1)
    initial_index_efficiency: float = Field(default=95.0, ge=0, le=100)
    index_efficiency_floor: float = Field(default=90.0, ge=0, le=100)
    monitor_interval_minutes: int = Field(default=5, ge=1, le=1440)

    # Retention sweeps
    archival_interval_hours: int = Field(default=24, ge=1, le=720)
    purge_interval_hours: int = Field(default=24, ge=1, le=720)
    compression_interval_hours: int = Field(default=168, ge=1, le=2160)
    default_data_type: str = Field(default="user_events")
    metric_data_types: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_METRIC_DATA_TYPES)
    )

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator("warehouse_timezone")
    @classmethod
    def validate_timezone(cls, v):
        """Reject zone names the tz database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Only json and console renderers are available."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    # ========================================================================
    # GROUPED CONFIG ACCESS
    # ========================================================================

    @property
    def api(self) -> APIConfig:
        """Access API configuration group."""
        return APIConfig(
            api_host=self.api_host,
            api_port=self.api_port,
            api_debug=self.api_debug,
            api_reload=self.api_reload,
            enable_docs=self.enable_docs,
        )

    @property
    def storage(self) -> StorageConfig:
        """Access durable store configuration group."""
        return StorageConfig(
            sqlite_store_enabled=self.sqlite_store_enabled,
            sqlite_store_path=self.sqlite_store_path,
            bytes_per_row_estimate=self.bytes_per_row_estimate,
        )

    @property
    def optimization(self) -> OptimizationConfig:
        """Access optimization configuration group."""
        return OptimizationConfig(
            optimization_interval_minutes=self.optimization_interval_minutes,
            optimization_pattern_threshold=self.optimization_pattern_threshold,
            optimization_prune_horizon_days=self.optimization_prune_horizon_days,
            optimization_efficiency_step=self.optimization_efficiency_step,
            optimization_window=self.optimization_window,
            query_log_capacity=self.query_log_capacity,
            initial_index_efficiency=self.initial_index_efficiency,
        )

    @property
    def retention(self) -> RetentionConfig:
        """Access retention configuration group."""
        return RetentionConfig(
            archival_interval_hours=self.archival_interval_hours,
            purge_interval_hours=self.purge_interval_hours,
            compression_interval_hours=self.compression_interval_hours,
            default_data_type=self.default_data_type,
            metric_data_types=self.metric_data_types,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(log_level=self.log_level, log_format=self.log_format)

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    def get_timezone(self) -> ZoneInfo:
        """Get the bucketing time zone."""
        return ZoneInfo(self.warehouse_timezone)


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    # Grouped configs
    "APIConfig",
    "LoggingConfig",
    "OptimizationConfig",
    "RetentionConfig",
    "StorageConfig",
    # Policy defaults
    "DEFAULT_RETENTION_POLICIES",
    "DEFAULT_METRIC_DATA_TYPES",
]
