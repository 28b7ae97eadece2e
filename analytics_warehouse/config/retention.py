"""Retention and lifecycle configuration.

The policy table below is what the warehouse starts with. Policies can be
changed afterwards only through the administrative operations on the
warehouse; they are never dropped.
"""

from typing import Any, Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings


# (retention, archive after, purge after) are in days
DEFAULT_RETENTION_POLICIES: List[Dict[str, Any]] = [
    {
        "data_type": "user_events",
        "retention_period_days": 365,
        "archive_after_days": 90,
        "compression_level": "medium",
        "purge_after_days": 1095,
        "is_active": True,
    },
    {
        # 7 years for compliance
        "data_type": "order_data",
        "retention_period_days": 2555,
        "archive_after_days": 365,
        "compression_level": "low",
        "purge_after_days": 2920,
        "is_active": True,
    },
    {
        "data_type": "product_metrics",
        "retention_period_days": 730,
        "archive_after_days": 180,
        "compression_level": "medium",
        "purge_after_days": 1095,
        "is_active": True,
    },
    {
        # 7 years for compliance
        "data_type": "financial_data",
        "retention_period_days": 2555,
        "archive_after_days": 365,
        "compression_level": "low",
        "purge_after_days": 3650,
        "is_active": True,
    },
    {
        "data_type": "system_logs",
        "retention_period_days": 90,
        "archive_after_days": 30,
        "compression_level": "high",
        "purge_after_days": 180,
        "is_active": True,
    },
]

DEFAULT_METRIC_DATA_TYPES: Dict[str, str] = {
    "revenue": "financial_data",
    "refunds": "financial_data",
    "order_count": "order_data",
    "order_value": "order_data",
    "product_views": "product_metrics",
    "add_to_cart": "product_metrics",
    "unique_customers": "user_events",
    "session_count": "user_events",
    "conversion_count": "user_events",
    "page_load_time": "system_logs",
    "api_latency": "system_logs",
}


class RetentionConfig(BaseSettings):
    """Sweep scheduling and data-type resolution settings."""

    archival_interval_hours: int = Field(default=24, ge=1, le=720)
    purge_interval_hours: int = Field(default=24, ge=1, le=720)
    compression_interval_hours: int = Field(default=168, ge=1, le=2160)
    default_data_type: str = Field(default="user_events")
    metric_data_types: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_METRIC_DATA_TYPES)
    )

    class Config:
        env_prefix = ""
        extra = "ignore"
