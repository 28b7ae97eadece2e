"""Query optimization configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class OptimizationConfig(BaseSettings):
    """Settings for the optimization cycle and query performance log."""

    optimization_interval_minutes: int = Field(default=60, ge=1, le=1440)
    optimization_pattern_threshold: int = Field(default=10, ge=1)
    optimization_prune_horizon_days: int = Field(default=90, ge=1)
    optimization_efficiency_step: float = Field(default=2.0, ge=0)
    optimization_window: int = Field(default=100, ge=1)
    query_log_capacity: int = Field(default=1000, ge=1)
    initial_index_efficiency: float = Field(default=95.0, ge=0, le=100)

    class Config:
        env_prefix = ""
        extra = "ignore"
