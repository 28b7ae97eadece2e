"""Durable raw-sample store configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class StorageConfig(BaseSettings):
    """SQLite raw-sample store settings."""

    sqlite_store_enabled: bool = Field(default=True)
    sqlite_store_path: str = Field(default="data/warehouse.db")
    bytes_per_row_estimate: int = Field(default=256, ge=1)

    class Config:
        env_prefix = ""
        extra = "ignore"
